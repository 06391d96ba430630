from typing import Mapping

from vicar_router.logging_config import LoggerAdapter, get_logger
from vicar_router.services.conversation_store import ConversationStore
from vicar_router.services.result import Result
from vicar_router.services.session_service import SessionLocator, SessionTransferClient
from vicar_router.services.state_machine import QueueKey, TransferDirective, transition

logger = get_logger("flow_service")


class FlowOrchestrator:
    """Runs one inbound message through the menu flow and the PBX handoff."""

    def __init__(
        self,
        store: ConversationStore,
        locator: SessionLocator,
        transfers: SessionTransferClient,
        queue_targets: Mapping[QueueKey, int],
    ):
        self.store = store
        self.locator = locator
        self.transfers = transfers
        self.queue_targets = queue_targets

    async def handle_message(self, user_id: str, inbound_text: str) -> str:
        """
        Advance the user's conversation and return the reply to send.

        The new state is stored before any PBX call is made. Escalation failures
        are logged here and never reach the caller.
        """
        log = LoggerAdapter(logger, {"user_id": user_id})

        async with self.store.lock(user_id):
            previous = self.store.get(user_id)
            result = transition(previous, inbound_text)
            self.store.set(user_id, result.next_state)

        log.info(
            "Conversation advanced",
            context={
                "from_state": getattr(previous, "value", previous),
                "to_state": result.next_state.value,
                "transfer": result.directive.queue_key.value if result.directive else None,
            },
        )

        if result.directive is not None:
            try:
                outcome = await self.escalate(user_id, result.directive)
            except Exception as e:
                log.error(f"Escalation failed: {e}", exc_info=True)
            else:
                if not outcome.ok:
                    log.warning(
                        "Escalation not completed",
                        context={"reason": outcome.error, "code": outcome.error_code},
                    )

        return result.reply

    async def escalate(self, user_id: str, directive: TransferDirective) -> Result[dict]:
        """Locate the user's PBX session and move it to the directive's queue."""
        queue_id = self.queue_targets.get(directive.queue_key)
        if not queue_id:
            return Result.failure(f"No queue configured for {directive.queue_key.value}", "no_queue")

        session_id = await self.locator.find_active_session(user_id)
        if session_id is None:
            return Result.skipped("No active session")

        return await self.transfers.transfer(session_id, queue_id)
