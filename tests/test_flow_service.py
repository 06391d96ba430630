import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from vicar_router.services.conversation_store import ConversationStore
from vicar_router.services.flow_service import FlowOrchestrator
from vicar_router.services.result import Result
from vicar_router.services.session_service import SessionLocator, SessionTransferClient
from vicar_router.services.state_machine import (
    MSG_CLOSING,
    MSG_FALLBACK_WELCOME,
    MSG_FORWARDED,
    MSG_MENU_BRANCH_A,
    MSG_POST_SALE_BRANCH_A,
    MSG_WELCOME,
    ConversationState,
    QueueKey,
    TransferDirective,
)

USER = "595981000001"

QUEUES = {
    QueueKey.BRANCH_A_DEFAULT: 6400,
    QueueKey.BRANCH_A_POST_SALE: 6401,
    QueueKey.BRANCH_B_DEFAULT: 6402,
    QueueKey.BRANCH_B_POST_SALE: 6403,
}


@pytest.fixture
def store():
    return ConversationStore()


@pytest.fixture
def locator():
    locator = Mock(spec=SessionLocator)
    locator.find_active_session = AsyncMock(return_value="7781")
    return locator


@pytest.fixture
def transfers():
    transfers = Mock(spec=SessionTransferClient)
    transfers.transfer = AsyncMock(return_value=Result.success({"errcode": 0}))
    return transfers


@pytest.fixture
def orchestrator(store, locator, transfers):
    return FlowOrchestrator(store=store, locator=locator, transfers=transfers, queue_targets=QUEUES)


class TestScenarios:
    @pytest.mark.asyncio
    async def test_new_user_gets_welcome(self, orchestrator, store, locator):
        reply = await orchestrator.handle_message(USER, "hola")

        assert reply == MSG_WELCOME
        assert store.get(USER) == ConversationState.BRANCH_SELECTION
        locator.find_active_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_branch_selection_option_1(self, orchestrator, store):
        store.set(USER, ConversationState.BRANCH_SELECTION)

        reply = await orchestrator.handle_message(USER, "1")

        assert reply == MSG_MENU_BRANCH_A
        assert store.get(USER) == ConversationState.MENU_BRANCH_A

    @pytest.mark.asyncio
    async def test_branch_a_other_option_transfers_to_default_queue(self, orchestrator, store, locator, transfers):
        store.set(USER, ConversationState.MENU_BRANCH_A)

        reply = await orchestrator.handle_message(USER, "9")

        assert reply == MSG_FORWARDED
        assert store.get(USER) == ConversationState.DONE
        locator.find_active_session.assert_awaited_once_with(USER)
        transfers.transfer.assert_awaited_once_with("7781", 6400)

    @pytest.mark.asyncio
    async def test_branch_a_post_sale_does_not_transfer(self, orchestrator, store, locator, transfers):
        store.set(USER, ConversationState.MENU_BRANCH_A)

        reply = await orchestrator.handle_message(USER, "2")

        assert reply == MSG_POST_SALE_BRANCH_A
        assert store.get(USER) == ConversationState.POST_SALE_BRANCH_A
        locator.find_active_session.assert_not_awaited()
        transfers.transfer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_active_session_still_replies(self, orchestrator, store, locator, transfers):
        store.set(USER, ConversationState.MENU_BRANCH_A)
        locator.find_active_session.return_value = None

        reply = await orchestrator.handle_message(USER, "1")

        assert reply == MSG_FORWARDED
        assert store.get(USER) == ConversationState.DONE
        transfers.transfer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_post_sale_transfers_to_post_sale_queue(self, orchestrator, store, transfers):
        store.set(USER, ConversationState.POST_SALE_BRANCH_A)

        await orchestrator.handle_message(USER, "3")

        transfers.transfer.assert_awaited_once_with("7781", 6401)

    @pytest.mark.asyncio
    async def test_done_restarts_without_transfer(self, orchestrator, store, locator):
        store.set(USER, ConversationState.DONE)

        reply = await orchestrator.handle_message(USER, "gracias")

        assert reply == MSG_CLOSING
        assert store.get(USER) == ConversationState.START
        locator.find_active_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_corrupt_state_restarts(self, orchestrator, store):
        store.set(USER, "SOMETHING_ELSE")

        reply = await orchestrator.handle_message(USER, "1")

        assert reply == MSG_FALLBACK_WELCOME
        assert store.get(USER) == ConversationState.START


class TestEscalationFailures:
    @pytest.mark.asyncio
    async def test_locator_exception_is_absorbed(self, orchestrator, store, locator, transfers):
        store.set(USER, ConversationState.MENU_BRANCH_A)
        locator.find_active_session.side_effect = RuntimeError("boom")

        reply = await orchestrator.handle_message(USER, "1")

        assert reply == MSG_FORWARDED
        assert store.get(USER) == ConversationState.DONE
        transfers.transfer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transfer_failure_is_absorbed(self, orchestrator, store, transfers):
        store.set(USER, ConversationState.MENU_BRANCH_A)
        transfers.transfer.return_value = Result.failure("SESSION NOT FOUND", "transfer_error")

        reply = await orchestrator.handle_message(USER, "1")

        assert reply == MSG_FORWARDED

    @pytest.mark.asyncio
    async def test_state_is_saved_before_escalation(self, orchestrator, store, locator):
        store.set(USER, ConversationState.MENU_BRANCH_A)
        seen = {}

        async def find(user_id):
            seen["state"] = store.get(user_id)
            return None

        locator.find_active_session.side_effect = find

        await orchestrator.handle_message(USER, "1")

        assert seen["state"] == ConversationState.DONE

    @pytest.mark.asyncio
    async def test_unconfigured_queue_skips_lookup(self, store, locator, transfers):
        orchestrator = FlowOrchestrator(
            store=store,
            locator=locator,
            transfers=transfers,
            queue_targets={**QUEUES, QueueKey.BRANCH_A_DEFAULT: 0},
        )
        store.set(USER, ConversationState.MENU_BRANCH_A)

        reply = await orchestrator.handle_message(USER, "1")

        assert reply == MSG_FORWARDED
        locator.find_active_session.assert_not_awaited()


class TestEscalate:
    @pytest.mark.asyncio
    async def test_returns_skipped_without_session(self, orchestrator, locator):
        locator.find_active_session.return_value = None

        result = await orchestrator.escalate(USER, TransferDirective(QueueKey.BRANCH_B_DEFAULT))

        assert result.ok is False
        assert result.error_code == "skipped"

    @pytest.mark.asyncio
    async def test_uses_mapped_queue(self, orchestrator, transfers):
        result = await orchestrator.escalate(USER, TransferDirective(QueueKey.BRANCH_B_POST_SALE))

        assert result.ok is True
        transfers.transfer.assert_awaited_once_with("7781", 6403)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_same_user_messages_apply_in_submission_order(self, orchestrator, store):
        replies = await asyncio.gather(
            orchestrator.handle_message(USER, ""),
            orchestrator.handle_message(USER, "1"),
            orchestrator.handle_message(USER, "2"),
        )

        assert replies == [MSG_WELCOME, MSG_MENU_BRANCH_A, MSG_POST_SALE_BRANCH_A]
        assert store.get(USER) == ConversationState.POST_SALE_BRANCH_A

    @pytest.mark.asyncio
    async def test_slow_escalation_does_not_reorder_next_message(self, orchestrator, store, locator):
        store.set(USER, ConversationState.MENU_BRANCH_A)

        async def slow_find(user_id):
            await asyncio.sleep(0.02)
            return None

        locator.find_active_session.side_effect = slow_find

        replies = await asyncio.gather(
            orchestrator.handle_message(USER, "1"),
            orchestrator.handle_message(USER, "hola"),
        )

        assert replies == [MSG_FORWARDED, MSG_CLOSING]
        assert store.get(USER) == ConversationState.START

    @pytest.mark.asyncio
    async def test_different_users_run_in_parallel(self, orchestrator, store):
        async with store.lock("someone-else"):
            reply = await asyncio.wait_for(orchestrator.handle_message(USER, "hola"), timeout=1)

        assert reply == MSG_WELCOME
