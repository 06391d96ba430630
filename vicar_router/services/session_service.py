from typing import Optional

from vicar_router.logging_config import get_logger
from vicar_router.services.pbx_client import PbxClient
from vicar_router.services.result import Result
from vicar_router.services.token_service import AuthError, TokenManager

logger = get_logger("session_service")

DEFAULT_USER_TYPE = "channel_user"


class SessionLookupError(LookupError):
    def __init__(self, message: str, errcode: Optional[int] = None):
        self.message = message
        self.errcode = errcode
        super().__init__(message)


class TransferError(Exception):
    def __init__(self, message: str, errcode: Optional[int] = None):
        self.message = message
        self.errcode = errcode
        super().__init__(message)


class SessionLocator:
    """Finds the PBX chat session currently open for a channel user."""

    def __init__(self, client: PbxClient, tokens: TokenManager, user_type: str = DEFAULT_USER_TYPE):
        self._client = client
        self._tokens = tokens
        self.user_type = user_type

    async def _list_sessions(self, user_id: str) -> list:
        token = await self._tokens.get_token()
        body = await self._client.list_sessions(token, self.user_type, user_id)

        errcode = body.get("errcode")
        if errcode != 0:
            raise SessionLookupError(f"Session list failed: {body.get('errmsg') or errcode}", errcode)

        sessions = body.get("list") or []
        if not isinstance(sessions, list):
            raise SessionLookupError("Session list has unexpected shape")
        return sessions

    async def find_active_session(self, user_id: str) -> Optional[str]:
        """Return the id of the user's active session, or None.

        A missing session is not an error: escalation is best effort, so auth
        failures and bad responses are logged and reported as "no session".
        """
        try:
            sessions = await self._list_sessions(user_id)
        except AuthError as e:
            logger.error(f"Cannot look up session, no token: {e.message}", extra={"context": {"user_id": user_id}})
            return None
        except SessionLookupError as e:
            logger.warning(e.message, extra={"context": {"user_id": user_id, "errcode": e.errcode}})
            return None

        for session in sessions:
            if isinstance(session, dict) and session.get("id") is not None:
                session_id = str(session["id"])
                logger.info("Active session found", extra={"context": {"user_id": user_id, "session_id": session_id}})
                return session_id

        logger.info("No active session", extra={"context": {"user_id": user_id}})
        return None


class SessionTransferClient:
    """Moves a PBX chat session into a queue. One attempt, outcome only logged."""

    def __init__(self, client: PbxClient, tokens: TokenManager):
        self._client = client
        self._tokens = tokens

    async def _transfer(self, session_id: str, queue_id: int) -> dict:
        token = await self._tokens.get_token()
        body = await self._client.transfer_session(token, session_id, queue_id)
        errcode = body.get("errcode")
        if errcode != 0:
            raise TransferError(f"Transfer failed: {body.get('errmsg') or errcode}", errcode)
        return body

    async def transfer(self, session_id: str, queue_id: int) -> Result[dict]:
        context = {"session_id": session_id, "queue_id": queue_id}
        try:
            body = await self._transfer(session_id, queue_id)
        except AuthError as e:
            logger.error(f"Transfer skipped, no token: {e.message}", extra={"context": context})
            return Result.failure(e.message, "auth_error")
        except TransferError as e:
            logger.error(e.message, extra={"context": {**context, "errcode": e.errcode}})
            return Result.failure(e.message, "transfer_error")

        logger.info("Session transferred to queue", extra={"context": context})
        return Result.success(body)
