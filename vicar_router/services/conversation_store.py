import asyncio
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional, Union

from vicar_router.logging_config import get_logger
from vicar_router.services.state_machine import ConversationState

logger = get_logger("conversation_store")


@dataclass
class UserSession:
    state: Union[ConversationState, str]
    touched_at: float
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class ConversationStore:
    """
    In-memory per-user conversation state.

    Every user gets its own asyncio.Lock, so read-modify-write cycles for the same
    user serialize in arrival order while different users never contend. Entries
    untouched for ``ttl_seconds`` are dropped by ``sweep`` and the store never
    tracks more than ``max_users`` users (least recently used go first). An entry
    whose lock is held is never evicted.
    """

    def __init__(
        self,
        ttl_seconds: float = 6 * 60 * 60,
        max_users: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_users = max_users
        self._clock = clock
        self._sessions: "OrderedDict[str, UserSession]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    def _entry(self, user_id: str) -> UserSession:
        session = self._sessions.get(user_id)
        if session is None:
            session = UserSession(state=ConversationState.START, touched_at=self._clock())
            self._sessions[user_id] = session
            self._enforce_capacity(keep=user_id)
        self._sessions.move_to_end(user_id)
        return session

    def get(self, user_id: str) -> Union[ConversationState, str]:
        """Current state for the user, START if the user is unknown."""
        session = self._sessions.get(user_id)
        if session is None:
            return ConversationState.START
        return session.state

    def set(self, user_id: str, state: Union[ConversationState, str]) -> None:
        session = self._entry(user_id)
        session.state = state
        session.touched_at = self._clock()

    @asynccontextmanager
    async def lock(self, user_id: str) -> AsyncIterator[None]:
        """Hold the user's lock for one read-modify-write cycle."""
        session = self._entry(user_id)
        async with session.lock:
            yield

    def _evictable(self, session: UserSession) -> bool:
        return not session.lock.locked()

    def _enforce_capacity(self, keep: Optional[str] = None) -> None:
        if self.max_users <= 0:
            return
        overflow = len(self._sessions) - self.max_users
        if overflow <= 0:
            return
        for user_id in list(self._sessions.keys()):
            if overflow <= 0:
                break
            if user_id == keep:
                continue
            if self._evictable(self._sessions[user_id]):
                del self._sessions[user_id]
                overflow -= 1
                logger.debug("Evicted least recently used conversation", extra={"context": {"user_id": user_id}})

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop conversations untouched for longer than the TTL. Returns the count removed."""
        now = self._clock() if now is None else now
        expired = [
            user_id
            for user_id, session in self._sessions.items()
            if now - session.touched_at >= self.ttl_seconds and self._evictable(session)
        ]
        for user_id in expired:
            del self._sessions[user_id]
        if expired:
            logger.info("Swept idle conversations", extra={"context": {"removed": len(expired), "tracked": len(self)}})
        return len(expired)
