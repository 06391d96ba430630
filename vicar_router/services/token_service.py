import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

from vicar_router.logging_config import get_logger
from vicar_router.services.pbx_client import PbxClient

logger = get_logger("token_service")

DEFAULT_SAFETY_MARGIN_SECONDS = 60


class AuthError(Exception):
    def __init__(self, message: str, errcode: Optional[int] = None):
        self.message = message
        self.errcode = errcode
        super().__init__(message)


@dataclass(frozen=True)
class Credential:
    token: str
    expires_at: float


class TokenManager:
    """
    Caches the PBX access token and renews it when it runs out.

    The stored expiry is the remote expiry minus ``safety_margin_seconds`` so a
    cached token is never used right at its remote deadline. Callers that arrive
    while a renewal is in flight await that same renewal.
    """

    def __init__(
        self,
        client: PbxClient,
        username: str,
        password: str,
        safety_margin_seconds: int = DEFAULT_SAFETY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self._username = username
        self._password = password
        self.safety_margin_seconds = safety_margin_seconds
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._pending: Optional[asyncio.Task] = None

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def _is_valid(self, now: float) -> bool:
        return self._credential is not None and now < self._credential.expires_at

    async def get_token(self) -> str:
        """Return a usable token, renewing it first if needed. Raises AuthError."""
        if self._is_valid(self._clock()):
            return self._credential.token

        if self._pending is None:
            self._pending = asyncio.create_task(self._renew())
            self._pending.add_done_callback(self._clear_pending)

        credential = await asyncio.shield(self._pending)
        return credential.token

    def _clear_pending(self, task: asyncio.Task) -> None:
        if self._pending is task:
            self._pending = None
        if not task.cancelled():
            # mark the exception retrieved when no caller is left awaiting it
            task.exception()

    async def _renew(self) -> Credential:
        logger.info("Requesting PBX access token")
        body = await self._client.request_token(self._username, self._password)

        errcode = body.get("errcode")
        if errcode != 0:
            logger.error(
                "PBX token request failed",
                extra={"context": {"errcode": errcode, "errmsg": body.get("errmsg")}},
            )
            raise AuthError(f"Token request failed: {body.get('errmsg') or errcode}", errcode)

        token = body.get("access_token")
        if not token:
            raise AuthError("Token response has no access_token")

        try:
            ttl = float(body.get("access_token_expire_time"))
        except (TypeError, ValueError):
            raise AuthError("Token response has no usable access_token_expire_time")
        if ttl <= 0:
            raise AuthError(f"Token response has non-positive expire time: {ttl}")
        if ttl <= self.safety_margin_seconds:
            logger.warning(
                "PBX token lifetime is within the safety margin, it will be renewed on every call",
                extra={"context": {"expires_in": ttl, "safety_margin": self.safety_margin_seconds}},
            )

        now = self._clock()
        self._credential = Credential(token=token, expires_at=now + ttl - self.safety_margin_seconds)
        logger.info("PBX access token renewed", extra={"context": {"expires_in": ttl}})
        return self._credential
