from typing import Optional

import httpx

from vicar_router.logging_config import get_logger

logger = get_logger("pbx_client")

TRANSPORT_ERRCODE = -1


class PbxClient:
    """Thin client for the PBX / chat-center OpenAPI."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _make_request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> dict:
        """
        Call the OpenAPI and return its JSON body.

        Transport faults and non-2xx answers are folded into an error body with a
        non-zero ``errcode`` so callers only have to check one field.
        """
        url = f"{self.base_url}/{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"User-Agent": "OpenAPI"},
            ) as client:
                response = await client.request(method, url, params=params, json=json)
        except httpx.HTTPError as e:
            logger.error(f"PBX API transport error: {e}", extra={"context": {"path": path}})
            return {"errcode": TRANSPORT_ERRCODE, "errmsg": str(e)}

        if not response.is_success:
            logger.warning(
                "PBX API returned non-success status",
                extra={"context": {"path": path, "status": response.status_code}},
            )
            return {"errcode": response.status_code, "errmsg": response.text[:200]}

        try:
            body = response.json()
        except ValueError:
            logger.warning("PBX API returned a non-JSON body", extra={"context": {"path": path}})
            return {"errcode": TRANSPORT_ERRCODE, "errmsg": "invalid json"}

        if not isinstance(body, dict):
            return {"errcode": TRANSPORT_ERRCODE, "errmsg": "unexpected body"}
        return body

    async def request_token(self, username: str, password: str) -> dict:
        return await self._make_request("POST", "get_token", json={"username": username, "password": password})

    async def list_sessions(self, access_token: str, user_type: str, user_id: str) -> dict:
        params = {"access_token": access_token, "user_type": user_type, "user_id": user_id}
        return await self._make_request("GET", "message_session/list", params=params)

    async def transfer_session(self, access_token: str, session_id: str, queue_id: int) -> dict:
        data = {
            "session_id": session_id,
            "from_member_id": 0,
            "destination_type": "queue",
            "destination_id": queue_id,
        }
        return await self._make_request(
            "POST", "message_session/transfer", params={"access_token": access_token}, json=data
        )
