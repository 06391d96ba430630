from typing import Optional

import httpx

from vicar_router.logging_config import get_logger

logger = get_logger("whatsapp_service")


class WhatsAppService:
    """Sends text messages through the WhatsApp Cloud API."""

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        api_url: str = "https://graph.facebook.com/v20.0",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def send_text(self, to: str, body: str) -> bool:
        """Send one text message. Failures are logged and reported as False, never retried."""
        if not self.access_token or not self.phone_number_id:
            logger.error("WhatsApp is not configured (WHATSAPP_TOKEN / PHONE_NUMBER_ID missing)")
            return False

        if not to or not body:
            logger.warning(f"send_text: missing recipient or body, to={to}")
            return False

        url = f"{self.api_url}/{self.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "text": {"body": body},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.access_token}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"Error sending WhatsApp message: {e}", extra={"context": {"to": to}})
            return False

        logger.info(
            f"WhatsApp response: status={response.status_code}, to={to}, body={response.text[:200]}"
        )
        return response.is_success


SUBSCRIBE_MODE = "subscribe"


def is_valid_verification(mode: Optional[str], token: Optional[str], verify_token: str) -> bool:
    """Meta webhook handshake: mode must be 'subscribe' and the token must match ours."""
    if not verify_token:
        return False
    return mode == SUBSCRIBE_MODE and token == verify_token
