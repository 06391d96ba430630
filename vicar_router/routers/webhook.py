import json
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import PlainTextResponse

from vicar_router.config import Settings
from vicar_router.dependencies import get_flow_orchestrator, get_settings, get_whatsapp_service
from vicar_router.logging_config import get_logger
from vicar_router.schemas.webhook import MalformedPayloadError, WebhookResponse, extract_inbound_message
from vicar_router.services.flow_service import FlowOrchestrator
from vicar_router.services.whatsapp_service import WhatsAppService, is_valid_verification

logger = get_logger("webhook")

router = APIRouter()


async def parse_webhook_body(request: Request) -> Optional[dict]:
    """Decode the JSON body, tolerating bad encodings. Returns None if undecodable."""
    raw = await request.body()
    for enc in ("utf-8", "latin-1"):
        try:
            return json.loads(raw.decode(enc, errors="replace"))
        except ValueError:
            continue

    logger.warning("Failed to decode webhook payload")
    return None


@router.get("/webhook")
async def verify_webhook(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    settings: Settings = Depends(get_settings),
):
    """Meta subscription handshake: echo the challenge when mode and token match."""
    if not hub_mode or not hub_verify_token:
        return PlainTextResponse("Missing hub.mode or hub.verify_token", status_code=status.HTTP_400_BAD_REQUEST)

    if not is_valid_verification(hub_mode, hub_verify_token, settings.verify_token):
        logger.warning("Webhook verification rejected", extra={"context": {"mode": hub_mode}})
        return PlainTextResponse("Forbidden", status_code=status.HTTP_403_FORBIDDEN)

    logger.info("Webhook verified")
    return PlainTextResponse(hub_challenge or "")


@router.post("/webhook", response_model=WebhookResponse)
async def receive_webhook(
    request: Request,
    orchestrator: FlowOrchestrator = Depends(get_flow_orchestrator),
    whatsapp: WhatsAppService = Depends(get_whatsapp_service),
):
    """
    Handle an inbound WhatsApp notification.

    Always answers 200 so the channel does not redeliver: malformed payloads and
    internal failures are logged and reported in the body only.
    """
    payload = await parse_webhook_body(request)
    logger.debug("Webhook received", extra={"context": {"payload": payload}})

    try:
        inbound = extract_inbound_message(payload)
    except MalformedPayloadError as e:
        logger.warning(f"Ignoring malformed webhook payload: {e}")
        return WebhookResponse(status="ignored", message=str(e))

    if inbound is None:
        logger.info("No messages in webhook payload")
        return WebhookResponse(status="ignored", message="No messages")

    logger.info("Inbound message", extra={"context": {"user_id": inbound.user_id, "text": inbound.text[:100]}})

    try:
        reply = await orchestrator.handle_message(inbound.user_id, inbound.text)
        sent = await whatsapp.send_text(inbound.user_id, reply)
    except Exception as e:
        logger.error(f"Webhook processing failed: {e}", exc_info=True)
        return WebhookResponse(status="error", message="Processing failed")

    if not sent:
        logger.warning("Reply not delivered", extra={"context": {"user_id": inbound.user_id}})

    return WebhookResponse(status="processed")
