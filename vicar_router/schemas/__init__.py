from vicar_router.schemas.webhook import (
    InboundMessage,
    MalformedPayloadError,
    WebhookResponse,
    WhatsAppWebhook,
    extract_inbound_message,
)

__all__ = [
    "InboundMessage",
    "MalformedPayloadError",
    "WebhookResponse",
    "WhatsAppWebhook",
    "extract_inbound_message",
]
