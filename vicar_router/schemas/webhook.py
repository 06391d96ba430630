from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError


class MalformedPayloadError(ValueError):
    """Inbound webhook payload lacks the fields a message needs."""


class WhatsAppText(BaseModel):
    body: Optional[str] = None


class WhatsAppMessage(BaseModel):
    from_user: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("from", "from_user"),
    )
    id: Optional[str] = None
    timestamp: Optional[str] = None
    type: Optional[str] = "text"
    text: Optional[WhatsAppText] = None


class WhatsAppValue(BaseModel):
    messaging_product: Optional[str] = None
    messages: list[WhatsAppMessage] = []
    statuses: Optional[list[Any]] = None


class WhatsAppChange(BaseModel):
    field: Optional[str] = None
    value: Optional[WhatsAppValue] = None


class WhatsAppEntry(BaseModel):
    id: Optional[str] = None
    changes: list[WhatsAppChange] = []


class WhatsAppWebhook(BaseModel):
    object: Optional[str] = None
    entry: list[WhatsAppEntry] = []


class InboundMessage(BaseModel):
    user_id: str
    text: str


class WebhookResponse(BaseModel):
    status: str
    message: Optional[str] = None


def extract_inbound_message(payload: Any) -> Optional[InboundMessage]:
    """
    Pull the first (sender, text) pair out of a WhatsApp Cloud API payload.

    Returns None when the payload carries no message (status updates, read
    receipts). Raises MalformedPayloadError when the payload is not a WhatsApp
    notification at all or the message has no sender.
    """
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Payload is not a JSON object")

    try:
        webhook = WhatsAppWebhook.model_validate(payload)
    except ValidationError as e:
        raise MalformedPayloadError(f"Invalid WhatsApp payload: {e.error_count()} errors") from e

    if not webhook.object:
        raise MalformedPayloadError("Missing 'object' field")

    if not webhook.entry or not webhook.entry[0].changes:
        return None

    value = webhook.entry[0].changes[0].value
    if value is None or not value.messages:
        return None

    message = value.messages[0]
    if not message.from_user:
        raise MalformedPayloadError("Message has no sender")

    text = (message.text.body if message.text else None) or ""
    return InboundMessage(user_id=message.from_user, text=text.strip())
