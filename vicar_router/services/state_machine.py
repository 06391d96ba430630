from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class ConversationState(str, Enum):
    START = "start"
    BRANCH_SELECTION = "branch_selection"
    MENU_BRANCH_A = "menu_branch_a"
    MENU_BRANCH_B = "menu_branch_b"
    POST_SALE_BRANCH_A = "post_sale_branch_a"
    POST_SALE_BRANCH_B = "post_sale_branch_b"
    DONE = "done"


class QueueKey(str, Enum):
    """Transfer triggers; each maps to one human queue in the PBX."""

    BRANCH_A_DEFAULT = "branch_a_default"
    BRANCH_A_POST_SALE = "branch_a_post_sale"
    BRANCH_B_DEFAULT = "branch_b_default"
    BRANCH_B_POST_SALE = "branch_b_post_sale"


@dataclass(frozen=True)
class TransferDirective:
    queue_key: QueueKey


@dataclass(frozen=True)
class TransitionResult:
    next_state: ConversationState
    reply: str
    directive: Optional[TransferDirective] = None


OPTION_BRANCH_A = "1"
OPTION_BRANCH_B = "2"
OPTION_POST_SALE = "2"

MSG_WELCOME = (
    "👋 Hola, ¡Bienvenido a VICAR!\n"
    "Por favor, elija la sucursal de su preferencia:\n"
    "1. Asunción\n"
    "2. Ciudad del Este"
)
MSG_MENU_BRANCH_A = (
    "Sucursal Asunción. Seleccioná una opción:\n"
    "1. Ventas Vehículos\n2. Post Venta\n3. Cobranzas\n4. Otros"
)
MSG_MENU_BRANCH_B = (
    "Sucursal Ciudad del Este. Seleccioná una opción:\n"
    "1. Ventas Vehículos\n2. Post Venta\n3. Cobranzas\n4. Otros"
)
MSG_POST_SALE_BRANCH_A = (
    "Post Venta Asunción. Elegí una opción:\n"
    "1. Ventas de repuestos\n2. Turno de Servicio\n3. Estado de vehículo"
)
MSG_POST_SALE_BRANCH_B = (
    "Post Venta CDE. Elegí una opción:\n"
    "1. Ventas de repuestos\n2. Turno de Servicio\n3. Estado de vehículo"
)
MSG_INVALID_OPTION = "⚠️ Opción inválida. Escriba 1 o 2."
MSG_FORWARDED = "✅ Solicitud enviada. Te derivamos al sector correspondiente."
MSG_FORWARDED_POST_SALE_A = "✅ Solicitud enviada a Post Venta Asunción."
MSG_FORWARDED_POST_SALE_B = "✅ Solicitud enviada a Post Venta CDE."
MSG_CLOSING = "🙏 Gracias por comunicarte con VICAR. Si querés empezar de nuevo, escribí *Hola*."
MSG_FALLBACK_WELCOME = "👋 Hola, ¡Bienvenido a VICAR!\nEscribí 'Hola' para comenzar."


VALID_TRANSITIONS = {
    ConversationState.START: [ConversationState.BRANCH_SELECTION],
    ConversationState.BRANCH_SELECTION: [
        ConversationState.BRANCH_SELECTION,
        ConversationState.MENU_BRANCH_A,
        ConversationState.MENU_BRANCH_B,
    ],
    ConversationState.MENU_BRANCH_A: [ConversationState.POST_SALE_BRANCH_A, ConversationState.DONE],
    ConversationState.MENU_BRANCH_B: [ConversationState.POST_SALE_BRANCH_B, ConversationState.DONE],
    ConversationState.POST_SALE_BRANCH_A: [ConversationState.DONE],
    ConversationState.POST_SALE_BRANCH_B: [ConversationState.DONE],
    ConversationState.DONE: [ConversationState.START],
}


def can_transition(from_state: ConversationState, to_state: ConversationState) -> bool:
    """Check if the menu graph has an edge between the two states."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def coerce_state(value: Union[ConversationState, str, None]) -> Optional[ConversationState]:
    """Return the state for a stored value, or None if it is not a known state."""
    if value is None:
        return ConversationState.START
    try:
        return ConversationState(value)
    except ValueError:
        return None


def _branch_menu(text: str, post_sale_state: ConversationState, post_sale_reply: str, queue_key: QueueKey):
    if text == OPTION_POST_SALE:
        return TransitionResult(post_sale_state, post_sale_reply)
    return TransitionResult(ConversationState.DONE, MSG_FORWARDED, TransferDirective(queue_key))


def transition(state: Union[ConversationState, str, None], inbound_text: Optional[str]) -> TransitionResult:
    """
    Advance the menu flow by one inbound message.

    Pure function: no I/O and no stored state. Whether the conversation has to be
    transferred to a human queue is returned as a directive, the caller performs it.
    Unknown states restart the flow with the fallback welcome.
    """
    current = coerce_state(state)
    text = (inbound_text or "").strip()

    if current == ConversationState.START:
        return TransitionResult(ConversationState.BRANCH_SELECTION, MSG_WELCOME)

    if current == ConversationState.BRANCH_SELECTION:
        if text == OPTION_BRANCH_A:
            return TransitionResult(ConversationState.MENU_BRANCH_A, MSG_MENU_BRANCH_A)
        if text == OPTION_BRANCH_B:
            return TransitionResult(ConversationState.MENU_BRANCH_B, MSG_MENU_BRANCH_B)
        return TransitionResult(ConversationState.BRANCH_SELECTION, MSG_INVALID_OPTION)

    if current == ConversationState.MENU_BRANCH_A:
        return _branch_menu(
            text, ConversationState.POST_SALE_BRANCH_A, MSG_POST_SALE_BRANCH_A, QueueKey.BRANCH_A_DEFAULT
        )

    if current == ConversationState.MENU_BRANCH_B:
        return _branch_menu(
            text, ConversationState.POST_SALE_BRANCH_B, MSG_POST_SALE_BRANCH_B, QueueKey.BRANCH_B_DEFAULT
        )

    if current == ConversationState.POST_SALE_BRANCH_A:
        return TransitionResult(
            ConversationState.DONE,
            MSG_FORWARDED_POST_SALE_A,
            TransferDirective(QueueKey.BRANCH_A_POST_SALE),
        )

    if current == ConversationState.POST_SALE_BRANCH_B:
        return TransitionResult(
            ConversationState.DONE,
            MSG_FORWARDED_POST_SALE_B,
            TransferDirective(QueueKey.BRANCH_B_POST_SALE),
        )

    if current == ConversationState.DONE:
        return TransitionResult(ConversationState.START, MSG_CLOSING)

    return TransitionResult(ConversationState.START, MSG_FALLBACK_WELCOME)
