from vicar_router.services.result import Result
from vicar_router.services.state_machine import (
    VALID_TRANSITIONS,
    ConversationState,
    QueueKey,
    TransferDirective,
    TransitionResult,
    can_transition,
    transition,
)
