"""FSM package for payment and promoted poll state management."""

from app.fsm.states import (
    TransactionStatus,
    PaymentStatus,
    PromotedPollStatus,
    PaymentMethod,
    WebhookEvent,
)

__all__ = [
    "TransactionStatus",
    "PaymentStatus",
    "PromotedPollStatus",
    "PaymentMethod",
    "WebhookEvent",
]
