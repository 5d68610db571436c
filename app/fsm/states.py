"""
State Definitions.
Transaction, payment and promoted poll statuses plus the webhook event kinds.
"""

from enum import Enum


class TransactionStatus(str, Enum):
    """
    Status of a payment transaction.
    Created as PENDING, settled exactly once by the webhook.
    REFUNDED is set by an administrative action.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self != TransactionStatus.PENDING

    @property
    def poll_payment_status(self) -> "PaymentStatus":
        """Payment status a linked promoted poll should carry."""
        statuses = {
            TransactionStatus.PENDING: PaymentStatus.PENDING,
            TransactionStatus.COMPLETED: PaymentStatus.PAID,
            TransactionStatus.FAILED: PaymentStatus.FAILED,
            TransactionStatus.REFUNDED: PaymentStatus.REFUNDED,
        }
        return statuses[self]


class PaymentStatus(str, Enum):
    """Denormalized payment status on a promoted poll."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PromotedPollStatus(str, Enum):
    """Campaign lifecycle of a promoted poll."""

    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    REJECTED = "rejected"


class PaymentMethod(str, Enum):
    """How a sponsor paid for a campaign."""

    WALLET = "wallet"
    STRIPE = "stripe"
    PAYPAL = "paypal"
    PAYSTACK = "paystack"


class WebhookEvent(str, Enum):
    """
    Paystack event kinds we settle.
    Anything else is acknowledged and ignored.
    """

    CHARGE_SUCCESS = "charge.success"
    CHARGE_FAILED = "charge.failed"

    @property
    def settles_to(self) -> TransactionStatus:
        if self == WebhookEvent.CHARGE_SUCCESS:
            return TransactionStatus.COMPLETED
        return TransactionStatus.FAILED


TERMINAL_TRANSACTION_STATUSES = frozenset(
    s.value for s in TransactionStatus if s.is_terminal
)
