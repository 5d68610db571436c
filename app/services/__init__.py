"""Services package."""

from app.services.payment_service import PaymentService
from app.services.paystack_service import PaystackService, get_paystack_service
from app.services.promoted_poll_service import PromotedPollService

__all__ = [
    "PaymentService",
    "PaystackService",
    "get_paystack_service",
    "PromotedPollService",
]
