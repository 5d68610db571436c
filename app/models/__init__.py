"""Models package for database models."""

from app.models.transaction import Transaction
from app.models.promoted_poll import PromotedPoll

__all__ = [
    "Transaction",
    "PromotedPoll",
]
