"""Transaction model - authoritative payment record settled by the gateway webhook."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import String, DateTime, ForeignKey, Numeric, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.fsm.states import TransactionStatus, TERMINAL_TRANSACTION_STATUSES


JSONValue = Union[str, int, float, bool, None, List[Any], Dict[str, Any]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Transaction(Base):
    """
    Payment attempt for a sponsor.
    gateway_transaction_id is unique and is the only key the webhook uses
    to find the row, so it must be written before the gateway can call back.
    """

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Owning user (profiles live in the auth backend)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
    )

    promoted_poll_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("promoted_polls.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        default="USD",
        nullable=False,
    )

    # Amount in the sponsor's own currency before conversion
    original_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )

    original_currency: Mapped[Optional[str]] = mapped_column(
        String(3),
        nullable=True,
    )

    payment_method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    # Gateway reference (Paystack transaction reference)
    gateway_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
        index=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=TransactionStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    # "metadata" is reserved on declarative classes
    meta: Mapped[Dict[str, JSONValue]] = mapped_column(
        "metadata",
        JSON,
        default=dict,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.gateway_transaction_id} {self.status}>"

    @property
    def is_settled(self) -> bool:
        """Check if the transaction has reached a terminal status."""
        return self.status in TERMINAL_TRANSACTION_STATUSES
