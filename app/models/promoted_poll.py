"""Promoted poll model - sponsor-funded poll campaign."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, Numeric, Integer, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.fsm.states import PromotedPollStatus, PaymentStatus
from app.models.transaction import utcnow


class PromotedPoll(Base):
    """
    Promoted poll campaign, priced per vote.
    payment_status mirrors the latest linked transaction and may lag it.
    """

    __tablename__ = "promoted_polls"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    poll_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
    )

    sponsor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
    )

    # Cost per vote is the only pricing model
    pricing_model: Mapped[str] = mapped_column(
        String(10),
        default="CPV",
        nullable=False,
    )

    budget_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    cost_per_vote: Mapped[Decimal] = mapped_column(
        Numeric(10, 4),
        nullable=False,
    )

    target_votes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    current_votes: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(30),
        default=PromotedPollStatus.PENDING_APPROVAL.value,
        nullable=False,
        index=True,
    )

    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    # Latest payment attempt (no FK, transactions already point here)
    transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )

    start_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    approved_by: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    admin_notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
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
        return f"<PromotedPoll {self.id} {self.status} {self.payment_status}>"

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value

    @property
    def remaining_votes(self) -> int:
        return max(self.target_votes - self.current_votes, 0)

    @property
    def spent_amount(self) -> Decimal:
        """Budget consumed by the votes recorded so far."""
        return Decimal(self.current_votes) * Decimal(self.cost_per_vote)
