"""
Promoted Poll Service - campaign approval workflow, vote accounting and
payment status reconciliation.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import (
    InvalidTransitionError,
    PromotedPollNotFoundError,
    ValidationError,
)
from app.fsm.machine import ensure_transition
from app.fsm.states import (
    PaymentStatus,
    PromotedPollStatus,
    TransactionStatus,
    TERMINAL_TRANSACTION_STATUSES,
)
from app.models.promoted_poll import PromotedPoll
from app.models.transaction import Transaction, utcnow

logger = logging.getLogger(__name__)


class PromotedPollService:
    """Service for sponsor-funded promoted polls."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_promoted_poll(self, promoted_poll_id: uuid.UUID) -> PromotedPoll:
        result = await self.db.execute(
            select(PromotedPoll).where(PromotedPoll.id == promoted_poll_id)
        )
        promoted_poll = result.scalar_one_or_none()
        if not promoted_poll:
            raise PromotedPollNotFoundError("Promoted poll not found")
        return promoted_poll

    async def create_promoted_poll(
        self,
        poll_id: uuid.UUID,
        sponsor_id: uuid.UUID,
        budget_amount: Decimal,
        cost_per_vote: Decimal,
        target_votes: int,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> PromotedPoll:
        """
        Create a campaign awaiting approval.

        The budget must cover target_votes * cost_per_vote.
        """
        budget_amount = Decimal(str(budget_amount))
        cost_per_vote = Decimal(str(cost_per_vote))

        if target_votes <= 0:
            raise ValidationError("Target votes must be greater than zero")
        if cost_per_vote <= 0:
            raise ValidationError("Cost per vote must be greater than zero")

        total_cost = cost_per_vote * target_votes
        if budget_amount < total_cost:
            raise ValidationError(
                f"Budget amount ({budget_amount}) must be at least equal to "
                f"target votes * cost per vote ({total_cost})"
            )
        if start_date and end_date and end_date <= start_date:
            raise ValidationError("End date must be after start date")

        existing = await self.db.scalar(
            select(func.count()).select_from(PromotedPoll).where(PromotedPoll.poll_id == poll_id)
        )
        if existing:
            raise ValidationError("This poll is already promoted")

        promoted_poll = PromotedPoll(
            poll_id=poll_id,
            sponsor_id=sponsor_id,
            budget_amount=budget_amount,
            cost_per_vote=cost_per_vote,
            target_votes=target_votes,
            current_votes=0,
            status=PromotedPollStatus.PENDING_APPROVAL.value,
            payment_status=PaymentStatus.PENDING.value,
            start_date=start_date,
            end_date=end_date,
        )
        self.db.add(promoted_poll)
        await self.db.flush()

        logger.info(f"Promoted poll {promoted_poll.id} created for poll {poll_id}")
        return promoted_poll

    async def list_promoted_polls(
        self,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        sponsor_id: Optional[uuid.UUID] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Tuple[List[PromotedPoll], int]:
        """List campaigns newest first, with the total count for paging."""
        filters = []
        if status:
            filters.append(PromotedPoll.status == status)
        if payment_status:
            filters.append(PromotedPoll.payment_status == payment_status)
        if sponsor_id:
            filters.append(PromotedPoll.sponsor_id == sponsor_id)

        result = await self.db.execute(
            select(PromotedPoll)
            .where(*filters)
            .order_by(PromotedPoll.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        total = await self.db.scalar(
            select(func.count()).select_from(PromotedPoll).where(*filters)
        )
        return list(result.scalars().all()), total or 0

    async def list_active_promoted_polls(self, limit: int = 5) -> List[PromotedPoll]:
        """Active, paid campaigns, least voted first so they get surfaced."""
        result = await self.db.execute(
            select(PromotedPoll)
            .where(
                PromotedPoll.status == PromotedPollStatus.ACTIVE.value,
                PromotedPoll.payment_status == PaymentStatus.PAID.value,
            )
            .order_by(PromotedPoll.current_votes.asc(), PromotedPoll.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def update_promoted_poll(
        self,
        promoted_poll_id: uuid.UUID,
        budget_amount: Optional[Decimal] = None,
        cost_per_vote: Optional[Decimal] = None,
        target_votes: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> PromotedPoll:
        """
        Edit campaign terms.

        Budget and cost per vote are frozen once paid. Neither the budget nor
        the target may drop below what the campaign has already consumed.
        """
        promoted_poll = await self.get_promoted_poll(promoted_poll_id)

        if promoted_poll.payment_status == PaymentStatus.PAID.value and (
            budget_amount is not None or cost_per_vote is not None
        ):
            raise ValidationError(
                "Budget and cost per vote cannot be changed after payment has been processed"
            )

        if budget_amount is not None:
            budget_amount = Decimal(str(budget_amount))
            if budget_amount < promoted_poll.spent_amount:
                raise ValidationError(
                    f"Budget amount cannot be less than what's already spent ({promoted_poll.spent_amount})"
                )
            promoted_poll.budget_amount = budget_amount

        if cost_per_vote is not None:
            cost_per_vote = Decimal(str(cost_per_vote))
            if cost_per_vote <= 0:
                raise ValidationError("Cost per vote must be greater than zero")
            promoted_poll.cost_per_vote = cost_per_vote

        if target_votes is not None:
            if target_votes < promoted_poll.current_votes:
                raise ValidationError(
                    f"Target votes cannot be less than current votes ({promoted_poll.current_votes})"
                )
            promoted_poll.target_votes = target_votes

        if start_date is not None:
            promoted_poll.start_date = start_date
        if end_date is not None:
            promoted_poll.end_date = end_date
        if (
            promoted_poll.start_date
            and promoted_poll.end_date
            and promoted_poll.end_date <= promoted_poll.start_date
        ):
            raise ValidationError("End date must be after start date")

        await self.db.flush()

        logger.info(f"Promoted poll {promoted_poll.id} updated")
        return promoted_poll

    def ensure_awaiting_payment(self, promoted_poll: PromotedPoll) -> None:
        """Refuse a new charge for a campaign that is paid or closed."""
        if promoted_poll.status in (
            PromotedPollStatus.REJECTED.value,
            PromotedPollStatus.COMPLETED.value,
        ):
            raise InvalidTransitionError(
                f"Cannot take payment for a {promoted_poll.status} promoted poll"
            )
        if promoted_poll.payment_status not in (
            PaymentStatus.PENDING.value,
            PaymentStatus.FAILED.value,
        ):
            raise InvalidTransitionError(
                f"Promoted poll payment is already {promoted_poll.payment_status}"
            )

    async def approve(
        self,
        promoted_poll_id: uuid.UUID,
        admin_id: str,
        notes: Optional[str] = None,
    ) -> PromotedPoll:
        promoted_poll = await self.get_promoted_poll(promoted_poll_id)
        if promoted_poll.status != PromotedPollStatus.PENDING_APPROVAL.value:
            raise InvalidTransitionError("Only pending polls can be approved")

        promoted_poll.status = ensure_transition(
            promoted_poll.status, PromotedPollStatus.ACTIVE
        ).value
        promoted_poll.approved_by = admin_id
        promoted_poll.approved_at = utcnow()
        if notes:
            promoted_poll.admin_notes = notes
        await self.db.flush()

        logger.info(f"Promoted poll {promoted_poll.id} approved by {admin_id}")
        return promoted_poll

    async def reject(self, promoted_poll_id: uuid.UUID, reason: str) -> PromotedPoll:
        """Reject a pending campaign; a paid one is flagged for refund."""
        promoted_poll = await self.get_promoted_poll(promoted_poll_id)
        if promoted_poll.status != PromotedPollStatus.PENDING_APPROVAL.value:
            raise InvalidTransitionError("Only pending polls can be rejected")

        promoted_poll.status = ensure_transition(
            promoted_poll.status, PromotedPollStatus.REJECTED
        ).value
        promoted_poll.admin_notes = reason

        if promoted_poll.payment_status == PaymentStatus.PAID.value:
            promoted_poll.payment_status = PaymentStatus.REFUNDED.value

        await self.db.flush()

        logger.info(f"Promoted poll {promoted_poll.id} rejected")
        return promoted_poll

    async def pause(self, promoted_poll_id: uuid.UUID) -> PromotedPoll:
        promoted_poll = await self.get_promoted_poll(promoted_poll_id)
        if promoted_poll.status != PromotedPollStatus.ACTIVE.value:
            raise InvalidTransitionError("Only active polls can be paused")

        promoted_poll.status = PromotedPollStatus.PAUSED.value
        await self.db.flush()
        return promoted_poll

    async def resume(self, promoted_poll_id: uuid.UUID) -> PromotedPoll:
        promoted_poll = await self.get_promoted_poll(promoted_poll_id)
        if promoted_poll.status != PromotedPollStatus.PAUSED.value:
            raise InvalidTransitionError("Only paused polls can be resumed")

        promoted_poll.status = PromotedPollStatus.ACTIVE.value
        await self.db.flush()
        return promoted_poll

    async def link_transaction(self, promoted_poll_id: uuid.UUID, transaction_id: uuid.UUID) -> None:
        """Point the campaign at its latest payment attempt."""
        promoted_poll = await self.get_promoted_poll(promoted_poll_id)
        promoted_poll.transaction_id = transaction_id
        promoted_poll.payment_status = PaymentStatus.PENDING.value
        await self.db.flush()

    async def set_payment_status(
        self,
        promoted_poll_id: uuid.UUID,
        status: PaymentStatus,
        transaction_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """
        Partial update of payment_status by id.

        With transaction_id, a campaign already linked to a different
        transaction is left alone. Returns False when nothing was updated.
        """
        query = update(PromotedPoll).where(PromotedPoll.id == promoted_poll_id)
        if transaction_id is not None:
            query = query.where(
                or_(
                    PromotedPoll.transaction_id.is_(None),
                    PromotedPoll.transaction_id == transaction_id,
                )
            )
        result = await self.db.execute(
            query.values(payment_status=PaymentStatus(status).value, updated_at=utcnow())
        )
        return result.rowcount > 0

    async def record_vote(self, promoted_poll_id: uuid.UUID) -> PromotedPoll:
        """
        Count one vote against the campaign budget.

        Only active, paid campaigns accept votes. Reaching target_votes
        completes the campaign; a campaign already at target rejects the vote.
        """
        promoted_poll = await self.get_promoted_poll(promoted_poll_id)
        if (
            promoted_poll.status != PromotedPollStatus.ACTIVE.value
            or promoted_poll.payment_status != PaymentStatus.PAID.value
        ):
            raise InvalidTransitionError("Promoted poll not found or not active")

        if promoted_poll.current_votes >= promoted_poll.target_votes:
            # Commit the completion before refusing the vote
            promoted_poll.status = PromotedPollStatus.COMPLETED.value
            await self.db.commit()
            raise InvalidTransitionError("Target votes already reached")

        # Conditional increment in SQL; the row guard stops votes past the target
        result = await self.db.execute(
            update(PromotedPoll)
            .where(
                PromotedPoll.id == promoted_poll.id,
                PromotedPoll.current_votes < PromotedPoll.target_votes,
            )
            .values(current_votes=PromotedPoll.current_votes + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(promoted_poll)

        if result.rowcount == 0:
            # Another vote took the last slot
            if promoted_poll.status == PromotedPollStatus.ACTIVE.value:
                promoted_poll.status = PromotedPollStatus.COMPLETED.value
                await self.db.commit()
            raise InvalidTransitionError("Target votes already reached")

        if promoted_poll.current_votes >= promoted_poll.target_votes:
            promoted_poll.status = ensure_transition(
                promoted_poll.status, PromotedPollStatus.COMPLETED
            ).value
            await self.db.flush()
            logger.info(f"Promoted poll {promoted_poll.id} reached its target of {promoted_poll.target_votes} votes")

        return promoted_poll

    async def reconcile_payment_statuses(self) -> int:
        """
        Re-derive payment_status from each campaign's settled transaction.

        Repairs campaigns whose best-effort update was lost after the
        transaction itself was settled. Returns the number of rows fixed.
        """
        result = await self.db.execute(
            select(PromotedPoll, Transaction)
            .join(Transaction, Transaction.promoted_poll_id == PromotedPoll.id)
            .where(Transaction.status.in_(sorted(TERMINAL_TRANSACTION_STATUSES)))
            .order_by(PromotedPoll.id, Transaction.updated_at.desc())
        )

        # Latest settled transaction per campaign wins
        latest = {}
        for promoted_poll, transaction in result.all():
            if promoted_poll.transaction_id and promoted_poll.transaction_id != transaction.id:
                continue
            latest.setdefault(promoted_poll.id, (promoted_poll, transaction))

        fixed = 0
        for promoted_poll, transaction in latest.values():
            expected = TransactionStatus(transaction.status).poll_payment_status.value
            if promoted_poll.payment_status != expected:
                logger.warning(
                    f"Promoted poll {promoted_poll.id} payment status {promoted_poll.payment_status} "
                    f"disagrees with transaction {transaction.id} ({transaction.status}); fixing"
                )
                promoted_poll.payment_status = expected
                fixed += 1

        if fixed:
            await self.db.flush()
        return fixed
