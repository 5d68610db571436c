"""
Admin Promoted Poll Endpoints.
Campaign approval workflow, vote accounting and transaction refunds.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import verify_admin_key
from app.api.payments import transaction_to_dict
from app.database import get_db
from app.fsm.states import PaymentStatus, TransactionStatus
from app.models.promoted_poll import PromotedPoll
from app.services.payment_service import PaymentService
from app.services.promoted_poll_service import PromotedPollService

router = APIRouter()
logger = logging.getLogger(__name__)


class CreatePromotedPollRequest(BaseModel):
    """Request body for creating a promoted poll."""
    poll_id: uuid.UUID
    sponsor_id: uuid.UUID
    budget_amount: Decimal = Field(gt=0)
    cost_per_vote: Decimal = Field(gt=0)
    target_votes: int = Field(gt=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class UpdatePromotedPollRequest(BaseModel):
    """Partial campaign edit; omitted fields are left unchanged."""
    budget_amount: Optional[Decimal] = Field(default=None, gt=0)
    cost_per_vote: Optional[Decimal] = Field(default=None, gt=0)
    target_votes: Optional[int] = Field(default=None, gt=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ApproveRequest(BaseModel):
    admin_id: str
    notes: Optional[str] = None


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1)


class RefundRequest(BaseModel):
    reason: Optional[str] = None


def promoted_poll_to_dict(promoted_poll: PromotedPoll) -> Dict[str, Any]:
    return {
        "id": str(promoted_poll.id),
        "poll_id": str(promoted_poll.poll_id),
        "sponsor_id": str(promoted_poll.sponsor_id),
        "pricing_model": promoted_poll.pricing_model,
        "budget_amount": float(promoted_poll.budget_amount),
        "cost_per_vote": float(promoted_poll.cost_per_vote),
        "target_votes": promoted_poll.target_votes,
        "current_votes": promoted_poll.current_votes,
        "spent_amount": float(promoted_poll.spent_amount),
        "status": promoted_poll.status,
        "payment_status": promoted_poll.payment_status,
        "transaction_id": str(promoted_poll.transaction_id) if promoted_poll.transaction_id else None,
        "approved_by": promoted_poll.approved_by,
        "approved_at": promoted_poll.approved_at.isoformat() if promoted_poll.approved_at else None,
        "admin_notes": promoted_poll.admin_notes,
    }


@router.get("/promoted-polls")
async def list_promoted_polls(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    _: str = Depends(verify_admin_key),
):
    """List promoted polls, optionally filtered by campaign or payment status."""
    promoted_polls, total = await PromotedPollService(db).list_promoted_polls(
        status=status,
        payment_status=payment_status,
        limit=limit,
        offset=offset,
    )
    return {
        "promoted_polls": [promoted_poll_to_dict(p) for p in promoted_polls],
        "total_count": total,
    }


@router.get("/promoted-polls/active")
async def list_active_promoted_polls(
    limit: int = Query(5, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    _: str = Depends(verify_admin_key),
):
    """Campaigns currently being served, least voted first."""
    promoted_polls = await PromotedPollService(db).list_active_promoted_polls(limit=limit)
    return {"promoted_polls": [promoted_poll_to_dict(p) for p in promoted_polls]}


@router.get("/sponsors/{sponsor_id}/promoted-polls")
async def list_sponsor_promoted_polls(
    sponsor_id: uuid.UUID,
    status: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    _: str = Depends(verify_admin_key),
):
    promoted_polls, total = await PromotedPollService(db).list_promoted_polls(
        status=status,
        sponsor_id=sponsor_id,
        limit=limit,
        offset=offset,
    )
    return {
        "promoted_polls": [promoted_poll_to_dict(p) for p in promoted_polls],
        "total_count": total,
    }


@router.post("/promoted-polls", status_code=201)
async def create_promoted_poll(
    request: CreatePromotedPollRequest,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(verify_admin_key),
):
    promoted_poll = await PromotedPollService(db).create_promoted_poll(
        poll_id=request.poll_id,
        sponsor_id=request.sponsor_id,
        budget_amount=request.budget_amount,
        cost_per_vote=request.cost_per_vote,
        target_votes=request.target_votes,
        start_date=request.start_date,
        end_date=request.end_date,
    )
    await db.commit()
    return promoted_poll_to_dict(promoted_poll)


@router.get("/promoted-polls/{promoted_poll_id}")
async def get_promoted_poll(
    promoted_poll_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(verify_admin_key),
):
    promoted_poll = await PromotedPollService(db).get_promoted_poll(promoted_poll_id)
    return promoted_poll_to_dict(promoted_poll)


@router.patch("/promoted-polls/{promoted_poll_id}")
async def update_promoted_poll(
    promoted_poll_id: uuid.UUID,
    request: UpdatePromotedPollRequest,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(verify_admin_key),
):
    """Edit campaign terms. Budget and cost per vote are frozen once paid."""
    promoted_poll = await PromotedPollService(db).update_promoted_poll(
        promoted_poll_id,
        budget_amount=request.budget_amount,
        cost_per_vote=request.cost_per_vote,
        target_votes=request.target_votes,
        start_date=request.start_date,
        end_date=request.end_date,
    )
    await db.commit()
    return promoted_poll_to_dict(promoted_poll)


@router.post("/promoted-polls/{promoted_poll_id}/approve")
async def approve_promoted_poll(
    promoted_poll_id: uuid.UUID,
    request: ApproveRequest,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(verify_admin_key),
):
    promoted_poll = await PromotedPollService(db).approve(
        promoted_poll_id,
        admin_id=request.admin_id,
        notes=request.notes,
    )
    await db.commit()
    return promoted_poll_to_dict(promoted_poll)


@router.post("/promoted-polls/{promoted_poll_id}/reject")
async def reject_promoted_poll(
    promoted_poll_id: uuid.UUID,
    request: RejectRequest,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(verify_admin_key),
):
    """
    Reject a pending campaign.

    A campaign that was already paid gets its transaction refunded too, so
    the poll and the transaction keep agreeing.
    """
    poll_service = PromotedPollService(db)
    promoted_poll = await poll_service.reject(promoted_poll_id, reason=request.reason)
    await db.commit()

    if promoted_poll.payment_status == PaymentStatus.REFUNDED.value and promoted_poll.transaction_id:
        payment_service = PaymentService(db)
        transaction = await payment_service.get_transaction(promoted_poll.transaction_id)
        if transaction and transaction.status == TransactionStatus.COMPLETED.value:
            await payment_service.refund_transaction(transaction.id, reason=request.reason)
        promoted_poll = await poll_service.get_promoted_poll(promoted_poll_id)

    return promoted_poll_to_dict(promoted_poll)


@router.post("/promoted-polls/{promoted_poll_id}/pause")
async def pause_promoted_poll(
    promoted_poll_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(verify_admin_key),
):
    promoted_poll = await PromotedPollService(db).pause(promoted_poll_id)
    await db.commit()
    return promoted_poll_to_dict(promoted_poll)


@router.post("/promoted-polls/{promoted_poll_id}/resume")
async def resume_promoted_poll(
    promoted_poll_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(verify_admin_key),
):
    promoted_poll = await PromotedPollService(db).resume(promoted_poll_id)
    await db.commit()
    return promoted_poll_to_dict(promoted_poll)


@router.post("/promoted-polls/{promoted_poll_id}/votes")
async def record_promoted_poll_vote(
    promoted_poll_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(verify_admin_key),
):
    """Count a vote against the campaign budget."""
    promoted_poll = await PromotedPollService(db).record_vote(promoted_poll_id)
    await db.commit()
    return promoted_poll_to_dict(promoted_poll)


@router.get("/transactions")
async def list_transactions(
    status: Optional[str] = None,
    payment_method: Optional[str] = None,
    user_id: Optional[uuid.UUID] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    _: str = Depends(verify_admin_key),
):
    transactions, total = await PaymentService(db).list_transactions(
        user_id=user_id,
        status=status,
        payment_method=payment_method,
        limit=limit,
        offset=offset,
    )
    return {
        "transactions": [transaction_to_dict(t) for t in transactions],
        "total_count": total,
    }


@router.post("/transactions/{transaction_id}/refund")
async def refund_transaction(
    transaction_id: uuid.UUID,
    request: RefundRequest,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(verify_admin_key),
):
    """Mark a completed transaction refunded and flag its promoted poll."""
    transaction = await PaymentService(db).refund_transaction(
        transaction_id,
        reason=request.reason,
    )
    logger.info(f"Admin refund recorded for transaction {transaction_id}")
    return transaction_to_dict(transaction)
