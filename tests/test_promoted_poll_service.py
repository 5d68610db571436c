"""
Tests for PromotedPollService.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.exceptions import (
    InvalidTransitionError,
    PromotedPollNotFoundError,
    ValidationError,
)
from app.fsm.states import PaymentStatus, PromotedPollStatus
from app.models import PromotedPoll, Transaction
from app.services.promoted_poll_service import PromotedPollService


async def make_poll(db, **overrides) -> PromotedPoll:
    values = dict(
        poll_id=uuid.uuid4(),
        sponsor_id=uuid.uuid4(),
        budget_amount=Decimal("10.00"),
        cost_per_vote=Decimal("5.00"),
        target_votes=2,
        status=PromotedPollStatus.ACTIVE.value,
        payment_status=PaymentStatus.PAID.value,
    )
    values.update(overrides)
    promoted_poll = PromotedPoll(**values)
    db.add(promoted_poll)
    await db.commit()
    return promoted_poll


@pytest.mark.asyncio
async def test_create_promoted_poll(db):
    service = PromotedPollService(db)
    poll_id = uuid.uuid4()

    promoted_poll = await service.create_promoted_poll(
        poll_id=poll_id,
        sponsor_id=uuid.uuid4(),
        budget_amount=Decimal("100.00"),
        cost_per_vote=Decimal("0.50"),
        target_votes=200,
    )

    assert promoted_poll.id is not None
    assert promoted_poll.status == "pending_approval"
    assert promoted_poll.payment_status == "pending"
    assert promoted_poll.current_votes == 0
    assert promoted_poll.pricing_model == "CPV"


@pytest.mark.asyncio
async def test_create_requires_budget_to_cover_target(db):
    service = PromotedPollService(db)

    with pytest.raises(ValidationError) as exc_info:
        await service.create_promoted_poll(
            poll_id=uuid.uuid4(),
            sponsor_id=uuid.uuid4(),
            budget_amount=Decimal("10.00"),
            cost_per_vote=Decimal("0.50"),
            target_votes=100,
        )
    assert "Budget amount" in exc_info.value.message


@pytest.mark.asyncio
async def test_create_rejects_bad_campaigns(db):
    service = PromotedPollService(db)
    start = datetime(2026, 1, 10, tzinfo=timezone.utc)

    with pytest.raises(ValidationError):
        await service.create_promoted_poll(uuid.uuid4(), uuid.uuid4(), Decimal("10"), Decimal("1"), 0)
    with pytest.raises(ValidationError):
        await service.create_promoted_poll(uuid.uuid4(), uuid.uuid4(), Decimal("10"), Decimal("0"), 5)
    with pytest.raises(ValidationError):
        await service.create_promoted_poll(
            uuid.uuid4(), uuid.uuid4(), Decimal("10"), Decimal("1"), 5,
            start_date=start, end_date=start - timedelta(days=1),
        )


@pytest.mark.asyncio
async def test_create_rejects_already_promoted_poll(db, promoted_poll):
    service = PromotedPollService(db)

    with pytest.raises(ValidationError) as exc_info:
        await service.create_promoted_poll(
            poll_id=promoted_poll.poll_id,
            sponsor_id=uuid.uuid4(),
            budget_amount=Decimal("10.00"),
            cost_per_vote=Decimal("1.00"),
            target_votes=5,
        )
    assert exc_info.value.message == "This poll is already promoted"


@pytest.mark.asyncio
async def test_get_unknown_promoted_poll(db):
    with pytest.raises(PromotedPollNotFoundError):
        await PromotedPollService(db).get_promoted_poll(uuid.uuid4())


@pytest.mark.asyncio
async def test_approval_workflow(db):
    promoted_poll = await make_poll(db, status=PromotedPollStatus.PENDING_APPROVAL.value)
    service = PromotedPollService(db)

    approved = await service.approve(promoted_poll.id, admin_id="admin-7", notes="Looks fine")
    assert approved.status == "active"
    assert approved.approved_by == "admin-7"
    assert approved.approved_at is not None
    assert approved.admin_notes == "Looks fine"

    with pytest.raises(InvalidTransitionError):
        await service.approve(promoted_poll.id, admin_id="admin-7")

    paused = await service.pause(promoted_poll.id)
    assert paused.status == "paused"
    with pytest.raises(InvalidTransitionError):
        await service.pause(promoted_poll.id)

    resumed = await service.resume(promoted_poll.id)
    assert resumed.status == "active"
    with pytest.raises(InvalidTransitionError):
        await service.resume(promoted_poll.id)


@pytest.mark.asyncio
async def test_reject_paid_poll_flags_refund(db):
    promoted_poll = await make_poll(db, status=PromotedPollStatus.PENDING_APPROVAL.value)
    service = PromotedPollService(db)

    rejected = await service.reject(promoted_poll.id, reason="Off-topic")

    assert rejected.status == "rejected"
    assert rejected.payment_status == "refunded"
    assert rejected.admin_notes == "Off-topic"

    with pytest.raises(InvalidTransitionError):
        await service.reject(promoted_poll.id, reason="again")


@pytest.mark.asyncio
async def test_reject_unpaid_poll_keeps_payment_status(db):
    promoted_poll = await make_poll(
        db,
        status=PromotedPollStatus.PENDING_APPROVAL.value,
        payment_status=PaymentStatus.PENDING.value,
    )

    rejected = await PromotedPollService(db).reject(promoted_poll.id, reason="Duplicate")

    assert rejected.payment_status == "pending"


@pytest.mark.asyncio
async def test_record_vote_completes_at_target(db):
    promoted_poll = await make_poll(db)
    service = PromotedPollService(db)

    first = await service.record_vote(promoted_poll.id)
    assert first.current_votes == 1
    assert first.status == "active"
    assert first.spent_amount == Decimal("5.00")

    second = await service.record_vote(promoted_poll.id)
    assert second.current_votes == 2
    assert second.status == "completed"
    assert second.remaining_votes == 0

    with pytest.raises(InvalidTransitionError):
        await service.record_vote(promoted_poll.id)


@pytest.mark.asyncio
async def test_record_vote_at_target_completes_and_refuses(db, session_factory):
    promoted_poll = await make_poll(db, current_votes=2)

    with pytest.raises(InvalidTransitionError) as exc_info:
        await PromotedPollService(db).record_vote(promoted_poll.id)
    assert exc_info.value.message == "Target votes already reached"

    async with session_factory() as session:
        stored = await session.get(PromotedPoll, promoted_poll.id)
    assert stored.status == "completed"
    assert stored.current_votes == 2


@pytest.mark.asyncio
async def test_record_vote_requires_payment(db):
    promoted_poll = await make_poll(db, payment_status=PaymentStatus.PENDING.value)

    with pytest.raises(InvalidTransitionError):
        await PromotedPollService(db).record_vote(promoted_poll.id)


@pytest.mark.asyncio
async def test_set_payment_status(db, promoted_poll):
    service = PromotedPollService(db)

    assert await service.set_payment_status(promoted_poll.id, PaymentStatus.PAID)
    assert not await service.set_payment_status(uuid.uuid4(), PaymentStatus.PAID)

    await db.refresh(promoted_poll)
    assert promoted_poll.payment_status == "paid"


@pytest.mark.asyncio
async def test_link_transaction(db, promoted_poll):
    transaction_id = uuid.uuid4()

    await PromotedPollService(db).link_transaction(promoted_poll.id, transaction_id)

    assert promoted_poll.transaction_id == transaction_id
    assert promoted_poll.payment_status == "pending"


@pytest.mark.asyncio
async def test_list_promoted_polls(db, promoted_poll):
    await make_poll(db, status=PromotedPollStatus.PENDING_APPROVAL.value)
    service = PromotedPollService(db)

    polls, total = await service.list_promoted_polls(status="pending_approval")
    assert total == 1
    assert polls[0].status == "pending_approval"

    polls, total = await service.list_promoted_polls()
    assert total == 2

    polls, total = await service.list_promoted_polls(sponsor_id=promoted_poll.sponsor_id)
    assert [p.id for p in polls] == [promoted_poll.id]


@pytest.mark.asyncio
async def test_reconcile_repairs_lagging_poll(db, pending_transaction, promoted_poll):
    """Transaction settled but the poll update was lost."""
    pending_transaction.status = "completed"
    await db.commit()
    service = PromotedPollService(db)

    fixed = await service.reconcile_payment_statuses()
    await db.commit()

    assert fixed == 1
    await db.refresh(promoted_poll)
    assert promoted_poll.payment_status == "paid"

    # Nothing left to fix
    assert await service.reconcile_payment_statuses() == 0


@pytest.mark.asyncio
async def test_reconcile_ignores_superseded_transactions(db, promoted_poll):
    """A failed older attempt does not override the poll's current one."""
    old_attempt = Transaction(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        promoted_poll_id=promoted_poll.id,
        amount=Decimal("50.00"),
        currency="NGN",
        payment_method="paystack",
        gateway_transaction_id="ref_old",
        status="failed",
        meta={},
    )
    new_attempt = Transaction(
        id=uuid.uuid4(),
        user_id=old_attempt.user_id,
        promoted_poll_id=promoted_poll.id,
        amount=Decimal("50.00"),
        currency="NGN",
        payment_method="paystack",
        gateway_transaction_id="ref_new",
        status="pending",
        meta={},
    )
    db.add_all([old_attempt, new_attempt])
    promoted_poll.transaction_id = new_attempt.id
    await db.commit()

    fixed = await PromotedPollService(db).reconcile_payment_statuses()

    assert fixed == 0
    assert promoted_poll.payment_status == "pending"


@pytest.mark.asyncio
async def test_reconcile_ignores_pending_transactions(db, pending_transaction, promoted_poll):
    assert await PromotedPollService(db).reconcile_payment_statuses() == 0
    assert promoted_poll.payment_status == "pending"


@pytest.mark.asyncio
async def test_concurrent_vote_cannot_pass_target(db, session_factory):
    """A vote racing another one for the last slot is refused."""
    promoted_poll = await make_poll(db, current_votes=1, target_votes=2)

    # Another worker records the final vote; our copy is now stale
    async with session_factory() as other:
        await PromotedPollService(other).record_vote(promoted_poll.id)
        await other.commit()
    assert promoted_poll.current_votes == 1

    with pytest.raises(InvalidTransitionError) as exc_info:
        await PromotedPollService(db).record_vote(promoted_poll.id)
    assert exc_info.value.message == "Target votes already reached"

    async with session_factory() as session:
        stored = await session.get(PromotedPoll, promoted_poll.id)
    assert stored.current_votes == 2
    assert stored.status == "completed"


@pytest.mark.asyncio
async def test_update_promoted_poll_terms(db):
    promoted_poll = await make_poll(
        db,
        status=PromotedPollStatus.PENDING_APPROVAL.value,
        payment_status=PaymentStatus.PENDING.value,
    )
    service = PromotedPollService(db)

    updated = await service.update_promoted_poll(
        promoted_poll.id,
        budget_amount=Decimal("40.00"),
        cost_per_vote=Decimal("4.00"),
        target_votes=10,
    )

    assert updated.budget_amount == Decimal("40.00")
    assert updated.cost_per_vote == Decimal("4.00")
    assert updated.target_votes == 10


@pytest.mark.asyncio
async def test_update_paid_poll_freezes_pricing(db):
    promoted_poll = await make_poll(db)
    service = PromotedPollService(db)

    with pytest.raises(ValidationError) as exc_info:
        await service.update_promoted_poll(promoted_poll.id, budget_amount=Decimal("20.00"))
    assert "cannot be changed after payment" in exc_info.value.message
    with pytest.raises(ValidationError):
        await service.update_promoted_poll(promoted_poll.id, cost_per_vote=Decimal("1.00"))

    # The target can still move
    updated = await service.update_promoted_poll(promoted_poll.id, target_votes=3)
    assert updated.target_votes == 3


@pytest.mark.asyncio
async def test_update_cannot_go_below_consumption(db):
    promoted_poll = await make_poll(
        db,
        current_votes=2,
        target_votes=4,
        budget_amount=Decimal("20.00"),
        payment_status=PaymentStatus.PENDING.value,
    )
    service = PromotedPollService(db)

    with pytest.raises(ValidationError) as exc_info:
        await service.update_promoted_poll(promoted_poll.id, target_votes=1)
    assert exc_info.value.message == "Target votes cannot be less than current votes (2)"
    with pytest.raises(ValidationError):
        await service.update_promoted_poll(promoted_poll.id, budget_amount=Decimal("5.00"))


@pytest.mark.asyncio
async def test_list_active_promoted_polls(db):
    busy = await make_poll(db, current_votes=1, target_votes=5, budget_amount=Decimal("25.00"))
    quiet = await make_poll(db, current_votes=0, target_votes=5, budget_amount=Decimal("25.00"))
    await make_poll(db, payment_status=PaymentStatus.PENDING.value)
    await make_poll(db, status=PromotedPollStatus.PAUSED.value)

    polls = await PromotedPollService(db).list_active_promoted_polls()

    assert [p.id for p in polls] == [quiet.id, busy.id]


@pytest.mark.asyncio
async def test_ensure_awaiting_payment(db):
    service = PromotedPollService(db)

    service.ensure_awaiting_payment(await make_poll(db, payment_status=PaymentStatus.FAILED.value))
    service.ensure_awaiting_payment(await make_poll(db, payment_status=PaymentStatus.PENDING.value))

    with pytest.raises(InvalidTransitionError):
        service.ensure_awaiting_payment(await make_poll(db, payment_status=PaymentStatus.REFUNDED.value))
    with pytest.raises(InvalidTransitionError):
        service.ensure_awaiting_payment(
            await make_poll(
                db,
                status=PromotedPollStatus.REJECTED.value,
                payment_status=PaymentStatus.PENDING.value,
            )
        )


@pytest.mark.asyncio
async def test_set_payment_status_respects_linked_transaction(db, promoted_poll):
    linked_id = uuid.uuid4()
    promoted_poll.transaction_id = linked_id
    await db.commit()
    service = PromotedPollService(db)

    assert not await service.set_payment_status(
        promoted_poll.id, PaymentStatus.FAILED, transaction_id=uuid.uuid4()
    )
    assert await service.set_payment_status(
        promoted_poll.id, PaymentStatus.PAID, transaction_id=linked_id
    )

    await db.refresh(promoted_poll)
    assert promoted_poll.payment_status == "paid"
