"""
Payment Service - transaction records and webhook settlement.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import (
    InvalidTransitionError,
    SettlementError,
    TransactionNotFoundError,
    ValidationError,
)
from app.fsm.states import PaymentMethod, PaymentStatus, TransactionStatus, WebhookEvent
from app.models.transaction import JSONValue, Transaction, utcnow
from app.services.promoted_poll_service import PromotedPollService

logger = logging.getLogger(__name__)


def merge_metadata(
    existing: Optional[Mapping[str, JSONValue]],
    updates: Mapping[str, JSONValue],
) -> Dict[str, JSONValue]:
    """
    Additive metadata merge.

    Keys in updates are added or replaced; every other existing key is kept.
    Always returns a new dict so the JSON column registers the change.
    """
    merged: Dict[str, JSONValue] = dict(existing or {})
    merged.update(updates)
    return merged


@dataclass
class SettlementResult:
    """Outcome of applying a webhook event to a transaction."""

    transaction: Transaction
    already_settled: bool = False
    poll_updated: bool = False


class PaymentService:
    """Service for payment transactions and their settlement."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_transaction(
        self,
        user_id: uuid.UUID,
        amount: Decimal,
        payment_method: str,
        currency: str = "USD",
        promoted_poll_id: Optional[uuid.UUID] = None,
        metadata: Optional[Dict[str, JSONValue]] = None,
        original_amount: Optional[Decimal] = None,
        original_currency: Optional[str] = None,
    ) -> Transaction:
        """Create a pending transaction before handing the sponsor to the gateway."""
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError(f"Unsupported payment method: {payment_method}")

        transaction = Transaction(
            user_id=user_id,
            promoted_poll_id=promoted_poll_id,
            amount=amount,
            currency=currency.upper(),
            original_amount=original_amount if original_amount is not None else amount,
            original_currency=(original_currency or currency).upper(),
            payment_method=method.value,
            status=TransactionStatus.PENDING.value,
            meta=dict(metadata or {}),
        )
        self.db.add(transaction)
        await self.db.flush()

        logger.info(f"Transaction {transaction.id} created: {amount} {currency} via {method.value}")
        return transaction

    async def get_transaction(self, transaction_id: uuid.UUID) -> Optional[Transaction]:
        result = await self.db.execute(
            select(Transaction).where(Transaction.id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def get_by_gateway_reference(self, reference: str) -> Optional[Transaction]:
        """Find the transaction a gateway reference belongs to (exact match)."""
        if not reference:
            return None
        result = await self.db.execute(
            select(Transaction).where(Transaction.gateway_transaction_id == reference)
        )
        return result.scalar_one_or_none()

    async def attach_gateway_reference(
        self,
        transaction: Transaction,
        reference: str,
        extra_metadata: Optional[Dict[str, JSONValue]] = None,
    ) -> Transaction:
        """Record the gateway reference so the webhook can find this transaction."""
        transaction.gateway_transaction_id = reference
        if extra_metadata:
            transaction.meta = merge_metadata(transaction.meta, extra_metadata)
        await self.db.flush()
        return transaction

    async def mark_failed(self, transaction: Transaction, error: str) -> Transaction:
        """Fail a transaction whose gateway initialization never completed."""
        transaction.status = TransactionStatus.FAILED.value
        transaction.meta = merge_metadata(transaction.meta, {"error": error})
        await self.db.flush()
        return transaction

    async def list_transactions(
        self,
        user_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        payment_method: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Transaction], int]:
        """List transactions newest first, with the total count for paging."""
        query = select(Transaction)
        count_query = select(func.count()).select_from(Transaction)

        if user_id:
            query = query.where(Transaction.user_id == user_id)
            count_query = count_query.where(Transaction.user_id == user_id)
        if status:
            query = query.where(Transaction.status == status)
            count_query = count_query.where(Transaction.status == status)
        if payment_method:
            query = query.where(Transaction.payment_method == payment_method)
            count_query = count_query.where(Transaction.payment_method == payment_method)

        result = await self.db.execute(
            query.order_by(Transaction.created_at.desc()).limit(limit).offset(offset)
        )
        total = await self.db.scalar(count_query)
        return list(result.scalars().all()), total or 0

    async def settle(
        self,
        transaction: Transaction,
        event: WebhookEvent,
        data: Mapping[str, Any],
    ) -> SettlementResult:
        """
        Apply a charge event to a transaction, then to its promoted poll.

        1. Write and commit the transaction (failure raises SettlementError)
        2. Write and commit the poll payment status (failure is logged only)

        A transaction already in a terminal status is left untouched.
        """
        if transaction.is_settled:
            logger.info(
                f"Transaction {transaction.id} already {transaction.status}; "
                f"ignoring {event.value}"
            )
            return SettlementResult(transaction=transaction, already_settled=True)

        target = event.settles_to
        if event == WebhookEvent.CHARGE_SUCCESS:
            updates = {
                "paystack_event": event.value,
                "paystack_transaction_id": data.get("id"),
            }
        else:
            updates = {
                "paystack_event": event.value,
                "failure_reason": data.get("gateway_response"),
            }

        transaction.status = target.value
        transaction.meta = merge_metadata(transaction.meta, updates)
        await self._persist_transaction(transaction)

        logger.info(
            f"Transaction {transaction.id} settled as {target.value}",
            extra={"transaction_id": transaction.id, "promoted_poll_id": transaction.promoted_poll_id},
        )

        poll_updated = False
        if transaction.promoted_poll_id:
            poll_updated = await self._propagate_to_poll(transaction, target.poll_payment_status)

        return SettlementResult(transaction=transaction, poll_updated=poll_updated)

    async def refund_transaction(
        self,
        transaction_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> Transaction:
        """Administrative refund of a completed transaction."""
        transaction = await self.get_transaction(transaction_id)
        if not transaction:
            raise TransactionNotFoundError("Transaction not found")

        if transaction.status == TransactionStatus.REFUNDED.value:
            return transaction
        if transaction.status != TransactionStatus.COMPLETED.value:
            raise InvalidTransitionError("Only completed transactions can be refunded")

        transaction.status = TransactionStatus.REFUNDED.value
        transaction.meta = merge_metadata(
            transaction.meta,
            {"refund_reason": reason, "refunded_at": utcnow().isoformat()},
        )
        await self._persist_transaction(transaction)

        logger.info(f"Transaction {transaction.id} refunded")

        if transaction.promoted_poll_id:
            await self._propagate_to_poll(transaction, PaymentStatus.REFUNDED)

        return transaction

    async def _persist_transaction(self, transaction: Transaction) -> None:
        """Commit the authoritative transaction write."""
        transaction_id = transaction.id
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error updating transaction {transaction_id}: {e}", exc_info=True)
            raise SettlementError("Failed to update transaction") from e

    async def _propagate_to_poll(self, transaction: Transaction, status: PaymentStatus) -> bool:
        """
        Best-effort copy of the payment outcome onto the promoted poll.
        The reconciliation job repairs anything this misses.
        """
        transaction_id = transaction.id
        promoted_poll_id = transaction.promoted_poll_id
        try:
            updated = await PromotedPollService(self.db).set_payment_status(
                promoted_poll_id, status, transaction_id=transaction_id
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(
                f"Error updating promoted poll {promoted_poll_id} to {status.value}: {e}",
                exc_info=True,
            )
            # rollback expired the already committed transaction
            try:
                await self.db.refresh(transaction)
            except SQLAlchemyError:
                logger.warning(f"Could not reload transaction {transaction_id} after rollback")
            return False

        if updated:
            logger.info(f"Promoted poll {promoted_poll_id} payment status updated to '{status.value}'")
        else:
            logger.warning(
                f"Promoted poll {promoted_poll_id} missing or linked to another transaction; "
                f"left as is for transaction {transaction_id}"
            )
        return updated
