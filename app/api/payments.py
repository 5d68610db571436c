"""
Payment Endpoints.
Starts Paystack redirect payments and exposes transaction records.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.exceptions import GatewayError, TransactionNotFoundError
from app.fsm.states import PaymentMethod
from app.models.transaction import Transaction
from app.services.payment_service import PaymentService
from app.services.paystack_service import PaystackService, get_paystack_service
from app.services.promoted_poll_service import PromotedPollService

router = APIRouter()
logger = logging.getLogger(__name__)


class InitializePaymentRequest(BaseModel):
    """Request body for starting a Paystack payment."""
    user_id: uuid.UUID
    email: str = Field(min_length=3)
    amount: Decimal = Field(gt=0)
    currency: str = Field(default="NGN", min_length=3, max_length=3)
    promoted_poll_id: Optional[uuid.UUID] = None


def transaction_to_dict(transaction: Transaction) -> Dict[str, Any]:
    return {
        "id": str(transaction.id),
        "user_id": str(transaction.user_id),
        "promoted_poll_id": str(transaction.promoted_poll_id) if transaction.promoted_poll_id else None,
        "amount": float(transaction.amount),
        "currency": transaction.currency,
        "payment_method": transaction.payment_method,
        "gateway_transaction_id": transaction.gateway_transaction_id,
        "status": transaction.status,
        "metadata": transaction.meta,
        "created_at": transaction.created_at.isoformat() if transaction.created_at else None,
        "updated_at": transaction.updated_at.isoformat() if transaction.updated_at else None,
    }


@router.post("/paystack/initialize")
async def initialize_paystack_payment(
    request: InitializePaymentRequest,
    db: AsyncSession = Depends(get_db),
    paystack: PaystackService = Depends(get_paystack_service),
):
    """
    Start a Paystack redirect payment.

    1. Create a pending transaction carrying our own gateway reference
    2. Initialize the charge with Paystack
    3. Link the promoted poll to the transaction

    The reference is committed before the sponsor reaches Paystack, so the
    webhook can always find it. Only campaigns still owing payment can be
    charged.
    """
    payment_service = PaymentService(db)
    poll_service = PromotedPollService(db)

    if request.promoted_poll_id:
        promoted_poll = await poll_service.get_promoted_poll(request.promoted_poll_id)
        poll_service.ensure_awaiting_payment(promoted_poll)

    reference = f"pp_{uuid.uuid4().hex}"
    transaction = await payment_service.create_transaction(
        user_id=request.user_id,
        amount=request.amount,
        payment_method=PaymentMethod.PAYSTACK.value,
        currency=request.currency,
        promoted_poll_id=request.promoted_poll_id,
    )
    await payment_service.attach_gateway_reference(transaction, reference)
    await db.commit()

    callback_url = (
        f"{settings.frontend_url.rstrip('/')}/dashboard"
        f"?section=sponsor&payment_status=success&transaction_id={transaction.id}"
    )

    try:
        gateway = await paystack.initialize_transaction(
            email=request.email,
            amount=request.amount,
            callback_url=callback_url,
            reference=reference,
            currency=request.currency,
            metadata={
                "user_id": str(request.user_id),
                "transaction_id": str(transaction.id),
                "promoted_poll_id": str(request.promoted_poll_id or ""),
                "custom_fields": [
                    {
                        "display_name": "Transaction Type",
                        "variable_name": "transaction_type",
                        "value": "promoted_poll",
                    }
                ],
            },
        )
    except GatewayError as e:
        await payment_service.mark_failed(transaction, e.message)
        await db.commit()
        raise

    # Paystack echoes our reference; keep whatever it settled on
    await payment_service.attach_gateway_reference(
        transaction,
        gateway["reference"],
        {
            "paystack_reference": gateway["reference"],
            "paystack_access_code": gateway["access_code"],
        },
    )
    if request.promoted_poll_id:
        await poll_service.link_transaction(request.promoted_poll_id, transaction.id)
    await db.commit()

    logger.info(f"Paystack payment started for transaction {transaction.id}")

    return {
        "authorization_url": gateway["authorization_url"],
        "reference": gateway["reference"],
        "transaction_id": str(transaction.id),
    }


@router.get("/transactions/{transaction_id}")
async def get_transaction(
    transaction_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Transaction detail."""
    transaction = await PaymentService(db).get_transaction(transaction_id)
    if not transaction:
        raise TransactionNotFoundError("Transaction not found")
    return transaction_to_dict(transaction)
