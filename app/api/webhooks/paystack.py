"""
Paystack Webhook Handler.
Verifies signatures and settles charge events against transactions.
"""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Request, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.exceptions import (
    MalformedPayloadError,
    PaymentError,
    SignatureError,
    TransactionNotFoundError,
)
from app.fsm.states import WebhookEvent
from app.services.payment_service import PaymentService
from app.services.paystack_service import (
    PaystackService,
    SIGNATURE_HEADER,
    get_paystack_service,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/paystack")
async def paystack_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    paystack: PaystackService = Depends(get_paystack_service),
):
    """
    Handle Paystack webhook events.

    Settled events:
    - charge.success: transaction completed, promoted poll paid
    - charge.failed: transaction failed, promoted poll failed

    Every other event is acknowledged without side effects so Paystack
    stops redelivering it.
    """
    # Raw body for signature verification, before any parsing
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    if not signature:
        logger.error("Missing Paystack signature")
        raise SignatureError("Missing Paystack signature")

    if not paystack.verify_signature(body, signature):
        logger.error("Invalid Paystack webhook signature")
        raise SignatureError("Invalid signature")

    payload = parse_event(body)
    event_type = payload.get("event")
    logger.info(f"Paystack webhook received: {event_type}")

    try:
        event = WebhookEvent(event_type)
    except ValueError:
        logger.info(f"Unhandled Paystack event: {event_type}")
        return {"received": True}

    data = payload.get("data")
    if not isinstance(data, dict) or not data.get("reference"):
        logger.error(f"Paystack {event.value} event without a reference")
        raise MalformedPayloadError("Missing transaction reference")

    reference = str(data["reference"])
    logger.info(f"Processing {event.value} with reference: {reference}", extra={"reference": reference})

    payment_service = PaymentService(db)
    try:
        transaction = await payment_service.get_by_gateway_reference(reference)
    except SQLAlchemyError as e:
        logger.error(f"Error finding transaction {reference}: {e}", exc_info=True)
        raise PaymentError("Error finding transaction", status_code=500) from e

    if not transaction:
        logger.error(f"Transaction not found with reference: {reference}", extra={"reference": reference})
        raise TransactionNotFoundError("Transaction not found")

    result = await payment_service.settle(transaction, event, data)

    if result.already_settled:
        logger.info(f"Reference {reference} was already settled; replay acknowledged")

    return {"success": True}


def parse_event(body: bytes) -> Dict[str, Any]:
    """Decode a verified webhook body into the event object."""
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        logger.error(f"Unparseable Paystack webhook body: {e}")
        raise MalformedPayloadError("Invalid JSON payload") from e

    if not isinstance(payload, dict):
        raise MalformedPayloadError("Webhook payload must be a JSON object")
    return payload
