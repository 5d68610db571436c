"""
Payment Reconciliation Worker.

Re-derives promoted poll payment status from settled transactions. The
webhook updates the poll on a best-effort basis; this catches what it missed.
"""

import asyncio
import logging

from app.workers.celery_app import celery_app
from app.database import get_db_context

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def reconcile_payment_statuses(self):
    """Celery task wrapping run_reconciliation."""
    try:
        fixed = asyncio.run(run_reconciliation())
        logger.info(f"Payment reconciliation fixed {fixed} promoted polls")
        return {"success": True, "fixed": fixed}
    except Exception as e:
        logger.error(f"Payment reconciliation failed: {e}", exc_info=True)
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))


async def run_reconciliation() -> int:
    from app.services.promoted_poll_service import PromotedPollService

    async with get_db_context() as db:
        return await PromotedPollService(db).reconcile_payment_statuses()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    print(asyncio.run(run_reconciliation()))
