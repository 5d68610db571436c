"""
Celery application configuration.
"""

from celery import Celery

from app.config import settings

celery_app = Celery(
    "pollpeak",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "app.workers.reconcile_payments",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Repair promoted polls whose payment status lagged their transaction
    "reconcile-payment-statuses": {
        "task": "app.workers.reconcile_payments.reconcile_payment_statuses",
        "schedule": settings.reconcile_interval_minutes * 60.0,  # seconds
    },
}
