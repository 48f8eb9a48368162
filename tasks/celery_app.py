"""
tasks/celery_app.py
Celery application instance, shared across all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --concurrency=4

Beat scheduler (periodic tasks):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.signals import setup_logging

from config.settings import settings

celery_app = Celery(
    "bookmi",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.notification_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Reliability: acknowledge task AFTER execution, not before
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Result expiry: keep task results for 1 hour
    result_expires=3600,

    task_routes={
        "tasks.notification_tasks.*": {"queue": "notifications"},
    },

    worker_prefetch_multiplier=1,
)

# ── Periodic Tasks (Beat Schedule) ────────────────────────────────────────────

celery_app.conf.beat_schedule = {
    # Deliver outbox events whose inline dispatch failed
    "drain-notification-outbox": {
        "task": "tasks.notification_tasks.drain_notification_outbox",
        "schedule": 60,  # every minute
    },
}


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    """Workers log in the same JSON format as the API."""
    from config.logging_config import configure_logging
    configure_logging()
