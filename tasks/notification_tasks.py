"""
tasks/notification_tasks.py
Celery side of notification delivery: drains outbox events the inline
dispatcher could not deliver (process crash between commit and dispatch,
rendering errors, database hiccups).

Idempotent: only `pending` events are picked up, and each one is marked
dispatched in the same transaction that inserts its notifications.
"""

import logging
from typing import Optional

from celery import Task
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Base Task with DB session ──────────────────────────────────────────────────

class DatabaseTask(Task):
    """Base class that provides a synchronous DB session for tasks."""
    abstract = True
    _sessionmaker: Optional[sessionmaker] = None

    def get_session(self) -> Session:
        """Get a synchronous SQLAlchemy session (Celery runs sync by default)."""
        if DatabaseTask._sessionmaker is None:
            engine = create_engine(settings.sync_database_url, pool_pre_ping=True)
            DatabaseTask._sessionmaker = sessionmaker(bind=engine, expire_on_commit=False)
        return DatabaseTask._sessionmaker()


def drain_outbox(db: Session, batch_size: int) -> int:
    """Deliver up to `batch_size` pending outbox events. Returns the notification count."""
    from services.notification.dispatcher import deliver_event
    from shared.models.models import NotificationOutbox, OutboxState

    events = db.execute(
        select(NotificationOutbox)
        .where(NotificationOutbox.state == OutboxState.PENDING)
        .order_by(NotificationOutbox.created_at)
        .limit(batch_size)
        .with_for_update(skip_locked=True)
    ).scalars().all()

    created = 0
    for event in events:
        rows = deliver_event(event)
        if rows:
            db.add_all(rows)
            created += len(rows)

    db.commit()
    return created


@celery_app.task(bind=True, base=DatabaseTask, max_retries=3, default_retry_delay=60)
def drain_notification_outbox(self, batch_size: Optional[int] = None):
    """Periodic: turn leftover outbox events into notifications."""
    db = self.get_session()
    try:
        created = drain_outbox(db, batch_size or settings.NOTIFICATION_OUTBOX_BATCH_SIZE)
        if created:
            logger.info(f"Outbox drain created {created} notification(s)")
        return created
    except Exception as exc:
        db.rollback()
        logger.error(f"Outbox drain failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)
    finally:
        db.close()
