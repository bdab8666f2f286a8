"""Queue delivery tasks once their records are committed."""

from sqlalchemy import event
from sqlalchemy.orm import Session

from app.celery_app import celery_app
from app.config import settings
from app.logging import get_logger

logger = get_logger(__name__)

SEND_OUTBOX_TASK = "app.tasks.omnibridge.send_outbox_item"
DELIVER_NOTIFICATION_TASK = "app.tasks.notifications.deliver_notification"
DELIVER_WEBHOOK_TASK = "app.tasks.webhooks.deliver_webhook"

_PENDING_KEY = "omnibridge_pending_tasks"


def enqueue_task(task_name: str, record_id, countdown: int | None = None) -> bool:
    """Send a task by name; the beat sweeps pick up anything that fails to queue."""
    if not settings.dispatch_deliveries:
        return False
    try:
        celery_app.send_task(task_name, args=[str(record_id)], countdown=countdown)
    except Exception as exc:
        logger.warning("delivery_task_enqueue_failed task=%s record_id=%s error=%s", task_name, record_id, exc)
        return False
    return True


def _flush_pending(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, [])
    for task_name, record_id in pending:
        enqueue_task(task_name, record_id)


def enqueue_after_commit(db: Session, task_name: str, record_id) -> None:
    """Queue ``task_name`` for ``record_id`` when the current transaction commits.

    A worker must never see a delivery id before its row is visible. Tasks
    skip ids whose row was rolled back.
    """
    pending = db.info.get(_PENDING_KEY)
    if pending is None:
        pending = []
        db.info[_PENDING_KEY] = pending
        event.listen(db, "after_commit", _flush_pending, once=True)
    pending.append((task_name, str(record_id)))


def pending_tasks(db: Session) -> list[tuple[str, str]]:
    return list(db.info.get(_PENDING_KEY, []))
