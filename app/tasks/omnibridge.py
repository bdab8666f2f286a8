from app.celery_app import celery_app
from app.db import SessionLocal
from app.logging import get_logger
from app.services.omnibridge.email_polling import poll_all_email_channels
from app.services.omnibridge.escalation import escalate_overdue_messages
from app.services.omnibridge.outbox import list_due_outbox_ids, process_outbox_item

logger = get_logger(__name__)


@celery_app.task(name="app.tasks.omnibridge.poll_email_channels")
def poll_email_channels_task():
    session = SessionLocal()
    try:
        results = poll_all_email_channels(session)
        failed = [channel_id for channel_id, result in results.items() if "error" in result]
        if failed:
            logger.warning("email_poll_channels_failed count=%s channel_ids=%s", len(failed), failed)
        return results
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="app.tasks.omnibridge.send_outbox_item")
def send_outbox_item_task(outbox_id: str):
    session = SessionLocal()
    try:
        outbox = process_outbox_item(session, outbox_id)
        return outbox.status if outbox is not None else None
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="app.tasks.omnibridge.process_outbox_queue")
def process_outbox_queue_task(limit: int = 50):
    session = SessionLocal()
    try:
        ids = list_due_outbox_ids(session, limit=limit)
        for outbox_id in ids:
            send_outbox_item_task.delay(outbox_id)
        return len(ids)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="app.tasks.omnibridge.escalate_overdue_messages")
def escalate_overdue_messages_task():
    session = SessionLocal()
    try:
        escalated = escalate_overdue_messages(session)
        if escalated:
            logger.info("overdue_messages_escalated count=%s", escalated)
        return escalated
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
