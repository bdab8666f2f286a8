from app.celery_app import celery_app
from app.db import SessionLocal
from app.services.omnibridge.notifications import deliver_due_notifications, deliver_notification


@celery_app.task(name="app.tasks.notifications.deliver_notification")
def deliver_notification_task(notification_id: str):
    session = SessionLocal()
    try:
        notification = deliver_notification(session, notification_id)
        return notification.status.value if notification is not None else None
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="app.tasks.notifications.deliver_notification_queue")
def deliver_notification_queue():
    session = SessionLocal()
    try:
        return deliver_due_notifications(session)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
