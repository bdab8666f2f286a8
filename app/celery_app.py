from datetime import timedelta

from celery import Celery
from celery.signals import setup_logging

from app.config import settings
from app.logging import configure_logging


def build_beat_schedule() -> dict:
    return {
        "omnibridge_email_poll": {
            "task": "app.tasks.omnibridge.poll_email_channels",
            "schedule": timedelta(seconds=max(settings.email_poll_interval_seconds, 30)),
        },
        "omnibridge_outbox_flush": {
            "task": "app.tasks.omnibridge.process_outbox_queue",
            "schedule": timedelta(seconds=30),
        },
        "omnibridge_escalation_sweep": {
            "task": "app.tasks.omnibridge.escalate_overdue_messages",
            "schedule": timedelta(minutes=1),
        },
        "notification_queue_runner": {
            "task": "app.tasks.notifications.deliver_notification_queue",
            "schedule": timedelta(seconds=60),
        },
        "webhook_retry_sweep": {
            "task": "app.tasks.webhooks.retry_due_deliveries",
            "schedule": timedelta(seconds=60),
        },
    }


celery_app = Celery(
    "conductor_omnibridge",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.tasks.omnibridge",
        "app.tasks.notifications",
        "app.tasks.webhooks",
    ],
)
celery_app.conf.update(
    timezone=settings.celery_timezone,
    enable_utc=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule=build_beat_schedule(),
)


@setup_logging.connect
def _configure_worker_logging(**_kwargs) -> None:
    configure_logging()
