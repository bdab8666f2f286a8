from app.tasks.notifications import deliver_notification_queue, deliver_notification_task
from app.tasks.omnibridge import (
    escalate_overdue_messages_task,
    poll_email_channels_task,
    process_outbox_queue_task,
    send_outbox_item_task,
)
from app.tasks.webhooks import deliver_webhook_task, process_inbound_webhook, retry_due_deliveries

__all__ = [
    "deliver_notification_queue",
    "deliver_notification_task",
    "escalate_overdue_messages_task",
    "poll_email_channels_task",
    "process_outbox_queue_task",
    "send_outbox_item_task",
    "deliver_webhook_task",
    "process_inbound_webhook",
    "retry_due_deliveries",
]
