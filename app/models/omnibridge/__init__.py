from app.models.omnibridge.channel import Channel
from app.models.omnibridge.dead_letter import WebhookDeadLetter
from app.models.omnibridge.enums import (
    ChannelHealth,
    ChannelType,
    FeedbackRating,
    FeedbackSeverity,
    MessageDirection,
    MessagePriority,
    NotificationChannel,
    NotificationStatus,
    TicketStatus,
    WebhookDeliveryStatus,
)
from app.models.omnibridge.feedback import FeedbackAnnotation
from app.models.omnibridge.inbox import InboxMessage
from app.models.omnibridge.notification import Notification
from app.models.omnibridge.outbox import OutboxMessage
from app.models.omnibridge.response_template import ResponseTemplate
from app.models.omnibridge.ticket import Ticket
from app.models.omnibridge.webhook import WebhookDelivery

__all__ = [
    "Channel",
    "ChannelHealth",
    "ChannelType",
    "FeedbackAnnotation",
    "FeedbackRating",
    "FeedbackSeverity",
    "InboxMessage",
    "MessageDirection",
    "MessagePriority",
    "Notification",
    "NotificationChannel",
    "NotificationStatus",
    "OutboxMessage",
    "ResponseTemplate",
    "Ticket",
    "TicketStatus",
    "WebhookDeadLetter",
    "WebhookDelivery",
    "WebhookDeliveryStatus",
]
