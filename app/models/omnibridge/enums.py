import enum


class ChannelType(enum.Enum):
    email = "email"
    telegram = "telegram"
    chat = "chat"
    sms = "sms"
    whatsapp = "whatsapp"


class ChannelHealth(enum.Enum):
    healthy = "healthy"
    degraded = "degraded"
    error = "error"
    unknown = "unknown"


class MessageDirection(enum.Enum):
    inbound = "inbound"
    outbound = "outbound"


class MessagePriority(enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class NotificationChannel(enum.Enum):
    in_app = "in_app"
    email = "email"
    sms = "sms"


class NotificationStatus(enum.Enum):
    queued = "queued"
    sending = "sending"
    delivered = "delivered"
    failed = "failed"


class WebhookDeliveryStatus(enum.Enum):
    pending = "pending"
    delivered = "delivered"
    failed = "failed"


class TicketStatus(enum.Enum):
    open = "open"
    pending = "pending"
    resolved = "resolved"
    closed = "closed"


class FeedbackRating(enum.Enum):
    excellent = "excellent"
    good = "good"
    neutral = "neutral"
    poor = "poor"
    terrible = "terrible"


class FeedbackSeverity(enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"
