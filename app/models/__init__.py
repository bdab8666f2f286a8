from app.models.automation_rule import (  # noqa: F401
    AutomationLogOutcome,
    AutomationRule,
    AutomationRuleLog,
    AutomationRuleStatus,
    TriggerLogic,
)
from app.models.omnibridge import (  # noqa: F401
    Channel,
    ChannelHealth,
    ChannelType,
    FeedbackAnnotation,
    FeedbackRating,
    FeedbackSeverity,
    InboxMessage,
    MessageDirection,
    MessagePriority,
    Notification,
    NotificationChannel,
    NotificationStatus,
    OutboxMessage,
    ResponseTemplate,
    Ticket,
    TicketStatus,
    WebhookDeadLetter,
    WebhookDelivery,
    WebhookDeliveryStatus,
)
