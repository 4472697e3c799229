"""SQLAlchemy ORM Models for CamerPulse Dispatch."""

from .base import Base, JSONType, TimestampMixin, UUIDMixin, as_utc, utc_now
from .models import (
    # Enums
    AlertSeverity,
    Channel,
    DeliveryStatus,
    ExecutionStatus,
    StreamStatus,
    StreamType,
    TriggerType,
    # Identity
    User,
    # Notifications
    NotificationDeliveryLog,
    NotificationFlow,
    NotificationMetric,
    NotificationPreference,
    NotificationTemplate,
    UserNotification,
    # Workflows
    EscalationHistory,
    Workflow,
    WorkflowExecution,
    # Streams
    AnalyticsEvent,
    IntelligenceAlert,
    StreamConfig,
    TrendingTopic,
)

__all__ = [
    # Base
    "Base",
    "JSONType",
    "UUIDMixin",
    "TimestampMixin",
    "as_utc",
    "utc_now",
    # Enums
    "AlertSeverity",
    "Channel",
    "DeliveryStatus",
    "ExecutionStatus",
    "StreamStatus",
    "StreamType",
    "TriggerType",
    # Identity
    "User",
    # Notifications
    "NotificationDeliveryLog",
    "NotificationFlow",
    "NotificationMetric",
    "NotificationPreference",
    "NotificationTemplate",
    "UserNotification",
    # Workflows
    "EscalationHistory",
    "Workflow",
    "WorkflowExecution",
    # Streams
    "AnalyticsEvent",
    "IntelligenceAlert",
    "StreamConfig",
    "TrendingTopic",
]
