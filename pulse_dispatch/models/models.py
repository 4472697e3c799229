"""SQLAlchemy ORM Models for the notification, workflow and stream engines."""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType, TimestampMixin, UUIDMixin, utc_now


# =============================================================================
# ENUMS
# =============================================================================


class Channel(str, PyEnum):
    """Delivery medium for a notification flow."""
    EMAIL = "email"
    IN_APP = "in_app"
    PUSH = "push"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class DeliveryStatus(str, PyEnum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


class TriggerType(str, PyEnum):
    EVENT = "event"
    SCHEDULE = "schedule"
    MANUAL = "manual"


class ExecutionStatus(str, PyEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class StreamType(str, PyEnum):
    SOCIAL_MEDIA = "social_media"
    NEWS = "news"
    GOVERNMENT = "government"
    ECONOMIC = "economic"


class StreamStatus(str, PyEnum):
    ACTIVE = "active"
    PAUSED = "paused"


class AlertSeverity(str, PyEnum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# IDENTITY
# =============================================================================


class User(Base, UUIDMixin):
    """Identity record used to resolve delivery addresses."""

    __tablename__ = "users"

    email: Mapped[str | None] = mapped_column(String(255), unique=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    phone: Mapped[str | None] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )


# =============================================================================
# NOTIFICATION MODELS
# =============================================================================


class NotificationTemplate(Base, UUIDMixin, TimestampMixin):
    """Message template with {{ var }} placeholders."""

    __tablename__ = "notification_templates"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(500), default="")
    content: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(50), default="general")
    language: Mapped[str] = mapped_column(String(10), default="en")
    variables: Mapped[list] = mapped_column(JSONType, default=list)
    is_active: Mapped[bool] = mapped_column(default=True)

    flows: Mapped[list["NotificationFlow"]] = relationship(back_populates="template")


class NotificationFlow(Base, UUIDMixin, TimestampMixin):
    """Binding of (event type, recipient type) to a channel and template."""

    __tablename__ = "notification_flows"

    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    recipient_type: Mapped[str] = mapped_column(String(50), nullable=False)
    channel: Mapped[Channel] = mapped_column(_enum(Channel, "notification_channel"), nullable=False)
    template_id: Mapped[UUID] = mapped_column(
        ForeignKey("notification_templates.id"), nullable=False
    )
    priority: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(default=True)

    template: Mapped["NotificationTemplate"] = relationship(back_populates="flows")

    __table_args__ = (
        Index("idx_notification_flows_lookup", "event_type", "recipient_type", "is_active"),
    )


class NotificationPreference(Base, UUIDMixin, TimestampMixin):
    """Per-user opt-in/opt-out for one (event type, channel) pair."""

    __tablename__ = "notification_preferences"

    user_id: Mapped[UUID] = mapped_column(nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    channel: Mapped[Channel] = mapped_column(_enum(Channel, "notification_channel"), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(default=True)

    __table_args__ = (
        UniqueConstraint("user_id", "event_type", "channel"),
        Index("idx_notification_preferences_user", "user_id", "event_type"),
    )


class NotificationDeliveryLog(Base, UUIDMixin):
    """One row per (flow, event) delivery attempt."""

    __tablename__ = "notification_delivery_logs"

    flow_id: Mapped[UUID] = mapped_column(ForeignKey("notification_flows.id"), nullable=False)
    recipient_id: Mapped[UUID] = mapped_column(nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    channel: Mapped[Channel] = mapped_column(_enum(Channel, "notification_channel"), nullable=False)
    status: Mapped[DeliveryStatus] = mapped_column(
        _enum(DeliveryStatus, "delivery_status"),
        default=DeliveryStatus.PENDING,
    )
    scheduled_for: Mapped[datetime | None] = mapped_column(
        comment="Set for delayed sends; executed out-of-band"
    )
    sent_at: Mapped[datetime | None] = mapped_column()
    delivered_at: Mapped[datetime | None] = mapped_column()
    error_message: Mapped[str | None] = mapped_column(Text)
    external_id: Mapped[str | None] = mapped_column(String(255))
    template_data: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )

    flow: Mapped["NotificationFlow"] = relationship()

    __table_args__ = (
        Index("idx_delivery_logs_recipient", "recipient_id", "created_at"),
        Index("idx_delivery_logs_status", "status"),
    )


class NotificationMetric(Base, UUIDMixin):
    """Analytics record written after each successful delivery."""

    __tablename__ = "notification_metrics"

    log_id: Mapped[UUID] = mapped_column(
        ForeignKey("notification_delivery_logs.id"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )


class UserNotification(Base, UUIDMixin):
    """User-facing in-app notification."""

    __tablename__ = "user_notifications"

    user_id: Mapped[UUID] = mapped_column(nullable=False)
    title: Mapped[str] = mapped_column(String(500), default="")
    message: Mapped[str] = mapped_column(Text, default="")
    notification_type: Mapped[str] = mapped_column(String(100), default="general")
    data: Mapped[dict] = mapped_column(JSONType, default=dict)
    is_read: Mapped[bool] = mapped_column(default=False)
    read_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_user_notifications_user", "user_id", "is_read"),
    )


# =============================================================================
# WORKFLOW MODELS
# =============================================================================


class Workflow(Base, UUIDMixin, TimestampMixin):
    """Configurable workflow with condition triggers and an escalation ladder."""

    __tablename__ = "workflows"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    trigger_type: Mapped[TriggerType] = mapped_column(
        _enum(TriggerType, "workflow_trigger_type"), default=TriggerType.MANUAL
    )
    # {"event_type": str | None, "conditions": [{"field", "operator", "value"}]}
    trigger_config: Mapped[dict] = mapped_column(JSONType, default=dict)
    conditions: Mapped[list] = mapped_column(JSONType, default=list)
    actions: Mapped[list] = mapped_column(JSONType, default=list)
    # Ordered: [{"escalated_to": [user_id, ...], "timeout_hours": float, "reason": str}]
    escalation_rules: Mapped[list] = mapped_column(JSONType, default=list)
    is_active: Mapped[bool] = mapped_column(default=True)
    priority: Mapped[int] = mapped_column(Integer, default=100)

    executions: Mapped[list["WorkflowExecution"]] = relationship(back_populates="workflow")


class WorkflowExecution(Base, UUIDMixin):
    """A single run of a workflow, tracked through the escalation ladder."""

    __tablename__ = "workflow_executions"

    workflow_id: Mapped[UUID] = mapped_column(ForeignKey("workflows.id"), nullable=False)
    trigger_data: Mapped[dict] = mapped_column(JSONType, default=dict)
    status: Mapped[ExecutionStatus] = mapped_column(
        _enum(ExecutionStatus, "workflow_execution_status"),
        default=ExecutionStatus.RUNNING,
    )
    escalation_level: Mapped[int] = mapped_column(Integer, default=0)
    next_escalation_at: Mapped[datetime | None] = mapped_column()
    started_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column()
    resolved_at: Mapped[datetime | None] = mapped_column()

    workflow: Mapped["Workflow"] = relationship(back_populates="executions")
    escalations: Mapped[list["EscalationHistory"]] = relationship(
        back_populates="execution",
        order_by="EscalationHistory.escalation_level",
    )

    __table_args__ = (
        Index("idx_workflow_executions_due", "status", "next_escalation_at"),
    )


class EscalationHistory(Base, UUIDMixin):
    """Append-only record of each escalation step."""

    __tablename__ = "workflow_escalation_history"

    execution_id: Mapped[UUID] = mapped_column(
        ForeignKey("workflow_executions.id"), nullable=False
    )
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False)
    escalation_reason: Mapped[str] = mapped_column(Text, nullable=False)
    escalated_to: Mapped[list] = mapped_column(JSONType, default=list)
    response_deadline: Mapped[datetime | None] = mapped_column()
    resolved_at: Mapped[datetime | None] = mapped_column()
    resolved_by: Mapped[str | None] = mapped_column(String(255))
    resolution_notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )

    execution: Mapped["WorkflowExecution"] = relationship(back_populates="escalations")

    __table_args__ = (
        Index("idx_escalation_history_execution", "execution_id", "escalation_level"),
    )


# =============================================================================
# STREAM MODELS
# =============================================================================


class StreamConfig(Base, UUIDMixin, TimestampMixin):
    """Configuration and live counters for an external event stream."""

    __tablename__ = "realtime_stream_configs"

    stream_name: Mapped[str] = mapped_column(String(255), nullable=False)
    stream_type: Mapped[StreamType] = mapped_column(_enum(StreamType, "stream_type"), nullable=False)
    status: Mapped[StreamStatus] = mapped_column(
        _enum(StreamStatus, "stream_status"), default=StreamStatus.ACTIVE
    )
    events_per_minute: Mapped[float] = mapped_column(Float, default=0.0)
    last_event_at: Mapped[datetime | None] = mapped_column()
    error_count: Mapped[int] = mapped_column(Integer, default=0)


class AnalyticsEvent(Base, UUIDMixin):
    """Raw ingested event."""

    __tablename__ = "analytics_events"

    stream_id: Mapped[UUID | None] = mapped_column(ForeignKey("realtime_stream_configs.id"))
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_source: Mapped[str] = mapped_column(String(255), nullable=False)
    event_data: Mapped[dict] = mapped_column(JSONType, default=dict)
    user_id: Mapped[str | None] = mapped_column(String(255))
    session_id: Mapped[str | None] = mapped_column(String(255))
    region: Mapped[str | None] = mapped_column(String(100))
    processed: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_analytics_events_unprocessed", "processed", "created_at"),
    )


class TrendingTopic(Base, UUIDMixin):
    """Hashtag mention counter within a rolling window."""

    __tablename__ = "trending_topics"

    topic_text: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(50), default="hashtag")
    mention_count: Mapped[int] = mapped_column(Integer, default=1)
    first_detected_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )
    last_updated_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        Index("idx_trending_topics_text", "topic_text", "first_detected_at"),
    )


class IntelligenceAlert(Base, UUIDMixin):
    """Alert raised from a government or economic stream event."""

    __tablename__ = "intelligence_alerts"

    alert_type: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    severity: Mapped[AlertSeverity] = mapped_column(
        _enum(AlertSeverity, "alert_severity"), nullable=False
    )
    auto_generated: Mapped[bool] = mapped_column(default=True)
    alert_data: Mapped[dict] = mapped_column(JSONType, default=dict)
    source_event_id: Mapped[UUID | None] = mapped_column(ForeignKey("analytics_events.id"))
    acknowledged: Mapped[bool] = mapped_column(default=False)
    acknowledged_at: Mapped[datetime | None] = mapped_column()
    acknowledged_by: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )
