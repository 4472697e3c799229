"""Business logic services for CamerPulse Dispatch."""

from .channels import (
    ChannelAdapter,
    EmailChannel,
    EmailConfig,
    InAppChannel,
    PlaceholderChannel,
    SendResult,
    build_channel_registry,
)
from .dispatcher import (
    DeliveryStats,
    DispatchResult,
    NotificationDispatcher,
    NotificationEvent,
)
from .flows import (
    FlowInput,
    FlowNotFoundError,
    FlowRegistry,
    NotificationError,
    TemplateInput,
    TemplateInUseError,
    TemplateNotFoundError,
)
from .inbox import InboxService, NotificationNotFoundError
from .preferences import PreferenceStore
from .sentiment import HttpSentimentAnalyzer, SentimentAnalyzer
from .stream_processor import (
    AlertNotFoundError,
    IngestResult,
    StreamError,
    StreamInactiveError,
    StreamNotFoundError,
    StreamProcessor,
    StreamValidationError,
)
from .templates import extract_variables, render_template
from .workflow_engine import (
    DatabaseWorkflowRunner,
    EscalationSweepResult,
    ExecutionNotFoundError,
    InvalidWorkflowRequestError,
    ResolutionResult,
    TriggerResult,
    WorkflowEngine,
    WorkflowError,
    WorkflowNotFoundError,
    WorkflowRunner,
    evaluate_condition,
)

__all__ = [
    # Dispatch
    "NotificationDispatcher",
    "NotificationEvent",
    "DispatchResult",
    "DeliveryStats",
    "NotificationError",
    # Channels
    "ChannelAdapter",
    "EmailChannel",
    "EmailConfig",
    "InAppChannel",
    "PlaceholderChannel",
    "SendResult",
    "build_channel_registry",
    # Flows and templates
    "FlowRegistry",
    "FlowInput",
    "TemplateInput",
    "FlowNotFoundError",
    "TemplateNotFoundError",
    "TemplateInUseError",
    "render_template",
    "extract_variables",
    # Preferences and inbox
    "PreferenceStore",
    "InboxService",
    "NotificationNotFoundError",
    # Workflows
    "WorkflowEngine",
    "WorkflowRunner",
    "DatabaseWorkflowRunner",
    "EscalationSweepResult",
    "TriggerResult",
    "ResolutionResult",
    "WorkflowError",
    "WorkflowNotFoundError",
    "ExecutionNotFoundError",
    "InvalidWorkflowRequestError",
    "evaluate_condition",
    # Streams
    "StreamProcessor",
    "IngestResult",
    "SentimentAnalyzer",
    "HttpSentimentAnalyzer",
    "StreamError",
    "StreamValidationError",
    "StreamNotFoundError",
    "StreamInactiveError",
    "AlertNotFoundError",
]
