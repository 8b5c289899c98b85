"""Public observability primitives: structured logging and event streaming."""

from canvas_orchestrator.observability.events import (
    DispatchError,
    EventBus,
    Subscriber,
    log_sink,
)
from canvas_orchestrator.observability.logging import (
    LoggingConfig,
    LogRedactor,
    StructuredLoggingHandle,
    configure_decision_logging,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    reset_correlation_fields,
    set_correlation_fields,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "DispatchError",
    "EventBus",
    "LogRedactor",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "Subscriber",
    "configure_decision_logging",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "log_sink",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
