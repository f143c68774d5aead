"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the event pipeline.

- Provides clear exception hierarchy
- Separates dropped, retried and non-retried failures
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
PipelineException (base)
├── ConfigurationError
│   ├── MissingConfigError
│   └── InvalidConfigError
├── DecodeError
│   └── MalformedEventError
├── InfrastructureError
│   ├── QueueUnavailableError
│   └── StoreError
│       ├── StoreWriteError
│       └── StoreQueryError
├── LogicError
│   ├── HandlerNotFoundError
│   └── InvalidJobTransitionError
└── QueryError
    ├── QueryValidationError
    └── QueryExecutionError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, events may be delayed or lost."""

    CRITICAL = "critical"
    """Pipeline cannot make progress."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Handled locally, the offending item is dropped."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, retrying cannot fix it."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class PipelineException(Exception):
    """
    Base exception for all pipeline errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - classification: for retry decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_retryable(self) -> bool:
        """Whether a new attempt may succeed."""
        return self.classification == ErrorClassification.TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        if ctx_str:
            line += f" | {ctx_str}"
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(PipelineException):
    """Error in configuration."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)
        self.config_key = config_key


class MissingConfigError(ConfigurationError):
    """Required configuration is missing."""

    def __init__(self, key: str, source: str = "environment"):
        super().__init__(
            message=f"Missing required configuration: {key}",
            config_key=key,
            context={"source": source},
        )


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            config_key=key,
            actual_value=value,
            context={"reason": reason},
        )


# ============================================================
# DECODE ERRORS
# ============================================================

class DecodeError(PipelineException):
    """A chain log or stored payload could not be decoded."""

    default_severity = Severity.LOW
    default_classification = ErrorClassification.RECOVERABLE


class MalformedEventError(DecodeError):
    """
    Decoded log does not match the expected event schema.

    The offending log is dropped and logged; the listener keeps running.
    """

    def __init__(
        self,
        message: str,
        event_name: Optional[str] = None,
        field_name: Optional[str] = None,
        tx_hash: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if event_name:
            context["event_name"] = event_name
        if field_name:
            context["field_name"] = field_name
        if tx_hash:
            context["tx_hash"] = tx_hash

        super().__init__(message, context=context, **kwargs)
        self.event_name = event_name
        self.field_name = field_name
        self.tx_hash = tx_hash


# ============================================================
# INFRASTRUCTURE ERRORS
# ============================================================

class InfrastructureError(PipelineException):
    """Queue or store unreachable, timed out, or rejected the call."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT


class QueueUnavailableError(InfrastructureError):
    """Queue backing resource failed."""

    def __init__(
        self,
        message: str,
        queue_name: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if queue_name:
            context["queue_name"] = queue_name
        if operation:
            context["operation"] = operation

        super().__init__(message, context=context, **kwargs)
        self.queue_name = queue_name
        self.operation = operation


class StoreError(InfrastructureError):
    """Remote entity store failure."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if status_code is not None:
            context["status_code"] = status_code
        if response_body:
            context["response_body"] = response_body[:500]

        super().__init__(message, context=context, **kwargs)
        self.status_code = status_code
        self.response_body = response_body


class StoreWriteError(StoreError):
    """Entity create request failed."""


class StoreQueryError(StoreError):
    """Entity query request failed."""


# ============================================================
# LOGIC ERRORS
# ============================================================

class LogicError(PipelineException):
    """Programming or wiring error; retrying cannot fix it."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


class HandlerNotFoundError(LogicError):
    """No store-write handler is registered for a job's event kind."""

    def __init__(self, kind: str, registered: Optional[list] = None):
        super().__init__(
            message=f"No handler registered for event kind '{kind}'",
            context={"kind": kind, "registered": registered or []},
        )
        self.kind = kind


class InvalidJobTransitionError(LogicError):
    """Job state transition is not allowed."""

    def __init__(self, job_id: str, from_state: str, to_state: str):
        super().__init__(
            message=f"Invalid job transition {from_state} -> {to_state}",
            context={"job_id": job_id, "from_state": from_state, "to_state": to_state},
        )
        self.job_id = job_id
        self.from_state = from_state
        self.to_state = to_state


# ============================================================
# QUERY ERRORS
# ============================================================

class QueryError(PipelineException):
    """Base class for errors surfaced to query callers."""

    default_severity = Severity.LOW
    default_classification = ErrorClassification.NON_RECOVERABLE


class QueryValidationError(QueryError):
    """Filter input is malformed."""

    def __init__(self, message: str, field_name: Optional[str] = None, value: Any = None):
        context: Dict[str, Any] = {}
        if field_name:
            context["field_name"] = field_name
        if value is not None:
            context["value"] = str(value)[:100]
        super().__init__(message, context=context)
        self.field_name = field_name


class QueryExecutionError(QueryError):
    """The store query behind a Query Engine call failed."""

    default_classification = ErrorClassification.TRANSIENT
