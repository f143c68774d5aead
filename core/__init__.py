"""
Core Module Package.

This package contains the infrastructure components
that all other pipeline packages depend on.

Components:
- clock: Testable time abstraction and block-time conversion
- exceptions: Pipeline exception hierarchy
- logging_utils: Logging setup and secret masking
"""

from .clock import (
    ClockProtocol,
    MockClock,
    SystemClock,
    block_to_datetime,
    get_clock,
)
from .exceptions import (
    ConfigurationError,
    DecodeError,
    ErrorClassification,
    HandlerNotFoundError,
    InfrastructureError,
    InvalidConfigError,
    InvalidJobTransitionError,
    LogicError,
    MalformedEventError,
    MissingConfigError,
    PipelineException,
    QueryError,
    QueryExecutionError,
    QueryValidationError,
    QueueUnavailableError,
    Severity,
    StoreError,
    StoreQueryError,
    StoreWriteError,
)
