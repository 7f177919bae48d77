"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the database kernel.

- Provides clear exception hierarchy
- Separates fatal lifecycle errors from transient operation errors
- Carries context (URL, operation, module) for the host's fatal report

============================================================
EXCEPTION HIERARCHY
============================================================
KernelException (base)
├── ConfigurationError
│   └── InvalidConfigError
├── DatabaseError
│   ├── DatabaseConnectionError
│   ├── SchemaSyncError
│   ├── SchemaModelError
│   ├── TransientOperationError
│   └── PoolError
│       ├── PoolTimeoutError
│       └── PoolClosedError
├── StateTransitionError
└── OrchestrationError
    ├── StartupError
    ├── ShutdownError
    ├── ModuleError
    └── HookError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, the affected operation failed."""

    CRITICAL = "critical"
    """The process cannot continue."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Caller may handle the error and continue."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class KernelException(Exception):
    """
    Base exception for all kernel errors.

    All exceptions carry:
    - severity: how loudly the host should report it
    - context: for debugging
    - classification: for retry and termination decisions
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
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause is not None:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_recoverable(self) -> bool:
        """Check if error is recoverable."""
        return self.classification in (
            ErrorClassification.RECOVERABLE,
            ErrorClassification.TRANSIENT,
        )

    @property
    def is_fatal(self) -> bool:
        """Check if the host should terminate on this error."""
        return (
            self.severity == Severity.CRITICAL and
            self.classification == ErrorClassification.NON_RECOVERABLE
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
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
        line = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        ctx_str = ", ".join(
            f"{k}={v}" for k, v in self.context.items()
            if k not in ("cause_type", "cause_message")
        )
        return f"{line} | {ctx_str}" if ctx_str else line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(KernelException):
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
# DATABASE ERRORS
# ============================================================

class DatabaseError(KernelException):
    """Base class for database-related errors."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        url: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if operation:
            context["operation"] = operation
        if url:
            context["url"] = url

        super().__init__(message, context=context, **kwargs)


class DatabaseConnectionError(DatabaseError):
    """The database connection could not be opened or authenticated."""

    default_severity = Severity.CRITICAL
    default_classification = ErrorClassification.NON_RECOVERABLE


class SchemaSyncError(DatabaseError):
    """Schema synchronization failed."""

    default_severity = Severity.CRITICAL
    default_classification = ErrorClassification.NON_RECOVERABLE


class SchemaModelError(DatabaseError):
    """Invalid use of the schema model (frozen, duplicate or foreign object)."""

    default_classification = ErrorClassification.NON_RECOVERABLE


class TransientOperationError(DatabaseError):
    """
    A database operation failed for a reason expected to clear up.

    Retry policies may list this class as a matcher; once retries are
    exhausted it reaches the caller like any other error.
    """

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT


class PoolError(DatabaseError):
    """Connection pool misuse or failure."""

    default_severity = Severity.MEDIUM


class PoolTimeoutError(PoolError):
    """No pooled connection became available within the acquire timeout."""

    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if timeout_seconds is not None:
            context["timeout_seconds"] = timeout_seconds

        super().__init__(message, context=context, **kwargs)


class PoolClosedError(PoolError):
    """The pool has been closed."""

    default_classification = ErrorClassification.NON_RECOVERABLE


# ============================================================
# LIFECYCLE ERRORS
# ============================================================

class StateTransitionError(KernelException):
    """Invalid lifecycle state transition."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        reason: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if from_state:
            context["from_state"] = from_state
        if to_state:
            context["to_state"] = to_state
        if reason:
            context["reason"] = reason

        super().__init__(message, context=context, **kwargs)


# ============================================================
# ORCHESTRATION ERRORS
# ============================================================

class OrchestrationError(KernelException):
    """Base class for orchestration-related errors."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


class StartupError(OrchestrationError):
    """Process startup failed."""

    def __init__(
        self,
        message: str,
        module: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if module:
            context["module"] = module

        super().__init__(message, context=context, **kwargs)


class ShutdownError(OrchestrationError):
    """Process shutdown failed."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        module: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if module:
            context["module"] = module
        if timeout_seconds is not None:
            context["timeout_seconds"] = timeout_seconds

        super().__init__(message, context=context, **kwargs)


class ModuleError(OrchestrationError):
    """Module registration, lookup or access error."""

    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        module_name: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if module_name:
            context["module_name"] = module_name
        if operation:
            context["operation"] = operation

        super().__init__(message, context=context, **kwargs)


class HookError(OrchestrationError):
    """Hook registration or broadcast error."""

    def __init__(
        self,
        message: str,
        hook: Optional[str] = None,
        participant: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if hook:
            context["hook"] = hook
        if participant:
            context["participant"] = participant

        super().__init__(message, context=context, **kwargs)


__all__ = [
    "Severity",
    "ErrorClassification",
    "KernelException",
    "ConfigurationError",
    "InvalidConfigError",
    "DatabaseError",
    "DatabaseConnectionError",
    "SchemaSyncError",
    "SchemaModelError",
    "TransientOperationError",
    "PoolError",
    "PoolTimeoutError",
    "PoolClosedError",
    "StateTransitionError",
    "OrchestrationError",
    "StartupError",
    "ShutdownError",
    "ModuleError",
    "HookError",
]
