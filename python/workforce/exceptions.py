"""
Error taxonomy for the workforce engine.

Every failure raised by the registry, router, health checker, auto-scaler
and coordinator derives from ``WorkforceError`` and carries an
``ErrorContext`` so the HTTP layer can render it without guessing:
- category and severity for classification
- an HTTP status for the API surface
- a recoverability flag for callers deciding whether to retry
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


# ============================================================================
# Enums
# ============================================================================

class ErrorSeverity(Enum):
    """Error severity levels."""
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ErrorCategory(Enum):
    """Error categories for classification and routing."""
    VALIDATION = "validation"     # Bad input or illegal state transition
    NOT_FOUND = "not_found"       # Unknown department/member/task
    CONFLICT = "conflict"         # Duplicate id, active work, lifecycle
    CAPACITY = "capacity"         # Department or member limits reached
    ROUTING = "routing"           # Task could not be placed
    TIMEOUT = "timeout"
    EXECUTION = "execution"       # Injected executor failure
    INTERNAL = "internal"


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class ErrorContext:
    """Rich error context with metadata."""
    error_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.INTERNAL
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    is_recoverable: bool = True
    http_status: int = 500

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_id": self.error_id,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
            "is_recoverable": self.is_recoverable,
            "http_status": self.http_status,
        }


# ============================================================================
# Exception Hierarchy
# ============================================================================

class WorkforceError(Exception):
    """Base exception for all workforce errors with rich context."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        is_recoverable: bool = True,
        http_status: int = 500,
        context: Optional[ErrorContext] = None,
    ):
        self.message = message
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.is_recoverable = is_recoverable
        self.http_status = http_status

        if context:
            self.context = context
        else:
            self.context = ErrorContext(
                severity=severity,
                category=category,
                message=message,
                details=self.details,
                is_recoverable=is_recoverable,
                http_status=http_status,
            )

        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.context.error_id}] {self.category.value}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return self.context.to_dict()


# ============================================================================
# Validation Errors
# ============================================================================

class ValidationError(WorkforceError):
    """Input validation failed."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        kwargs.setdefault("http_status", 400)
        super().__init__(message, **kwargs)


class ConfigurationError(ValidationError):
    """Configuration value is invalid."""
    pass


class InvalidTransitionError(ValidationError):
    """Task status change leaves a terminal state."""
    pass


# ============================================================================
# Registry Errors
# ============================================================================

class NotFoundError(WorkforceError):
    """Referenced department, member, task, team or workflow is unknown."""
    def __init__(self, kind: str, identifier: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.NOT_FOUND)
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        kwargs.setdefault("http_status", 404)
        kwargs.setdefault("details", {"kind": kind, "id": identifier})
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}", **kwargs)


class AlreadyExistsError(WorkforceError):
    """An entity with the same id is already registered."""
    def __init__(self, kind: str, identifier: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.CONFLICT)
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        kwargs.setdefault("http_status", 409)
        kwargs.setdefault("details", {"kind": kind, "id": identifier})
        super().__init__(f"{kind} already exists: {identifier}", **kwargs)


class CapacityExceededError(WorkforceError):
    """Department already holds its maximum number of members."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.CAPACITY)
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        kwargs.setdefault("http_status", 409)
        super().__init__(message, **kwargs)


class HasActiveWorkError(WorkforceError):
    """Entity still owns in-flight work and cannot be removed."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.CONFLICT)
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        kwargs.setdefault("http_status", 409)
        super().__init__(message, **kwargs)


class ManagerStateError(WorkforceError):
    """Manager lifecycle misuse (double start and similar)."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.CONFLICT)
        kwargs.setdefault("http_status", 409)
        kwargs.setdefault("is_recoverable", False)
        super().__init__(message, **kwargs)


# ============================================================================
# Routing Errors
# ============================================================================

class RoutingError(WorkforceError):
    """Base routing error; the task stays queued."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.ROUTING)
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        kwargs.setdefault("http_status", 503)
        super().__init__(message, **kwargs)


class UnroutableError(RoutingError):
    """No department could be resolved for the task."""
    pass


class NoCapacityError(RoutingError):
    """No member anywhere can take the task right now."""
    pass


# ============================================================================
# Execution Errors
# ============================================================================

class TaskFailedError(WorkforceError):
    """Task reached the failed state."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.EXECUTION)
        kwargs.setdefault("http_status", 502)
        super().__init__(message, **kwargs)


class WorkforceTimeoutError(WorkforceError):
    """Waiting on a task exceeded its deadline."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.TIMEOUT)
        kwargs.setdefault("http_status", 504)
        super().__init__(message, **kwargs)
