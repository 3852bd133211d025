"""
Unified error system for taskcore.

Every error raised by the orchestration core derives from TaskCoreException
and carries an ErrorContext with a stable id, category and severity, so
callers (CLI, web API, test harness) can report failures uniformly.

Three tiers are handled by the core:
- tool-level errors are converted into failed tool results inside the loop
- run-terminal errors become failed/cancelled AgentResults
- a missing approval handler is treated as a rejection
"""

import logging
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# Enums
# ============================================================================

class ErrorSeverity(Enum):
    """Error severity levels."""
    CRITICAL = "critical"      # System failure, immediate attention required
    ERROR = "error"            # Operation failure
    WARNING = "warning"        # Degraded operation
    INFO = "info"              # Informational, no action needed


class ErrorCategory(Enum):
    """Error categories for classification and routing."""
    VALIDATION = "validation"           # Input validation failure
    CONFIGURATION = "configuration"     # Settings / config file problems
    LLM_SERVICE = "llm_service"         # Model-completion provider error
    RATE_LIMIT = "rate_limit"           # Provider rate limit exceeded
    TIMEOUT = "timeout"                 # Operation timeout
    TASK = "task"                       # Task registry / lifecycle error
    APPROVAL = "approval"               # Approval gate error
    TOOL = "tool"                       # Tool registration / execution error
    SCHEDULING = "scheduling"           # Scheduler bookkeeping error
    EVENTS = "events"                   # Event bus error
    INTERNAL = "internal"               # Internal system error


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
    stack_trace: Optional[str] = None
    is_recoverable: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excludes the stack trace)."""
        return {
            "error_id": self.error_id,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
            "is_recoverable": self.is_recoverable,
        }


# ============================================================================
# Exception Hierarchy
# ============================================================================

class TaskCoreException(Exception):
    """Base exception for all taskcore errors with rich context."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        is_recoverable: bool = True,
        context: Optional[ErrorContext] = None,
    ):
        self.message = message
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.is_recoverable = is_recoverable

        if context:
            self.context = context
        else:
            self.context = ErrorContext(
                severity=severity,
                category=category,
                message=message,
                details=self.details,
                stack_trace=traceback.format_exc(),
                is_recoverable=is_recoverable,
            )

        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.context.error_id}] {self.category.value}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return self.context.to_dict()


# ============================================================================
# Validation & Configuration Errors
# ============================================================================

class ValidationError(TaskCoreException):
    """Validation error (input/schema validation failed)."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        super().__init__(message, **kwargs)


class ConfigurationError(ValidationError):
    """Configuration validation error."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.CONFIGURATION)
        kwargs.setdefault("is_recoverable", False)
        super().__init__(message, **kwargs)


class MissingConfigurationError(ConfigurationError):
    """Required configuration is missing."""
    pass


class InvalidConfigurationError(ConfigurationError):
    """Configuration value is invalid."""
    pass


# ============================================================================
# LLM Errors
# ============================================================================

class LLMError(TaskCoreException):
    """Base error for the model-completion capability."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.LLM_SERVICE)
        super().__init__(message, **kwargs)


class LLMProviderError(LLMError):
    """Provider returned an error or an unusable response."""
    pass


class LLMRateLimitError(LLMError):
    """Provider rate limit exceeded."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.RATE_LIMIT)
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        super().__init__(message, **kwargs)


class LLMTimeoutError(LLMError):
    """Provider request timed out."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.TIMEOUT)
        super().__init__(message, **kwargs)


class LLMAuthenticationError(LLMError):
    """Provider rejected the credentials."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        kwargs.setdefault("is_recoverable", False)
        super().__init__(message, **kwargs)


# ============================================================================
# Task & Scheduling Errors
# ============================================================================

class TaskError(TaskCoreException):
    """Base task error."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.TASK)
        super().__init__(message, **kwargs)


class TaskNotFoundError(TaskError):
    """No task is registered under the requested id."""
    def __init__(self, task_id: str, **kwargs):
        kwargs.setdefault("details", {"task_id": task_id})
        super().__init__(f"Task {task_id} not found", **kwargs)
        self.task_id = task_id


class InvalidTransitionError(TaskError):
    """Requested status change is not allowed by the task state machine."""
    pass


class SchedulingError(TaskCoreException):
    """Scheduler bookkeeping error."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.SCHEDULING)
        super().__init__(message, **kwargs)


# ============================================================================
# Approval Errors
# ============================================================================

class ApprovalError(TaskCoreException):
    """Approval handler failed to produce a decision."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.APPROVAL)
        super().__init__(message, **kwargs)


# ============================================================================
# Agent & Tool Errors
# ============================================================================

class AgentError(TaskCoreException):
    """Base agent error."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.TASK)
        super().__init__(message, **kwargs)


class AgentNotFoundError(AgentError):
    """No agent is bound to the task's role."""
    pass


class ToolExecutionError(AgentError):
    """Tool execution error."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.TOOL)
        super().__init__(message, **kwargs)


class ToolRegistrationError(TaskCoreException):
    """Tool registry rejected a registration."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.TOOL)
        kwargs.setdefault("is_recoverable", False)
        super().__init__(message, **kwargs)


# ============================================================================
# Event Bus Errors
# ============================================================================

class EventBusError(TaskCoreException):
    """Base event bus error."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.EVENTS)
        super().__init__(message, **kwargs)


# ============================================================================
# Utility Functions
# ============================================================================

def error_message(error: BaseException) -> str:
    """Plain message for an exception, without the context id prefix."""
    if isinstance(error, TaskCoreException):
        return error.message
    return str(error) or type(error).__name__


def create_error_context(
    error: Exception,
    category: Optional[ErrorCategory] = None,
    severity: ErrorSeverity = ErrorSeverity.ERROR,
    is_recoverable: bool = True,
) -> ErrorContext:
    """
    Create ErrorContext from any exception.

    TaskCoreException instances already carry one and return it unchanged.
    """
    if isinstance(error, TaskCoreException):
        return error.context

    return ErrorContext(
        severity=severity,
        category=category or _categorize_error(error),
        message=str(error),
        stack_trace=traceback.format_exc(),
        is_recoverable=is_recoverable,
    )


def _categorize_error(error: Exception) -> ErrorCategory:
    """Auto-categorize a foreign exception by its type name."""
    error_type = type(error).__name__.lower()

    if "validation" in error_type or "value" in error_type:
        return ErrorCategory.VALIDATION
    elif "timeout" in error_type:
        return ErrorCategory.TIMEOUT
    elif "rate" in error_type or "limit" in error_type:
        return ErrorCategory.RATE_LIMIT
    return ErrorCategory.INTERNAL


def get_exception_hierarchy() -> Dict[str, List[str]]:
    """Get exception hierarchy for documentation/introspection."""
    import sys
    module = sys.modules[__name__]

    hierarchy: Dict[str, List[str]] = {}
    for name, obj in module.__dict__.items():
        if isinstance(obj, type) and issubclass(obj, TaskCoreException):
            bases = [b.__name__ for b in obj.__bases__ if issubclass(b, TaskCoreException)]
            for base in bases:
                hierarchy.setdefault(base, []).append(name)

    return hierarchy


__all__ = [
    "ErrorSeverity",
    "ErrorCategory",
    "ErrorContext",
    "TaskCoreException",
    "ValidationError",
    "ConfigurationError",
    "MissingConfigurationError",
    "InvalidConfigurationError",
    "LLMError",
    "LLMProviderError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "LLMAuthenticationError",
    "TaskError",
    "TaskNotFoundError",
    "InvalidTransitionError",
    "SchedulingError",
    "ApprovalError",
    "AgentError",
    "AgentNotFoundError",
    "ToolExecutionError",
    "ToolRegistrationError",
    "EventBusError",
    "error_message",
    "create_error_context",
    "get_exception_hierarchy",
]
