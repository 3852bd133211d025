"""Task records, the task registry and the approval gate.

``Orchestrator`` lives in ``taskcore.orchestration.orchestrator`` and is
re-exported from the top-level ``taskcore`` package; it is not imported
here because configuration depends on the models in this package.
"""

from taskcore.orchestration.approval_gate import (
    ApprovalDecision,
    ApprovalGate,
    ApprovalRequest,
    create_auto_approve_handler,
    create_auto_reject_handler,
    create_interactive_approval_handler,
)
from taskcore.orchestration.models import (
    AgentRole,
    AutonomyLevel,
    CreateTaskInput,
    Task,
    TaskFilter,
    TaskPriority,
    TaskResult,
    TaskStatus,
    TaskTarget,
)
from taskcore.orchestration.task_registry import RegistryEvent, TaskRegistry

__all__ = [
    "AgentRole",
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalRequest",
    "AutonomyLevel",
    "CreateTaskInput",
    "RegistryEvent",
    "Task",
    "TaskFilter",
    "TaskPriority",
    "TaskRegistry",
    "TaskResult",
    "TaskStatus",
    "TaskTarget",
    "create_auto_approve_handler",
    "create_auto_reject_handler",
    "create_interactive_approval_handler",
]
