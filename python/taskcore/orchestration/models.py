"""Task domain model: enums, the Task record and its result payloads."""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from taskcore.agents.types import AgentResult, ValidationResult


# ============================================================================
# ENUMS
# ============================================================================


class AgentRole(str, Enum):
    """Agent roles a task can be bound to."""
    TEST = "test"
    QA = "qa"
    FEATURE = "feature"
    REFACTOR = "refactor"
    DOCS = "docs"
    SECURITY = "security"


class TaskStatus(str, Enum):
    """Task lifecycle status."""
    PENDING = "pending"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class TaskPriority(str, Enum):
    """Task priority levels."""
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class AutonomyLevel(str, Enum):
    """How much human sign-off a role's plans need."""
    FULL = "full"
    SUPERVISED = "supervised"
    MANUAL = "manual"


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)

PRIORITY_RANK: Dict[TaskPriority, int] = {
    TaskPriority.CRITICAL: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.NORMAL: 2,
    TaskPriority.LOW: 3,
}

# failed -> pending is the retry path; everything else only moves forward.
ALLOWED_TRANSITIONS: Dict[TaskStatus, frozenset] = {
    TaskStatus.PENDING: frozenset(
        {TaskStatus.AWAITING_APPROVAL, TaskStatus.RUNNING, TaskStatus.CANCELLED}
    ),
    TaskStatus.AWAITING_APPROVAL: frozenset({TaskStatus.APPROVED, TaskStatus.CANCELLED}),
    TaskStatus.APPROVED: frozenset({TaskStatus.RUNNING, TaskStatus.CANCELLED}),
    TaskStatus.RUNNING: frozenset(
        {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
    ),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset({TaskStatus.PENDING}),
    TaskStatus.CANCELLED: frozenset(),
}

DEFAULT_AUTONOMY_LEVELS: Dict[AgentRole, AutonomyLevel] = {
    AgentRole.TEST: AutonomyLevel.FULL,
    AgentRole.QA: AutonomyLevel.FULL,
    AgentRole.FEATURE: AutonomyLevel.SUPERVISED,
    AgentRole.REFACTOR: AutonomyLevel.SUPERVISED,
    AgentRole.DOCS: AutonomyLevel.SUPERVISED,
    AgentRole.SECURITY: AutonomyLevel.SUPERVISED,
}

DEFAULT_MAX_RETRIES = 3


def _task_id() -> str:
    return f"task-{uuid.uuid4().hex[:12]}"


# ============================================================================
# DATA MODELS
# ============================================================================


@dataclass
class TaskTarget:
    """What the task operates on. Opaque to the core."""
    files: List[str] = field(default_factory=list)
    directories: List[str] = field(default_factory=list)
    pattern: Optional[str] = None
    scope: Optional[str] = None  # file | directory | project

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["TaskTarget"]:
        if not data:
            return None
        return cls(
            files=list(data.get("files") or []),
            directories=list(data.get("directories") or []),
            pattern=data.get("pattern"),
            scope=data.get("scope"),
        )


@dataclass
class TaskMetrics:
    """Derived metrics recorded when a run finishes."""
    duration_ms: int
    iterations_used: int
    tool_call_count: int
    files_modified: int


@dataclass
class TaskResult:
    """Summary of a finished run, stored on the task."""
    success: bool
    summary: str
    output: str
    agent_result: Optional["AgentResult"] = None
    metrics: Optional[TaskMetrics] = None
    validation: Optional["ValidationResult"] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "summary": self.summary,
            "output": self.output,
            "agent_result": self.agent_result.to_dict() if self.agent_result else None,
            "metrics": asdict(self.metrics) if self.metrics else None,
            "validation": self.validation.to_dict() if self.validation else None,
        }


@dataclass
class CreateTaskInput:
    """Caller-supplied fields for a new task."""
    role: AgentRole
    title: str
    description: str = ""
    target: Optional[TaskTarget] = None
    options: Dict[str, Any] = field(default_factory=dict)
    priority: TaskPriority = TaskPriority.NORMAL
    parent_task_id: Optional[str] = None


@dataclass
class TaskFilter:
    """Conjunctive filter over the registry; empty fields match everything."""
    statuses: Optional[List[TaskStatus]] = None
    roles: Optional[List[AgentRole]] = None
    priorities: Optional[List[TaskPriority]] = None
    since: Optional[float] = None
    until: Optional[float] = None

    def matches(self, task: "Task") -> bool:
        if self.statuses and task.status not in self.statuses:
            return False
        if self.roles and task.role not in self.roles:
            return False
        if self.priorities and task.priority not in self.priorities:
            return False
        if self.since is not None and task.created_at < self.since:
            return False
        if self.until is not None and task.created_at > self.until:
            return False
        return True


@dataclass
class Task:
    """One schedulable unit of agent work."""
    role: AgentRole
    title: str
    autonomy_level: AutonomyLevel
    description: str = ""
    id: str = field(default_factory=_task_id)
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.NORMAL
    target: Optional[TaskTarget] = None
    options: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    result: Optional[TaskResult] = None
    parent_task_id: Optional[str] = None
    child_task_ids: List[str] = field(default_factory=list)
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "autonomy_level" and "autonomy_level" in self.__dict__:
            raise AttributeError("autonomy_level is fixed once the task is created")
        super().__setattr__(name, value)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible primitives."""
        return {
            "id": self.id,
            "role": self.role.value,
            "status": self.status.value,
            "priority": self.priority.value,
            "autonomy_level": self.autonomy_level.value,
            "title": self.title,
            "description": self.description,
            "target": asdict(self.target) if self.target else None,
            "options": dict(self.options),
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "result": self.result.to_dict() if self.result else None,
            "parent_task_id": self.parent_task_id,
            "child_task_ids": list(self.child_task_ids),
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Restore a task snapshot. The stored result is reduced to its summary fields."""
        raw_result = data.get("result")
        result = None
        if isinstance(raw_result, dict):
            raw_metrics = raw_result.get("metrics")
            result = TaskResult(
                success=bool(raw_result.get("success")),
                summary=str(raw_result.get("summary") or ""),
                output=str(raw_result.get("output") or ""),
                metrics=TaskMetrics(**raw_metrics) if isinstance(raw_metrics, dict) else None,
            )
        return cls(
            id=str(data.get("id") or _task_id()),
            role=AgentRole(data["role"]),
            status=TaskStatus(data.get("status") or TaskStatus.PENDING.value),
            priority=TaskPriority(data.get("priority") or TaskPriority.NORMAL.value),
            autonomy_level=AutonomyLevel(data.get("autonomy_level") or AutonomyLevel.SUPERVISED.value),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            target=TaskTarget.from_dict(data.get("target")),
            options=dict(data.get("options") or {}),
            created_at=float(data.get("created_at") or time.time()),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            result=result,
            parent_task_id=data.get("parent_task_id"),
            child_task_ids=list(data.get("child_task_ids") or []),
            retry_count=int(data.get("retry_count") or 0),
            max_retries=int(data.get("max_retries") if data.get("max_retries") is not None else DEFAULT_MAX_RETRIES),
        )


@dataclass
class TaskQueueState:
    """Snapshot of the registry grouped by lifecycle bucket."""
    pending: List[Task]
    running: Optional[Task]
    completed: List[Task]
    failed: List[Task]
