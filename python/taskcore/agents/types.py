"""Value objects shared by agents, the execution loop and the orchestrator."""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from taskcore.interfaces.tools import Tool, ToolResult

if TYPE_CHECKING:
    from taskcore.config.settings import TaskCoreSettings
    from taskcore.orchestration.models import AgentRole, Task


# ── Plans ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ExecutionStep:
    """One intended step of a plan."""

    id: str
    description: str
    tool_name: Optional[str] = None
    depends_on: Tuple[str, ...] = ()
    optional: bool = False


@dataclass(frozen=True)
class ExecutionPlan:
    """Steps an agent proposes before running. Generated once, never mutated."""

    steps: Tuple[ExecutionStep, ...] = ()
    estimated_tool_calls: int = 0
    requires_approval: bool = False
    risks: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ── Run records ──────────────────────────────────────────────────────


class FileChangeType(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileChange:
    path: str
    change_type: FileChangeType
    diff: Optional[str] = None


@dataclass
class ToolExecutionRecord:
    """One tool call made during a run."""

    tool_name: str
    input: Dict[str, Any]
    result: ToolResult
    timestamp: float = field(default_factory=time.time)


@dataclass
class AgentResult:
    """Final outcome of one execution-loop run."""

    success: bool
    summary: str
    changes: List[FileChange] = field(default_factory=list)
    tools_used: List[ToolExecutionRecord] = field(default_factory=list)
    iterations: int = 0
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str, summary: Optional[str] = None) -> "AgentResult":
        return cls(success=False, summary=summary or f"Task failed: {error}", error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "summary": self.summary,
            "changes": [
                {"path": c.path, "type": c.change_type.value, "diff": c.diff} for c in self.changes
            ],
            "tools_used": [
                {
                    "tool_name": r.tool_name,
                    "input": r.input,
                    "result": r.result.to_dict(),
                    "timestamp": r.timestamp,
                }
                for r in self.tools_used
            ],
            "iterations": self.iterations,
            "error": self.error,
        }


# ── Events ───────────────────────────────────────────────────────────


class AgentEventType(str, Enum):
    STARTED = "started"
    ITERATION_START = "iteration_start"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    THINKING = "thinking"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class AgentEvent:
    type: AgentEventType
    task_id: str
    role: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.type in (AgentEventType.COMPLETED, AgentEventType.FAILED)


# ── Validation ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ValidationIssue:
    severity: str  # error | warning | info
    message: str
    file: Optional[str] = None
    line: Optional[int] = None


@dataclass
class ValidationResult:
    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ── Agent description & context ──────────────────────────────────────


@dataclass(frozen=True)
class AgentCapabilities:
    can_read_files: bool = True
    can_write_files: bool = False
    can_execute_commands: bool = False
    can_modify_tests: bool = False
    can_modify_source: bool = False
    can_commit: bool = False


@dataclass(frozen=True)
class AgentMetadata:
    role: "AgentRole"
    name: str
    description: str
    capabilities: AgentCapabilities = AgentCapabilities()


@dataclass
class AgentContext:
    """Everything one run needs. Built fresh by the orchestrator per run."""

    task: "Task"
    tools: Dict[str, Tool]
    working_directory: str
    max_iterations: int
    settings: "TaskCoreSettings"
    plan: Optional[ExecutionPlan] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()
