"""taskcore: task orchestration core for autonomous coding agents.

Accepts tasks, schedules them by weighted priority with per-role cooldowns,
gates risky plans behind approval, and drives a bounded model/tool loop per
task.
"""

from taskcore.orchestration.orchestrator import Orchestrator
from taskcore.agents import AgentResult, BaseAgent, ExecutionPlan, create_default_agents
from taskcore.config import TaskCoreSettings, get_settings, load_config
from taskcore.event_bus import InMemoryEventBus
from taskcore.interfaces import EventType, ModelClient, Tool, ToolResult
from taskcore.orchestration import (
    AgentRole,
    ApprovalDecision,
    ApprovalGate,
    ApprovalRequest,
    AutonomyLevel,
    CreateTaskInput,
    Task,
    TaskPriority,
    TaskRegistry,
    TaskStatus,
    create_auto_approve_handler,
    create_auto_reject_handler,
    create_interactive_approval_handler,
)
from taskcore.scheduling import Scheduler, ScheduleOptions
from taskcore.tools import ToolRegistry

__version__ = "0.1.0"

__all__ = [
    "AgentResult",
    "AgentRole",
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalRequest",
    "AutonomyLevel",
    "BaseAgent",
    "CreateTaskInput",
    "EventType",
    "ExecutionPlan",
    "InMemoryEventBus",
    "ModelClient",
    "Orchestrator",
    "ScheduleOptions",
    "Scheduler",
    "Task",
    "TaskCoreSettings",
    "TaskPriority",
    "TaskRegistry",
    "TaskStatus",
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "create_auto_approve_handler",
    "create_auto_reject_handler",
    "create_default_agents",
    "create_interactive_approval_handler",
    "get_settings",
    "load_config",
    "__version__",
]
