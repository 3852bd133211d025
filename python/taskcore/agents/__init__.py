"""Agents and the execution loop they share."""

from taskcore.agents.base import BaseAgent
from taskcore.agents.loop import FILE_MODIFYING_TOOLS, AgentExecutionLoop
from taskcore.agents.roles import (
    DocsAgent,
    FeatureAgent,
    QAAgent,
    RefactorAgent,
    SecurityAgent,
    TestAgent,
    create_default_agents,
)
from taskcore.agents.types import (
    AgentCapabilities,
    AgentContext,
    AgentEvent,
    AgentEventType,
    AgentMetadata,
    AgentResult,
    ExecutionPlan,
    ExecutionStep,
    FileChange,
    FileChangeType,
    ToolExecutionRecord,
    ValidationIssue,
    ValidationResult,
)

__all__ = [
    "FILE_MODIFYING_TOOLS",
    "AgentCapabilities",
    "AgentContext",
    "AgentEvent",
    "AgentEventType",
    "AgentExecutionLoop",
    "AgentMetadata",
    "AgentResult",
    "BaseAgent",
    "DocsAgent",
    "ExecutionPlan",
    "ExecutionStep",
    "FeatureAgent",
    "FileChange",
    "FileChangeType",
    "QAAgent",
    "RefactorAgent",
    "SecurityAgent",
    "TestAgent",
    "ToolExecutionRecord",
    "ValidationIssue",
    "ValidationResult",
    "create_default_agents",
]
