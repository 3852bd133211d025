"""taskcore interface contracts (Protocol-based dependency injection)."""

from taskcore.interfaces.event_bus import EventHandler, EventType, IEventBus
from taskcore.interfaces.model_client import (
    CompletionRequest,
    CompletionResponse,
    ContentBlock,
    ModelClient,
    StopReason,
    TextBlock,
    ToolUseBlock,
)
from taskcore.interfaces.tools import Tool, ToolResult, ToolValidation, tool_schema

__all__ = [
    "CompletionRequest",
    "CompletionResponse",
    "ContentBlock",
    "EventHandler",
    "EventType",
    "IEventBus",
    "ModelClient",
    "StopReason",
    "TextBlock",
    "Tool",
    "ToolResult",
    "ToolUseBlock",
    "ToolValidation",
    "tool_schema",
]
