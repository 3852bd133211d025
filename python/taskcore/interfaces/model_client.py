"""Interface for the model-completion capability.

The only point where the core depends on an external conversational model.
Given a system prompt, a transcript and tool schemas, it returns text and
tool-invocation blocks plus a stop signal.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Union


class StopReason(str, Enum):
    """Why the model stopped producing output."""
    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"


@dataclass(frozen=True)
class TextBlock:
    """Plain model text."""
    text: str
    type: str = "text"

    def to_message_content(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ToolUseBlock:
    """A request from the model to invoke a tool."""
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)
    type: str = "tool_use"

    def to_message_content(self) -> Dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": dict(self.input)}


ContentBlock = Union[TextBlock, ToolUseBlock]


@dataclass
class CompletionRequest:
    """One call to the model."""
    system_prompt: str
    messages: List[Dict[str, Any]]
    tools: List[Dict[str, Any]] = field(default_factory=list)
    model: Optional[str] = None
    max_tokens: int = 8192
    temperature: float = 0.0


@dataclass
class CompletionResponse:
    """Model output for one call."""
    content: List[ContentBlock]
    stop_reason: StopReason = StopReason.END_TURN
    usage: Dict[str, int] = field(default_factory=dict)

    @property
    def tool_calls(self) -> List[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    @property
    def texts(self) -> List[str]:
        return [b.text for b in self.content if isinstance(b, TextBlock)]


class ModelClient(Protocol):
    """Interface for model completion with tool use."""

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Send the transcript and tool schemas to the model.

        Args:
            request: System prompt, transcript, tools and sampling options

        Returns:
            CompletionResponse with content blocks and stop reason

        Raises:
            Any exception; the execution loop turns it into a failed run
        """
        ...
