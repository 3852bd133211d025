"""Interface for the pluggable tool capability.

The core never inspects tool internals: it validates (when the tool offers
``validate``), executes, and classifies tools as file-modifying by name.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@dataclass
class ToolResult:
    """Outcome of one tool execution."""
    success: bool
    output: str = ""
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, error: str, **metadata: Any) -> "ToolResult":
        return cls(success=False, output="", error=error, metadata=dict(metadata))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "metadata": dict(self.metadata),
        }


@dataclass
class ToolValidation:
    """Result of a tool's own input validation."""
    valid: bool
    errors: List[str] = field(default_factory=list)


@runtime_checkable
class Tool(Protocol):
    """A capability the model may invoke by name.

    Optional members, looked up with ``getattr``:
        category: str grouping used by ``ToolRegistry.get_by_category``
        validate(input) -> ToolValidation: checked before ``execute``
    """

    name: str
    description: str
    input_schema: Dict[str, Any]

    async def execute(self, tool_input: Dict[str, Any]) -> ToolResult:
        """Run the tool.

        Args:
            tool_input: Arguments supplied by the model

        Returns:
            ToolResult; raising is allowed and is converted by the loop
        """
        ...


def tool_schema(tool: Tool) -> Dict[str, Any]:
    """Schema entry sent to the model-completion capability."""
    return {
        "name": tool.name,
        "description": tool.description,
        "input_schema": tool.input_schema,
    }
