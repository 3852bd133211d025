"""Explicit tool registry.

One instance is built per orchestrator and handed down to each run; there
is no module-level singleton.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from taskcore.exceptions_unified import ToolRegistrationError
from taskcore.interfaces.tools import Tool, tool_schema

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Name-keyed collection of tools."""

    def __init__(self, tools: Optional[Iterable[Tool]] = None) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools or ():
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ToolRegistrationError(
                f'Tool "{tool.name}" is already registered',
                details={"tool": tool.name},
            )
        self._tools[tool.name] = tool
        logger.debug("Registered tool %s", tool.name)

    def register_all(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def get_all(self) -> List[Tool]:
        return list(self._tools.values())

    def get_by_category(self, category: str) -> List[Tool]:
        return [t for t in self._tools.values() if getattr(t, "category", None) == category]

    def has(self, name: str) -> bool:
        return name in self._tools

    def clear(self) -> None:
        self._tools.clear()

    def names(self) -> List[str]:
        return list(self._tools)

    def schemas(self) -> List[Dict]:
        return [tool_schema(t) for t in self._tools.values()]

    def as_mapping(self, exclude: Iterable[str] = ()) -> Dict[str, Tool]:
        """Snapshot for one run, optionally without some tool names."""
        skip = set(exclude)
        return {name: tool for name, tool in self._tools.items() if name not in skip}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools


def create_builtin_tools(settings: Any) -> List[Tool]:
    """File, search, test, lint and git tools configured from ``settings``."""
    from taskcore.tools.commands import create_command_tools
    from taskcore.tools.file_ops import create_file_tools

    return [
        *create_file_tools(settings.working_directory),
        *create_command_tools(
            settings.working_directory,
            test_command=settings.test_command,
            lint_command=settings.lint_command,
            timeout=settings.command_timeout,
        ),
    ]
