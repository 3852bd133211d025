"""Dependency injection container for taskcore.

Lightweight wiring of core services at application startup.
Uses lazy initialization: services are created on first access.
"""

import logging
from typing import Any, Dict, Optional

from taskcore.config.settings import TaskCoreSettings, get_settings

logger = logging.getLogger(__name__)


class TaskCoreContainer:
    """Central service container for an embedding application."""

    def __init__(self, settings: Optional[TaskCoreSettings] = None) -> None:
        self._settings = settings
        self._event_bus = None
        self._tool_registry = None
        self._model_client = None
        self._orchestrator = None

    @property
    def settings(self) -> TaskCoreSettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def event_bus(self):
        if self._event_bus is None:
            from taskcore.event_bus import InMemoryEventBus
            self._event_bus = InMemoryEventBus()
        return self._event_bus

    @property
    def tool_registry(self):
        if self._tool_registry is None:
            from taskcore.tools.registry import ToolRegistry, create_builtin_tools
            self._tool_registry = ToolRegistry(create_builtin_tools(self.settings))
            logger.info("ToolRegistry initialized with %d tools", len(self._tool_registry))
        return self._tool_registry

    @property
    def model_client(self):
        """Anthropic client, or ``None`` while no API key is configured."""
        if self._model_client is None:
            if not self.settings.anthropic_api_key:
                logger.warning("No Anthropic API key configured; agents are disabled")
                return None
            from taskcore.llm.anthropic_client import AnthropicModelClient
            self._model_client = AnthropicModelClient(self.settings)
            logger.info("AnthropicModelClient initialized (model=%s)", self.settings.model)
        return self._model_client

    @property
    def orchestrator(self):
        if self._orchestrator is None:
            from taskcore.orchestration.orchestrator import Orchestrator
            self._orchestrator = Orchestrator(
                self.settings,
                self.model_client,
                tool_registry=self.tool_registry,
                event_bus=self.event_bus,
            )
            logger.info("Orchestrator initialized")
        return self._orchestrator

    async def aclose(self) -> None:
        """Stop the orchestrator and close the HTTP client."""
        if self._orchestrator is not None:
            self._orchestrator.stop()
        if self._event_bus is not None:
            await self._event_bus.drain()
        if self._model_client is not None:
            await self._model_client.aclose()

    def status(self) -> Dict[str, Any]:
        """Report which services are initialized."""
        return {
            "settings": self._settings is not None,
            "event_bus": self._event_bus is not None,
            "tool_registry": self._tool_registry is not None,
            "model_client": self._model_client is not None,
            "orchestrator": self._orchestrator is not None,
        }


# Global container
_container: Optional[TaskCoreContainer] = None


def get_container() -> TaskCoreContainer:
    global _container
    if _container is None:
        _container = TaskCoreContainer()
    return _container


def init_container(settings: Optional[TaskCoreSettings] = None) -> TaskCoreContainer:
    """Create the global container with explicit settings and configure logging."""
    global _container
    from taskcore.enhanced_logging import configure_logging

    _container = TaskCoreContainer(settings)
    configure_logging(_container.settings)
    return _container


def shutdown_container() -> None:
    global _container
    _container = None
