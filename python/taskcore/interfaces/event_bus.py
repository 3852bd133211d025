"""Interface for event bus and pub/sub messaging.

Decouples the orchestration core from its listeners (logging, UI,
persistence) by publishing lifecycle and agent events.
"""

from typing import Protocol, Callable, Dict, Any, Awaitable, Optional, Union
from enum import Enum


class EventType(Enum):
    """Event types published by the orchestration core."""
    # Task registry lifecycle
    TASK_ADDED = "task_added"
    TASK_UPDATED = "task_updated"
    TASK_REMOVED = "task_removed"
    TASK_STATUS_CHANGED = "task_status_changed"
    # Orchestrator
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    APPROVAL_REQUIRED = "approval_required"
    # Agent execution loop
    AGENT_EVENT = "agent_event"


EventHandler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class IEventBus(Protocol):
    """Interface for publish-subscribe event messaging."""

    async def publish(
        self,
        event_type: EventType,
        data: Dict[str, Any],
        source: Optional[str] = None
    ) -> None:
        """Publish an event and wait for every handler.

        Args:
            event_type: Type of event
            data: Event data/payload
            source: Optional source identifier
        """
        ...

    def publish_nowait(
        self,
        event_type: EventType,
        data: Dict[str, Any],
        source: Optional[str] = None
    ) -> None:
        """Publish an event without waiting for async handlers.

        Args:
            event_type: Type of event
            data: Event data/payload
            source: Optional source identifier
        """
        ...

    async def subscribe(
        self,
        event_type: EventType,
        handler: EventHandler
    ) -> str:
        """Subscribe to events of a type.

        Args:
            event_type: Type of events to listen for
            handler: Sync or async function to handle events

        Returns:
            Subscription ID for later unsubscribe
        """
        ...

    async def unsubscribe(self, subscription_id: str) -> None:
        """Unsubscribe from events.

        Args:
            subscription_id: ID from subscribe()
        """
        ...
