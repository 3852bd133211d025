"""Lightweight in-memory event bus satisfying the IEventBus protocol.

Used for intra-process pub/sub between the task registry, the orchestrator
and agent runs. Two delivery modes:

- ``publish`` awaits every handler in subscription order.
- ``publish_nowait`` calls sync handlers inline and schedules async ones as
  tasks, so the core never waits on a slow listener.

``stream()`` gives a listener its own queue-backed async iterator.
"""

import asyncio
import inspect
import logging
import uuid
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Set, Tuple

from taskcore.exceptions_unified import EventBusError
from taskcore.interfaces.event_bus import EventHandler, EventType

logger = logging.getLogger(__name__)

_CLOSED = object()


class EventStream:
    """Queue-backed subscription yielding ``(event_type, data)`` pairs."""

    def __init__(self, bus: "InMemoryEventBus", event_types: Optional[Iterable[EventType]]) -> None:
        self._bus = bus
        self._types = frozenset(event_types) if event_types else None
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self.closed = False

    def accepts(self, event_type: EventType) -> bool:
        return self._types is None or event_type in self._types

    def put(self, event_type: EventType, data: Dict[str, Any]) -> None:
        if not self.closed:
            self._queue.put_nowait((event_type, data))

    async def get(self) -> Tuple[EventType, Dict[str, Any]]:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._bus._streams.discard(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[Tuple[EventType, Dict[str, Any]]]:
        return self

    async def __anext__(self) -> Tuple[EventType, Dict[str, Any]]:
        return await self.get()


class InMemoryEventBus:
    """Simple async event bus for single-process use.

    Satisfies ``taskcore.interfaces.IEventBus`` via structural subtyping.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[EventType, Dict[str, EventHandler]] = {}
        self._streams: Set[EventStream] = set()
        self._pending: Set["asyncio.Task[None]"] = set()

    async def publish(
        self,
        event_type: EventType,
        data: Dict[str, Any],
        source: Optional[str] = None,
    ) -> None:
        if source:
            data = {**data, "_source": source}
        self._feed_streams(event_type, data)
        handlers = list(self._subscribers.get(event_type, {}).values())
        for handler in handlers:
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event handler failed for %s", event_type.value)

    def publish_nowait(
        self,
        event_type: EventType,
        data: Dict[str, Any],
        source: Optional[str] = None,
    ) -> None:
        if source:
            data = {**data, "_source": source}
        self._feed_streams(event_type, data)
        handlers = list(self._subscribers.get(event_type, {}).values())
        for handler in handlers:
            try:
                result = handler(data)
            except Exception:
                logger.exception("Event handler failed for %s", event_type.value)
                continue
            if inspect.isawaitable(result):
                self._schedule(event_type, result)

    def add_handler(self, event_type: EventType, handler: EventHandler) -> str:
        """Synchronous form of ``subscribe``."""
        if not callable(handler):
            raise EventBusError(f"Handler for {event_type.value} is not callable")
        sub_id = uuid.uuid4().hex[:12]
        self._subscribers.setdefault(event_type, {})[sub_id] = handler
        return sub_id

    def remove_handler(self, subscription_id: str) -> None:
        for handlers in self._subscribers.values():
            handlers.pop(subscription_id, None)

    async def subscribe(
        self,
        event_type: EventType,
        handler: EventHandler,
    ) -> str:
        return self.add_handler(event_type, handler)

    async def unsubscribe(self, subscription_id: str) -> None:
        self.remove_handler(subscription_id)

    def stream(self, event_types: Optional[Iterable[EventType]] = None) -> EventStream:
        """Open a stream; must be created inside a running event loop."""
        stream = EventStream(self, event_types)
        self._streams.add(stream)
        return stream

    async def drain(self) -> None:
        """Wait for async handlers scheduled by ``publish_nowait``."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers.get(event_type, {}))

    def _feed_streams(self, event_type: EventType, data: Dict[str, Any]) -> None:
        for stream in list(self._streams):
            if stream.accepts(event_type):
                stream.put(event_type, data)

    def _schedule(self, event_type: EventType, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "Dropping async handler for %s: no running event loop", event_type.value
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        async def _deliver() -> None:
            try:
                await awaitable
            except Exception:
                logger.exception("Event handler failed for %s", event_type.value)

        task = loop.create_task(_deliver())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
