"""Tests for the DI container (di_container.py) and event bus (event_bus.py)."""

import asyncio

import pytest

from taskcore.config.settings import TaskCoreSettings
from taskcore.event_bus import InMemoryEventBus
from taskcore.exceptions_unified import EventBusError
from taskcore.interfaces.event_bus import EventType


# --- DI Container ---

@pytest.fixture(autouse=True)
def _reset():
    from taskcore import di_container
    di_container._container = None
    yield
    di_container._container = None


def test_container_singleton():
    from taskcore.di_container import get_container
    c1 = get_container()
    c2 = get_container()
    assert c1 is c2


def test_container_status_all_uninitialized(settings):
    from taskcore.di_container import TaskCoreContainer
    container = TaskCoreContainer(settings)
    assert container.status() == {
        "settings": True,
        "event_bus": False,
        "tool_registry": False,
        "model_client": False,
        "orchestrator": False,
    }


def test_container_event_bus_lazy_init(settings):
    from taskcore.di_container import TaskCoreContainer
    container = TaskCoreContainer(settings)
    bus = container.event_bus
    assert isinstance(bus, InMemoryEventBus)
    assert container.event_bus is bus
    assert container.status()["event_bus"] is True


def test_container_tool_registry_has_builtin_tools(settings):
    from taskcore.di_container import TaskCoreContainer
    registry = TaskCoreContainer(settings).tool_registry
    assert registry.names() == [
        "read_file", "write_file", "create_file", "edit_file", "delete_file", "list_files",
        "search_files", "search_content", "file_exists",
        "run_tests", "run_linter", "git_status", "git_diff", "git_log", "git_add", "git_commit",
    ]


def test_container_without_api_key_has_no_model_client(settings):
    from taskcore.di_container import TaskCoreContainer
    container = TaskCoreContainer(settings.model_copy(update={"anthropic_api_key": None}))
    assert container.model_client is None
    orchestrator = container.orchestrator
    assert orchestrator.agents == {}
    assert orchestrator.event_bus is container.event_bus
    assert orchestrator.tool_registry is container.tool_registry


def test_container_with_api_key_wires_agents(settings):
    from taskcore.di_container import TaskCoreContainer
    from taskcore.llm.anthropic_client import AnthropicModelClient
    container = TaskCoreContainer(settings.model_copy(update={"anthropic_api_key": "sk-test"}))
    assert isinstance(container.model_client, AnthropicModelClient)
    assert len(container.orchestrator.agents) == 6


async def test_container_aclose(settings):
    from taskcore.di_container import TaskCoreContainer
    container = TaskCoreContainer(settings.model_copy(update={"anthropic_api_key": "sk-test"}))
    orchestrator = container.orchestrator
    await container.aclose()
    assert orchestrator.is_running is False


def test_init_container_uses_given_settings(settings):
    from taskcore.di_container import get_container, init_container
    container = init_container(settings)
    assert get_container() is container
    assert container.settings is settings


def test_shutdown_clears_container():
    from taskcore.di_container import get_container, shutdown_container
    get_container()
    shutdown_container()
    from taskcore import di_container
    assert di_container._container is None


# --- InMemoryEventBus ---


async def test_event_bus_publish_subscribe():
    bus = InMemoryEventBus()
    received = []

    async def handler(data):
        received.append(data)

    await bus.subscribe(EventType.TASK_STARTED, handler)
    await bus.publish(EventType.TASK_STARTED, {"task_id": "t1"})

    assert len(received) == 1
    assert received[0]["task_id"] == "t1"


async def test_event_bus_multiple_subscribers():
    bus = InMemoryEventBus()
    results_a = []
    results_b = []

    await bus.subscribe(EventType.TASK_COMPLETED, results_a.append)
    await bus.subscribe(EventType.TASK_COMPLETED, results_b.append)
    await bus.publish(EventType.TASK_COMPLETED, {"ok": True})

    assert results_a == [{"ok": True}]
    assert results_b == [{"ok": True}]


async def test_event_bus_unsubscribe():
    bus = InMemoryEventBus()
    received = []

    sub_id = await bus.subscribe(EventType.TASK_FAILED, received.append)
    await bus.unsubscribe(sub_id)
    await bus.publish(EventType.TASK_FAILED, {"error": "x"})

    assert received == []
    assert bus.subscriber_count(EventType.TASK_FAILED) == 0


async def test_event_bus_isolates_handler_errors():
    bus = InMemoryEventBus()
    received = []

    def broken(data):
        raise RuntimeError("listener down")

    bus.add_handler(EventType.TASK_STARTED, broken)
    bus.add_handler(EventType.TASK_STARTED, received.append)
    await bus.publish(EventType.TASK_STARTED, {"n": 1})
    bus.publish_nowait(EventType.TASK_STARTED, {"n": 2})

    assert received == [{"n": 1}, {"n": 2}]


async def test_publish_nowait_does_not_wait_for_async_handlers():
    bus = InMemoryEventBus()
    release = asyncio.Event()
    received = []

    async def slow(data):
        await release.wait()
        received.append(data)

    bus.add_handler(EventType.AGENT_EVENT, slow)
    bus.publish_nowait(EventType.AGENT_EVENT, {"n": 1})
    assert received == []

    release.set()
    await bus.drain()
    assert received == [{"n": 1}]


def test_publish_nowait_without_loop_drops_async_handlers():
    bus = InMemoryEventBus()
    sync_received = []

    async def handler(data):
        raise AssertionError("should not run")

    bus.add_handler(EventType.TASK_ADDED, handler)
    bus.add_handler(EventType.TASK_ADDED, sync_received.append)
    bus.publish_nowait(EventType.TASK_ADDED, {"n": 1})

    assert sync_received == [{"n": 1}]


async def test_publish_source_is_attached():
    bus = InMemoryEventBus()
    received = []
    bus.add_handler(EventType.TASK_UPDATED, received.append)
    await bus.publish(EventType.TASK_UPDATED, {"n": 1}, source="registry")
    assert received == [{"n": 1, "_source": "registry"}]


async def test_event_stream_filters_and_closes():
    bus = InMemoryEventBus()
    stream = bus.stream([EventType.TASK_COMPLETED])

    bus.publish_nowait(EventType.TASK_STARTED, {"n": 0})
    bus.publish_nowait(EventType.TASK_COMPLETED, {"n": 1})
    await bus.publish(EventType.TASK_COMPLETED, {"n": 2})
    stream.close()

    collected = [data async for _, data in stream]
    assert collected == [{"n": 1}, {"n": 2}]
    assert stream.closed


def test_event_bus_rejects_non_callable_handler():
    bus = InMemoryEventBus()
    with pytest.raises(EventBusError, match="not callable"):
        bus.add_handler(EventType.TASK_STARTED, "not-a-handler")
    assert bus.subscriber_count(EventType.TASK_STARTED) == 0
