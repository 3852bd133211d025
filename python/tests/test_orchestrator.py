"""End-to-end tests for the orchestrator (orchestration/orchestrator.py).

A scripted model client stands in for the LLM; the real file tools run
against a temporary working directory.
"""

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from taskcore.agents.base import BaseAgent
from taskcore.agents.roles import DocsAgent, TestAgent
from taskcore.agents.types import (
    AgentCapabilities,
    AgentEvent,
    AgentEventType,
    AgentMetadata,
    ExecutionPlan,
    ExecutionStep,
)
from taskcore.interfaces.event_bus import EventType
from taskcore.orchestration.approval_gate import (
    ApprovalDecision,
    create_auto_approve_handler,
    create_auto_reject_handler,
)
from taskcore.orchestration.models import AgentRole, CreateTaskInput, TaskPriority, TaskStatus
from taskcore.orchestration.orchestrator import Orchestrator

from fakes import ScriptedModelClient, text_response, tool_response


def _build_orchestrator(settings, responses=None, **kwargs):
    client = ScriptedModelClient(responses or [text_response("Done")])
    return Orchestrator(settings, client, **kwargs), client


def _create(orchestrator, role=AgentRole.TEST, priority=TaskPriority.NORMAL, title="Do work", **kwargs):
    return orchestrator.create_task(CreateTaskInput(role=role, title=title, priority=priority, **kwargs))


class GatedModelClient:
    """Blocks the first call until released, then asks for a tool."""

    def __init__(self):
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def complete(self, request):
        self.calls += 1
        if self.calls == 1:
            self.entered.set()
            await self.release.wait()
            return tool_response("list_files", {})
        return text_response("finished")


class ConcurrencyTracker:
    """Tracks how many completions are in flight at once."""

    def __init__(self):
        self.active = 0
        self.peak = 0

    async def complete(self, request):
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return text_response("ok")



class RunningCountRecorder:
    """Samples the scheduler's running count inside every completion."""

    def __init__(self):
        self.scheduler = None
        self.counts = []

    async def complete(self, request):
        self.counts.append(self.scheduler.get_running_count())
        await asyncio.sleep(0.01)
        return text_response("ok")


# ============================================================================
# Approval flow
# ============================================================================


class TestApprovalFlow:
    @pytest.mark.asyncio
    async def test_full_autonomy_runs_without_handler(self, settings):
        handler = AsyncMock()
        orchestrator, client = _build_orchestrator(settings, approval_handler=handler)
        task = _create(orchestrator, AgentRole.TEST)

        result = await orchestrator.run_task(task.id)

        assert result.success
        assert result.summary == "Done"
        handler.assert_not_called()
        assert task.status == TaskStatus.COMPLETED
        assert orchestrator.approval_gate.auto_approval_count == 1

    @pytest.mark.asyncio
    async def test_rejection_cancels_without_tool_calls(self, settings):
        orchestrator, client = _build_orchestrator(
            settings, approval_handler=create_auto_reject_handler("Too risky")
        )
        task = _create(orchestrator, AgentRole.REFACTOR)

        result = await orchestrator.run_task(task.id)

        assert result.success is False
        assert result.error == "Too risky"
        assert result.tools_used == []
        assert client.call_count == 0
        assert task.status == TaskStatus.CANCELLED
        assert task.result.summary == "Task cancelled: Too risky"

    @pytest.mark.asyncio
    async def test_supervised_without_handler_fails_closed(self, settings):
        orchestrator, client = _build_orchestrator(settings)
        task = _create(orchestrator, AgentRole.DOCS)
        result = await orchestrator.run_task(task.id)
        assert result.error == "No approval handler configured"
        assert task.status == TaskStatus.CANCELLED
        assert client.call_count == 0

    @pytest.mark.asyncio
    async def test_approved_task_walks_every_status(self, settings):
        orchestrator, _ = _build_orchestrator(settings, approval_handler=create_auto_approve_handler())
        statuses = []
        required = []
        orchestrator.event_bus.add_handler(
            EventType.TASK_STATUS_CHANGED, lambda data: statuses.append(data["status"])
        )
        orchestrator.set_event_handlers(on_approval_required=required.append)
        task = _create(orchestrator, AgentRole.FEATURE)

        await orchestrator.run_task(task.id)

        assert statuses == [
            TaskStatus.AWAITING_APPROVAL,
            TaskStatus.APPROVED,
            TaskStatus.RUNNING,
            TaskStatus.COMPLETED,
        ]
        assert required == [task]

    @pytest.mark.asyncio
    async def test_destructive_plan_forces_approval(self, settings):
        class CleanupAgent(BaseAgent):
            metadata = AgentMetadata(role=AgentRole.TEST, name="Cleanup", description="Deletes stale tests")

            def build_plan(self, context):
                return ExecutionPlan(steps=(self.step("rm", "Remove stale tests", "delete_file"),))

            def build_system_prompt(self, context):
                return "system"

            def build_initial_prompt(self, context):
                return "go"

        client = ScriptedModelClient([text_response("Done")])
        orchestrator = Orchestrator(settings, client, agents={AgentRole.TEST: CleanupAgent(client)})
        seen = []
        orchestrator.set_approval_handler(
            lambda request: seen.append(request) or ApprovalDecision(request_id=request.id, approved=False,
                                                                     reason="Keep them")
        )
        task = _create(orchestrator, AgentRole.TEST)

        result = await orchestrator.run_task(task.id)

        assert result.error == "Keep them"
        assert seen[0].risks == ["Plan deletes files"]
        assert client.call_count == 0

    @pytest.mark.asyncio
    async def test_modified_plan_drives_the_run(self, settings):
        edited = ExecutionPlan(
            steps=(ExecutionStep(id="readme", description="Only touch README.md", tool_name="edit_file"),),
            estimated_tool_calls=1,
        )
        orchestrator, client = _build_orchestrator(
            settings,
            approval_handler=lambda request: ApprovalDecision(
                request_id=request.id, approved=True, modified_plan=edited
            ),
        )
        task = _create(orchestrator, AgentRole.REFACTOR)
        result = await orchestrator.run_task(task.id)

        assert result.success
        system_prompt = client.requests[0].system_prompt
        assert "Follow this approved plan:\n1. Only touch README.md [edit_file]" in system_prompt
        assert "behavior-preserving" not in system_prompt.split("Follow this approved plan:")[1]


# ============================================================================
# Results, metrics and events
# ============================================================================


class TestResults:
    @pytest.mark.asyncio
    async def test_metrics_are_recorded(self, settings, tmp_path):
        orchestrator, _ = _build_orchestrator(settings, [
            tool_response("write_file", {"path": "tests/test_math.py", "content": "def test_x(): pass\n"}),
            text_response("Wrote one test"),
        ])
        task = _create(orchestrator, AgentRole.TEST)

        await orchestrator.run_task(task.id)

        assert (tmp_path / "tests" / "test_math.py").exists()
        metrics = task.result.metrics
        assert metrics.iterations_used == 2
        assert metrics.tool_call_count == 1
        assert metrics.files_modified == 1
        assert metrics.duration_ms >= 0
        assert task.result.output == "Wrote one test"
        assert task.result.validation.valid

    @pytest.mark.asyncio
    async def test_model_failure_marks_task_failed(self, settings):
        orchestrator, _ = _build_orchestrator(settings, [RuntimeError("model down")])
        failures = []
        orchestrator.set_event_handlers(on_task_failed=lambda task, error: failures.append(error))
        task = _create(orchestrator, AgentRole.TEST)

        result = await orchestrator.run_task(task.id)

        assert result.success is False
        assert task.status == TaskStatus.FAILED
        assert failures == ["model down"]
        assert task.result.validation.valid is False

    @pytest.mark.asyncio
    async def test_planning_error_cancels_task(self, settings):
        class BrokenAgent(BaseAgent):
            metadata = AgentMetadata(role=AgentRole.TEST, name="Broken", description="Cannot plan")

            def build_plan(self, context):
                raise RuntimeError("no plan")

            def build_system_prompt(self, context):
                return ""

            def build_initial_prompt(self, context):
                return ""

        client = ScriptedModelClient([text_response("Done")])
        orchestrator = Orchestrator(settings, client, agents={AgentRole.TEST: BrokenAgent(client)})
        task = _create(orchestrator, AgentRole.TEST)

        result = await orchestrator.run_task(task.id)

        assert result.error == "no plan"
        assert task.status == TaskStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_event_handlers_receive_lifecycle(self, settings):
        orchestrator, _ = _build_orchestrator(settings)
        started, completed, agent_events = [], [], []
        orchestrator.set_event_handlers(
            on_task_started=started.append,
            on_task_completed=lambda task, result: completed.append((task, result)),
            on_agent_event=agent_events.append,
        )
        task = _create(orchestrator, AgentRole.TEST)
        await orchestrator.run_task(task.id)

        assert started == [task]
        assert completed[0][0] is task and completed[0][1].success
        assert all(isinstance(e, AgentEvent) for e in agent_events)
        assert agent_events[0].type == AgentEventType.STARTED
        assert agent_events[-1].type == AgentEventType.COMPLETED

    @pytest.mark.asyncio
    async def test_set_event_handlers_replaces_previous(self, settings):
        orchestrator, _ = _build_orchestrator(settings)
        first, second = [], []
        orchestrator.set_event_handlers(on_task_started=first.append)
        orchestrator.set_event_handlers(on_task_started=second.append)
        task = _create(orchestrator, AgentRole.TEST)
        await orchestrator.run_task(task.id)
        assert first == []
        assert second == [task]

    @pytest.mark.asyncio
    async def test_read_only_agent_gets_no_write_tools(self, settings):
        orchestrator, client = _build_orchestrator(settings)
        task = _create(orchestrator, AgentRole.QA)
        await orchestrator.run_task(task.id)
        names = {tool["name"] for tool in client.requests[0].tools}
        assert "read_file" in names
        assert names.isdisjoint({"write_file", "create_file", "edit_file", "delete_file"})
        assert {"run_tests", "run_linter", "search_content", "git_diff"} <= names
        assert names.isdisjoint({"git_add", "git_commit"})

    @pytest.mark.asyncio
    async def test_command_tools_need_execute_capability(self, settings):
        orchestrator, client = _build_orchestrator(settings, approval_handler=create_auto_approve_handler())
        task = _create(orchestrator, AgentRole.DOCS)
        await orchestrator.run_task(task.id)
        names = {tool["name"] for tool in client.requests[0].tools}
        assert "write_file" in names
        assert names.isdisjoint({"run_tests", "run_linter"})

    @pytest.mark.parametrize(
        "can_commit,enable_commit,offered",
        [(True, True, True), (True, False, False), (False, True, False)],
    )
    @pytest.mark.asyncio
    async def test_commit_tools_need_capability_and_task_opt_in(
        self, settings, can_commit, enable_commit, offered
    ):
        class CommittingDocsAgent(DocsAgent):
            metadata = replace(
                DocsAgent.metadata,
                capabilities=AgentCapabilities(can_write_files=True, can_commit=can_commit),
            )

        client = ScriptedModelClient([text_response("Done")])
        orchestrator = Orchestrator(
            settings,
            client,
            agents={AgentRole.DOCS: CommittingDocsAgent(client)},
            approval_handler=create_auto_approve_handler(),
        )
        task = _create(orchestrator, AgentRole.DOCS, options={"enable_commit": enable_commit})
        await orchestrator.run_task(task.id)
        names = {tool["name"] for tool in client.requests[0].tools}
        assert ("git_commit" in names) is offered
        assert ("git_add" in names) is offered
        assert "git_status" in names

    @pytest.mark.asyncio
    async def test_registry_events_reach_the_bus(self, settings):
        orchestrator, _ = _build_orchestrator(settings)
        added = []
        orchestrator.event_bus.add_handler(EventType.TASK_ADDED, lambda data: added.append(data["task"]))
        task = _create(orchestrator, AgentRole.TEST)
        assert added == [task]


# ============================================================================
# run_task guards
# ============================================================================


class TestRunTaskGuards:
    @pytest.mark.asyncio
    async def test_unknown_task(self, settings):
        orchestrator, _ = _build_orchestrator(settings)
        result = await orchestrator.run_task("task-missing")
        assert result.success is False
        assert result.error == "Task task-missing not found"

    @pytest.mark.asyncio
    async def test_missing_agent_cancels_task(self, settings):
        orchestrator = Orchestrator(settings, agents={})
        failures = []
        orchestrator.set_event_handlers(on_task_failed=lambda task, error: failures.append(error))
        task = _create(orchestrator, AgentRole.TEST)
        result = await orchestrator.run_task(task.id)
        assert result.error == "No agent registered for role: test"
        assert task.status == TaskStatus.CANCELLED
        assert task.result.agent_result is result
        assert failures == ["No agent registered for role: test"]
        assert orchestrator.scheduler.get_scheduled() == []

    @pytest.mark.asyncio
    async def test_completed_task_is_not_rerun(self, settings):
        orchestrator, client = _build_orchestrator(settings)
        task = _create(orchestrator, AgentRole.TEST)
        await orchestrator.run_task(task.id)
        result = await orchestrator.run_task(task.id)
        assert result.success is False
        assert "not runnable" in result.error
        assert client.call_count == 1


# ============================================================================
# Cancel & retry
# ============================================================================


class TestCancelAndRetry:
    @pytest.mark.asyncio
    async def test_cancel_pending_task(self, settings):
        orchestrator, _ = _build_orchestrator(settings)
        task = _create(orchestrator, AgentRole.TEST)
        assert orchestrator.cancel_task(task.id)
        assert task.status == TaskStatus.CANCELLED
        assert orchestrator.scheduler.get_scheduled() == []
        assert orchestrator.cancel_task(task.id) is False

    @pytest.mark.asyncio
    async def test_cancel_in_flight_run(self, settings):
        client = GatedModelClient()
        orchestrator = Orchestrator(settings, client)
        failures = []
        orchestrator.set_event_handlers(on_task_failed=lambda task, error: failures.append(error))
        task = _create(orchestrator, AgentRole.TEST)

        run = asyncio.create_task(orchestrator.run_task(task.id))
        await client.entered.wait()
        assert task.status == TaskStatus.RUNNING
        assert orchestrator.cancel_task(task.id)
        client.release.set()
        result = await run

        assert result.success is False
        assert result.error == "Run cancelled"
        assert task.status == TaskStatus.CANCELLED
        assert client.calls == 1
        assert failures == []

    @pytest.mark.asyncio
    async def test_retry_failed_task(self, settings):
        orchestrator, client = _build_orchestrator(settings, [RuntimeError("flaky"), text_response("Done")])
        task = _create(orchestrator, AgentRole.TEST)
        await orchestrator.run_task(task.id)
        assert task.status == TaskStatus.FAILED

        assert orchestrator.retry_task(task.id)
        assert task.status == TaskStatus.PENDING
        assert task.retry_count == 1
        assert task.result is None
        assert [e.task_id for e in orchestrator.scheduler.get_scheduled()] == [task.id]

        result = await orchestrator.run_task(task.id)
        assert result.success
        assert task.status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_retry_requires_failed_status(self, settings):
        orchestrator, _ = _build_orchestrator(settings)
        task = _create(orchestrator, AgentRole.TEST)
        assert orchestrator.retry_task(task.id) is False
        assert orchestrator.retry_task("task-missing") is False

    @pytest.mark.asyncio
    async def test_child_task_is_linked(self, settings):
        orchestrator, _ = _build_orchestrator(settings)
        parent = _create(orchestrator, AgentRole.FEATURE)
        child = _create(orchestrator, AgentRole.TEST, parent_task_id=parent.id)
        assert parent.child_task_ids == [child.id]


# ============================================================================
# Queue
# ============================================================================


class TestRunQueue:
    @pytest.mark.asyncio
    async def test_queue_runs_by_priority(self, settings):
        orchestrator, _ = _build_orchestrator(settings, approval_handler=create_auto_approve_handler())
        order = []
        orchestrator.set_event_handlers(on_task_started=lambda task: order.append(task.title))
        _create(orchestrator, AgentRole.DOCS, TaskPriority.LOW, title="docs")
        _create(orchestrator, AgentRole.QA, TaskPriority.CRITICAL, title="qa")
        _create(orchestrator, AgentRole.TEST, TaskPriority.HIGH, title="test")

        await orchestrator.run_queue()

        assert order == ["qa", "test", "docs"]
        assert orchestrator.is_running is False
        counts = orchestrator.status()["tasks"]
        assert counts["completed"] == 3

    @pytest.mark.asyncio
    async def test_queue_respects_concurrency_ceiling(self, tmp_path):
        from taskcore.config.settings import TaskCoreSettings

        settings = TaskCoreSettings(
            working_directory=str(tmp_path), max_concurrent=2, cooldown_ms=0, queue_poll_interval_ms=5
        )
        tracker = ConcurrencyTracker()
        orchestrator = Orchestrator(settings, tracker)
        tasks = [_create(orchestrator, AgentRole.TEST, title=f"t{i}") for i in range(4)]

        await orchestrator.run_queue()

        assert tracker.peak == 2
        assert all(t.status == TaskStatus.COMPLETED for t in tasks)
        assert orchestrator.scheduler.get_running_count() == 0

    @pytest.mark.asyncio
    async def test_direct_runs_wait_for_a_slot(self, settings):
        recorder = RunningCountRecorder()
        orchestrator = Orchestrator(settings, recorder)
        recorder.scheduler = orchestrator.scheduler
        first = _create(orchestrator, AgentRole.TEST, title="first")
        second = _create(orchestrator, AgentRole.TEST, title="second")

        results = await asyncio.gather(orchestrator.run_task(first.id), orchestrator.run_task(second.id))

        assert all(r.success for r in results)
        assert recorder.counts == [1, 1]
        assert orchestrator.scheduler.get_running_count() == 0

    @pytest.mark.asyncio
    async def test_waiting_run_can_be_cancelled(self, settings):
        client = GatedModelClient()
        orchestrator = Orchestrator(settings, client)
        first = _create(orchestrator, AgentRole.TEST, title="first")
        second = _create(orchestrator, AgentRole.TEST, title="second")

        running = asyncio.create_task(orchestrator.run_task(first.id))
        await client.entered.wait()
        waiting = asyncio.create_task(orchestrator.run_task(second.id))
        await asyncio.sleep(0.02)
        assert second.status == TaskStatus.PENDING
        assert orchestrator.cancel_task(second.id)
        client.release.set()

        assert (await waiting).error == "Run cancelled"
        assert second.status == TaskStatus.CANCELLED
        assert (await running).success
        assert client.calls == 2

    @pytest.mark.asyncio
    async def test_queue_cancels_tasks_without_an_agent(self, settings):
        client = ScriptedModelClient([text_response("Done")])
        orchestrator = Orchestrator(settings, client, agents={AgentRole.TEST: TestAgent(client)})
        orphan = _create(orchestrator, AgentRole.QA, TaskPriority.CRITICAL)
        served = _create(orchestrator, AgentRole.TEST)

        await orchestrator.run_queue()

        assert orphan.status == TaskStatus.CANCELLED
        assert served.status == TaskStatus.COMPLETED
        assert orchestrator.task_registry.get_by_status(TaskStatus.PENDING) == []
        assert orchestrator.scheduler.get_running_count() == 0

    @pytest.mark.asyncio
    async def test_queue_skips_cancelled_entries(self, settings):
        orchestrator, client = _build_orchestrator(settings)
        kept = _create(orchestrator, AgentRole.TEST)
        dropped = _create(orchestrator, AgentRole.TEST)
        orchestrator.task_registry.update_status(dropped.id, TaskStatus.CANCELLED)

        await orchestrator.run_queue()

        assert kept.status == TaskStatus.COMPLETED
        assert dropped.status == TaskStatus.CANCELLED
        assert client.call_count == 1

    @pytest.mark.asyncio
    async def test_queue_auto_retries_failed_tasks(self, tmp_path):
        from taskcore.config.settings import TaskCoreSettings

        settings = TaskCoreSettings(
            working_directory=str(tmp_path), cooldown_ms=0, queue_poll_interval_ms=5, auto_retry_failed=True
        )
        client = ScriptedModelClient([RuntimeError("flaky"), text_response("Done")])
        orchestrator = Orchestrator(settings, client)
        task = _create(orchestrator, AgentRole.TEST)

        await orchestrator.run_queue()

        assert task.status == TaskStatus.COMPLETED
        assert task.retry_count == 1

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_runs(self, settings):
        client = GatedModelClient()
        orchestrator = Orchestrator(settings, client)
        task = _create(orchestrator, AgentRole.TEST)

        queue = asyncio.create_task(orchestrator.run_queue())
        await client.entered.wait()
        assert orchestrator.is_running
        orchestrator.stop()
        client.release.set()
        await queue

        assert task.status == TaskStatus.CANCELLED
        assert orchestrator.is_running is False

    @pytest.mark.asyncio
    async def test_status_snapshot(self, settings):
        orchestrator, _ = _build_orchestrator(settings)
        _create(orchestrator, AgentRole.TEST)
        status = orchestrator.status()
        assert status["total_tasks"] == 1
        assert status["tasks"]["pending"] == 1
        assert status["agents"] == sorted(role.value for role in AgentRole)
        assert "read_file" in status["tools"]
        assert status["queue_running"] is False
