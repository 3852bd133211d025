"""Orchestrator: the composition root of the task core.

Holds one task registry, one scheduler, one approval gate, one tool registry
and one event bus, plus an agent per role. ``run_task`` takes a task through
plan, approval and execution and always returns an ``AgentResult``;
``run_queue`` keeps dispatching scheduler picks until nothing is left.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from taskcore.agents.base import BaseAgent
from taskcore.agents.loop import CANCELLED_ERROR, is_file_modifying
from taskcore.agents.roles import create_default_agents
from taskcore.agents.types import AgentContext, AgentEvent, AgentResult, ValidationResult
from taskcore.config.settings import TaskCoreSettings
from taskcore.enhanced_logging import track_performance
from taskcore.event_bus import InMemoryEventBus
from taskcore.exceptions_unified import (
    AgentNotFoundError,
    TaskNotFoundError,
    create_error_context,
    error_message,
)
from taskcore.interfaces.event_bus import EventType
from taskcore.interfaces.model_client import ModelClient
from taskcore.orchestration.approval_gate import ApprovalGate, ApprovalHandler
from taskcore.orchestration.models import (
    AgentRole,
    CreateTaskInput,
    Task,
    TaskMetrics,
    TaskResult,
    TaskStatus,
)
from taskcore.orchestration.task_registry import RegistryEvent, TaskRegistry
from taskcore.scheduling.scheduler import Scheduler, ScheduleOptions
from taskcore.tools.commands import COMMAND_CATEGORIES, is_commit_tool
from taskcore.tools.registry import ToolRegistry, create_builtin_tools

logger = logging.getLogger(__name__)

RUNNABLE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.APPROVED})

_REGISTRY_EVENT_TYPES = {
    "added": EventType.TASK_ADDED,
    "updated": EventType.TASK_UPDATED,
    "removed": EventType.TASK_REMOVED,
    "status_changed": EventType.TASK_STATUS_CHANGED,
}


class Orchestrator:
    """Runs tasks through plan -> approval -> execution loop -> result."""

    def __init__(
        self,
        settings: Optional[TaskCoreSettings] = None,
        model_client: Optional[ModelClient] = None,
        *,
        agents: Optional[Mapping[AgentRole, BaseAgent]] = None,
        tool_registry: Optional[ToolRegistry] = None,
        event_bus: Optional[InMemoryEventBus] = None,
        approval_handler: Optional[ApprovalHandler] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._settings = settings or TaskCoreSettings()
        self._registry = TaskRegistry(self._settings.autonomy)
        self._scheduler = Scheduler(ScheduleOptions.from_settings(self._settings), clock=clock)
        self._approval_gate = ApprovalGate(self._settings.max_auto_approvals, approval_handler)
        if tool_registry is None:
            tool_registry = ToolRegistry(create_builtin_tools(self._settings))
        self._tool_registry = tool_registry
        self._event_bus = event_bus or InMemoryEventBus()

        self._agents: Dict[AgentRole, BaseAgent] = {}
        if agents is None and model_client is not None:
            agents = create_default_agents(model_client)
        for agent in (agents or {}).values():
            self.register_agent(agent)

        self._cancel_events: Dict[str, asyncio.Event] = {}
        self._handler_subscriptions: List[str] = []
        self._stopped = False
        self._queue_active = False

        self._registry.on_event(self._publish_registry_event)

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def register_agent(self, agent: BaseAgent) -> None:
        """Bind ``agent`` to its role, replacing any previous binding."""
        self._agents[agent.role] = agent
        agent.on_event(self._publish_agent_event)

    def get_agent(self, role: AgentRole) -> Optional[BaseAgent]:
        return self._agents.get(role)

    def set_approval_handler(self, handler: Optional[ApprovalHandler]) -> None:
        self._approval_gate.set_approval_handler(handler)

    def set_event_handlers(
        self,
        on_task_started: Optional[Callable[[Task], Any]] = None,
        on_task_completed: Optional[Callable[[Task, AgentResult], Any]] = None,
        on_task_failed: Optional[Callable[[Task, str], Any]] = None,
        on_approval_required: Optional[Callable[[Task], Any]] = None,
        on_agent_event: Optional[Callable[[AgentEvent], Any]] = None,
    ) -> None:
        """Attach listener callbacks. Calling again replaces the previous set.

        Callbacks may be plain functions or coroutines; coroutine callbacks
        are scheduled on the running loop and never awaited by the core.
        """
        for sub_id in self._handler_subscriptions:
            self._event_bus.remove_handler(sub_id)
        self._handler_subscriptions = []

        bindings = [
            (EventType.TASK_STARTED, on_task_started, lambda fn, d: fn(d["task"])),
            (EventType.TASK_COMPLETED, on_task_completed, lambda fn, d: fn(d["task"], d["result"])),
            (EventType.TASK_FAILED, on_task_failed, lambda fn, d: fn(d["task"], d["error"])),
            (EventType.APPROVAL_REQUIRED, on_approval_required, lambda fn, d: fn(d["task"])),
            (EventType.AGENT_EVENT, on_agent_event, lambda fn, d: fn(d["event"])),
        ]
        for event_type, callback, call in bindings:
            if callback is not None:
                self._handler_subscriptions.append(
                    self._event_bus.add_handler(event_type, _bind(callback, call))
                )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, task_input: CreateTaskInput) -> Task:
        task = self._registry.create(task_input)
        if task_input.parent_task_id:
            if not self._registry.add_child_task(task_input.parent_task_id, task.id):
                logger.warning("Parent task %s not found for %s", task_input.parent_task_id, task.id)
        self._scheduler.schedule(task)
        logger.info("Created %s task %s: %s", task.role.value, task.id, task.title)
        return task

    def cancel_task(self, task_id: str) -> bool:
        """Cancel a waiting task, or signal an in-flight run to stop."""
        task = self._registry.get(task_id)
        if task is None:
            return False
        cancel_event = self._cancel_events.get(task_id)
        if cancel_event is not None:
            cancel_event.set()
            return True
        if task.status in (TaskStatus.PENDING, TaskStatus.APPROVED):
            self._scheduler.unschedule(task_id)
            return self._registry.update_status(task_id, TaskStatus.CANCELLED)
        return False

    def retry_task(self, task_id: str) -> bool:
        """Put a failed task back in the queue while retries remain."""
        task = self._registry.get(task_id)
        if task is None or task.status != TaskStatus.FAILED:
            return False
        if not self._registry.increment_retry(task_id):
            return False
        self._registry.update(task_id, result=None, started_at=None)
        self._registry.update_status(task_id, TaskStatus.PENDING)
        self._scheduler.schedule(task)
        logger.info("Retrying task %s (attempt %d/%d)", task_id, task.retry_count, task.max_retries)
        return True

    @track_performance(operation="orchestrator.run_task")
    async def run_task(self, task_id: str) -> AgentResult:
        """Plan, approve and execute one task. Never raises."""
        try:
            task, agent = self._resolve(task_id)
        except TaskNotFoundError as exc:
            return AgentResult.failed(exc.message)
        except AgentNotFoundError as exc:
            return self._cancel_unassigned(task_id, exc)
        if task.status not in RUNNABLE_STATUSES or task_id in self._cancel_events:
            return AgentResult.failed(f"Task {task_id} is not runnable (status: {task.status.value})")

        cancel_event = asyncio.Event()
        self._cancel_events[task_id] = cancel_event
        self._scheduler.unschedule(task_id)
        try:
            return await self._run(task, agent, cancel_event)
        except Exception as exc:
            message = error_message(exc)
            error_context = create_error_context(exc)
            logger.exception("Task %s failed unexpectedly (error_id=%s)", task_id, error_context.error_id)
            result = AgentResult.failed(message)
            status = TaskStatus.FAILED if task.status == TaskStatus.RUNNING else TaskStatus.CANCELLED
            self._finish(task, result, status, report_failure=True)
            return result
        finally:
            self._cancel_events.pop(task_id, None)
            self._scheduler.mark_complete(task_id, task.role)

    def _cancel_unassigned(self, task_id: str, exc: AgentNotFoundError) -> AgentResult:
        """No agent serves the role: take the task out of the queue for good."""
        result = AgentResult.failed(exc.message)
        task = self._registry.get(task_id)
        if task is None or task.status not in RUNNABLE_STATUSES or task_id in self._cancel_events:
            return result
        logger.warning("Cancelling task %s: %s", task_id, exc.message)
        self._scheduler.unschedule(task_id)
        return self._finish(task, result, TaskStatus.CANCELLED, report_failure=True)

    def _resolve(self, task_id: str) -> Tuple[Task, BaseAgent]:
        task = self._registry.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        agent = self._agents.get(task.role)
        if agent is None:
            raise AgentNotFoundError(f"No agent registered for role: {task.role.value}")
        return task, agent

    async def _run(self, task: Task, agent: BaseAgent, cancel_event: asyncio.Event) -> AgentResult:
        context = self._build_context(task, agent, cancel_event)
        plan = await agent.plan_execution(context)
        context.plan = plan

        if task.status == TaskStatus.PENDING:
            if self._approval_gate.requires_approval(task, plan):
                self._registry.update_status(task.id, TaskStatus.AWAITING_APPROVAL)
                self._event_bus.publish_nowait(EventType.APPROVAL_REQUIRED, {"task": task, "plan": plan})

            decision = await self._approval_gate.request_approval(task, plan)
            if not decision.approved:
                reason = decision.reason or "Approval rejected"
                logger.info("Task %s rejected: %s", task.id, reason)
                return self._finish(
                    task,
                    AgentResult(success=False, summary=f"Task cancelled: {reason}", error=reason),
                    TaskStatus.CANCELLED,
                )
            if decision.modified_plan is not None:
                context.plan = decision.modified_plan
            if task.status == TaskStatus.AWAITING_APPROVAL:
                self._registry.update_status(task.id, TaskStatus.APPROVED)

        if not await self._acquire_slot(task.id, cancel_event):
            return self._finish(task, AgentResult.failed(CANCELLED_ERROR), TaskStatus.CANCELLED)

        self._registry.transition(task.id, TaskStatus.RUNNING)
        self._event_bus.publish_nowait(EventType.TASK_STARTED, {"task": task})

        result = await agent.execute(context)
        validation = await self._validate(agent, result)

        if result.success:
            status = TaskStatus.COMPLETED
        elif cancel_event.is_set():
            status = TaskStatus.CANCELLED
        else:
            status = TaskStatus.FAILED
        return self._finish(task, result, status, validation)

    async def _acquire_slot(self, task_id: str, cancel_event: asyncio.Event) -> bool:
        """Wait for a running slot. ``False`` if the run is cancelled first."""
        poll = self._settings.queue_poll_interval_ms / 1000.0
        while not self._scheduler.mark_running(task_id):
            if cancel_event.is_set():
                return False
            await asyncio.sleep(poll)
        return not cancel_event.is_set()

    def _finish(
        self,
        task: Task,
        result: AgentResult,
        status: TaskStatus,
        validation: Optional[ValidationResult] = None,
        report_failure: bool = False,
    ) -> AgentResult:
        """Fold ``result`` into the registry and publish the outcome.

        ``report_failure`` publishes ``TASK_FAILED`` for errors that end a
        task as ``cancelled`` before it could run.
        """
        started = task.started_at
        metrics = TaskMetrics(
            duration_ms=int((time.time() - started) * 1000) if started else 0,
            iterations_used=result.iterations,
            tool_call_count=len(result.tools_used),
            files_modified=len({change.path for change in result.changes}),
        )
        self._registry.update(
            task.id,
            result=TaskResult(
                success=result.success,
                summary=result.summary,
                output=result.summary,
                agent_result=result,
                metrics=metrics,
                validation=validation,
            ),
        )
        self._registry.update_status(task.id, status)

        if status == TaskStatus.COMPLETED:
            self._event_bus.publish_nowait(EventType.TASK_COMPLETED, {"task": task, "result": result})
        elif status == TaskStatus.FAILED or report_failure:
            self._event_bus.publish_nowait(
                EventType.TASK_FAILED,
                {"task": task, "error": result.error or "Unknown error", "result": result},
            )
        logger.info("Task %s finished: %s", task.id, status.value)
        return result

    async def _validate(self, agent: BaseAgent, result: AgentResult) -> Optional[ValidationResult]:
        try:
            return await agent.validate_result(result)
        except Exception:
            logger.exception("%s validation failed", agent.metadata.name)
            return None

    def _build_context(self, task: Task, agent: BaseAgent, cancel_event: asyncio.Event) -> AgentContext:
        excluded = self._excluded_tools(task, agent)
        max_iterations = int(task.options.get("max_iterations", self._settings.max_iterations))
        return AgentContext(
            task=task,
            tools=self._tool_registry.as_mapping(exclude=excluded),
            working_directory=self._settings.working_directory,
            max_iterations=max_iterations,
            settings=self._settings,
            cancel_event=cancel_event,
        )

    def _excluded_tools(self, task: Task, agent: BaseAgent) -> List[str]:
        """Tools the agent's capabilities (and the task's options) do not allow."""
        capabilities = agent.metadata.capabilities
        may_commit = capabilities.can_commit and bool(task.options.get("enable_commit"))
        excluded = []
        for tool in self._tool_registry.get_all():
            if is_commit_tool(tool.name):
                allowed = may_commit
            elif is_file_modifying(tool.name):
                allowed = capabilities.can_write_files
            elif getattr(tool, "category", None) in COMMAND_CATEGORIES:
                allowed = capabilities.can_execute_commands
            else:
                allowed = True
            if not allowed:
                excluded.append(tool.name)
        return excluded

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    async def run_queue(self) -> None:
        """Dispatch scheduler picks until no work remains or ``stop()`` is called.

        Up to ``max_concurrent`` runs are in flight at once, each as its own
        asyncio task.
        """
        self._stopped = False
        self._queue_active = True
        poll = self._settings.queue_poll_interval_ms / 1000.0
        in_flight: Dict[str, "asyncio.Task[AgentResult]"] = {}
        try:
            while not self._stopped:
                for task_id in [tid for tid, t in in_flight.items() if t.done()]:
                    in_flight.pop(task_id)
                if self._settings.auto_retry_failed:
                    self._requeue_failed()

                scheduled = self._scheduler.get_next()
                if scheduled is not None:
                    task = self._registry.get(scheduled.task_id)
                    if task is None or task.status not in RUNNABLE_STATUSES:
                        self._scheduler.unschedule(scheduled.task_id)
                        continue
                    self._scheduler.mark_running(task.id)
                    in_flight[task.id] = asyncio.create_task(self._dispatch(task.id))
                    continue

                if not in_flight and not self._scheduler.get_scheduled():
                    break
                if in_flight:
                    await asyncio.wait(
                        list(in_flight.values()), timeout=poll, return_when=asyncio.FIRST_COMPLETED
                    )
                else:
                    await asyncio.sleep(poll)
        finally:
            if in_flight:
                await asyncio.gather(*in_flight.values(), return_exceptions=True)
            self._queue_active = False

    async def _dispatch(self, task_id: str) -> AgentResult:
        try:
            return await self.run_task(task_id)
        finally:
            self._scheduler.release(task_id)

    def _requeue_failed(self) -> None:
        for task in self._registry.get_by_status(TaskStatus.FAILED):
            if self._registry.can_retry(task.id):
                self.retry_task(task.id)

    def stop(self) -> None:
        """Stop the queue and signal every in-flight run to cancel."""
        self._stopped = True
        for cancel_event in list(self._cancel_events.values()):
            cancel_event.set()

    @property
    def is_running(self) -> bool:
        return self._queue_active

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _publish_registry_event(self, event: RegistryEvent) -> None:
        data: Dict[str, Any] = {"task": event.task}
        if event.type == "status_changed":
            data["previous_status"] = event.previous_status
            data["status"] = event.task.status
        elif event.changes:
            data["changes"] = event.changes
        self._event_bus.publish_nowait(_REGISTRY_EVENT_TYPES[event.type], data)

    def _publish_agent_event(self, event: AgentEvent) -> None:
        self._event_bus.publish_nowait(EventType.AGENT_EVENT, {"event": event, "task_id": event.task_id})

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def task_registry(self) -> TaskRegistry:
        return self._registry

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def approval_gate(self) -> ApprovalGate:
        return self._approval_gate

    @property
    def tool_registry(self) -> ToolRegistry:
        return self._tool_registry

    @property
    def event_bus(self) -> InMemoryEventBus:
        return self._event_bus

    @property
    def settings(self) -> TaskCoreSettings:
        return self._settings

    @property
    def agents(self) -> Dict[AgentRole, BaseAgent]:
        return dict(self._agents)

    def status(self) -> Dict[str, Any]:
        """Snapshot for dashboards and health checks."""
        tasks = self._registry.get_all()
        counts = {status.value: 0 for status in TaskStatus}
        for task in tasks:
            counts[task.status.value] += 1
        return {
            "queue_running": self._queue_active,
            "tasks": counts,
            "total_tasks": len(tasks),
            "scheduler": self._scheduler.to_dict(),
            "pending_approvals": len(self._approval_gate.get_pending_approvals()),
            "auto_approvals": self._approval_gate.auto_approval_count,
            "agents": sorted(role.value for role in self._agents),
            "tools": self._tool_registry.names(),
        }


def _bind(callback: Callable[..., Any], invoke: Callable[[Callable[..., Any], Dict[str, Any]], Any]):
    def handler(data: Dict[str, Any]) -> Any:
        return invoke(callback, data)

    return handler
