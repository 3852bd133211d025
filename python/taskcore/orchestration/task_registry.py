"""In-memory task store.

Owns the canonical ``Task`` records and their status transitions. Every
mutation goes through one re-entrant lock; listeners registered with
``on_event`` are notified synchronously with the mutation, so they observe
status changes in order and without gaps.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from taskcore.exceptions_unified import InvalidTransitionError, TaskNotFoundError
from taskcore.orchestration.models import (
    ALLOWED_TRANSITIONS,
    DEFAULT_AUTONOMY_LEVELS,
    DEFAULT_MAX_RETRIES,
    PRIORITY_RANK,
    AgentRole,
    AutonomyLevel,
    CreateTaskInput,
    Task,
    TaskFilter,
    TaskQueueState,
    TaskStatus,
)

logger = logging.getLogger(__name__)

# Fields ``update`` refuses; status has its own transition-checked path.
PROTECTED_FIELDS = frozenset({"id", "status", "autonomy_level"})


@dataclass
class RegistryEvent:
    """Change notification emitted by the registry."""

    type: str  # added | updated | removed | status_changed
    task: Task
    previous_status: Optional[TaskStatus] = None
    changes: Dict[str, Any] = field(default_factory=dict)


RegistryEventHandler = Callable[[RegistryEvent], None]


class TaskRegistry:
    """Thread-safe owner of task records."""

    def __init__(self, autonomy_levels: Optional[Mapping[AgentRole, AutonomyLevel]] = None) -> None:
        self._autonomy_levels: Dict[AgentRole, AutonomyLevel] = dict(
            autonomy_levels if autonomy_levels is not None else DEFAULT_AUTONOMY_LEVELS
        )
        self._tasks: Dict[str, Task] = {}
        self._handlers: List[RegistryEventHandler] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Creation / mutation
    # ------------------------------------------------------------------

    def create(self, task_input: CreateTaskInput) -> Task:
        task = Task(
            role=task_input.role,
            title=task_input.title,
            description=task_input.description,
            autonomy_level=self._autonomy_levels.get(task_input.role, AutonomyLevel.SUPERVISED),
            priority=task_input.priority,
            target=task_input.target,
            options=dict(task_input.options),
            parent_task_id=task_input.parent_task_id,
            max_retries=DEFAULT_MAX_RETRIES,
        )
        with self._lock:
            self._tasks[task.id] = task
            self._emit(RegistryEvent("added", task))
        logger.debug("Created task %s (%s, %s)", task.id, task.role.value, task.priority.value)
        return task

    def add(self, task: Task) -> Task:
        """Insert an existing record, e.g. one restored from a snapshot."""
        with self._lock:
            self._tasks[task.id] = task
            self._emit(RegistryEvent("added", task))
        return task

    def update_status(self, task_id: str, status: TaskStatus) -> bool:
        """Apply a status transition. Returns ``False`` if unknown or disallowed."""
        try:
            self.transition(task_id, status)
        except TaskNotFoundError:
            logger.warning("update_status: unknown task %s", task_id)
            return False
        except InvalidTransitionError as exc:
            logger.warning("%s", exc.message)
            return False
        return True

    def transition(self, task_id: str, status: TaskStatus) -> Task:
        """Strict form of ``update_status``: raises instead of returning ``False``."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            previous = task.status
            if status == previous:
                return task
            if status not in ALLOWED_TRANSITIONS[previous]:
                raise InvalidTransitionError(
                    f"Rejected transition {previous.value} -> {status.value} for task {task_id}",
                    details={"task_id": task_id, "from": previous.value, "to": status.value},
                )

            task.status = status
            now = time.time()
            if status == TaskStatus.RUNNING and task.started_at is None:
                task.started_at = now
            if status.is_terminal:
                task.completed_at = now
            elif status == TaskStatus.PENDING:
                task.completed_at = None

            self._emit(RegistryEvent("status_changed", task, previous_status=previous))
            return task

    def update(self, task_id: str, **changes: Any) -> Optional[Task]:
        """Set plain fields on a task. Status and identity are not editable here."""
        refused = PROTECTED_FIELDS.intersection(changes)
        if refused:
            raise ValueError(f"Cannot update protected field(s): {', '.join(sorted(refused))}")
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            for name, value in changes.items():
                if not hasattr(task, name):
                    raise ValueError(f"Task has no field '{name}'")
                setattr(task, name, value)
            self._emit(RegistryEvent("updated", task, changes=dict(changes)))
            return task

    def remove(self, task_id: str) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return False
            if task.status in (TaskStatus.RUNNING, TaskStatus.AWAITING_APPROVAL):
                logger.warning("Refusing to remove task %s while %s", task_id, task.status.value)
                return False
            del self._tasks[task_id]
            self._emit(RegistryEvent("removed", task))
            return True

    def clear(self) -> None:
        with self._lock:
            self._tasks.clear()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self._tasks.get(task_id)

    def get_all(self) -> List[Task]:
        with self._lock:
            return sorted(self._tasks.values(), key=lambda t: t.created_at)

    def get_by_status(self, status: TaskStatus) -> List[Task]:
        return [t for t in self.get_all() if t.status == status]

    def get_by_role(self, role: AgentRole) -> List[Task]:
        return [t for t in self.get_all() if t.role == role]

    def filter(self, task_filter: TaskFilter) -> List[Task]:
        return [t for t in self.get_all() if task_filter.matches(t)]

    def get_running(self) -> List[Task]:
        return self.get_by_status(TaskStatus.RUNNING)

    def get_awaiting_approval(self) -> List[Task]:
        return self.get_by_status(TaskStatus.AWAITING_APPROVAL)

    def get_next(self) -> Optional[Task]:
        """Pending task with the smallest ``(priority_rank, created_at)``."""
        pending = self.get_by_status(TaskStatus.PENDING)
        if not pending:
            return None
        return min(pending, key=lambda t: (PRIORITY_RANK[t.priority], t.created_at))

    def get_state(self) -> TaskQueueState:
        tasks = self.get_all()
        running = [t for t in tasks if t.status == TaskStatus.RUNNING]
        return TaskQueueState(
            pending=[t for t in tasks if t.status == TaskStatus.PENDING],
            running=running[0] if running else None,
            completed=[t for t in tasks if t.status == TaskStatus.COMPLETED],
            failed=[t for t in tasks if t.status == TaskStatus.FAILED],
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._tasks

    # ------------------------------------------------------------------
    # Retry & hierarchy
    # ------------------------------------------------------------------

    def can_retry(self, task_id: str) -> bool:
        task = self.get(task_id)
        return task is not None and task.retry_count < task.max_retries

    def increment_retry(self, task_id: str) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.retry_count >= task.max_retries:
                return False
            task.retry_count += 1
            self._emit(RegistryEvent("updated", task, changes={"retry_count": task.retry_count}))
            return True

    def add_child_task(self, parent_id: str, child_id: str) -> bool:
        """Link ``child_id`` under ``parent_id``. Statuses are never cascaded."""
        with self._lock:
            parent = self._tasks.get(parent_id)
            if parent is None:
                return False
            if child_id not in parent.child_task_ids:
                parent.child_task_ids.append(child_id)
                self._emit(RegistryEvent("updated", parent, changes={"child_task_ids": list(parent.child_task_ids)}))
            return True

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_event(self, handler: RegistryEventHandler) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def _emit(self, event: RegistryEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Registry event handler failed for %s", event.type)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {"tasks": [t.to_dict() for t in self.get_all()]}

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        autonomy_levels: Optional[Mapping[AgentRole, AutonomyLevel]] = None,
    ) -> "TaskRegistry":
        registry = cls(autonomy_levels)
        for raw in data.get("tasks", []):
            task = Task.from_dict(raw)
            registry._tasks[task.id] = task
        return registry
