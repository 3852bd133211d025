"""Priority scheduler with a concurrency ceiling and per-role cooldowns.

Each scheduled task carries a score::

    priority_weight(task.priority) * type_weight(task.role)
        + floor(seconds_waited / 60)

The multiplicative term dominates for the first tens of minutes; the aging
term adds one point per minute so nothing starves. Entries are kept sorted
by descending score with insertion order as the tie-break.

``get_next()`` returns the first entry whose role is not cooling down, so a
lower-priority task of another role may run ahead of a higher-priority task
whose role just finished.
"""

from __future__ import annotations

import itertools
import logging
import math
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Set

from taskcore.exceptions_unified import SchedulingError
from taskcore.orchestration.models import AgentRole, Task, TaskPriority

logger = logging.getLogger(__name__)

# Seconds assumed per higher-ranked entry when estimating a start time.
ESTIMATED_RUN_SECONDS = 120.0

Clock = Callable[[], float]


# ── Value objects ────────────────────────────────────────────────────


def _default_priority_weights() -> Dict[TaskPriority, int]:
    return {
        TaskPriority.CRITICAL: 1000,
        TaskPriority.HIGH: 100,
        TaskPriority.NORMAL: 10,
        TaskPriority.LOW: 1,
    }


def _default_type_weights() -> Dict[AgentRole, int]:
    return {
        AgentRole.QA: 100,
        AgentRole.SECURITY: 90,
        AgentRole.TEST: 80,
        AgentRole.FEATURE: 50,
        AgentRole.REFACTOR: 30,
        AgentRole.DOCS: 20,
    }


@dataclass(frozen=True)
class ScheduleOptions:
    """Scheduler tuning knobs."""

    max_concurrent: int = 1
    priority_weights: Dict[TaskPriority, int] = field(default_factory=_default_priority_weights)
    type_weights: Dict[AgentRole, int] = field(default_factory=_default_type_weights)
    cooldown_ms: int = 1000

    @classmethod
    def from_settings(cls, settings: Any) -> "ScheduleOptions":
        return cls(
            max_concurrent=settings.max_concurrent,
            priority_weights=dict(settings.priority_weights),
            type_weights=dict(settings.type_weights),
            cooldown_ms=settings.cooldown_ms,
        )


@dataclass
class ScheduledTask:
    """A task waiting in the scheduler together with its computed score."""

    task: Task
    priority: int
    scheduled_at: float
    estimated_start: float
    sequence: int

    @property
    def task_id(self) -> str:
        return self.task.id


# ── Scheduler ────────────────────────────────────────────────────────


class Scheduler:
    """Chooses which scheduled task may start next.

    All mutations are serialized by one re-entrant lock so concurrent runs
    may call ``mark_running`` / ``mark_complete`` freely.
    """

    def __init__(
        self,
        options: Optional[ScheduleOptions] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._options = options or ScheduleOptions()
        self._clock: Clock = clock or time.time
        self._lock = threading.RLock()
        self._queue: List[ScheduledTask] = []
        self._running: Set[str] = set()
        self._last_run: Dict[AgentRole, float] = {}
        self._sequence = itertools.count()

    @property
    def options(self) -> ScheduleOptions:
        return self._options

    # -- scoring -------------------------------------------------------

    def calculate_priority(self, task: Task) -> int:
        priority_weight = self._options.priority_weights.get(task.priority, 1)
        type_weight = self._options.type_weights.get(task.role, 1)
        waited = max(0.0, self._clock() - task.created_at)
        return priority_weight * type_weight + math.floor(waited / 60.0)

    def estimate_start_time(self, task: Task) -> float:
        """Rough start estimate: now plus cooldown plus queue depth ahead."""
        with self._lock:
            score = self.calculate_priority(task)
            ahead = sum(
                1 for entry in self._queue
                if entry.task_id != task.id and entry.priority > score
            )
            wait = self.cooldown_remaining_ms(task.role) / 1000.0
            return self._clock() + wait + ahead * ESTIMATED_RUN_SECONDS

    # -- queue ---------------------------------------------------------

    def schedule(self, task: Task) -> ScheduledTask:
        """Insert ``task`` by score. Rescheduling a known id replaces its entry."""
        with self._lock:
            self._remove(task.id)
            entry = ScheduledTask(
                task=task,
                priority=self.calculate_priority(task),
                scheduled_at=self._clock(),
                estimated_start=self.estimate_start_time(task),
                sequence=next(self._sequence),
            )
            self._queue.append(entry)
            self._sort()
            logger.debug("Scheduled %s (%s/%s) score=%d", task.id, task.role.value, task.priority.value, entry.priority)
            return entry

    def unschedule(self, task_id: str) -> bool:
        with self._lock:
            return self._remove(task_id)

    def get_next(self) -> Optional[ScheduledTask]:
        with self._lock:
            if len(self._running) >= self._options.max_concurrent:
                return None
            for entry in self._queue:
                if not self.is_in_cooldown(entry.task.role):
                    return entry
            return None

    def get_scheduled(self) -> List[ScheduledTask]:
        with self._lock:
            return list(self._queue)

    def clear(self) -> None:
        with self._lock:
            self._queue.clear()
            self._running.clear()
            self._last_run.clear()

    def reprioritize(self) -> None:
        """Recompute every score (aging, weight changes) and re-sort."""
        with self._lock:
            for entry in self._queue:
                entry.priority = self.calculate_priority(entry.task)
            self._sort()
            for entry in self._queue:
                entry.estimated_start = self.estimate_start_time(entry.task)

    def update_options(self, **changes: Any) -> ScheduleOptions:
        if changes.get("max_concurrent", 1) < 1:
            raise SchedulingError("max_concurrent must be at least 1")
        with self._lock:
            self._options = replace(self._options, **changes)
            self.reprioritize()
            return self._options

    # -- running set ---------------------------------------------------

    def mark_running(self, task_id: str) -> bool:
        """Move a task from the queue into the running set.

        Returns ``False`` and leaves the task queued when ``max_concurrent``
        slots are already taken. Idempotent for a task that already runs.
        """
        with self._lock:
            if task_id in self._running:
                return True
            if len(self._running) >= self._options.max_concurrent:
                return False
            self._remove(task_id)
            self._running.add(task_id)
            return True

    def mark_complete(self, task_id: str, role: AgentRole) -> None:
        """Release the running slot and start ``role``'s cooldown window."""
        with self._lock:
            self._running.discard(task_id)
            self._last_run[role] = self._clock()

    def release(self, task_id: str) -> None:
        """Free a running slot without starting a cooldown."""
        with self._lock:
            self._running.discard(task_id)

    def can_run_more(self) -> bool:
        with self._lock:
            return len(self._running) < self._options.max_concurrent

    def get_running_count(self) -> int:
        with self._lock:
            return len(self._running)

    def get_running_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._running)

    # -- cooldown ------------------------------------------------------

    def cooldown_remaining_ms(self, role: AgentRole) -> float:
        with self._lock:
            last = self._last_run.get(role)
            if last is None:
                return 0.0
            elapsed_ms = (self._clock() - last) * 1000.0
            return max(0.0, self._options.cooldown_ms - elapsed_ms)

    def is_in_cooldown(self, role: AgentRole) -> bool:
        return self.cooldown_remaining_ms(role) > 0

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "max_concurrent": self._options.max_concurrent,
                "cooldown_ms": self._options.cooldown_ms,
                "scheduled": [
                    {"task_id": e.task_id, "priority": e.priority, "estimated_start": e.estimated_start}
                    for e in self._queue
                ],
                "running": sorted(self._running),
                "cooling_down": sorted(
                    role.value for role in self._last_run if self.is_in_cooldown(role)
                ),
            }

    # -- internals -----------------------------------------------------

    def _remove(self, task_id: str) -> bool:
        before = len(self._queue)
        self._queue = [e for e in self._queue if e.task_id != task_id]
        return len(self._queue) != before

    def _sort(self) -> None:
        self._queue.sort(key=lambda e: (-e.priority, e.sequence))
