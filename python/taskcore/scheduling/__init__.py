"""Task scheduling for taskcore.

Weighted priority ordering with aging, a global concurrency ceiling and
per-role cooldowns.
"""

from taskcore.scheduling.scheduler import (
    ESTIMATED_RUN_SECONDS,
    Scheduler,
    ScheduledTask,
    ScheduleOptions,
)

__all__ = [
    "ESTIMATED_RUN_SECONDS",
    "ScheduleOptions",
    "ScheduledTask",
    "Scheduler",
]
