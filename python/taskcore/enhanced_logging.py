"""taskcore logging helpers.

Provides get_logger, track_performance, configure_logging and
log_approval_event. Delegates to Python's standard logging library; every
module keeps its own ``logging.getLogger(__name__)``.
"""

import functools
import inspect
import json
import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional

if TYPE_CHECKING:
    from taskcore.config.settings import TaskCoreSettings

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class JsonFormatter(logging.Formatter):
    """One JSON object per record; ``extra`` fields land under "context"."""

    _RESERVED = set(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = {k: v for k, v in record.__dict__.items() if k not in self._RESERVED}
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(settings: "TaskCoreSettings", *, logger_name: str = "taskcore") -> logging.Logger:
    """Attach a single stream handler to the package logger.

    Calling it twice replaces the previous handler instead of stacking.
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(settings.get_log_level())

    for handler in list(logger.handlers):
        if getattr(handler, "_taskcore_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if settings.log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    handler._taskcore_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger


def track_performance(func: Optional[Callable] = None, *, operation: str = ""):
    """Decorator that logs execution time of a function."""
    def decorator(fn: Callable) -> Callable:
        op = operation or fn.__qualname__

        @functools.wraps(fn)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                return fn(*args, **kwargs)
            finally:
                elapsed = time.perf_counter() - start
                logging.getLogger(fn.__module__).debug(
                    "%s completed in %.3fs", op, elapsed
                )

        @functools.wraps(fn)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                return await fn(*args, **kwargs)
            finally:
                elapsed = time.perf_counter() - start
                logging.getLogger(fn.__module__).debug(
                    "%s completed in %.3fs", op, elapsed
                )

        if inspect.iscoroutinefunction(fn):
            return async_wrapper
        return sync_wrapper

    if func is not None:
        return decorator(func)
    return decorator


def log_approval_event(event_type: str, **kwargs: Any) -> None:
    """Audit-log an approval decision."""
    logger = logging.getLogger("taskcore.approval")
    logger.info("Approval event: %s %s", event_type, kwargs)
