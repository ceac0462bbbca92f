"""Logging helpers for the workforce engine.

Provides configure_logging, JsonFormatter and track_performance on top of
Python's standard logging library. All package loggers hang off the
``workforce`` logger, so one handler configured here covers every module.
"""

import asyncio
import functools
import json
import logging
import time
from typing import Any, Callable, Optional

ROOT_LOGGER = "workforce"

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

TIMING_FIELDS = ("operation", "duration_ms")


class JsonFormatter(logging.Formatter):
    """One JSON object per record, plus any timing fields set by track_performance."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in TIMING_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Logger:
    """Install a single stream handler on the package logger.

    Calling it again replaces the handler rather than stacking another one.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, "_workforce_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler._workforce_handler = True  # type: ignore[attr-defined]
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level.upper())
    return logger


def _log_timing(logger: logging.Logger, operation: str, elapsed: float, slow_after: Optional[float]) -> None:
    duration_ms = round(elapsed * 1000, 1)
    extra = {"operation": operation, "duration_ms": duration_ms}
    if slow_after is not None and elapsed > slow_after:
        logger.warning(
            "Slow operation: operation=%s duration_ms=%.1f limit_ms=%.1f",
            operation, duration_ms, slow_after * 1000, extra=extra,
        )
    else:
        logger.debug("Timed operation: operation=%s duration_ms=%.1f", operation, duration_ms, extra=extra)


def track_performance(
    func: Optional[Callable] = None,
    *,
    operation: str = "",
    slow_after: Optional[float] = None,
):
    """Log how long each call takes under an ``operation`` label.

    Durations go out at debug level on the wrapped function's module logger.
    A call that takes longer than ``slow_after`` seconds is logged as a warning.
    """
    def decorator(fn: Callable) -> Callable:
        op = operation or fn.__qualname__
        logger = logging.getLogger(fn.__module__)

        @functools.wraps(fn)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                return fn(*args, **kwargs)
            finally:
                _log_timing(logger, op, time.perf_counter() - start, slow_after)

        @functools.wraps(fn)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                return await fn(*args, **kwargs)
            finally:
                _log_timing(logger, op, time.perf_counter() - start, slow_after)

        if asyncio.iscoroutinefunction(fn):
            return async_wrapper
        return sync_wrapper

    if func is not None:
        return decorator(func)
    return decorator
