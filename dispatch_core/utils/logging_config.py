"""
Logging configuration for the dispatch core.

Features:
- JSON structured logs for production and file output
- Colored console logs for development
- Job/stage correlation through context variables
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

# Context variables for log correlation
_job_id: ContextVar[Optional[str]] = ContextVar("job_id", default=None)
_stage: ContextVar[Optional[str]] = ContextVar("stage", default=None)
_extra_context: ContextVar[Dict[str, Any]] = ContextVar("extra_context", default={})

T = TypeVar("T")

_STANDARD_RECORD_FIELDS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
})


def set_job_id(job_id: Optional[str]) -> None:
    """Set the job currently being dispatched."""
    _job_id.set(job_id)


def get_job_id() -> Optional[str]:
    return _job_id.get()


def set_stage(stage: Optional[str]) -> None:
    """Set the current dispatch stage (selecting, invoking, ...)."""
    _stage.set(stage)


def set_context(**kwargs: Any) -> None:
    current = _extra_context.get().copy()
    current.update(kwargs)
    _extra_context.set(current)


def clear_context() -> None:
    _job_id.set(None)
    _stage.set(None)
    _extra_context.set({})


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter, one object per line.

    Output format:
    {
        "timestamp": "2026-01-04T10:15:30.123456Z",
        "level": "INFO",
        "logger": "dispatch_core.serving.dispatcher",
        "message": "Job completed",
        "job_id": "3f2a9c1d0b7e",
        "stage": "combining",
        "context": {...}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        job_id = _job_id.get()
        stage = _stage.get()
        extra = _extra_context.get()

        if job_id:
            log_data["job_id"] = job_id
        if stage:
            log_data["stage"] = stage
        if extra:
            log_data["context"] = extra

        record_extras = {
            k: v for k, v in record.__dict__.items()
            if k not in _STANDARD_RECORD_FIELDS and not k.startswith("_")
        }
        if record_extras:
            log_data["extra"] = record_extras

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class RichConsoleFormatter(logging.Formatter):
    """Colored single-line console formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        context_parts = []
        job_id = _job_id.get()
        stage = _stage.get()
        if job_id:
            context_parts.append(f"job={job_id}")
        if stage:
            context_parts.append(f"stage={stage}")
        for key, value in _extra_context.get().items():
            context_parts.append(f"{key}={value}")

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""

        output = (
            f"{self.DIM}{timestamp}{self.RESET} "
            f"{color}{self.BOLD}{record.levelname:8}{self.RESET} "
            f"{self.DIM}{record.name}{self.RESET}"
            f"{context_str}: "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            output += "\n" + self.formatException(record.exc_info)

        return output


@dataclass
class LoggingConfig:
    """Logging configuration, defaulting from DISPATCH_LOG_* variables."""

    level: str = field(
        default_factory=lambda: os.getenv("DISPATCH_LOG_LEVEL", "INFO")
    )
    format: str = field(
        default_factory=lambda: os.getenv("DISPATCH_LOG_FORMAT", "rich")
    )  # "rich" or "json"

    log_file: Optional[Path] = field(
        default_factory=lambda: Path(os.environ["DISPATCH_LOG_FILE"])
        if os.getenv("DISPATCH_LOG_FILE") else None
    )
    max_file_size_mb: int = 50
    backup_count: int = 5

    console_enabled: bool = True

    quiet_loggers: List[str] = field(
        default_factory=lambda: [
            "asyncio",
            "httpx",
            "httpcore",
            "uvicorn.access",
        ]
    )


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Configure the root logger.

    Args:
        config: Logging configuration. Uses env-derived defaults if None.
    """
    if config is None:
        config = LoggingConfig()

    level = getattr(logging, config.level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if config.console_enabled:
        console_handler = logging.StreamHandler(sys.stderr)
        if config.format == "json":
            console_handler.setFormatter(StructuredFormatter())
        else:
            console_handler.setFormatter(RichConsoleFormatter())
        root_logger.addHandler(console_handler)

    if config.log_file:
        log_file = Path(config.log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    for logger_name in config.quiet_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger("dispatch_core").setLevel(level)


class LogContext:
    """
    Context manager for temporary log context.

    Example:
        with LogContext(job_id=job.id, capability="image_generation"):
            logger.info("Dispatching")  # tagged with job and capability
        logger.info("Idle")  # no longer tagged
    """

    def __init__(self, job_id: Optional[str] = None, **kwargs: Any):
        self._job_id = job_id
        self._context = kwargs
        self._previous: Dict[str, Any] = {}
        self._previous_job_id: Optional[str] = None
        self._previous_stage: Optional[str] = None

    def __enter__(self) -> "LogContext":
        self._previous = _extra_context.get().copy()
        self._previous_job_id = _job_id.get()
        self._previous_stage = _stage.get()

        new_context = self._previous.copy()
        new_context.update(self._context)
        _extra_context.set(new_context)
        if self._job_id is not None:
            _job_id.set(self._job_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        _extra_context.set(self._previous)
        _job_id.set(self._previous_job_id)
        _stage.set(self._previous_stage)


def log_duration(
    logger: logging.Logger,
    level: int = logging.INFO,
    message: str = "Operation completed",
) -> Callable:
    """
    Decorator to log how long a function took.

    Example:
        @log_duration(logger, message="Batch moderation")
        async def moderate_batch(...):
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        def _log(start: float, error: Optional[BaseException] = None) -> None:
            duration = (time.perf_counter() - start) * 1000
            extra = {"duration_ms": duration, "function": func.__name__}
            if error is None:
                logger.log(level, f"{message} ({duration:.2f}ms)", extra=extra)
            else:
                extra["error"] = str(error)
                logger.error(f"{message} failed ({duration:.2f}ms): {error}", extra=extra)

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _log(start, e)
                raise
            _log(start)
            return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log(start, e)
                raise
            _log(start)
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


__all__ = [
    "LoggingConfig",
    "setup_logging",
    "StructuredFormatter",
    "RichConsoleFormatter",
    "LogContext",
    "log_duration",
    "set_job_id",
    "get_job_id",
    "set_stage",
    "set_context",
    "clear_context",
]
