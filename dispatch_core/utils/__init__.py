"""
Utilities module for the dispatch core.

Provides:
- Structured logging configuration
- Async helpers (bounded gather, thread-safe future bridging)
"""

from dispatch_core.utils.async_helpers import (
    gather_with_concurrency,
    call_soon_threadsafe_future,
)

from dispatch_core.utils.logging_config import (
    setup_logging,
    LoggingConfig,
    LogContext,
    StructuredFormatter,
    RichConsoleFormatter,
    set_job_id,
    get_job_id,
    set_stage,
    set_context,
    clear_context,
    log_duration,
)

__all__ = [
    # Async helpers
    "gather_with_concurrency",
    "call_soon_threadsafe_future",
    # Logging
    "setup_logging",
    "LoggingConfig",
    "LogContext",
    "StructuredFormatter",
    "RichConsoleFormatter",
    "set_job_id",
    "get_job_id",
    "set_stage",
    "set_context",
    "clear_context",
    "log_duration",
]
