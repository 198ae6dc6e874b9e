"""Tests for logging and async helpers."""

import asyncio
import json
import logging

import pytest

from dispatch_core.utils import (
    LogContext,
    StructuredFormatter,
    gather_with_concurrency,
    get_job_id,
    log_duration,
    set_stage,
)


def make_record(message: str) -> logging.LogRecord:
    return logging.LogRecord(
        name="dispatch_core.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )


class TestLogContext:

    def test_structured_output_carries_context(self):
        formatter = StructuredFormatter()

        with LogContext(job_id="job-1", capability="image_generation"):
            set_stage("invoking")
            data = json.loads(formatter.format(make_record("dispatching")))

        assert data["message"] == "dispatching"
        assert data["job_id"] == "job-1"
        assert data["stage"] == "invoking"
        assert data["context"] == {"capability": "image_generation"}

    def test_context_restored_on_exit(self):
        with LogContext(job_id="outer"):
            with LogContext(job_id="inner"):
                assert get_job_id() == "inner"
            assert get_job_id() == "outer"
        assert get_job_id() is None

        data = json.loads(StructuredFormatter().format(make_record("idle")))
        assert "job_id" not in data
        assert "context" not in data


class TestLogDuration:

    @pytest.mark.asyncio
    async def test_async_function(self, caplog):
        logger = logging.getLogger("dispatch_core.test")

        @log_duration(logger, message="Batch")
        async def work():
            return 7

        with caplog.at_level(logging.INFO, logger="dispatch_core.test"):
            assert await work() == 7

        assert any(r.getMessage().startswith("Batch (") for r in caplog.records)

    def test_sync_failure_is_logged_and_raised(self, caplog):
        logger = logging.getLogger("dispatch_core.test")

        @log_duration(logger, message="Step")
        def explode():
            raise RuntimeError("boom")

        with caplog.at_level(logging.INFO, logger="dispatch_core.test"):
            with pytest.raises(RuntimeError):
                explode()

        assert any("Step failed" in r.getMessage() for r in caplog.records)


class TestGatherWithConcurrency:

    @pytest.mark.asyncio
    async def test_limits_concurrency_and_keeps_order(self):
        running = 0
        peak = 0

        async def task(value):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return value

        results = await gather_with_concurrency([task(i) for i in range(6)], max_concurrent=2)

        assert results == list(range(6))
        assert peak == 2

    @pytest.mark.asyncio
    async def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            await gather_with_concurrency([], max_concurrent=0)
