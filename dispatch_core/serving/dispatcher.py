"""
Request queue and dispatcher.

Callers submit typed requests and receive a future immediately. Background
workers drain a FIFO queue: each job goes through cache lookup, backend
selection, invocation (with one fallback), combination, bookkeeping and
finally resolution of the caller's future.

Job states:
    queued -> selecting -> invoking -> combining -> completed
    queued -> ... -> failed
    queued -> cancelled
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import time
from collections import OrderedDict, deque
from dataclasses import replace
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Set

from dispatch_core.config import DispatcherConfig
from dispatch_core.serving.backends import BackendInvoker, RawResult
from dispatch_core.serving.cache import ResultCache
from dispatch_core.serving.combiner import ResultCombiner
from dispatch_core.serving.errors import (
    BackendInvocationError,
    InvocationTimeoutError,
    NoBackendAvailableError,
    ValidationError,
)
from dispatch_core.serving.models import (
    BackendConfig,
    BackendPerformance,
    Capability,
    JobState,
    Payload,
    PendingJob,
    Request,
    Result,
)
from dispatch_core.serving.performance import PerformanceTracker
from dispatch_core.serving.prompts import enhance_payload
from dispatch_core.serving.registry import BackendRegistry
from dispatch_core.serving.selector import ModelSelector
from dispatch_core.serving.sessions import SessionManager
from dispatch_core.serving.store import JsonlResultStore, ResultStore
from dispatch_core.utils.async_helpers import call_soon_threadsafe_future
from dispatch_core.utils.logging_config import LogContext, set_stage

logger = logging.getLogger(__name__)

_FINISHED_STATES_LIMIT = 1000


class Dispatcher:
    """
    FIFO dispatcher with a fixed pool of workers (default one).

    With one worker, jobs complete in submission order. With several,
    jobs of the same session still run one at a time, in order.

    Registry, cache and tracker are only mutated from the event loop that
    runs the workers, so no locking is needed.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        invoker: BackendInvoker,
        config: Optional[DispatcherConfig] = None,
        tracker: Optional[PerformanceTracker] = None,
        sessions: Optional[SessionManager] = None,
        cache: Optional[ResultCache] = None,
        selector: Optional[ModelSelector] = None,
        combiner: Optional[ResultCombiner] = None,
        store: Optional[ResultStore] = None,
    ):
        self.config = config or DispatcherConfig()
        self.config.validate()

        # Components
        self.registry = registry
        self.invoker = invoker
        self.tracker = tracker or PerformanceTracker()
        self.sessions = sessions or SessionManager()
        self.cache = cache or ResultCache(
            max_size=self.config.cache_max_size,
            ttl_seconds=self.config.cache_ttl_seconds,
        )
        self.selector = selector or ModelSelector(
            registry,
            self.tracker,
            sessions=self.sessions,
            min_success_rate=self.config.min_success_rate,
        )
        self.combiner = combiner or ResultCombiner()
        if store is None and self.config.results_path:
            store = JsonlResultStore(self.config.results_path)
        self.store = store

        # Queue state
        self._queue: Deque[PendingJob] = deque()
        self._jobs: Dict[str, PendingJob] = {}
        self._in_flight: Dict[str, PendingJob] = {}
        self._busy_sessions: Set[str] = set()
        self._finished: "OrderedDict[str, JobState]" = OrderedDict()
        self._wakeup = asyncio.Event()

        # Workers
        self._workers: List[asyncio.Task] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False

        # Statistics
        self._stats = {
            "submitted": 0,
            "completed": 0,
            "failed": 0,
            "cancelled": 0,
            "cache_hits": 0,
            "fallbacks": 0,
        }
        self._start_time = time.time()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the worker pool on the running event loop."""
        if self._running:
            return

        self._loop = asyncio.get_running_loop()
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"dispatch-worker-{index}")
            for index in range(self.config.worker_count)
        ]
        if self._queue:
            self._wakeup.set()

        logger.info(f"Dispatcher started with {self.config.worker_count} worker(s)")

    async def stop(self) -> None:
        """
        Stop the workers.

        In-flight jobs are interrupted and, like jobs still queued, resolve
        with a cancelled Result.
        """
        if not self._running:
            return

        self._running = False
        self._wakeup.set()

        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers.clear()

        while self._queue:
            job = self._queue.popleft()
            self._finish_cancelled(job)

        logger.info("Dispatcher stopped")

    # Aliases for callers that use init/shutdown naming
    init = start
    shutdown = stop

    async def __aenter__(self) -> "Dispatcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    # =========================================================================
    # Submission API
    # =========================================================================

    def submit(self, request: Request) -> "asyncio.Future[Result]":
        """
        Enqueue a request and return a future for its Result.

        Never blocks. Usage errors are raised here rather than through the
        future.

        Raises:
            ValidationError: malformed request or duplicate job id
            NotFoundError: unknown session
            SessionEndedError: session already ended
            NoBackendAvailableError: no enabled backend for the capability
        """
        request.validate()

        if request.id in self._jobs:
            raise ValidationError(f"Job already queued: {request.id}")
        if request.session_id:
            self.sessions.require_active(request.session_id)
        if not self.registry.list(request.capability):
            raise NoBackendAvailableError(request.capability.value)

        loop = self._loop or asyncio.get_running_loop()
        job = PendingJob(request=request, future=loop.create_future())

        self._queue.append(job)
        self._jobs[job.id] = job
        self._stats["submitted"] += 1
        self._wakeup.set()

        logger.debug(
            f"Job {job.id} queued ({request.capability.value}, "
            f"priority={request.priority.value}, queue_size={len(self._queue)})"
        )
        return job.future

    def submit_threadsafe(self, request: Request) -> "concurrent.futures.Future[Result]":
        """Submit from a thread other than the dispatcher's event loop."""
        if self._loop is None:
            raise RuntimeError("Dispatcher is not started")
        return call_soon_threadsafe_future(self._loop, self.submit, request)

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a job.

        A queued job is removed and resolves as cancelled right away. A job
        already past the queue resolves as cancelled once its backend call
        returns. Returns False for unknown or finished jobs.
        """
        job = self._jobs.get(job_id)
        if job is None:
            return False

        if job.state == JobState.QUEUED and job in self._queue:
            self._queue.remove(job)
            self._finish_cancelled(job)
            logger.info(f"Job {job_id} cancelled while queued")
            return True

        job.cancel_requested = True
        logger.info(f"Cancellation requested for in-flight job {job_id}")
        return True

    def get_job_state(self, job_id: str) -> Optional[JobState]:
        job = self._jobs.get(job_id)
        if job is not None:
            return job.state
        return self._finished.get(job_id)

    def get_queue_status(self) -> Dict[str, Any]:
        return {
            "queue_size": len(self._queue),
            "is_processing": bool(self._in_flight),
            "cache_size": len(self.cache),
            "active_workers": sum(1 for t in self._workers if not t.done()),
            "in_flight": len(self._in_flight),
        }

    def get_backend_performance(self) -> Dict[str, BackendPerformance]:
        """Performance for every registered backend, defaults for unused ones."""
        return self.tracker.snapshot_all(self.registry.names())

    def clear_cache(self) -> int:
        count = self.cache.clear()
        logger.info(f"Result cache cleared ({count} entries)")
        return count

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "uptime_seconds": time.time() - self._start_time,
            "queue": self.get_queue_status(),
            "cache": self.cache.get_stats(),
            "registry": self.registry.get_stats(),
            "active_sessions": len(self.sessions.active_sessions()),
        }

    # =========================================================================
    # Workers
    # =========================================================================

    async def _worker(self, index: int) -> None:
        logger.debug(f"Worker {index} running")

        while self._running:
            job = self._next_job()
            if job is None:
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(
                        self._wakeup.wait(),
                        timeout=self.config.poll_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    pass
                continue

            await self._run_job(job)

    def _next_job(self) -> Optional[PendingJob]:
        """Pop the first queued job whose session is not already being served."""
        for position, job in enumerate(self._queue):
            if job.session_id is None or job.session_id not in self._busy_sessions:
                del self._queue[position]
                return job
        return None

    async def _run_job(self, job: PendingJob) -> None:
        self._in_flight[job.id] = job
        if job.session_id:
            self._busy_sessions.add(job.session_id)

        with LogContext(job_id=job.id, capability=job.request.capability.value):
            try:
                result = await self._process(job)
            except asyncio.CancelledError:
                self._release(job)
                self._finish_cancelled(job)
                raise
            except Exception as e:
                logger.exception(f"Unexpected error while processing job {job.id}")
                result = Result.failure(job.id, f"Internal error: {e}")
                self._set_state(job, JobState.FAILED)
            finally:
                set_stage(None)

            self._release(job)

            if job.state == JobState.CANCELLED:
                self._finish_cancelled(job)
            else:
                self._finish(job, result)
                await self._persist(job, result)

        # Let workers waiting on a busy session re-scan the queue
        if self._queue:
            self._wakeup.set()

    async def _process(self, job: PendingJob) -> Result:
        request = job.request
        capability = request.capability
        started = time.perf_counter()

        cache_key = request.cache_key()
        cached = self.cache.get(cache_key)
        if cached is not None:
            self._stats["cache_hits"] += 1
            self._set_state(job, JobState.COMPLETED)
            logger.debug(f"Cache hit for job {job.id} ({cached.model_used})")
            return replace(cached, job_id=job.id, cached=True)

        payload = (
            enhance_payload(request.payload)
            if self.config.enhance_prompts
            else request.payload
        )
        timeout = self.config.timeout_for(capability.value)

        primary: Optional[Result] = None
        excluded: List[str] = []
        last_error: Optional[str] = None

        for attempt in range(2):
            self._set_state(job, JobState.SELECTING)
            try:
                backend = self.selector.select(request, exclude=excluded)
            except NoBackendAvailableError as e:
                last_error = last_error or str(e)
                break

            job.backend_name = backend.name
            self._set_state(job, JobState.INVOKING)
            try:
                primary = await self._invoke(job, backend, payload, timeout)
                break
            except BackendInvocationError as e:
                last_error = str(e)
                excluded.append(backend.name)
                if attempt == 0:
                    self._stats["fallbacks"] += 1
                    logger.warning(f"Backend failed, trying fallback: {e}")
                else:
                    logger.error(f"Fallback backend failed: {e}")

        secondary: Optional[Result] = None
        if (
            primary is not None
            and capability == Capability.CONTENT_MODERATION
            and self.config.combine_moderation
        ):
            secondary = await self._secondary_moderation(
                job, primary, payload, timeout, excluded
            )

        if job.cancel_requested:
            self._set_state(job, JobState.CANCELLED)
            return Result.cancelled_for(job.id)

        elapsed_ms = int((time.perf_counter() - started) * 1000)

        if primary is None:
            self._set_state(job, JobState.FAILED)
            return Result.failure(
                job.id,
                last_error or "No backend available",
                model_used=job.backend_name or "",
                processing_time_ms=elapsed_ms,
                metadata={"attempted": excluded},
            )

        self._set_state(job, JobState.COMBINING)
        result = self.combiner.combine(primary, secondary, capability=capability)
        result = replace(result, job_id=job.id)

        self.cache.put(cache_key, result)
        self._set_state(job, JobState.COMPLETED)
        return result

    async def _invoke(
        self,
        job: PendingJob,
        backend: BackendConfig,
        payload: Payload,
        timeout: float,
    ) -> Result:
        """Invoke one backend, recording the attempt. Failures raise BackendInvocationError."""
        started = time.perf_counter()

        async def call_backend() -> Any:
            # Timeouts raised by the invoker itself are ordinary backend failures;
            # only the deadline below counts as an invocation timeout
            try:
                return await self.invoker.invoke(backend, payload, backend.parameters)
            except asyncio.TimeoutError as e:
                raise BackendInvocationError(
                    backend.name, str(e) or type(e).__name__, cause=e
                ) from e

        try:
            raw = await asyncio.wait_for(call_backend(), timeout=timeout)
        except asyncio.TimeoutError:
            self.tracker.record(backend.name, timeout * 1000, succeeded=False)
            raise InvocationTimeoutError(backend.name, timeout) from None
        except BackendInvocationError:
            self.tracker.record(backend.name, _elapsed_ms(started), succeeded=False)
            raise
        except Exception as e:
            self.tracker.record(backend.name, _elapsed_ms(started), succeeded=False)
            raise BackendInvocationError(backend.name, str(e) or type(e).__name__, cause=e) from e

        latency_ms = _elapsed_ms(started)
        self.tracker.record(backend.name, latency_ms, succeeded=True)

        raw = RawResult.coerce(raw)
        return Result(
            success=True,
            payload=raw.payload,
            confidence=raw.confidence,
            model_used=backend.name,
            processing_time_ms=int(round(latency_ms)),
            job_id=job.id,
            metadata={**raw.metadata, "backend": backend.name, "model": backend.model},
        )

    async def _secondary_moderation(
        self,
        job: PendingJob,
        primary: Result,
        payload: Payload,
        timeout: float,
        excluded: List[str],
    ) -> Optional[Result]:
        """
        Cross-check with a second moderation backend. Its failure is not fatal.

        Backends that already failed for this job are not retried.
        """
        try:
            backend = self.selector.select(
                job.request, exclude=[*excluded, primary.model_used]
            )
        except NoBackendAvailableError:
            return None

        try:
            return await self._invoke(job, backend, payload, timeout)
        except BackendInvocationError as e:
            logger.warning(f"Secondary moderation failed, using primary only: {e}")
            return None

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _set_state(self, job: PendingJob, state: JobState) -> None:
        job.state = state
        set_stage(state.value)

    def _release(self, job: PendingJob) -> None:
        self._in_flight.pop(job.id, None)
        if job.session_id:
            self._busy_sessions.discard(job.session_id)

    def _finish(self, job: PendingJob, result: Result) -> None:
        if result.success:
            self._stats["completed"] += 1
            logger.info(
                f"Job {job.id} completed by {result.model_used} "
                f"in {result.processing_time_ms}ms{' (cached)' if result.cached else ''}"
            )
        else:
            self._stats["failed"] += 1
            logger.warning(f"Job {job.id} failed: {result.error}")

        if job.session_id:
            self._append_to_session(job.session_id, result)

        self._retire(job)
        if not job.future.done():
            job.future.set_result(result)

    def _finish_cancelled(self, job: PendingJob) -> None:
        job.state = JobState.CANCELLED
        self._stats["cancelled"] += 1
        self._retire(job)
        if not job.future.done():
            job.future.set_result(Result.cancelled_for(job.id))

    def _retire(self, job: PendingJob) -> None:
        self._jobs.pop(job.id, None)
        self._finished[job.id] = job.state
        while len(self._finished) > _FINISHED_STATES_LIMIT:
            self._finished.popitem(last=False)

    def _append_to_session(self, session_id: str, result: Result) -> None:
        session = self.sessions.get(session_id)
        if not session.is_active:
            logger.debug(f"Session {session_id} ended before job finished; not recorded")
            return
        self.sessions.append_result(session_id, result)

    async def _persist(self, job: PendingJob, result: Result) -> None:
        if self.store is None:
            return

        record = result.to_dict()
        record.update(
            {
                "request_id": job.request.id,
                "capability": job.request.capability.value,
                "session_id": job.session_id,
                "created_at": job.created_at.isoformat(),
                "completed_at": datetime.now().isoformat(),
            }
        )
        try:
            await self.store.save(record)
        except Exception as e:
            logger.error(f"Failed to persist result for job {job.id}: {e}")


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


__all__ = ["Dispatcher"]
