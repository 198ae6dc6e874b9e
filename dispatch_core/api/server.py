"""
Dispatch Core API Server.

Provides REST API endpoints for:
- Job submission and cancellation
- Queue and backend status
- Cache management
- Voice/AR session lifecycle

Usage:
    python -m dispatch_core.api.server
    # or
    dispatch-core-server --config config.yaml
"""

from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request as HttpRequest
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dispatch_core import __version__
from dispatch_core.config import DispatchCoreConfig, load_config
from dispatch_core.serving import errors
from dispatch_core.serving.backends import BackendInvoker, HttpInvoker
from dispatch_core.serving.combiner import ResultCombiner
from dispatch_core.serving.dispatcher import Dispatcher
from dispatch_core.serving.models import (
    Capability,
    Request,
    RequestPriority,
    payload_from_dict,
)
from dispatch_core.serving.registry import BackendRegistry
from dispatch_core.utils.logging_config import LoggingConfig, setup_logging

logger = logging.getLogger(__name__)

_CAPABILITY_PATTERN = "^(" + "|".join(c.value for c in Capability) + ")$"
_PRIORITY_PATTERN = "^(" + "|".join(p.value for p in RequestPriority) + ")$"


# ============================================================================
# Request/Response Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str = __version__
    timestamp: str
    running: bool = False
    queue_size: int = 0


class JobSubmitRequest(BaseModel):
    """Job submission request."""
    capability: str = Field(pattern=_CAPABILITY_PATTERN)
    payload: Dict[str, Any]
    priority: str = Field(default="medium", pattern=_PRIORITY_PATTERN)
    context: Optional[str] = None
    session_id: Optional[str] = None
    quality_hint: Optional[str] = None
    request_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


class JobResponse(BaseModel):
    """Terminal job result."""
    job_id: str
    success: bool
    payload: Any = None
    confidence: float = 0.0
    model_used: str = ""
    processing_time_ms: int = 0
    error: Optional[str] = None
    cached: bool = False
    cancelled: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)


class QueueStatusResponse(BaseModel):
    queue_size: int
    is_processing: bool
    cache_size: int
    active_workers: int
    in_flight: int


class SessionCreateRequest(BaseModel):
    context: str = Field(default="general")
    language: str = Field(default="en")


# ============================================================================
# Application factory
# ============================================================================

def create_app(dispatcher: Dispatcher) -> FastAPI:
    """Build the HTTP facade around an existing dispatcher."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Dispatch Core API starting...")
        await dispatcher.start()
        yield
        logger.info("Dispatch Core API shutting down...")
        await dispatcher.stop()
        await dispatcher.invoker.close()

    app = FastAPI(
        title="Dispatch Core API",
        description="Request orchestration for AI generation and moderation backends",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.dispatcher = dispatcher

    _register_error_handlers(app)

    # ------------------------------------------------------------------------
    # Health & status
    # ------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        return HealthResponse(
            timestamp=datetime.now().isoformat(),
            running=dispatcher.is_running,
            queue_size=dispatcher.get_queue_status()["queue_size"],
        )

    @app.get("/v1/queue", response_model=QueueStatusResponse)
    async def queue_status():
        return QueueStatusResponse(**dispatcher.get_queue_status())

    @app.get("/v1/stats")
    async def stats():
        return dispatcher.get_stats()

    # ------------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------------

    @app.post("/v1/jobs", response_model=JobResponse)
    async def submit_job(body: JobSubmitRequest):
        """Submit a job and wait for its terminal result."""
        capability = Capability(body.capability)
        request = Request(
            payload=payload_from_dict(capability, body.payload),
            priority=RequestPriority(body.priority),
            context=body.context,
            session_id=body.session_id,
            quality_hint=body.quality_hint,
        )
        if body.request_id:
            request.id = body.request_id

        result = await dispatcher.submit(request)
        return JobResponse(**result.to_dict())

    @app.get("/v1/jobs/{job_id}")
    async def get_job(job_id: str):
        state = dispatcher.get_job_state(job_id)
        if state is None:
            raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
        return {"job_id": job_id, "state": state.value}

    @app.delete("/v1/jobs/{job_id}")
    async def cancel_job(job_id: str):
        if dispatcher.cancel(job_id):
            return {"cancelled": True, "job_id": job_id}
        raise HTTPException(status_code=404, detail=f"Job not found or already finished: {job_id}")

    # ------------------------------------------------------------------------
    # Backends & cache
    # ------------------------------------------------------------------------

    @app.get("/v1/backends")
    async def list_backends() -> List[Dict[str, Any]]:
        return [config.to_dict() for config in dispatcher.registry.all()]

    @app.get("/v1/backends/performance")
    async def backend_performance() -> Dict[str, Dict[str, Any]]:
        return {
            name: perf.to_dict()
            for name, perf in dispatcher.get_backend_performance().items()
        }

    @app.post("/v1/cache/clear")
    async def clear_cache():
        return {"cleared": dispatcher.clear_cache()}

    # ------------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------------

    @app.post("/v1/sessions")
    async def create_session(body: SessionCreateRequest):
        session = dispatcher.sessions.create_session(body.context, body.language)
        return session.to_dict()

    @app.get("/v1/sessions/{session_id}")
    async def get_session(session_id: str):
        return dispatcher.sessions.get(session_id).to_dict()

    @app.delete("/v1/sessions/{session_id}")
    async def end_session(session_id: str):
        return dispatcher.sessions.end_session(session_id).to_dict()

    return app


def _register_error_handlers(app: FastAPI) -> None:
    """Map usage errors raised by the dispatcher onto HTTP status codes."""
    status_codes = (
        (errors.ValidationError, 422),
        (errors.NotFoundError, 404),
        (errors.SessionEndedError, 409),
        (errors.DuplicateBackendError, 409),
        (errors.NoBackendAvailableError, 503),
    )

    for exc_type, status_code in status_codes:

        async def handler(request: HttpRequest, exc: Exception, _status: int = status_code):
            return JSONResponse(
                status_code=_status,
                content={"detail": str(exc), "error": type(exc).__name__},
            )

        app.add_exception_handler(exc_type, handler)


# ============================================================================
# Wiring
# ============================================================================

def build_dispatcher(
    config: DispatchCoreConfig,
    invoker: Optional[BackendInvoker] = None,
    registry: Optional[BackendRegistry] = None,
) -> Dispatcher:
    """Wire a dispatcher from configuration."""
    if registry is None:
        registry = BackendRegistry()
        if config.api.register_default_backends:
            registry.register_defaults()

    return Dispatcher(
        registry=registry,
        invoker=invoker or HttpInvoker(),
        config=config.dispatcher,
        combiner=ResultCombiner(nsfw_threshold=config.moderation.nsfw_threshold),
    )


# ============================================================================
# Main Entry Point
# ============================================================================

def main(argv: Optional[List[str]] = None) -> None:
    """Run the API server."""
    import uvicorn

    parser = argparse.ArgumentParser(description="Dispatch Core API server")
    parser.add_argument("--config", help="Path to YAML configuration")
    parser.add_argument("--host", help="Bind address (overrides config)")
    parser.add_argument("--port", type=int, help="Bind port (overrides config)")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging(LoggingConfig(level=config.log_level, format=config.log_format))

    host = args.host or config.api.host
    port = args.port or config.api.port

    dispatcher = build_dispatcher(config)
    app = create_app(dispatcher)

    logger.info("=" * 60)
    logger.info(f"Dispatch Core API Server v{__version__}")
    logger.info("=" * 60)
    logger.info(f"Listening: http://{host}:{port}")
    logger.info(f"Backends: {len(dispatcher.registry)}")
    logger.info(f"Workers: {config.dispatcher.worker_count}")
    logger.info("=" * 60)

    uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
