"""
Backend invocation collaborator.

The dispatch core never inspects how a backend executes: it calls
``BackendInvoker.invoke(backend, payload, parameters)`` and receives a
``RawResult`` or an exception.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import aiohttp

from dispatch_core.serving.models import (
    BackendConfig,
    BackendParameters,
    Capability,
    Payload,
    to_jsonable,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawResult:
    """Unprocessed output of a backend call."""
    payload: Any
    confidence: float = 1.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Any) -> "RawResult":
        """Accept a RawResult or a ``{"payload", "confidence", ...}`` mapping."""
        if isinstance(value, RawResult):
            return value
        if isinstance(value, Mapping) and "payload" in value:
            return cls(
                payload=value["payload"],
                confidence=float(value.get("confidence", 1.0)),
                metadata=dict(value.get("metadata", {})),
            )
        return cls(payload=value)


class BackendInvoker(ABC):
    """Abstract interface to actual model execution."""

    @abstractmethod
    async def invoke(
        self,
        backend: BackendConfig,
        payload: Payload,
        parameters: BackendParameters,
    ) -> RawResult:
        """Run ``payload`` on ``backend`` and return its raw output."""
        pass

    async def close(self) -> None:
        """Release any resources held by the invoker."""
        pass


InvokeFn = Callable[[Capability, Payload, BackendParameters], Awaitable[Any]]


class CallableInvoker(BackendInvoker):
    """
    Adapts plain async functions to ``BackendInvoker``.

    Handlers are looked up by backend name first, then by capability.
    """

    def __init__(self, handlers: Mapping[Any, InvokeFn]):
        self._handlers: Dict[Any, InvokeFn] = dict(handlers)

    def register(self, key: Any, handler: InvokeFn) -> None:
        self._handlers[key] = handler

    async def invoke(
        self,
        backend: BackendConfig,
        payload: Payload,
        parameters: BackendParameters,
    ) -> RawResult:
        handler = self._handlers.get(backend.name) or self._handlers.get(backend.capability)
        if handler is None:
            raise LookupError(f"No handler for backend {backend.name}")

        raw = await handler(backend.capability, payload, parameters)
        return RawResult.coerce(raw)


class HttpInvoker(BackendInvoker):
    """
    Posts ``{capability, model, payload, parameters}`` as JSON to each
    backend's ``endpoint`` and reads a RawResult-shaped JSON reply.

    Deadlines are enforced by the dispatcher, not here.
    """

    def __init__(self, headers: Optional[Mapping[str, str]] = None):
        self.headers = dict(headers or {})
        self._session = None

    async def _get_session(self):
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self.headers)
        return self._session

    async def invoke(
        self,
        backend: BackendConfig,
        payload: Payload,
        parameters: BackendParameters,
    ) -> RawResult:
        if not backend.endpoint:
            raise LookupError(f"Backend {backend.name} has no endpoint configured")

        body = {
            "capability": backend.capability.value,
            "model": backend.model,
            "payload": to_jsonable(payload),
            "parameters": to_jsonable(parameters),
        }

        session = await self._get_session()
        async with session.post(backend.endpoint, json=body) as response:
            if response.status >= 400:
                text = await response.text()
                raise RuntimeError(f"HTTP {response.status}: {text[:200]}")
            data = await response.json()

        return RawResult.coerce(data)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


__all__ = [
    "RawResult",
    "BackendInvoker",
    "InvokeFn",
    "CallableInvoker",
    "HttpInvoker",
]
