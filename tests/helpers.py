"""Shared test doubles and request builders."""

import asyncio
from typing import Any, Dict, List, Optional, Set

from dispatch_core.serving import (
    BackendInvoker,
    ContentModerationPayload,
    ImageGenerationPayload,
    RawResult,
    Request,
)


class FakeInvoker(BackendInvoker):
    """
    Scriptable backend.

    - ``delays``: seconds to sleep per backend name
    - ``failures``: backend names that raise
    - ``errors``: exception to raise per backend name
    - ``responses``: canned payload (or RawResult) per backend name
    - ``hold``: when set, every call waits on this event first
    """

    def __init__(self):
        self.calls: List[str] = []
        self.payloads: List[Any] = []
        self.delays: Dict[str, float] = {}
        self.failures: Set[str] = set()
        self.errors: Dict[str, BaseException] = {}
        self.responses: Dict[str, Any] = {}
        self.hold: Optional[asyncio.Event] = None
        self.running = 0
        self.max_running = 0
        self.closed = False

    async def invoke(self, backend, payload, parameters):
        self.calls.append(backend.name)
        self.payloads.append(payload)
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.hold is not None:
                await self.hold.wait()
            delay = self.delays.get(backend.name, 0)
            if delay:
                await asyncio.sleep(delay)
            if backend.name in self.errors:
                raise self.errors[backend.name]
            if backend.name in self.failures:
                raise RuntimeError(f"{backend.name} exploded")

            response = self.responses.get(backend.name)
            if isinstance(response, RawResult):
                return response
            if response is not None:
                return RawResult(payload=response, confidence=0.9)
            return RawResult(payload={"backend": backend.name}, confidence=0.9)
        finally:
            self.running -= 1

    async def close(self):
        self.closed = True


def image_request(prompt: str = "a lighthouse at dusk", **kwargs) -> Request:
    return Request(payload=ImageGenerationPayload(prompt=prompt), **kwargs)


def moderation_request(content: str = "some text to check", **kwargs) -> Request:
    return Request(payload=ContentModerationPayload(content=content), **kwargs)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
