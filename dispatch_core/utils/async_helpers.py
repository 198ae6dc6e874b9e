"""
Async utility helpers.

Provides:
- gather_with_concurrency: asyncio.gather with a concurrency limit
- call_soon_threadsafe_future: run a loop-bound callable from another thread
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Any, Awaitable, Callable, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def gather_with_concurrency(
    coros: List[Awaitable[T]],
    max_concurrent: int = 10,
    return_exceptions: bool = False,
) -> List[Any]:
    """
    Like asyncio.gather but with a concurrency limit. Result order matches
    ``coros``.

    Example:
        results = await gather_with_concurrency(
            [service.moderate(p) for p in payloads],
            max_concurrent=5,
        )
    """
    if max_concurrent <= 0:
        raise ValueError("max_concurrent must be positive")

    semaphore = asyncio.Semaphore(max_concurrent)

    async def bounded_coro(coro: Awaitable[T]) -> T:
        async with semaphore:
            return await coro

    return await asyncio.gather(
        *[bounded_coro(c) for c in coros],
        return_exceptions=return_exceptions,
    )


def call_soon_threadsafe_future(
    loop: asyncio.AbstractEventLoop,
    func: Callable[..., "asyncio.Future[T]"],
    *args: Any,
) -> "concurrent.futures.Future[T]":
    """
    Call ``func(*args)`` on ``loop`` from any thread and mirror the asyncio
    future it returns into a ``concurrent.futures.Future``.

    Exceptions raised by ``func`` itself are set on the returned future.
    """
    outer: concurrent.futures.Future = concurrent.futures.Future()

    def _relay(inner: asyncio.Future) -> None:
        if inner.cancelled():
            outer.cancel()
        elif inner.exception() is not None:
            outer.set_exception(inner.exception())
        else:
            outer.set_result(inner.result())

    def _call() -> None:
        if not outer.set_running_or_notify_cancel():
            return
        try:
            inner = func(*args)
        except Exception as e:
            outer.set_exception(e)
            return
        inner.add_done_callback(_relay)

    loop.call_soon_threadsafe(_call)
    return outer


__all__ = [
    "gather_with_concurrency",
    "call_soon_threadsafe_future",
]
