from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Coroutine, TypeVar

import anyio

T = TypeVar("T")


async def call_with_timeout(
    fn: Callable[[], Awaitable[T]],
    *,
    timeout: float | None,
) -> T:
    """
    Await an external call under a hard deadline.

    Raises TimeoutError when the deadline passes; callers treat that as the
    failure of the stage that issued the call.
    """
    if timeout is None:
        return await fn()
    with anyio.fail_after(timeout):
        return await fn()


def run_async(coro: Coroutine[object, object, T], *, timeout: float | None = None) -> T:
    """
    Run an async coroutine from sync code (CLI commands, scripts).

    Raises if called from an async context in the same thread (use await instead).
    """

    async def _runner() -> T:
        if timeout is not None:
            with anyio.fail_after(timeout):
                return await coro
        return await coro

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return anyio.run(_runner)
    raise RuntimeError("run_async called from async context; use await instead")
