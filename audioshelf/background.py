"""Supervision for fire-and-forget asyncio work.

Notifications and other side effects that must never block or fail a request
run through :func:`spawn`, which keeps a strong reference to the task and logs
its failure instead of letting it vanish. Blocking filesystem or SMTP calls go
through :func:`run_sync`.
"""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor
from functools import partial
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

_background_tasks: Set[asyncio.Task[Any]] = set()


def spawn(coro: Awaitable[Any], *, name: Optional[str] = None) -> asyncio.Task[Any]:
    """Schedule ``coro`` in the background; exceptions are logged, never raised."""
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)
    _background_tasks.add(task)

    def _finished(t: asyncio.Task[Any]) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            logger.debug("Background task %s cancelled", name or t)
            return
        exc = t.exception()
        if exc is not None:
            logger.error("Background task %s failed", name or t, exc_info=exc)

    task.add_done_callback(_finished)
    return task


async def drain(timeout: float = 10.0) -> None:
    """Wait for outstanding background tasks, e.g. on shutdown."""
    pending = [t for t in _background_tasks if not t.done()]
    if not pending:
        return
    done, still = await asyncio.wait(pending, timeout=timeout)
    for t in still:
        t.cancel()
    if still:
        logger.warning("Cancelled %d background task(s) still running at shutdown", len(still))


async def run_sync(func: Callable[..., Any], *args: Any, executor: Optional[Executor] = None, **kwargs: Any) -> Any:
    """Execute blocking code in the default executor and await the result."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(executor, partial(func, *args, **kwargs))


__all__ = ["spawn", "drain", "run_sync"]
