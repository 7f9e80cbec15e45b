"""Supervised fire-and-forget tasks.

Used for plan drains kicked off from a request: the task is held in a
registry until it finishes (so it is not garbage collected), failures are
logged, and a key prevents two drains of the same plan running at once.
"""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

_tasks: Dict[str, asyncio.Task[Any]] = {}


def spawn(coro: Awaitable[Any], *, key: str) -> Optional[asyncio.Task[Any]]:
    """Start coro under key, or return None (closing coro) if key is busy."""
    current = _tasks.get(key)
    if current is not None and not current.done():
        coro.close()  # type: ignore[attr-defined]
        logger.info("Background task %s already running", key)
        return None

    task = asyncio.create_task(coro, name=key)  # type: ignore[arg-type]
    _tasks[key] = task

    def _finished(t: asyncio.Task[Any]) -> None:
        if _tasks.get(key) is t:
            del _tasks[key]
        if t.cancelled():
            logger.debug("Background task %s cancelled", key)
            return
        exc = t.exception()
        if exc is not None:
            logger.error("Background task %s failed", key, exc_info=exc)

    task.add_done_callback(_finished)
    return task


def is_running(key: str) -> bool:
    t = _tasks.get(key)
    return t is not None and not t.done()


async def cancel_all() -> None:
    tasks = list(_tasks.values())
    for t in tasks:
        t.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


async def run_sync(func: Callable[..., Any], *args: Any, executor: Optional[Executor] = None,
                   **kwargs: Any) -> Any:
    """Run blocking code (file writes) off the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(executor, partial(func, *args, **kwargs))


__all__ = ["spawn", "is_running", "cancel_all", "run_sync"]
