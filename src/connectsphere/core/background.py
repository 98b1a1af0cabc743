"""Detached background tasks whose failures are logged and dropped."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from connectsphere.log import get_logger

logger = get_logger(__name__)

# Strong references so pending tasks are not garbage collected mid-flight.
_pending: set[asyncio.Task] = set()


def spawn_detached(coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
    """Run ``coro`` without joining it to the caller.

    The caller's response path never waits on it and never sees its errors.
    """
    task = asyncio.create_task(coro, name=name)
    _pending.add(task)
    task.add_done_callback(_on_done)
    return task


def _on_done(task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("background_task_failed", task=task.get_name(), error=str(exc))


async def drain(timeout: float | None = None) -> None:
    """Wait for outstanding detached tasks (shutdown and tests)."""
    if not _pending:
        return
    await asyncio.wait(set(_pending), timeout=timeout)
