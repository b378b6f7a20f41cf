"""Fire-and-forget scheduling on the running event loop"""

import asyncio
import logging
from typing import Coroutine, Optional

logger = logging.getLogger(__name__)

# Strong references so pending tasks are not garbage collected mid-flight
_pending_tasks: set = set()


def spawn(coro: Coroutine, name: Optional[str] = None) -> Optional[asyncio.Task]:
    """
    Schedule a coroutine without awaiting it.

    Exceptions raised by the coroutine are logged and dropped. Returns None
    (and closes the coroutine) when called outside a running event loop.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning(f"⚠️ No running event loop, dropping background task {name or coro!r}")
        coro.close()
        return None

    task = loop.create_task(coro, name=name)
    _pending_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


def _on_done(task: asyncio.Task) -> None:
    _pending_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"❌ Background task {task.get_name()} failed: {exc}")


async def drain_pending_tasks(timeout: float = 5.0) -> None:
    """Wait for outstanding background tasks (used on shutdown and in tests)"""
    if not _pending_tasks:
        return
    await asyncio.wait(list(_pending_tasks), timeout=timeout)
