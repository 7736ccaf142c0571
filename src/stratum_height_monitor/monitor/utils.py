"""Task and text helpers shared by the monitor."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Coroutine, Optional

from loguru import logger

from stratum_height_monitor.monitor.constants import MAX_BACKGROUND_ERROR_LENGTH


def truncate(text: str, limit: int) -> str:
    """Shorten text for log output."""
    if len(text) <= limit:
        return text
    return text[:limit] + f"... ({len(text)} chars)"


def fire_and_forget(
    coro: Coroutine[Any, Any, Any],
    description: str = "Background task",
    on_error: Optional[Callable[[BaseException], None]] = None,
) -> Optional[asyncio.Task]:
    """
    Schedule a coroutine nobody awaits, logging its failure.

    Args:
        coro: Coroutine to run as a task.
        description: Prefix for the failure log record.
        on_error: Called with the exception after it is logged.

    Returns:
        The created task, or None if no event loop is running.
    """
    try:
        task = asyncio.create_task(coro)
    except RuntimeError as e:
        coro.close()
        logger.debug(f"{description} not started, no running event loop: {e}")
        return None

    def _report(t: asyncio.Task) -> None:
        if t.cancelled() or t.exception() is None:
            return
        exc = t.exception()
        reason = truncate(str(exc) or type(exc).__name__, MAX_BACKGROUND_ERROR_LENGTH)
        logger.error(f"{description} failed: {reason}")
        if on_error is not None:
            on_error(exc)

    task.add_done_callback(_report)
    return task
