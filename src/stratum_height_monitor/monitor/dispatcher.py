"""Fan-out of height-change events to delivery backends."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Optional, Sequence, Set

from loguru import logger

from stratum_height_monitor.monitor.utils import fire_and_forget

if TYPE_CHECKING:
    from stratum_height_monitor.monitor.events import HeightChangedEvent
    from stratum_height_monitor.senders.base import NotificationSender


class NotificationDispatcher:
    """
    Starts one independent delivery per enabled backend for every event.

    dispatch() never waits for delivery. Each delivery is its own task;
    at most max_concurrent_deliveries of them are inside sender.send at
    once and the rest wait on the semaphore.
    """

    def __init__(self, senders: Sequence[NotificationSender], max_concurrent_deliveries: int = 8):
        """
        Initialize the dispatcher.

        Args:
            senders: Ordered backend list, shared by reference.
            max_concurrent_deliveries: Cap on in-flight deliveries.
        """
        self._senders = senders
        self._max_concurrent = max_concurrent_deliveries
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: Set[asyncio.Task] = set()
        self.delivered = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        """Number of deliveries not yet finished."""
        return len(self._tasks)

    def dispatch(self, event: HeightChangedEvent) -> int:
        """
        Hand an event to every enabled backend without blocking.

        Args:
            event: The height change to deliver.

        Returns:
            Number of deliveries started.
        """
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_concurrent)

        started = 0
        for sender in self._senders:
            if sender is None or not sender.is_enabled():
                continue
            task = fire_and_forget(
                self._deliver(sender, (event,)),
                f"Delivery via {sender.name} for {event.endpoint.name}",
                on_error=self._count_failure,
            )
            if task is None:
                continue
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started += 1

        if started == 0:
            logger.debug(f"No enabled senders for event from {event.endpoint.name}")
        return started

    def _count_failure(self, exc: BaseException) -> None:
        self.failed += 1

    async def _deliver(self, sender: NotificationSender, events: Sequence[HeightChangedEvent]) -> None:
        async with self._semaphore:
            await sender.send(events)
        self.delivered += 1

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for in-flight deliveries.

        Args:
            timeout: Maximum time to wait; None waits forever.

        Returns:
            True if all deliveries finished, False if some were cancelled.
        """
        if not self._tasks:
            return True
        tasks = list(self._tasks)
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"Cancelling {len(pending)} unfinished deliveries")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            return False
        return True
