"""Runs one pool session per configured endpoint."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from loguru import logger

from stratum_height_monitor.monitor.dispatcher import NotificationDispatcher
from stratum_height_monitor.monitor.session import PoolHeightSession, SessionState
from stratum_height_monitor.senders import build_senders

if TYPE_CHECKING:
    from stratum_height_monitor.config.models import Config
    from stratum_height_monitor.senders.base import NotificationSender


class HeightMonitor:
    """
    Owns the sessions, dispatchers and senders for a whole configuration.

    Endpoints share nothing mutable: each gets its own session and its own
    bounded dispatcher. Only the sender list is shared, by reference.
    """

    def __init__(self, config: Config, senders: Optional[Sequence[NotificationSender]] = None):
        """
        Initialize the monitor.

        Args:
            config: Application configuration.
            senders: Backend list; built from config.senders when omitted.
        """
        self.config = config
        self.senders: List[NotificationSender] = (
            list(senders) if senders is not None else build_senders(config.senders)
        )
        self.dispatchers: Dict[str, NotificationDispatcher] = {}
        self.sessions: Dict[str, PoolHeightSession] = {}
        for endpoint in config.endpoints:
            dispatcher = NotificationDispatcher(
                self.senders, config.dispatch.max_concurrent_deliveries
            )
            self.dispatchers[endpoint.name] = dispatcher
            self.sessions[endpoint.name] = PoolHeightSession(
                endpoint, dispatcher, settings=config.session
            )
        self._tasks: Dict[str, asyncio.Task] = {}

    def states(self) -> Dict[str, SessionState]:
        """Get the current state of every session."""
        return {name: session.state for name, session in self.sessions.items()}

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Run all sessions until the stop event is set or every session ended.

        Args:
            stop_event: Optional event to signal shutdown.
        """
        enabled = [s.name for s in self.senders if s.is_enabled()]
        logger.info(
            f"Monitoring {len(self.sessions)} endpoint(s); "
            f"enabled senders: {', '.join(enabled) or 'none'}"
        )

        for name, session in self.sessions.items():
            self._tasks[name] = asyncio.create_task(session.run(), name=f"session:{name}")

        waiters = set(self._tasks.values())
        stop_task: Optional[asyncio.Task] = None
        if stop_event is not None:
            stop_task = asyncio.create_task(stop_event.wait(), name="stop-event")

        try:
            while waiters:
                wait_on = waiters | ({stop_task} if stop_task else set())
                done, _ = await asyncio.wait(wait_on, return_when=asyncio.FIRST_COMPLETED)
                if stop_task in done:
                    logger.info("Shutdown requested")
                    break
                for task in done:
                    waiters.discard(task)
                    self._log_session_result(task)
            else:
                logger.error("All endpoint sessions have ended")
        finally:
            if stop_task and not stop_task.done():
                stop_task.cancel()
            await self.stop()

    def _log_session_result(self, task: asyncio.Task) -> None:
        name = task.get_name().removeprefix("session:")
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Session {name} crashed: {exc!r}")
        else:
            logger.warning(f"Session {name} ended in state {task.result().value}")

    async def stop(self) -> None:
        """Cancel sessions, drain in-flight deliveries and close senders."""
        running = [t for t in self._tasks.values() if not t.done()]
        for task in running:
            task.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)

        timeout = self.config.dispatch.shutdown_timeout
        for dispatcher in self.dispatchers.values():
            await dispatcher.drain(timeout)

        for sender in self.senders:
            try:
                await sender.close()
            except Exception as e:
                logger.warning(f"Error closing sender {sender.name}: {e}")
        self._tasks.clear()
