"""Foreground process runner with signal handling."""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import TYPE_CHECKING, Any, Optional

from loguru import logger

from stratum_height_monitor.monitor.service import HeightMonitor

if TYPE_CHECKING:
    from stratum_height_monitor.config.models import Config


class MonitorDaemon:
    """
    Runs the height monitor in the current process.

    SIGINT and SIGTERM request a graceful shutdown: sessions are cancelled,
    in-flight deliveries get ``dispatch.shutdown_timeout`` seconds, then the
    senders are closed. On POSIX, SIGUSR1 logs a status line per endpoint.
    """

    def __init__(self, config: Config):
        """
        Initialize the daemon.

        Args:
            config: Application configuration.
        """
        self.config = config
        self.monitor: Optional[HeightMonitor] = None
        self._stop_event: Optional[asyncio.Event] = None

    def run_foreground(self) -> None:
        """Run the monitor until a shutdown signal arrives (blocking)."""
        asyncio.run(self._run_main_loop())

    def request_stop(self) -> None:
        if self._stop_event is not None and not self._stop_event.is_set():
            logger.info("Shutdown signal received")
            self._stop_event.set()

    def log_status(self) -> None:
        """Log state, height and reconnect count for every endpoint."""
        if self.monitor is None:
            return
        for name, session in self.monitor.sessions.items():
            dispatcher = self.monitor.dispatchers[name]
            logger.info(
                f"Status {name}: state={session.state.value}, height={session.height}, "
                f"reconnects={session.reconnect_count}, "
                f"deliveries ok={dispatcher.delivered} failed={dispatcher.failed} "
                f"pending={dispatcher.pending}"
            )

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        if sys.platform != "win32":
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self.request_stop)
            loop.add_signal_handler(signal.SIGUSR1, self.log_status)
            return

        # add_signal_handler is unavailable on Windows
        def sync_signal_handler(signum: int, frame: Any) -> None:
            try:
                loop.call_soon_threadsafe(self.request_stop)
            except RuntimeError:
                # Loop already closed
                pass

        signal.signal(signal.SIGINT, sync_signal_handler)
        signal.signal(signal.SIGTERM, sync_signal_handler)

    async def _run_main_loop(self) -> None:
        from stratum_height_monitor.logging.setup import setup_logging

        setup_logging(self.config.logging)

        self._stop_event = asyncio.Event()
        self._setup_signals()
        self.monitor = HeightMonitor(self.config)

        logger.info(
            f"Starting Stratum height monitor for "
            f"{', '.join(self.config.get_endpoint_names())}"
        )
        try:
            await self.monitor.run(self._stop_event)
        finally:
            self.log_status()
            logger.info("Monitor shutdown complete")
