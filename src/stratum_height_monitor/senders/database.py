"""SQLite notification log backend."""

from __future__ import annotations

import asyncio
import concurrent.futures
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

from loguru import logger

from stratum_height_monitor.senders.base import NotificationSender, SenderError

if TYPE_CHECKING:
    from stratum_height_monitor.config.models import DatabaseSenderConfig
    from stratum_height_monitor.monitor.events import HeightChangedEvent


class DatabaseSender(NotificationSender):
    """
    Appends one row per event to a SQLite table.

    All queries run on a dedicated single-thread executor so the event loop
    never blocks and writes never overlap on the shared connection.
    """

    name = "database"

    def __init__(self, config: DatabaseSenderConfig):
        self.config = config
        self._conn: Optional[sqlite3.Connection] = None
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None

    def is_enabled(self) -> bool:
        return bool(self.config.path)

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            path = Path(self.config.path)
            path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.config.table} (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind          TEXT    NOT NULL,
                    endpoint      TEXT    NOT NULL,
                    address       TEXT    NOT NULL,
                    username      TEXT    NOT NULL,
                    coin_type     TEXT    NOT NULL,
                    pool_type     TEXT    NOT NULL,
                    old_height    INTEGER NOT NULL,
                    new_height    INTEGER NOT NULL,
                    notified_at   TEXT    NOT NULL
                )
                """
            )
            conn.commit()
            self._conn = conn
        return self._conn

    def _insert(self, rows: list[tuple]) -> None:
        conn = self._connect()
        with conn:
            conn.executemany(
                f"INSERT INTO {self.config.table} "
                f"(kind, endpoint, address, username, coin_type, pool_type, "
                f"old_height, new_height, notified_at) "
                f"VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )

    async def send(self, events: Sequence[HeightChangedEvent]) -> None:
        if not events:
            return
        rows = [
            (
                event.kind,
                event.endpoint.name,
                event.endpoint.address,
                event.endpoint.username,
                event.endpoint.coin_type,
                event.endpoint.pool_type,
                event.old_height,
                event.new_height,
                event.notified_at.isoformat(),
            )
            for event in events
        ]
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="db"
            )
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._executor, self._insert, rows)
        except sqlite3.Error as e:
            raise SenderError(f"Database write failed: {e}") from e
        logger.debug(f"Stored {len(rows)} event(s) in {self.config.path}")

    def _close_conn(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def close(self) -> None:
        if self._executor is None:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._executor, self._close_conn)
        self._executor.shutdown(wait=True)
        self._executor = None
