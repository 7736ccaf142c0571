"""Loguru sinks for the monitor."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Callable

from loguru import logger

if TYPE_CHECKING:
    from stratum_height_monitor.config.models import LoggingConfig


def traffic_filter(log_traffic: bool) -> Callable[[dict], bool]:
    """
    Build a sink filter for raw stratum frames.

    Sessions log every frame sent and received through
    ``logger.bind(traffic=True)``. Those records only reach the sinks when
    ``log_traffic`` is enabled, so DEBUG stays readable on busy pools.
    """

    def _filter(record: dict) -> bool:
        return log_traffic or not record["extra"].get("traffic", False)

    return _filter


def setup_logging(config: LoggingConfig) -> None:
    """
    Replace the default Loguru sink with the configured console and file sinks.

    Args:
        config: Logging configuration object.
    """
    logger.remove()
    frames = traffic_filter(config.log_traffic)

    logger.add(sys.stderr, level=config.level, format=config.format, filter=frames, colorize=True)

    if config.file:
        # enqueue: sessions and the database executor thread both write here
        logger.add(
            config.file,
            level=config.level,
            format=config.format,
            filter=frames,
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            encoding="utf-8",
            enqueue=True,
        )

    logger.debug(
        f"Logging configured: level={config.level}, file={config.file}, "
        f"traffic={'on' if config.log_traffic else 'off'}"
    )
