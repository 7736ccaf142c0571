"""Pool monitoring core module."""

from stratum_height_monitor.monitor.dispatcher import NotificationDispatcher
from stratum_height_monitor.monitor.events import HeightChangedEvent
from stratum_height_monitor.monitor.height import ExtractionError, extract_height, register_extractor
from stratum_height_monitor.monitor.service import HeightMonitor
from stratum_height_monitor.monitor.session import PoolHeightSession, SessionState, TransportError

__all__ = [
    "NotificationDispatcher",
    "HeightChangedEvent",
    "ExtractionError",
    "extract_height",
    "register_extractor",
    "HeightMonitor",
    "PoolHeightSession",
    "SessionState",
    "TransportError",
]
