"""Notification backend interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from stratum_height_monitor.monitor.events import HeightChangedEvent


class SenderError(Exception):
    """A backend failed to deliver notifications."""

    pass


class NotificationSender(ABC):
    """
    A delivery backend for height-change events.

    The dispatcher only calls send() when is_enabled() is true. Each backend
    owns its retries, timeouts and error reporting; exceptions raised from
    send() are logged by the dispatcher and go no further.
    """

    name: str = "sender"

    @abstractmethod
    def is_enabled(self) -> bool:
        """Check whether this backend is configured."""

    @abstractmethod
    async def send(self, events: Sequence[HeightChangedEvent]) -> None:
        """Deliver a batch of events."""

    async def close(self) -> None:
        """Release backend resources."""
        return None
