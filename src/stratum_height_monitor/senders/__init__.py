"""Notification delivery backends."""

from __future__ import annotations

from typing import TYPE_CHECKING

from stratum_height_monitor.senders.base import NotificationSender, SenderError
from stratum_height_monitor.senders.database import DatabaseSender
from stratum_height_monitor.senders.slack import SlackSender

if TYPE_CHECKING:
    from stratum_height_monitor.config.models import SendersConfig


def build_senders(config: SendersConfig) -> list[NotificationSender]:
    """Build the ordered backend list. Disabled backends are kept; the dispatcher skips them."""
    return [
        SlackSender(config.slack),
        DatabaseSender(config.database),
    ]


__all__ = [
    "NotificationSender",
    "SenderError",
    "SlackSender",
    "DatabaseSender",
    "build_senders",
]
