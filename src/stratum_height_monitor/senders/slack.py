"""Slack-compatible incoming webhook backend."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

import httpx
from loguru import logger

from stratum_height_monitor.senders.base import NotificationSender, SenderError

if TYPE_CHECKING:
    from stratum_height_monitor.config.models import SlackSenderConfig
    from stratum_height_monitor.monitor.events import HeightChangedEvent


class SlackSender(NotificationSender):
    """Posts height changes to a webhook as Slack attachments."""

    name = "slack"

    def __init__(self, config: SlackSenderConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client
        self._owns_client = client is None

    def is_enabled(self) -> bool:
        return bool(self.config.webhook_url)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    def build_payload(self, events: Sequence[HeightChangedEvent]) -> dict:
        """Build the webhook JSON body for a batch of events."""
        attachments = []
        for event in events:
            attachments.append(
                {
                    "color": "good" if event.delta > 0 else "warning",
                    "title": event.summary(),
                    "fields": [
                        {"title": "Pool", "value": event.endpoint.address, "short": True},
                        {"title": "Pool type", "value": event.endpoint.pool_type or "-", "short": True},
                        {"title": "Username", "value": event.endpoint.username, "short": True},
                        {"title": "Old height", "value": str(event.old_height), "short": True},
                        {"title": "New height", "value": str(event.new_height), "short": True},
                        {"title": "Notified at", "value": event.notified_at.isoformat(), "short": True},
                    ],
                }
            )
        payload = {
            "username": self.config.username,
            "text": f"{len(events)} height change(s)",
            "attachments": attachments,
        }
        if self.config.channel:
            payload["channel"] = self.config.channel
        return payload

    async def send(self, events: Sequence[HeightChangedEvent]) -> None:
        if not events:
            return
        try:
            response = await self._get_client().post(
                self.config.webhook_url, json=self.build_payload(events)
            )
        except httpx.HTTPError as e:
            raise SenderError(f"Slack webhook request failed: {e}") from e
        if response.is_error:
            raise SenderError(
                f"Slack webhook returned HTTP {response.status_code}: {response.text[:200]}"
            )
        logger.debug(f"Delivered {len(events)} event(s) to Slack")

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
