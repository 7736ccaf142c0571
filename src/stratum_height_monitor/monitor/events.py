"""Height-change notification events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stratum_height_monitor.config.models import StratumEndpointConfig

HEIGHT_CHANGED = "HeightChanged"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class HeightChangedEvent:
    """A pool started mining on a different block height."""

    endpoint: StratumEndpointConfig
    old_height: int
    new_height: int
    notified_at: datetime = field(default_factory=_utcnow)
    kind: str = HEIGHT_CHANGED

    @property
    def delta(self) -> int:
        """Height difference; negative when the pool went back (reorg or stale job)."""
        return self.new_height - self.old_height

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        return {
            "kind": self.kind,
            "endpoint": self.endpoint.name,
            "address": self.endpoint.address,
            "username": self.endpoint.username,
            "coin_type": self.endpoint.coin_type,
            "pool_type": self.endpoint.pool_type,
            "old_height": self.old_height,
            "new_height": self.new_height,
            "notified_at": self.notified_at.isoformat(),
        }

    def summary(self) -> str:
        """One-line human readable description."""
        return (
            f"[{self.endpoint.coin_type.upper()}] {self.endpoint.name} ({self.endpoint.address}) "
            f"height {self.old_height} -> {self.new_height}"
        )
