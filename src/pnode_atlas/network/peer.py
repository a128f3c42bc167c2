"""Peer health: status classification and the enriched peer record."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum

from pnode_atlas.network.schemas import Peer, Telemetry


class PeerStatus(str, Enum):
    """Health of a peer derived from how long ago it was last seen."""

    ONLINE = "online"
    DEGRADED = "degraded"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class StatusThresholds:
    """Age limits (seconds) for each status.

    The defaults were picked empirically: a peer seen within 4 minutes
    is online, within 10 minutes degraded, within an hour offline.
    """

    online: float = 240.0
    degraded: float = 600.0
    offline: float = 3600.0

    def __post_init__(self) -> None:
        if not 0 < self.online <= self.degraded <= self.offline:
            raise ValueError(
                "status thresholds must satisfy 0 < online <= degraded <= offline"
            )


DEFAULT_THRESHOLDS = StatusThresholds()


def determine_status(
    last_seen_timestamp: float,
    now: float | None = None,
    thresholds: StatusThresholds = DEFAULT_THRESHOLDS,
) -> PeerStatus:
    """Classify a peer from the age of its last gossip timestamp."""
    if now is None:
        now = time.time()
    age = now - last_seen_timestamp
    if age < thresholds.online:
        return PeerStatus.ONLINE
    if age < thresholds.degraded:
        return PeerStatus.DEGRADED
    if age < thresholds.offline:
        return PeerStatus.OFFLINE
    return PeerStatus.UNKNOWN


def format_uptime(seconds: float) -> str:
    """Render an uptime as ``"3d 4h"``, ``"4h 12m"`` or ``"12m"``."""
    seconds = int(seconds)
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class EnrichedPeer(Peer):
    """A discovered peer plus everything the collector derived for it."""

    status: PeerStatus
    telemetry: Telemetry | None = None
    ram_percent: float | None = None
    uptime_formatted: str | None = None
    credits: float | None = None

    @classmethod
    def build(
        cls,
        peer: Peer,
        status: PeerStatus,
        telemetry: Telemetry | None = None,
    ) -> EnrichedPeer:
        ram_percent = None
        uptime_formatted = None
        if telemetry is not None:
            if telemetry.ram_total > 0:
                ram_percent = telemetry.ram_used / telemetry.ram_total * 100
            uptime_formatted = format_uptime(telemetry.uptime)
        return cls(
            **peer.model_dump(include=set(Peer.model_fields)),
            status=status,
            telemetry=telemetry,
            ram_percent=ram_percent,
            uptime_formatted=uptime_formatted,
        )

    def with_telemetry(self, telemetry: Telemetry) -> EnrichedPeer:
        """Copy of this record with freshly fetched telemetry attached."""
        fresh = EnrichedPeer.build(self, self.status, telemetry)
        return fresh.model_copy(update={"credits": self.credits})
