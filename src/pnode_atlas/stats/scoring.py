"""Node reputation scores and the leaderboard.

A score is the sum of five components:

  - uptime       0-40  estimated availability, from status and uptime
  - stability    0-20  current status
  - performance  0-20  CPU and RAM headroom
  - longevity    0-10  days of uptime, saturating at 30 days
  - version      0-10  distance from the latest release

The inputs are snapshot values only; no history is consulted.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from typing import Any

from pnode_atlas.network.peer import EnrichedPeer, PeerStatus

LATEST_VERSION = "0.8.0"

BADGE_ELITE = "Elite"
BADGE_RELIABLE = "Reliable"
BADGE_STANDARD = "Standard"
BADGE_NEW = "New"
BADGE_AT_RISK = "At Risk"

NEW_NODE_DAYS = 7


@dataclass
class ScoreBreakdown:
    uptime_percent: float = 0.0
    cpu_headroom: float = 100.0
    ram_headroom: float = 100.0
    days_online: int = 0
    is_latest_version: bool = False


@dataclass
class NodeScore:
    pubkey: str
    uptime_score: float
    stability_score: float
    performance_score: float
    longevity_score: float
    version_score: float
    total: int
    badge: str
    breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_STABILITY = {
    PeerStatus.ONLINE: 20.0,
    PeerStatus.DEGRADED: 10.0,
    PeerStatus.OFFLINE: 0.0,
    PeerStatus.UNKNOWN: 5.0,
}


def parse_version_number(version: str) -> float:
    """``"0.8.0"`` -> 8.0, ``"0.7.3"`` -> 7.03; unparseable -> 0."""
    parts = version.split(".")
    if len(parts) < 2:
        return 0.0
    nums = [_leading_int(p) for p in parts[:3]] + [0, 0, 0]
    major, minor, patch = nums[:3]
    return major * 100 + minor + patch * 0.01


def _leading_int(text: str) -> int:
    digits = ""
    for ch in text.strip():
        if not ch.isdigit():
            break
        digits += ch
    return int(digits) if digits else 0


def determine_badge(total: int, days_online: int) -> str:
    if days_online < NEW_NODE_DAYS:
        return BADGE_NEW
    if total >= 95:
        return BADGE_ELITE
    if total >= 85:
        return BADGE_RELIABLE
    if total >= 70:
        return BADGE_STANDARD
    return BADGE_AT_RISK


def calculate_node_score(
    peer: EnrichedPeer,
    latest_version: str = LATEST_VERSION,
) -> NodeScore:
    """Score one peer from its snapshot record."""
    telemetry = peer.telemetry
    breakdown = ScoreBreakdown()

    uptime_score = 0.0
    longevity_score = 0.0
    if telemetry is not None and telemetry.uptime:
        uptime_days = telemetry.uptime / 86400
        breakdown.days_online = math.floor(uptime_days)
        if peer.status == PeerStatus.ONLINE:
            breakdown.uptime_percent = 99.9 if uptime_days > 7 else 95 + uptime_days / 7 * 4.9
        elif peer.status == PeerStatus.DEGRADED:
            breakdown.uptime_percent = 90.0
        else:
            breakdown.uptime_percent = 50.0
        uptime_score = min(40.0, breakdown.uptime_percent / 100 * 40)
        longevity_score = min(10.0, uptime_days / 30 * 10)

    stability_score = _STABILITY[peer.status]

    performance_score = 0.0
    if telemetry is not None:
        breakdown.cpu_headroom = 100 - telemetry.cpu_percent
        if peer.ram_percent is not None:
            breakdown.ram_headroom = 100 - peer.ram_percent
        cpu_score = min(10.0, breakdown.cpu_headroom / 100 * 10)
        ram_score = min(10.0, breakdown.ram_headroom / 100 * 10)
        performance_score = cpu_score + ram_score

    version_score = 0.0
    if peer.version:
        breakdown.is_latest_version = peer.version == latest_version
        if breakdown.is_latest_version:
            version_score = 10.0
        else:
            diff = parse_version_number(latest_version) - parse_version_number(peer.version)
            version_score = max(0.0, 10 - diff * 2)

    total = round(
        uptime_score + stability_score + performance_score + longevity_score + version_score
    )
    breakdown.uptime_percent = round(breakdown.uptime_percent, 1)
    breakdown.cpu_headroom = round(breakdown.cpu_headroom, 1)
    breakdown.ram_headroom = round(breakdown.ram_headroom, 1)

    return NodeScore(
        pubkey=peer.pubkey,
        uptime_score=round(uptime_score, 1),
        stability_score=round(stability_score, 1),
        performance_score=round(performance_score, 1),
        longevity_score=round(longevity_score, 1),
        version_score=round(version_score, 1),
        total=total,
        badge=determine_badge(total, breakdown.days_online),
        breakdown=breakdown,
    )


def calculate_leaderboard(
    peers: Iterable[EnrichedPeer],
    limit: int | None = None,
    latest_version: str = LATEST_VERSION,
) -> list[NodeScore]:
    """Scores sorted best first, optionally truncated to ``limit``."""
    scores = [calculate_node_score(p, latest_version) for p in peers]
    scores.sort(key=lambda s: s.total, reverse=True)
    return scores[:limit] if limit else scores
