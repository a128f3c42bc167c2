"""Network-wide aggregates computed from a snapshot in one pass."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pnode_atlas.network.peer import EnrichedPeer, PeerStatus


def calculate_network_stats(
    peers: Iterable[EnrichedPeer],
    collected_at: datetime | str,
) -> dict[str, Any]:
    """Counts by status, telemetry averages and version distribution.

    ``offline_nodes`` includes peers whose status is unknown. Averages are
    taken over peers that returned telemetry only.
    """
    total = online = degraded = offline = 0
    cpu_sum = ram_sum = 0.0
    with_telemetry = 0
    total_storage = 0
    versions: dict[str, int] = {}

    for peer in peers:
        total += 1
        if peer.status == PeerStatus.ONLINE:
            online += 1
        elif peer.status == PeerStatus.DEGRADED:
            degraded += 1
        else:
            offline += 1

        if peer.telemetry is not None:
            cpu_sum += peer.telemetry.cpu_percent
            ram_sum += peer.ram_percent or 0.0
            total_storage += peer.telemetry.file_size
            with_telemetry += 1

        version = peer.version or "unknown"
        versions[version] = versions.get(version, 0) + 1

    if isinstance(collected_at, datetime):
        collected_at = collected_at.isoformat()

    return {
        "total_nodes": total,
        "online_nodes": online,
        "degraded_nodes": degraded,
        "offline_nodes": offline,
        "health_percent": round(online / total * 100) if total else 0,
        "avg_cpu": round(cpu_sum / with_telemetry, 1) if with_telemetry else 0.0,
        "avg_ram_percent": round(ram_sum / with_telemetry, 1) if with_telemetry else 0.0,
        "total_storage_bytes": total_storage,
        "version_distribution": versions,
        "fetched_at": collected_at,
    }


def health_summary(stats: dict[str, Any]) -> str:
    """One-line summary for logs."""
    return (
        f"Health: {stats['health_percent']}% | "
        f"Online: {stats['online_nodes']} | "
        f"Degraded: {stats['degraded_nodes']} | "
        f"Offline: {stats['offline_nodes']} | "
        f"Total: {stats['total_nodes']}"
    )
