"""Flat export of snapshot peers as JSON-ready rows or CSV."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from pnode_atlas.network.peer import EnrichedPeer
from pnode_atlas.stats.scoring import NodeScore


def build_export_rows(
    peers: Iterable[EnrichedPeer],
    include_stats: bool = True,
    scores: Mapping[str, NodeScore] | None = None,
) -> list[dict[str, Any]]:
    rows = []
    for peer in peers:
        row: dict[str, Any] = {
            "pubkey": peer.pubkey,
            "address": peer.address,
            "version": peer.version or "unknown",
            "status": peer.status.value,
            "last_seen": _iso_utc(peer.last_seen_timestamp),
        }
        t = peer.telemetry
        if include_stats and t is not None:
            row.update({
                "cpu_percent": t.cpu_percent,
                "ram_used": t.ram_used,
                "ram_total": t.ram_total,
                "ram_percent": peer.ram_percent,
                "uptime_seconds": t.uptime,
                "uptime_formatted": peer.uptime_formatted,
                "packets_sent": t.packets_sent,
                "packets_received": t.packets_received,
                "total_bytes": t.total_bytes,
                "active_streams": t.active_streams,
            })
        score = scores.get(peer.pubkey) if scores else None
        if score is not None:
            row.update({
                "score_total": score.total,
                "score_badge": score.badge,
                "score_uptime": score.uptime_score,
                "score_stability": score.stability_score,
                "score_performance": score.performance_score,
                "score_longevity": score.longevity_score,
                "score_version": score.version_score,
            })
        rows.append(row)
    return rows


def to_csv(rows: list[dict[str, Any]]) -> str:
    """CSV with a header row; columns are the union of all row keys in first-seen order."""
    if not rows:
        return ""
    columns: list[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=columns, restval="", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({k: "" if v is None else v for k, v in row.items()})
    return buf.getvalue()


def _iso_utc(timestamp: float) -> str | None:
    # Peers report their own clocks; out-of-range values export as empty
    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return None
