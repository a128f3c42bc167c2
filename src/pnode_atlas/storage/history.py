"""Thread-safe SQLite history of enriched peers.

Each collection run can be appended with :meth:`HistoryStore.insert_batch`;
the dashboard reads a peer's time series back with
:meth:`HistoryStore.query_range`.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pnode_atlas.network.peer import EnrichedPeer
from pnode_atlas.storage.schema import SCHEMA_SQL, SCHEMA_VERSION

logger = logging.getLogger(__name__)

_INSERT_SQL = """INSERT INTO node_snapshots
    (pubkey, timestamp, address, version, status, last_seen_timestamp,
     cpu_percent, ram_used, ram_total, ram_percent, uptime_seconds,
     packets_sent, packets_received, total_bytes, active_streams,
     file_size, total_pages, current_index, credits)
    VALUES (?,?,?,?,?,?, ?,?,?,?,?, ?,?,?,?, ?,?,?,?)"""

# Prefix length of the ISO timestamp that identifies a bucket
_BUCKET_WIDTH = {"hour": 13, "day": 10}
_BUCKET_SUFFIX = {"hour": ":00:00+00:00", "day": "T00:00:00+00:00"}


class HistoryStore:
    """Append-only log of peer rows in a local SQLite file.

    * WAL mode so the dashboard can read while the collector loop writes.
    * All public methods are thread-safe (internal lock).
    * Schema is created / migrated on open.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
            isolation_level=None,  # autocommit; transactions are explicit
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _migrate(self) -> None:
        cur = self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='_schema_version'"
        )
        if cur.fetchone() is None:
            self._conn.executescript(SCHEMA_SQL)
            self._conn.execute(
                "INSERT INTO _schema_version (version, applied_at) VALUES (?, ?)",
                (SCHEMA_VERSION, _iso(datetime.now(timezone.utc))),
            )
            logger.info("History schema v%d created at %s", SCHEMA_VERSION, self._db_path)
            return

        row = self._conn.execute("SELECT MAX(version) AS v FROM _schema_version").fetchone()
        current = row["v"] or 0
        if current < SCHEMA_VERSION:
            self._conn.executescript(SCHEMA_SQL)
            self._conn.execute(
                "INSERT INTO _schema_version (version, applied_at) VALUES (?, ?)",
                (SCHEMA_VERSION, _iso(datetime.now(timezone.utc))),
            )
            logger.info("History schema migrated %d → %d", current, SCHEMA_VERSION)

    # ── Writes ───────────────────────────────────────────────────

    def insert_batch(
        self,
        peers: Iterable[EnrichedPeer],
        timestamp: datetime | None = None,
    ) -> int:
        """Append one row per peer, all stamped with ``timestamp``.

        Returns the number of rows written.
        """
        stamp = _iso(timestamp or datetime.now(timezone.utc))
        rows = [_row(peer, stamp) for peer in peers]
        if not rows:
            return 0
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                self._conn.executemany(_INSERT_SQL, rows)
                self._conn.execute("COMMIT")
            except sqlite3.Error:
                self._conn.execute("ROLLBACK")
                raise
        logger.debug("History: %d rows written at %s", len(rows), stamp)
        return len(rows)

    # ── Reads ────────────────────────────────────────────────────

    def query_range(
        self,
        pubkey: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        """Rows in ``[since, until]``, oldest first, optionally for one pubkey."""
        clauses = []
        params: list[Any] = []
        if pubkey is not None:
            clauses.append("pubkey = ?")
            params.append(pubkey)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(_iso(since))
        if until is not None:
            clauses.append("timestamp <= ?")
            params.append(_iso(until))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM node_snapshots {where} ORDER BY timestamp, id LIMIT ?",
                params,
            ).fetchall()
        return [dict(r) for r in rows]

    def network_history(
        self,
        since: datetime,
        interval: str = "hour",
    ) -> list[dict[str, Any]]:
        """Network-wide status counts per hour or day bucket, oldest first.

        Peers are counted once per bucket and status, so several collection
        runs inside one bucket do not inflate the totals.
        """
        if interval not in _BUCKET_WIDTH:
            raise ValueError(f"interval must be 'hour' or 'day', got {interval!r}")
        width = _BUCKET_WIDTH[interval]
        with self._lock:
            rows = self._conn.execute(
                f"""SELECT substr(timestamp, 1, {width}) AS bucket,
                    COUNT(DISTINCT pubkey) AS total_nodes,
                    COUNT(DISTINCT CASE WHEN status = 'online' THEN pubkey END) AS online_nodes,
                    COUNT(DISTINCT CASE WHEN status = 'degraded' THEN pubkey END) AS degraded_nodes,
                    COUNT(DISTINCT CASE WHEN status = 'offline' THEN pubkey END) AS offline_nodes,
                    AVG(cpu_percent) AS avg_cpu,
                    AVG(ram_percent) AS avg_ram
                FROM node_snapshots
                WHERE timestamp > ?
                GROUP BY bucket
                ORDER BY bucket""",
                (_iso(since),),
            ).fetchall()

        suffix = _BUCKET_SUFFIX[interval]
        history = []
        for r in rows:
            total = r["total_nodes"]
            history.append({
                "timestamp": r["bucket"] + suffix,
                "total_nodes": total,
                "online_nodes": r["online_nodes"],
                "degraded_nodes": r["degraded_nodes"],
                "offline_nodes": r["offline_nodes"],
                "health_percent": r["online_nodes"] / total * 100 if total else 0.0,
                "avg_cpu": r["avg_cpu"],
                "avg_ram": r["avg_ram"],
            })
        return history

    def count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM node_snapshots").fetchone()[0]

    @property
    def db_path(self) -> str:
        return self._db_path

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _iso(ts: datetime) -> str:
    # Fixed-width UTC text so timestamps compare correctly as strings
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def _row(peer: EnrichedPeer, stamp: str) -> tuple:
    t = peer.telemetry
    return (
        peer.pubkey,
        stamp,
        peer.address,
        peer.version,
        peer.status.value,
        peer.last_seen_timestamp,
        t.cpu_percent if t else None,
        t.ram_used if t else None,
        t.ram_total if t else None,
        peer.ram_percent,
        t.uptime if t else None,
        t.packets_sent if t else None,
        t.packets_received if t else None,
        t.total_bytes if t else None,
        t.active_streams if t else None,
        t.file_size if t else None,
        t.total_pages if t else None,
        t.current_index if t else None,
        peer.credits,
    )
