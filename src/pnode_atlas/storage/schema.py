"""SQLite DDL for the per-peer history log.

Tables:
  node_snapshots   – one row per enriched peer per collection run
  _schema_version  – migration tracking
"""

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS _schema_version (
    version INTEGER NOT NULL,
    applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS node_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pubkey TEXT NOT NULL,
    timestamp TEXT NOT NULL,

    -- Identification
    address TEXT NOT NULL,
    version TEXT,

    -- Status
    status TEXT NOT NULL CHECK (status IN ('online', 'degraded', 'offline', 'unknown')),
    last_seen_timestamp REAL NOT NULL,

    -- Performance
    cpu_percent REAL,
    ram_used INTEGER,
    ram_total INTEGER,
    ram_percent REAL,

    -- Uptime and activity
    uptime_seconds INTEGER,
    packets_sent INTEGER,
    packets_received INTEGER,
    total_bytes INTEGER,
    active_streams INTEGER,

    -- Storage
    file_size INTEGER,
    total_pages INTEGER,
    current_index INTEGER,

    credits REAL
);

CREATE INDEX IF NOT EXISTS idx_node_snapshots_pubkey_timestamp
    ON node_snapshots(pubkey, timestamp);
CREATE INDEX IF NOT EXISTS idx_node_snapshots_timestamp
    ON node_snapshots(timestamp);
CREATE INDEX IF NOT EXISTS idx_node_snapshots_status_timestamp
    ON node_snapshots(status, timestamp);
"""
