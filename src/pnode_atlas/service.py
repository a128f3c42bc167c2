"""Atlas service: cache, history, background collection and the HTTP API.

The service is the one caller of the collector in a running deployment:

  - a background loop collects a snapshot every ``collect_interval``
    seconds, caches it with its stats and appends it to the history store
  - API reads go through the cache and collect on a miss
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from aiohttp import web

from pnode_atlas.cache import (
    KEY_GEO,
    KEY_SNAPSHOT,
    KEY_STATS,
    TTL_GEO,
    TTL_SNAPSHOT,
    TTL_STATS,
    SnapshotCache,
)
from pnode_atlas.dashboard.routes import setup_dashboard
from pnode_atlas.geo import (
    IP_API_URL,
    MIN_INTERVAL,
    GeoLocation,
    GeoLocator,
    country_distribution,
    dc_concentration,
)
from pnode_atlas.network.client import PrpcClient
from pnode_atlas.network.collector import CollectorConfig, SnapshotCollector, check_seed_health
from pnode_atlas.network.errors import PrpcError
from pnode_atlas.network.peer import EnrichedPeer
from pnode_atlas.network.snapshot import Snapshot
from pnode_atlas.ratelimit import SlidingWindowLimiter, rate_limit_middleware
from pnode_atlas.retry import RetryPolicy
from pnode_atlas.stats.network_stats import calculate_network_stats, health_summary
from pnode_atlas.stats.scoring import LATEST_VERSION
from pnode_atlas.storage.history import HistoryStore

logger = logging.getLogger(__name__)


@dataclass
class AtlasConfig:
    """Configuration for a running Atlas service."""

    host: str = "0.0.0.0"
    port: int = 8080
    db_path: str = "./atlas-data/history.db"  # empty string disables history
    collect_interval: float = 120.0
    collector: CollectorConfig = field(default_factory=lambda: CollectorConfig(
        timeout=10.0, concurrency=20, fetch_credits=True,
    ))
    detail_timeout: float = 5.0
    detail_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(
        max_attempts=2, base_delay=0.5, max_delay=2.0,
    ))
    latest_version: str = LATEST_VERSION
    rate_limit_per_minute: int = 100  # 0 disables API rate limiting
    geo_url: str = IP_API_URL
    geo_min_interval: float = MIN_INTERVAL

    def __post_init__(self) -> None:
        if self.collect_interval <= 0:
            raise ValueError(f"collect_interval must be positive, got {self.collect_interval}")
        if self.rate_limit_per_minute < 0:
            raise ValueError(
                f"rate_limit_per_minute must be >= 0, got {self.rate_limit_per_minute}"
            )


class AtlasService:
    """Owns every long-lived component and the aiohttp application."""

    def __init__(
        self,
        config: AtlasConfig | None = None,
        collector: SnapshotCollector | None = None,
        cache: SnapshotCache | None = None,
        history: HistoryStore | None = None,
        geo: GeoLocator | None = None,
    ) -> None:
        self.config = config or AtlasConfig()
        self.collector = collector or SnapshotCollector(self.config.collector)
        self.cache = cache or SnapshotCache()
        if history is None and self.config.db_path:
            history = HistoryStore(self.config.db_path)
        self.history = history
        self.geo = geo or GeoLocator(
            url=self.config.geo_url, min_interval=self.config.geo_min_interval,
        )

        self.limiter: SlidingWindowLimiter | None = None
        middlewares = []
        if self.config.rate_limit_per_minute:
            self.limiter = SlidingWindowLimiter(limit=self.config.rate_limit_per_minute)
            middlewares.append(rate_limit_middleware(self.limiter))
        self.app = web.Application(middlewares=middlewares)
        setup_dashboard(self.app, self)

        self._runner: web.AppRunner | None = None
        self._loop_task: asyncio.Task | None = None
        self._collect_lock = asyncio.Lock()

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self, run_loop: bool = True) -> None:
        """Bind the HTTP server and start the background collection loop."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        logger.info("Atlas API listening on %s:%d", self.config.host, self.config.port)
        if run_loop:
            self._loop_task = asyncio.create_task(self._collection_loop())

    async def stop(self) -> None:
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        if self.history is not None:
            self.history.close()
        logger.info("Atlas service stopped")

    async def _collection_loop(self) -> None:
        while True:
            try:
                await self.refresh(persist=True)
            except Exception:
                logger.exception("Collection cycle failed")
            await asyncio.sleep(self.config.collect_interval)

    # ── Snapshot access ──────────────────────────────────────────

    async def get_snapshot(self) -> tuple[Snapshot, bool]:
        """Cached snapshot if fresh, otherwise a new one; also reports cache hit."""
        cached = self.cache.get(KEY_SNAPSHOT)
        if cached is not None:
            return cached, True
        async with self._collect_lock:
            # Another request may have collected while we waited
            cached = self.cache.get(KEY_SNAPSHOT)
            if cached is not None:
                return cached, True
            return await self._collect(persist=False), False

    async def get_stats(self) -> tuple[dict[str, Any], bool]:
        cached = self.cache.get(KEY_STATS)
        if cached is not None:
            return cached, True
        snapshot, _ = await self.get_snapshot()
        stats = calculate_network_stats(snapshot.peers, snapshot.collected_at)
        self.cache.set(KEY_STATS, stats, TTL_STATS)
        return stats, False

    async def get_geo(self) -> tuple[dict[str, Any], bool]:
        """Geolocation of every peer host plus concentration breakdowns."""
        cached = self.cache.get(KEY_GEO)
        if cached is not None:
            return cached, True
        snapshot, _ = await self.get_snapshot()

        hosts: dict[str, str] = {}
        for peer in snapshot.peers:
            ip = peer.host
            if ip and not ip.startswith(("0.", "127.")):
                hosts[peer.pubkey] = ip
        found = await self.geo.lookup_many(hosts.values())

        nodes = []
        for peer in snapshot.peers:
            ip = hosts.get(peer.pubkey)
            geo = found.get(ip) if ip else None
            nodes.append({
                "pubkey": peer.pubkey,
                "status": peer.status.value,
                "geo": (geo or GeoLocation(ip=ip or "unknown")).model_dump(),
            })
        located = list(found.values())
        body = {
            "nodes": nodes,
            "total": len(nodes),
            "geolocated": len(located),
            "dc_concentration": dc_concentration(located),
            "country_distribution": country_distribution(located),
            "fetched_at": datetime.now(timezone.utc),
        }
        self.cache.set(KEY_GEO, body, TTL_GEO)
        return body, False

    async def refresh(self, persist: bool = False) -> Snapshot:
        """Collect now, replacing whatever is cached."""
        async with self._collect_lock:
            return await self._collect(persist=persist)

    async def _collect(self, persist: bool) -> Snapshot:
        snapshot = await self.collector.collect()
        stats = calculate_network_stats(snapshot.peers, snapshot.collected_at)
        self.cache.set(KEY_SNAPSHOT, snapshot, TTL_SNAPSHOT)
        self.cache.set(KEY_STATS, stats, TTL_STATS)
        logger.info(health_summary(stats))

        seeds = len(self.collector.config.seeds)
        if snapshot.all_seeds_failed(seeds):
            logger.error("All %d seeds unreachable, snapshot is empty", seeds)

        if persist and self.history is not None and snapshot.peers:
            try:
                written = await asyncio.to_thread(
                    self.history.insert_batch, snapshot.peers, snapshot.collected_at,
                )
                logger.info("Persisted %d peer rows", written)
            except sqlite3.Error:
                logger.exception("Persisting snapshot failed")
        return snapshot

    async def refresh_peer_telemetry(self, peer: EnrichedPeer) -> EnrichedPeer:
        """Direct telemetry fetch for one peer that had none in the snapshot."""
        client = PrpcClient(
            peer.host,
            port=self.collector.config.port,
            timeout=self.config.detail_timeout,
        )
        try:
            telemetry = await self.config.detail_retry.run(client.get_telemetry)
        except PrpcError as exc:
            logger.debug("Direct telemetry for %s failed: %s", peer.pubkey[:8], exc)
            return peer
        return peer.with_telemetry(telemetry)

    async def seed_health(self) -> list[dict[str, Any]]:
        return await check_seed_health(
            self.collector.config.seeds,
            port=self.collector.config.port,
        )
