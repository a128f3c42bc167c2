"""Network snapshot collector.

One run walks through four phases:

  1. Discover: ask every bootstrap seed for its peer list, all at once
  2. Merge: dedupe by pubkey, newest ``last_seen_timestamp`` wins
  3. Enrich: fetch each peer's telemetry in batches of ``concurrency``
  4. Credits (optional): attach pod credits from the credits API

Individual seed and peer failures become ``CollectionError`` entries of
the returned snapshot; a run as a whole never raises. Total failure shows
up as an empty peer list with one ``seed_unreachable`` entry per seed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from aiohttp import ClientSession

from pnode_atlas.network.client import PrpcClient
from pnode_atlas.network.credits import apply_credits, fetch_credits
from pnode_atlas.network.merge import PeerMerge
from pnode_atlas.network.peer import StatusThresholds
from pnode_atlas.network.schemas import PeerListResponse, Peer, Telemetry
from pnode_atlas.network.seeds import (
    CREDITS_TIMEOUT,
    DEFAULT_CREDITS_URL,
    DEFAULT_TIMEOUT,
    PRPC_PORT,
    SEED_HOSTS,
)
from pnode_atlas.network.settle import settle_all
from pnode_atlas.network.snapshot import CollectionError, ErrorKind, Snapshot
from pnode_atlas.network.telemetry import classify_only, enrich_with_telemetry

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
HEALTH_CHECK_TIMEOUT = 5.0

# (host, shared session) -> client
ClientFactory = Callable[[str, ClientSession], Any]


@dataclass
class CollectorConfig:
    """Options for one collection run."""

    timeout: float = DEFAULT_TIMEOUT
    concurrency: int = DEFAULT_CONCURRENCY
    fetch_stats: bool = True
    fetch_credits: bool = False
    credits_url: str = DEFAULT_CREDITS_URL
    credits_timeout: float = CREDITS_TIMEOUT
    seeds: list[str] = field(default_factory=lambda: list(SEED_HOSTS))
    port: int = PRPC_PORT
    thresholds: StatusThresholds = field(default_factory=StatusThresholds)
    debug: bool = False

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.credits_timeout <= 0:
            raise ValueError(f"credits_timeout must be positive, got {self.credits_timeout}")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if not self.seeds:
            raise ValueError("at least one seed is required")


class SnapshotCollector:
    """Runs collection cycles with a fixed configuration.

    The collector keeps no state between runs; each :meth:`collect` call
    starts from scratch. ``client_factory`` replaces the pRPC client,
    which is how tests point the collector at fake seeds.
    """

    def __init__(
        self,
        config: CollectorConfig | None = None,
        client_factory: ClientFactory | None = None,
        session: ClientSession | None = None,
    ) -> None:
        self.config = config or CollectorConfig()
        self._client_factory = client_factory or self._default_client
        self._session = session

    def _default_client(self, host: str, session: ClientSession) -> PrpcClient:
        return PrpcClient(
            host,
            port=self.config.port,
            timeout=self.config.timeout,
            debug=self.config.debug,
            session=session,
        )

    async def collect(self) -> Snapshot:
        """Run all phases and return the snapshot."""
        if self._session is not None:
            return await self._run(self._session)
        async with ClientSession() as session:
            return await self._run(session)

    async def _run(self, session: ClientSession) -> Snapshot:
        cfg = self.config
        started = time.monotonic()
        errors: list[CollectionError] = []
        logger.debug("Starting collection from %d seeds", len(cfg.seeds))

        merge = await self._discover(session, errors)
        peers = merge.peers()

        with_telemetry = 0
        if cfg.fetch_stats and peers:
            enriched = await enrich_with_telemetry(
                peers,
                lambda peer: self._fetch_telemetry(session, peer),
                cfg.concurrency,
                cfg.thresholds,
            )
            nodes = enriched.peers
            errors.extend(enriched.errors)
            with_telemetry = enriched.with_telemetry
        else:
            nodes = classify_only(peers, cfg.thresholds)

        if cfg.fetch_credits and nodes:
            credits = await fetch_credits(
                session, cfg.credits_url, cfg.credits_timeout, debug=cfg.debug,
            )
            nodes = apply_credits(nodes, credits)
            if cfg.debug:
                matched = sum(1 for n in nodes if n.credits is not None)
                logger.debug("Matched %d/%d peers with credits", matched, len(nodes))

        duration_ms = round((time.monotonic() - started) * 1000)
        logger.info(
            "Collection finished in %dms: %d peers, %d with telemetry, %d errors",
            duration_ms, len(nodes), with_telemetry, len(errors),
        )
        return Snapshot(
            peers=tuple(nodes),
            total_discovered=len(merge),
            total_with_telemetry=with_telemetry,
            errors=tuple(errors),
            duration_ms=duration_ms,
            collected_at=datetime.now(timezone.utc),
        )

    # ── Phases ───────────────────────────────────────────────────

    async def _discover(
        self,
        session: ClientSession,
        errors: list[CollectionError],
    ) -> PeerMerge:
        async def list_peers(seed: str) -> PeerListResponse:
            return await self._client_factory(seed, session).list_peers()

        settled = await settle_all(self.config.seeds, list_peers)

        merge = PeerMerge()
        reachable = 0
        for outcome in settled:
            seed = outcome.item
            if not outcome.ok:
                message = str(outcome.error) or type(outcome.error).__name__
                errors.append(CollectionError(
                    kind=ErrorKind.SEED_UNREACHABLE, target=seed, message=message,
                ))
                logger.warning("Seed %s unreachable: %s", seed, message)
                continue

            reachable += 1
            response: PeerListResponse = outcome.result
            if response.rejected:
                errors.append(CollectionError(
                    kind=ErrorKind.VALIDATION_ERROR,
                    target=seed,
                    message=f"Dropped {response.rejected} malformed peer entries",
                ))
            merge.add_all(response.peers)
            logger.debug("Seed %s: %d peers", seed, len(response.peers))

        logger.debug(
            "Discovered %d unique peers from %d/%d seeds",
            len(merge), reachable, len(self.config.seeds),
        )
        return merge

    async def _fetch_telemetry(self, session: ClientSession, peer: Peer) -> Telemetry:
        return await self._client_factory(peer.host, session).get_telemetry()


async def collect_network_snapshot(
    config: CollectorConfig | None = None,
    **overrides: Any,
) -> Snapshot:
    """Collect one snapshot; keyword overrides are ``CollectorConfig`` fields."""
    if config is None:
        config = CollectorConfig(**overrides)
    elif overrides:
        raise TypeError("pass either a config or keyword overrides, not both")
    return await SnapshotCollector(config).collect()


async def check_seed_health(
    seeds: list[str] | None = None,
    port: int = PRPC_PORT,
    timeout: float = HEALTH_CHECK_TIMEOUT,
) -> list[dict[str, Any]]:
    """Probe each seed once; returns ``{host, healthy, latency_ms}`` per seed."""
    hosts = list(seeds or SEED_HOSTS)
    async with ClientSession() as session:
        async def probe(host: str) -> dict[str, Any]:
            client = PrpcClient(host, port=port, timeout=timeout, session=session)
            return {"host": host, **await client.health_check()}

        settled = await settle_all(hosts, probe)
    return [
        s.result if s.ok else {"host": s.item, "healthy": False, "latency_ms": 0}
        for s in settled
    ]
