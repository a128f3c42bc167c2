"""Telemetry enrichment: fetch each peer's own metrics in bounded batches."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from pnode_atlas.network.errors import is_transport_failure
from pnode_atlas.network.peer import (
    DEFAULT_THRESHOLDS,
    EnrichedPeer,
    PeerStatus,
    StatusThresholds,
    determine_status,
)
from pnode_atlas.network.schemas import Peer, Telemetry
from pnode_atlas.network.settle import settle_in_batches
from pnode_atlas.network.snapshot import CollectionError, ErrorKind

logger = logging.getLogger(__name__)

# Characters of the pubkey used to identify a peer in error entries
PUBKEY_PREFIX_LEN = 8


@dataclass
class EnrichmentResult:
    peers: list[EnrichedPeer] = field(default_factory=list)
    errors: list[CollectionError] = field(default_factory=list)
    with_telemetry: int = 0


async def enrich_with_telemetry(
    peers: Sequence[Peer],
    fetch: Callable[[Peer], Awaitable[Telemetry]],
    concurrency: int,
    thresholds: StatusThresholds = DEFAULT_THRESHOLDS,
    now: float | None = None,
) -> EnrichmentResult:
    """Fetch telemetry for every peer, ``concurrency`` calls at a time.

    A peer whose fetch failed keeps no telemetry and, if its timestamp
    says online, is reported degraded instead: gossip still sees it but
    it does not answer directly. Failures other than timeouts and
    connection errors are also recorded as ``stats_unreachable``.
    """
    settled = await settle_in_batches(peers, fetch, concurrency)
    if now is None:
        now = time.time()

    result = EnrichmentResult()
    for outcome in settled:
        peer = outcome.item
        status = determine_status(peer.last_seen_timestamp, now, thresholds)

        if outcome.ok:
            result.with_telemetry += 1
            result.peers.append(EnrichedPeer.build(peer, status, outcome.result))
            continue

        error = outcome.error
        if not is_transport_failure(error):
            result.errors.append(CollectionError(
                kind=ErrorKind.STATS_UNREACHABLE,
                target=peer.pubkey[:PUBKEY_PREFIX_LEN],
                message=str(error) or type(error).__name__,
            ))
        logger.debug("No telemetry from %s: %s", peer.pubkey[:PUBKEY_PREFIX_LEN], error)
        if status == PeerStatus.ONLINE:
            status = PeerStatus.DEGRADED
        result.peers.append(EnrichedPeer.build(peer, status))

    return result


def classify_only(
    peers: Sequence[Peer],
    thresholds: StatusThresholds = DEFAULT_THRESHOLDS,
    now: float | None = None,
) -> list[EnrichedPeer]:
    """Status from timestamps alone, for runs that skip telemetry."""
    if now is None:
        now = time.time()
    return [
        EnrichedPeer.build(p, determine_status(p.last_seen_timestamp, now, thresholds))
        for p in peers
    ]
