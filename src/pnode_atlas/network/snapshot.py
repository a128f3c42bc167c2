"""Snapshot result types produced by one collection run."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

from pnode_atlas.network.peer import EnrichedPeer, PeerStatus


class ErrorKind(str, Enum):
    SEED_UNREACHABLE = "seed_unreachable"
    STATS_UNREACHABLE = "stats_unreachable"
    VALIDATION_ERROR = "validation_error"


class CollectionError(BaseModel):
    """A failure observed during collection, carried as data."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    target: str
    message: str


class Snapshot(BaseModel):
    """Immutable view of the network at ``collected_at``."""

    model_config = ConfigDict(frozen=True)

    peers: tuple[EnrichedPeer, ...]
    total_discovered: int
    total_with_telemetry: int
    errors: tuple[CollectionError, ...]
    duration_ms: int
    collected_at: datetime

    def by_status(self, status: PeerStatus) -> list[EnrichedPeer]:
        return [p for p in self.peers if p.status == status]

    def find(self, pubkey: str) -> EnrichedPeer | None:
        """Exact pubkey match first, then the first prefix match."""
        for peer in self.peers:
            if peer.pubkey == pubkey:
                return peer
        for peer in self.peers:
            if peer.pubkey.startswith(pubkey):
                return peer
        return None

    def seed_errors(self) -> list[CollectionError]:
        return [e for e in self.errors if e.kind == ErrorKind.SEED_UNREACHABLE]

    def all_seeds_failed(self, seed_count: int) -> bool:
        """True when every bootstrap seed was unreachable."""
        return not self.peers and len(self.seed_errors()) == seed_count
