"""Networking layer: pRPC client, peer merge and snapshot collection."""

from pnode_atlas.network.client import PrpcClient
from pnode_atlas.network.collector import (
    CollectorConfig,
    SnapshotCollector,
    check_seed_health,
    collect_network_snapshot,
)
from pnode_atlas.network.errors import (
    NetworkError,
    PrpcError,
    PrpcTimeoutError,
    RpcError,
    ValidationError,
)
from pnode_atlas.network.merge import PeerMerge, merge_peers
from pnode_atlas.network.peer import EnrichedPeer, PeerStatus, StatusThresholds, determine_status
from pnode_atlas.network.schemas import Peer, PeerListResponse, Telemetry
from pnode_atlas.network.snapshot import CollectionError, ErrorKind, Snapshot

__all__ = [
    "CollectionError",
    "CollectorConfig",
    "EnrichedPeer",
    "ErrorKind",
    "NetworkError",
    "Peer",
    "PeerListResponse",
    "PeerMerge",
    "PeerStatus",
    "PrpcClient",
    "PrpcError",
    "PrpcTimeoutError",
    "RpcError",
    "Snapshot",
    "SnapshotCollector",
    "StatusThresholds",
    "Telemetry",
    "ValidationError",
    "check_seed_health",
    "collect_network_snapshot",
    "determine_status",
    "merge_peers",
]
