"""Bootstrap seeds and pRPC endpoint constants.

The seed hosts are the well-known entry points into the gossip network.
They are only defaults: every collector receives its seed list through
:class:`~pnode_atlas.network.collector.CollectorConfig`.
"""

from __future__ import annotations

SEED_HOSTS: tuple[str, ...] = (
    "173.212.220.65",
    "161.97.97.41",
    "192.190.136.36",
    "192.190.136.38",
    "207.244.255.1",
    "192.190.136.28",
    "192.190.136.29",
    "173.212.203.145",
)

PRPC_PORT = 6000
PRPC_PATH = "/rpc"
DEFAULT_TIMEOUT = 8.0   # seconds
MAX_TIMEOUT = 30.0      # seconds

# Method names use hyphens, not underscores
METHOD_LIST_PEERS = "list-peers"
METHOD_GET_TELEMETRY = "get-telemetry"
METHOD_LIST_PEERS_WITH_TELEMETRY = "list-peers-with-telemetry"

PRPC_METHODS = frozenset({
    METHOD_LIST_PEERS,
    METHOD_GET_TELEMETRY,
    METHOD_LIST_PEERS_WITH_TELEMETRY,
})

DEFAULT_CREDITS_URL = "https://podcredits.xandeum.network/api/pods-credits"
CREDITS_TIMEOUT = 10.0  # seconds
