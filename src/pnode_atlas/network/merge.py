"""Peer merge: fold the seeds' peer lists into one set keyed by pubkey.

The record with the greatest ``last_seen_timestamp`` wins, so the result
does not depend on the order in which seeds answered.
"""

from __future__ import annotations

from collections.abc import Iterable

from pnode_atlas.network.schemas import Peer


class PeerMerge:
    """Accumulates peers from any number of sources.

    A pubkey is recorded the first time it is seen and replaced only by a
    report with a strictly newer timestamp.
    """

    def __init__(self) -> None:
        self._peers: dict[str, Peer] = {}

    def __len__(self) -> int:
        return len(self._peers)

    def __contains__(self, pubkey: object) -> bool:
        return pubkey in self._peers

    def add(self, peer: Peer) -> bool:
        """Record *peer*; returns True if it was new or replaced an older report."""
        existing = self._peers.get(peer.pubkey)
        if existing is None or peer.last_seen_timestamp > existing.last_seen_timestamp:
            self._peers[peer.pubkey] = peer
            return True
        return False

    def add_all(self, peers: Iterable[Peer]) -> int:
        return sum(1 for p in peers if self.add(p))

    def get(self, pubkey: str) -> Peer | None:
        return self._peers.get(pubkey)

    def peers(self) -> list[Peer]:
        """Merged peers in first-discovery order."""
        return list(self._peers.values())


def merge_peers(sources: Iterable[Iterable[Peer]]) -> list[Peer]:
    """Merge several peer lists in a single pass."""
    merge = PeerMerge()
    for peers in sources:
        merge.add_all(peers)
    return merge.peers()
