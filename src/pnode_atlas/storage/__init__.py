"""Historical persistence of collected snapshots."""

from pnode_atlas.storage.history import HistoryStore

__all__ = ["HistoryStore"]
