"""Derived views over a snapshot: aggregates, scores and exports."""

from pnode_atlas.stats.export import build_export_rows, to_csv
from pnode_atlas.stats.network_stats import calculate_network_stats, health_summary
from pnode_atlas.stats.scoring import NodeScore, calculate_leaderboard, calculate_node_score

__all__ = [
    "NodeScore",
    "build_export_rows",
    "calculate_leaderboard",
    "calculate_network_stats",
    "calculate_node_score",
    "health_summary",
    "to_csv",
]
