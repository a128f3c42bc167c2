"""HTTP API for the Atlas dashboard."""

from pnode_atlas.dashboard.routes import setup_dashboard

__all__ = ["setup_dashboard"]
