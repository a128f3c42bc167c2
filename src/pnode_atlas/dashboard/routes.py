"""Dashboard API routes: register on the service's aiohttp app.

Every read is served from the latest snapshot (cached, or collected on a
miss):
  - Network health of the bootstrap seeds
  - Network stats, node list and node detail
  - Per-node history and network-wide trends from the history store
  - Leaderboard and CSV/JSON export
  - Geolocation and data-center concentration of peer hosts
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

import pydantic
from aiohttp import web
from pydantic import BaseModel, Field

from pnode_atlas.network.peer import EnrichedPeer, PeerStatus
from pnode_atlas.network.schemas import issues_from
from pnode_atlas.stats.export import build_export_rows, to_csv
from pnode_atlas.stats.scoring import calculate_leaderboard

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("atlas_service", object)

MIN_PUBKEY_LEN = 32


def _json_default(obj):
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _dumps(obj):
    return json.dumps(obj, default=_json_default)


def setup_dashboard(app: web.Application, service: Any) -> None:
    """Register API routes on *app*."""
    app[SERVICE_KEY] = service
    app.router.add_get("/api/health", _api_health)
    app.router.add_get("/api/stats", _api_stats)
    app.router.add_get("/api/nodes", _api_nodes)
    app.router.add_get("/api/nodes/{pubkey}", _api_node)
    app.router.add_get("/api/nodes/{pubkey}/history", _api_node_history)
    app.router.add_get("/api/leaderboard", _api_leaderboard)
    app.router.add_get("/api/export", _api_export)
    app.router.add_get("/api/analytics/network", _api_network_analytics)
    app.router.add_get("/api/geo", _api_geo)
    logger.info("Dashboard API enabled at /api")


# ── Query validation ─────────────────────────────────────────

class NodesQuery(BaseModel):
    status: PeerStatus | None = None
    search: str | None = Field(default=None, max_length=100)
    sort: Literal["uptime", "cpu", "ram", "last_seen"] = "last_seen"
    order: Literal["asc", "desc"] = "desc"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=100)


class HistoryQuery(BaseModel):
    hours: int = Field(default=24, ge=1, le=720)


class AnalyticsQuery(BaseModel):
    hours: int = Field(default=24, ge=1, le=720)
    interval: Literal["hour", "day"] = "hour"


class LeaderboardQuery(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=1000)


def _parse_query(model: type[BaseModel], request: web.Request) -> BaseModel:
    try:
        return model.model_validate(dict(request.query))
    except pydantic.ValidationError as exc:
        raise web.HTTPBadRequest(
            text=_dumps({"error": "Invalid query parameters", "details": issues_from(exc)}),
            content_type="application/json",
        ) from exc


def _node_json(peer: EnrichedPeer) -> dict[str, Any]:
    return peer.model_dump(mode="json")


# ── Health ───────────────────────────────────────────────────

async def _api_health(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    started = time.monotonic()
    seeds = await service.seed_health()
    healthy = [s for s in seeds if s["healthy"]]
    avg_latency = sum(s["latency_ms"] for s in healthy) / (len(healthy) or 1)
    if not healthy:
        status = "critical"
    elif len(healthy) < len(seeds) / 2:
        status = "degraded"
    else:
        status = "healthy"
    return web.json_response({
        "status": status,
        "timestamp": datetime.now(timezone.utc),
        "seeds": {
            "total": len(seeds),
            "healthy": len(healthy),
            "avg_latency_ms": round(avg_latency),
            "details": seeds,
        },
        "api": {"response_time_ms": round((time.monotonic() - started) * 1000)},
    }, status=503 if status == "critical" else 200,
        headers={"Cache-Control": "no-cache"}, dumps=_dumps)


# ── Stats ────────────────────────────────────────────────────

async def _api_stats(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    stats, hit = await service.get_stats()
    return web.json_response(
        stats, headers={"X-Cache": "HIT" if hit else "MISS"}, dumps=_dumps,
    )


# ── Nodes ────────────────────────────────────────────────────

def _sort_key(sort: str):
    if sort == "uptime":
        return lambda p: p.telemetry.uptime if p.telemetry else 0
    if sort == "cpu":
        return lambda p: p.telemetry.cpu_percent if p.telemetry else 0
    if sort == "ram":
        return lambda p: p.ram_percent or 0
    return lambda p: p.last_seen_timestamp


async def _api_nodes(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    query: NodesQuery = _parse_query(NodesQuery, request)  # type: ignore[assignment]
    snapshot, hit = await service.get_snapshot()

    nodes = list(snapshot.peers)
    if query.status is not None:
        nodes = [n for n in nodes if n.status == query.status]
    if query.search:
        needle = query.search.lower()
        nodes = [
            n for n in nodes
            if needle in n.pubkey.lower() or needle in n.address.lower()
        ]
    nodes.sort(key=_sort_key(query.sort), reverse=query.order == "desc")

    total = len(nodes)
    offset = (query.page - 1) * query.limit
    page = nodes[offset:offset + query.limit]
    return web.json_response({
        "nodes": [_node_json(n) for n in page],
        "pagination": {
            "total": total,
            "page": query.page,
            "limit": query.limit,
            "pages": -(-total // query.limit),
        },
        "fetched_at": snapshot.collected_at,
    }, headers={
        "X-Cache": "HIT" if hit else "MISS",
        "X-Total-Nodes": str(snapshot.total_discovered),
        "X-Collection-Errors": str(len(snapshot.errors)),
    }, dumps=_dumps)


async def _api_node(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    pubkey = request.match_info["pubkey"]
    if len(pubkey) < MIN_PUBKEY_LEN:
        return web.json_response({"error": "Invalid pubkey"}, status=400)

    snapshot, hit = await service.get_snapshot()
    node = snapshot.find(pubkey)
    if node is None:
        return web.json_response({"error": "Node not found", "pubkey": pubkey}, status=404)
    if node.telemetry is None:
        node = await service.refresh_peer_telemetry(node)

    return web.json_response({
        "node": _node_json(node),
        "fetched_at": datetime.now(timezone.utc),
    }, headers={"X-Cache": "HIT" if hit else "MISS"}, dumps=_dumps)


async def _api_node_history(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    pubkey = request.match_info["pubkey"]
    if len(pubkey) < MIN_PUBKEY_LEN:
        return web.json_response({"error": "Invalid pubkey"}, status=400)
    if service.history is None:
        return web.json_response({"error": "History store not configured"}, status=503)

    query: HistoryQuery = _parse_query(HistoryQuery, request)  # type: ignore[assignment]
    since = datetime.now(timezone.utc) - timedelta(hours=query.hours)
    rows = await asyncio.to_thread(service.history.query_range, pubkey, since)
    return web.json_response({
        "pubkey": pubkey,
        "hours": query.hours,
        "count": len(rows),
        "history": rows,
    }, dumps=_dumps)


# ── Leaderboard & export ─────────────────────────────────────

async def _api_leaderboard(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    query: LeaderboardQuery = _parse_query(LeaderboardQuery, request)  # type: ignore[assignment]
    snapshot, hit = await service.get_snapshot()
    scores = calculate_leaderboard(
        snapshot.peers, query.limit, service.config.latest_version,
    )
    return web.json_response({
        "leaderboard": [s.to_dict() for s in scores],
        "total": len(scores),
        "fetched_at": snapshot.collected_at,
    }, headers={"X-Cache": "HIT" if hit else "MISS"}, dumps=_dumps)


async def _api_export(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    fmt = request.query.get("format", "json")
    if fmt not in ("json", "csv"):
        return web.json_response({"error": f"Unsupported format: {fmt}"}, status=400)
    include_scores = request.query.get("scores") == "true"
    include_stats = request.query.get("stats") != "false"

    snapshot, _ = await service.get_snapshot()
    scores = None
    if include_scores:
        leaderboard = calculate_leaderboard(
            snapshot.peers, latest_version=service.config.latest_version,
        )
        scores = {s.pubkey: s for s in leaderboard}
    rows = build_export_rows(snapshot.peers, include_stats, scores)

    if fmt == "csv":
        stamp = int(time.time())
        return web.Response(
            text=to_csv(rows),
            content_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="pnodes-{stamp}.csv"'},
        )
    return web.json_response({
        "nodes": rows,
        "meta": {
            "total": len(rows),
            "exported_at": datetime.now(timezone.utc),
            "includes_scores": include_scores,
            "includes_stats": include_stats,
        },
    }, dumps=_dumps)


# ── Analytics & geolocation ──────────────────────────────────

def _summarize(history: list[dict[str, Any]], query: AnalyticsQuery) -> dict[str, Any]:
    health = [h["health_percent"] for h in history]
    return {
        "total_data_points": len(history),
        "avg_health_percent": round(sum(health) / len(health), 1),
        "min_health_percent": round(min(health), 1),
        "max_health_percent": round(max(health), 1),
        "avg_total_nodes": round(sum(h["total_nodes"] for h in history) / len(history)),
        "time_range_hours": query.hours,
        "interval": query.interval,
    }


async def _api_network_analytics(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    started = time.monotonic()
    if service.history is None:
        return web.json_response({"error": "History store not configured"}, status=503)

    query: AnalyticsQuery = _parse_query(AnalyticsQuery, request)  # type: ignore[assignment]
    since = datetime.now(timezone.utc) - timedelta(hours=query.hours)
    history = await asyncio.to_thread(service.history.network_history, since, query.interval)
    if not history:
        return web.json_response({
            "error": "No historical data found",
            "hours": query.hours,
        }, status=404)

    return web.json_response({
        "history": history,
        "summary": _summarize(history, query),
        "fetched_at": datetime.now(timezone.utc),
    }, headers={
        "Cache-Control": "public, max-age=300",
        "X-Response-Time": f"{round((time.monotonic() - started) * 1000)}ms",
    }, dumps=_dumps)


async def _api_geo(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    body, hit = await service.get_geo()
    return web.json_response(
        body, headers={"X-Cache": "HIT" if hit else "MISS"}, dumps=_dumps,
    )
