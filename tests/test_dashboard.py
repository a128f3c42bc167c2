"""Tests for the Atlas service and its dashboard API."""

from __future__ import annotations

import contextlib
import socket
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from pnode_atlas.cache import KEY_SNAPSHOT, KEY_STATS
from pnode_atlas.geo import GeoLocation
from pnode_atlas.network.collector import CollectorConfig
from pnode_atlas.network.peer import EnrichedPeer, PeerStatus
from pnode_atlas.network.schemas import Peer, Telemetry
from pnode_atlas.network.snapshot import CollectionError, ErrorKind, Snapshot
from pnode_atlas.retry import RetryPolicy
from pnode_atlas.service import AtlasConfig, AtlasService
from pnode_atlas.storage.history import HistoryStore

NOW = datetime.now(timezone.utc)

TELEMETRY = dict(
    active_streams=1, cpu_percent=20.0, current_index=1, file_size=2048,
    last_updated=NOW.timestamp(), packets_received=3, packets_sent=4,
    ram_total=1000, ram_used=400, total_bytes=64, total_pages=1, uptime=9 * 86400,
)


# ── Fixtures ─────────────────────────────────────────────────────

def pubkey(name: str) -> str:
    return name.ljust(44, "k")


def names(body: dict) -> list[str]:
    """Node names in response order, with the pubkey padding removed."""
    return [n["pubkey"].rstrip("k") for n in body["nodes"]]


def make_node(name: str, status: PeerStatus, cpu: float | None = None, age: float = 0):
    peer = Peer(
        pubkey=pubkey(name),
        address=f"127.0.0.1:{9000 + len(name)}",
        version="0.8.0",
        last_seen_timestamp=NOW.timestamp() - age,
    )
    telemetry = Telemetry(**{**TELEMETRY, "cpu_percent": cpu}) if cpu is not None else None
    return EnrichedPeer.build(peer, status, telemetry)


def make_snapshot() -> Snapshot:
    peers = (
        make_node("alpha", PeerStatus.ONLINE, cpu=10, age=5),
        make_node("beta", PeerStatus.ONLINE, cpu=50, age=30),
        make_node("gamma", PeerStatus.DEGRADED, cpu=90, age=300),
        make_node("delta", PeerStatus.OFFLINE, age=900),
    )
    return Snapshot(
        peers=peers,
        total_discovered=len(peers),
        total_with_telemetry=3,
        errors=(CollectionError(
            kind=ErrorKind.SEED_UNREACHABLE, target="seed-x", message="refused",
        ),),
        duration_ms=12,
        collected_at=NOW,
    )


class FakeCollector:
    def __init__(self, snapshot: Snapshot, port: int = 6000) -> None:
        self.config = CollectorConfig(seeds=["seed-x", "seed-y"], port=port)
        self.snapshot = snapshot
        self.calls = 0

    async def collect(self) -> Snapshot:
        self.calls += 1
        return self.snapshot


def make_service(history: HistoryStore | None = None, **config) -> AtlasService:
    config.setdefault("db_path", "")
    return AtlasService(
        AtlasConfig(**config),
        collector=FakeCollector(make_snapshot()),
        history=history,
    )


@contextlib.asynccontextmanager
async def api(service: AtlasService):
    client = TestClient(TestServer(service.app))
    await client.start_server()
    try:
        yield client
    finally:
        await client.close()


def unused_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# ── Service ──────────────────────────────────────────────────────

class TestService:
    @pytest.mark.asyncio
    async def test_snapshot_cached(self):
        service = make_service()
        first, hit1 = await service.get_snapshot()
        second, hit2 = await service.get_snapshot()
        assert (hit1, hit2) == (False, True)
        assert first is second
        assert service.collector.calls == 1

    @pytest.mark.asyncio
    async def test_collect_populates_stats(self):
        service = make_service()
        await service.refresh()
        assert service.cache.get(KEY_SNAPSHOT) is not None
        assert service.cache.get(KEY_STATS)["total_nodes"] == 4
        stats, hit = await service.get_stats()
        assert hit is True
        assert stats["online_nodes"] == 2

    @pytest.mark.asyncio
    async def test_refresh_persists(self, tmp_path):
        store = HistoryStore(tmp_path / "h.db")
        service = make_service(history=store)
        await service.refresh(persist=True)
        assert store.count() == 4
        await service.refresh(persist=False)
        assert store.count() == 4
        store.close()

    @pytest.mark.asyncio
    async def test_refresh_peer_telemetry(self):
        async def rpc(request):
            return web.json_response({"jsonrpc": "2.0", "id": 1, "result": TELEMETRY})

        app = web.Application()
        app.router.add_post("/rpc", rpc)
        server = TestServer(app)
        await server.start_server()
        try:
            service = make_service()
            service.collector.config.port = server.port
            node = make_node("delta", PeerStatus.OFFLINE)
            refreshed = await service.refresh_peer_telemetry(node)
        finally:
            await server.close()

        assert refreshed.telemetry is not None
        assert refreshed.ram_percent == pytest.approx(40.0)
        assert refreshed.status == PeerStatus.OFFLINE

    @pytest.mark.asyncio
    async def test_refresh_peer_telemetry_failure_returns_peer(self):
        service = make_service(
            detail_timeout=1.0,
            detail_retry=RetryPolicy(max_attempts=2, base_delay=0, jitter=lambda: 0.0),
        )
        service.collector.config.port = unused_port()
        node = make_node("delta", PeerStatus.OFFLINE)
        assert await service.refresh_peer_telemetry(node) is node

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            AtlasConfig(collect_interval=0)


# ── Nodes API ────────────────────────────────────────────────────

class TestNodesApi:
    @pytest.mark.asyncio
    async def test_list_nodes(self):
        async with api(make_service()) as client:
            resp = await client.get("/api/nodes")
            assert resp.status == 200
            body = await resp.json()
            assert resp.headers["X-Cache"] == "MISS"
            assert resp.headers["X-Total-Nodes"] == "4"
            assert resp.headers["X-Collection-Errors"] == "1"

            resp = await client.get("/api/nodes")
            assert resp.headers["X-Cache"] == "HIT"

        assert body["pagination"] == {"total": 4, "page": 1, "limit": 50, "pages": 1}
        # Default sort: most recently seen first
        assert names(body) == ["alpha", "beta", "gamma", "delta"]
        assert body["nodes"][0]["status"] == "online"

    @pytest.mark.asyncio
    async def test_filter_by_status(self):
        async with api(make_service()) as client:
            body = await (await client.get("/api/nodes?status=online")).json()
        assert set(names(body)) == {"alpha", "beta"}

    @pytest.mark.asyncio
    async def test_search_and_sort(self):
        async with api(make_service()) as client:
            body = await (await client.get("/api/nodes?sort=cpu&order=asc")).json()
            assert names(body) == ["delta", "alpha", "beta", "gamma"]

            body = await (await client.get("/api/nodes?search=GAMMA")).json()
            assert names(body) == ["gamma"]

    @pytest.mark.asyncio
    async def test_pagination(self):
        async with api(make_service()) as client:
            body = await (await client.get("/api/nodes?limit=3&page=2")).json()
        assert len(body["nodes"]) == 1
        assert body["pagination"]["pages"] == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["status=sleeping", "limit=0", "page=0", "sort=name"])
    async def test_invalid_query(self, query):
        async with api(make_service()) as client:
            resp = await client.get(f"/api/nodes?{query}")
            assert resp.status == 400
            body = await resp.json()
        assert body["error"] == "Invalid query parameters"
        assert body["details"]

    @pytest.mark.asyncio
    async def test_node_detail(self):
        async with api(make_service()) as client:
            resp = await client.get(f"/api/nodes/{pubkey('alpha')}")
            assert resp.status == 200
            body = await resp.json()
        assert body["node"]["telemetry"]["cpu_percent"] == 10

    @pytest.mark.asyncio
    async def test_node_detail_by_prefix(self):
        async with api(make_service()) as client:
            resp = await client.get(f"/api/nodes/{pubkey('beta')[:32]}")
            body = await resp.json()
        assert body["node"]["pubkey"] == pubkey("beta")

    @pytest.mark.asyncio
    async def test_node_detail_refreshes_missing_telemetry(self):
        service = make_service()
        snapshot, _ = await service.get_snapshot()
        delta = snapshot.find(pubkey("delta"))
        service.refresh_peer_telemetry = AsyncMock(
            return_value=delta.with_telemetry(Telemetry(**TELEMETRY)),
        )
        async with api(service) as client:
            body = await (await client.get(f"/api/nodes/{pubkey('delta')}")).json()
        service.refresh_peer_telemetry.assert_awaited_once()
        assert body["node"]["telemetry"] is not None

    @pytest.mark.asyncio
    async def test_node_not_found(self):
        async with api(make_service()) as client:
            resp = await client.get(f"/api/nodes/{'z' * 44}")
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_short_pubkey_rejected(self):
        async with api(make_service()) as client:
            resp = await client.get("/api/nodes/abc")
            assert resp.status == 400


# ── History API ──────────────────────────────────────────────────

class TestHistoryApi:
    @pytest.mark.asyncio
    async def test_history(self, tmp_path):
        store = HistoryStore(tmp_path / "h.db")
        snapshot = make_snapshot()
        store.insert_batch(snapshot.peers, NOW - timedelta(hours=2))
        store.insert_batch(snapshot.peers, NOW - timedelta(hours=1))
        store.insert_batch(snapshot.peers, NOW - timedelta(hours=48))

        async with api(make_service(history=store)) as client:
            resp = await client.get(f"/api/nodes/{pubkey('alpha')}/history?hours=24")
            assert resp.status == 200
            body = await resp.json()
        store.close()

        assert body["count"] == 2
        assert all(r["pubkey"] == pubkey("alpha") for r in body["history"])

    @pytest.mark.asyncio
    async def test_history_disabled(self):
        async with api(make_service()) as client:
            resp = await client.get(f"/api/nodes/{pubkey('alpha')}/history")
            assert resp.status == 503

    @pytest.mark.asyncio
    async def test_history_bad_hours(self, tmp_path):
        store = HistoryStore(tmp_path / "h.db")
        async with api(make_service(history=store)) as client:
            resp = await client.get(f"/api/nodes/{pubkey('alpha')}/history?hours=0")
            assert resp.status == 400
        store.close()


# ── Stats, health, leaderboard, export ───────────────────────────

class TestOtherApis:
    @pytest.mark.asyncio
    async def test_stats(self):
        async with api(make_service()) as client:
            resp = await client.get("/api/stats")
            body = await resp.json()
            assert resp.headers["X-Cache"] == "MISS"
            resp = await client.get("/api/stats")
            assert resp.headers["X-Cache"] == "HIT"
        assert body["total_nodes"] == 4
        assert body["health_percent"] == 50

    @pytest.mark.asyncio
    async def test_health_ok(self):
        service = make_service()
        service.seed_health = AsyncMock(return_value=[
            {"host": "seed-x", "healthy": True, "latency_ms": 20},
            {"host": "seed-y", "healthy": True, "latency_ms": 40},
        ])
        async with api(service) as client:
            resp = await client.get("/api/health")
            assert resp.status == 200
            body = await resp.json()
        assert body["status"] == "healthy"
        assert body["seeds"]["avg_latency_ms"] == 30

    @pytest.mark.asyncio
    async def test_health_critical(self):
        service = make_service()
        service.seed_health = AsyncMock(return_value=[
            {"host": "seed-x", "healthy": False, "latency_ms": 0},
        ])
        async with api(service) as client:
            resp = await client.get("/api/health")
            assert resp.status == 503
            body = await resp.json()
        assert body["status"] == "critical"

    @pytest.mark.asyncio
    async def test_leaderboard(self):
        async with api(make_service()) as client:
            body = await (await client.get("/api/leaderboard?limit=2")).json()
        assert body["total"] == 2
        totals = [e["total"] for e in body["leaderboard"]]
        assert totals == sorted(totals, reverse=True)
        assert body["leaderboard"][0]["pubkey"] == pubkey("alpha")

    @pytest.mark.asyncio
    async def test_export_json(self):
        async with api(make_service()) as client:
            body = await (await client.get("/api/export?scores=true")).json()
        assert body["meta"]["total"] == 4
        assert body["meta"]["includes_scores"] is True
        assert "score_total" in body["nodes"][0]

    @pytest.mark.asyncio
    async def test_export_csv(self):
        async with api(make_service()) as client:
            resp = await client.get("/api/export?format=csv&stats=false")
            assert resp.status == 200
            assert resp.content_type == "text/csv"
            assert "attachment" in resp.headers["Content-Disposition"]
            text = await resp.text()
        lines = text.strip().splitlines()
        assert lines[0] == "pubkey,address,version,status,last_seen"
        assert len(lines) == 5

    @pytest.mark.asyncio
    async def test_export_bad_format(self):
        async with api(make_service()) as client:
            resp = await client.get("/api/export?format=xml")
            assert resp.status == 400


# ── Network analytics ────────────────────────────────────────────

class TestAnalyticsApi:
    @pytest.mark.asyncio
    async def test_network_history(self, tmp_path):
        store = HistoryStore(tmp_path / "h.db")
        snapshot = make_snapshot()
        store.insert_batch(snapshot.peers, NOW - timedelta(hours=3))
        store.insert_batch(snapshot.peers[:2], NOW - timedelta(hours=1))

        async with api(make_service(history=store)) as client:
            resp = await client.get("/api/analytics/network?hours=6")
            assert resp.status == 200
            body = await resp.json()
        store.close()

        assert [h["total_nodes"] for h in body["history"]] == [4, 2]
        assert [h["health_percent"] for h in body["history"]] == [50.0, 100.0]
        assert body["summary"] == {
            "total_data_points": 2,
            "avg_health_percent": 75.0,
            "min_health_percent": 50.0,
            "max_health_percent": 100.0,
            "avg_total_nodes": 3,
            "time_range_hours": 6,
            "interval": "hour",
        }

    @pytest.mark.asyncio
    async def test_daily_interval(self, tmp_path):
        store = HistoryStore(tmp_path / "h.db")
        store.insert_batch(make_snapshot().peers, NOW - timedelta(minutes=5))
        async with api(make_service(history=store)) as client:
            body = await (await client.get("/api/analytics/network?interval=day")).json()
        store.close()
        assert body["summary"]["interval"] == "day"
        assert body["history"][0]["timestamp"].endswith("T00:00:00+00:00")

    @pytest.mark.asyncio
    async def test_no_data(self, tmp_path):
        store = HistoryStore(tmp_path / "h.db")
        async with api(make_service(history=store)) as client:
            resp = await client.get("/api/analytics/network")
            assert resp.status == 404
        store.close()

    @pytest.mark.asyncio
    async def test_history_disabled(self):
        async with api(make_service()) as client:
            resp = await client.get("/api/analytics/network")
            assert resp.status == 503

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["hours=0", "hours=721", "interval=week"])
    async def test_invalid_query(self, tmp_path, query):
        store = HistoryStore(tmp_path / "h.db")
        async with api(make_service(history=store)) as client:
            resp = await client.get(f"/api/analytics/network?{query}")
            assert resp.status == 400
        store.close()


# ── Geolocation ──────────────────────────────────────────────────

class FakeGeo:
    def __init__(self, known: dict[str, GeoLocation]) -> None:
        self.known = known
        self.calls: list[list[str]] = []

    async def lookup_many(self, ips):
        ips = list(ips)
        self.calls.append(ips)
        return {ip: self.known[ip] for ip in ips if ip in self.known}


def geo_snapshot() -> Snapshot:
    hosts = [
        ("alpha", "5.9.0.1:9001"),
        ("beta", "5.9.0.1:9002"),
        ("gamma", "51.0.0.1:9001"),
        ("delta", "127.0.0.1:9001"),
    ]
    peers = tuple(
        EnrichedPeer.build(
            Peer(pubkey=pubkey(name), address=address, last_seen_timestamp=NOW.timestamp()),
            PeerStatus.ONLINE,
            None,
        )
        for name, address in hosts
    )
    return Snapshot(
        peers=peers, total_discovered=4, total_with_telemetry=0, errors=(),
        duration_ms=5, collected_at=NOW,
    )


class TestGeoApi:
    @pytest.mark.asyncio
    async def test_geo(self):
        geo = FakeGeo({"5.9.0.1": GeoLocation(
            ip="5.9.0.1", country="Germany", country_code="DE", data_center="Hetzner",
        )})
        service = AtlasService(
            AtlasConfig(db_path=""), collector=FakeCollector(geo_snapshot()), geo=geo,
        )
        async with api(service) as client:
            resp = await client.get("/api/geo")
            assert resp.status == 200
            assert resp.headers["X-Cache"] == "MISS"
            body = await resp.json()
            again = await client.get("/api/geo")
            assert again.headers["X-Cache"] == "HIT"

        assert len(geo.calls) == 1
        # Loopback hosts are never sent for lookup
        assert set(geo.calls[0]) == {"5.9.0.1", "51.0.0.1"}
        assert body["total"] == 4
        assert body["geolocated"] == 1
        by_name = {n["pubkey"].rstrip("k"): n["geo"] for n in body["nodes"]}
        assert by_name["beta"]["country"] == "Germany"
        gamma = by_name["gamma"]
        assert (gamma["ip"], gamma["country"], gamma["country_code"]) == ("51.0.0.1", "Unknown", "XX")
        assert by_name["delta"]["ip"] == "unknown"
        assert body["dc_concentration"] == [{
            "data_center": "Hetzner", "count": 1, "percentage": 100.0,
            "score": 0.0, "risk": "HIGH",
        }]
        assert body["country_distribution"][0]["country_code"] == "DE"


# ── Rate limiting ────────────────────────────────────────────────

class TestServiceRateLimit:
    @pytest.mark.asyncio
    async def test_api_requests_limited_per_client(self):
        async with api(make_service(rate_limit_per_minute=2)) as client:
            statuses = [(await client.get("/api/stats")).status for _ in range(3)]
            other = await client.get("/api/stats", headers={"X-Forwarded-For": "203.0.113.7"})
        assert statuses == [200, 200, 429]
        assert other.status == 200

    @pytest.mark.asyncio
    async def test_zero_disables_limit(self):
        service = make_service(rate_limit_per_minute=0)
        assert service.limiter is None
        async with api(service) as client:
            resp = await client.get("/api/stats")
            assert "X-RateLimit-Limit" not in resp.headers

    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError):
            AtlasConfig(rate_limit_per_minute=-1)
