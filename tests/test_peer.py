"""Tests for peer status classification and the enriched peer record."""

from __future__ import annotations

import pytest
import pydantic

from pnode_atlas.network.peer import (
    EnrichedPeer,
    PeerStatus,
    StatusThresholds,
    determine_status,
    format_uptime,
)
from pnode_atlas.network.schemas import Peer, Telemetry

NOW = 1_700_000_000.0


def make_peer(pubkey: str = "P" * 44, last_seen: float = NOW, **kwargs) -> Peer:
    return Peer(
        pubkey=pubkey,
        address=kwargs.pop("address", "10.0.0.1:9001"),
        last_seen_timestamp=last_seen,
        **kwargs,
    )


def make_telemetry(**overrides) -> Telemetry:
    values = dict(
        active_streams=1, cpu_percent=5.0, current_index=1, file_size=10,
        last_updated=NOW, packets_received=1, packets_sent=1,
        ram_total=1000, ram_used=250, total_bytes=100, total_pages=1,
        uptime=90_000,
    )
    values.update(overrides)
    return Telemetry(**values)


# ── determine_status ─────────────────────────────────────────────

class TestDetermineStatus:
    @pytest.mark.parametrize("age, expected", [
        (0, PeerStatus.ONLINE),
        (239, PeerStatus.ONLINE),
        (240, PeerStatus.DEGRADED),
        (599, PeerStatus.DEGRADED),
        (600, PeerStatus.OFFLINE),
        (3599, PeerStatus.OFFLINE),
        (3600, PeerStatus.UNKNOWN),
        (100_000, PeerStatus.UNKNOWN),
    ])
    def test_boundaries(self, age, expected):
        assert determine_status(NOW - age, now=NOW) == expected

    def test_future_timestamp_is_online(self):
        assert determine_status(NOW + 30, now=NOW) == PeerStatus.ONLINE

    def test_monotonic_in_age(self):
        order = [PeerStatus.ONLINE, PeerStatus.DEGRADED, PeerStatus.OFFLINE, PeerStatus.UNKNOWN]
        ranks = [order.index(determine_status(NOW - age, now=NOW)) for age in range(0, 4000, 7)]
        assert ranks == sorted(ranks)

    def test_custom_thresholds(self):
        tight = StatusThresholds(online=10, degraded=20, offline=30)
        assert determine_status(NOW - 15, now=NOW, thresholds=tight) == PeerStatus.DEGRADED
        assert determine_status(NOW - 30, now=NOW, thresholds=tight) == PeerStatus.UNKNOWN

    def test_defaults_to_wall_clock(self):
        import time
        assert determine_status(time.time() - 5) == PeerStatus.ONLINE

    @pytest.mark.parametrize("kwargs", [
        {"online": 0},
        {"online": 700},
        {"degraded": 4000},
    ])
    def test_invalid_thresholds(self, kwargs):
        with pytest.raises(ValueError):
            StatusThresholds(**kwargs)


# ── format_uptime ────────────────────────────────────────────────

class TestFormatUptime:
    @pytest.mark.parametrize("seconds, expected", [
        (0, "0m"),
        (59, "0m"),
        (720, "12m"),
        (3600, "1h 0m"),
        (4 * 3600 + 12 * 60, "4h 12m"),
        (3 * 86400 + 4 * 3600 + 59, "3d 4h"),
    ])
    def test_format(self, seconds, expected):
        assert format_uptime(seconds) == expected


# ── Peer schema ──────────────────────────────────────────────────

class TestPeerSchema:
    def test_host_strips_port(self):
        assert make_peer(address="1.2.3.4:9001").host == "1.2.3.4"

    def test_host_without_port(self):
        assert make_peer(address="1.2.3.4").host == "1.2.3.4"

    @pytest.mark.parametrize("pubkey", ["x" * 31, "x" * 65, ""])
    def test_pubkey_length_enforced(self, pubkey):
        with pytest.raises(pydantic.ValidationError):
            make_peer(pubkey=pubkey)

    def test_frozen(self):
        peer = make_peer()
        with pytest.raises(pydantic.ValidationError):
            peer.address = "elsewhere"


# ── EnrichedPeer ─────────────────────────────────────────────────

class TestEnrichedPeer:
    def test_build_without_telemetry(self):
        enriched = EnrichedPeer.build(make_peer(version="0.8.0"), PeerStatus.OFFLINE)
        assert enriched.status == PeerStatus.OFFLINE
        assert enriched.version == "0.8.0"
        assert enriched.telemetry is None
        assert enriched.ram_percent is None
        assert enriched.uptime_formatted is None
        assert enriched.credits is None

    def test_build_with_telemetry(self):
        enriched = EnrichedPeer.build(make_peer(), PeerStatus.ONLINE, make_telemetry())
        assert enriched.ram_percent == pytest.approx(25.0)
        assert enriched.uptime_formatted == "1d 1h"

    def test_zero_ram_total_has_no_percent(self):
        enriched = EnrichedPeer.build(
            make_peer(), PeerStatus.ONLINE, make_telemetry(ram_total=0, ram_used=0),
        )
        assert enriched.telemetry is not None
        assert enriched.ram_percent is None

    def test_with_telemetry_keeps_status_and_credits(self):
        base = EnrichedPeer.build(make_peer(), PeerStatus.DEGRADED)
        base = base.model_copy(update={"credits": 42.0})
        refreshed = base.with_telemetry(make_telemetry(ram_used=500))
        assert refreshed.status == PeerStatus.DEGRADED
        assert refreshed.credits == 42.0
        assert refreshed.ram_percent == pytest.approx(50.0)
        assert base.telemetry is None

    def test_status_serializes_as_string(self):
        enriched = EnrichedPeer.build(make_peer(), PeerStatus.ONLINE)
        assert enriched.model_dump(mode="json")["status"] == "online"
