"""IP geolocation of pNode hosts through the ip-api.com JSON endpoint.

The free tier allows 45 requests a minute without a key, so lookups are
spaced ``min_interval`` seconds apart and every success is cached for a
day. Failures are logged and yield ``None``; they are not cached.

Aggregates over the located hosts:
  - data-center concentration (share, score and risk per provider)
  - country distribution
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Any, Literal

import aiohttp
from aiohttp import ClientSession, ClientTimeout
from pydantic import BaseModel, ConfigDict, Field

from pnode_atlas.cache import SnapshotCache

logger = logging.getLogger(__name__)

IP_API_URL = "http://ip-api.com/json"
IP_API_FIELDS = "status,message,country,countryCode,region,regionName,city,lat,lon,isp,as"

MIN_INTERVAL = 1.4   # seconds between upstream requests, about 43 a minute
GEO_TTL = 86_400     # seconds
GEO_TIMEOUT = 10.0   # seconds
GEO_CACHE_ENTRIES = 10_000

UNKNOWN = "Unknown"

# Provider name, then substrings matched against the ISP and AS strings
DATA_CENTERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Hetzner", ("hetzner",)),
    ("OVH", ("ovh",)),
    ("AWS", ("amazon", "aws")),
    ("Google Cloud", ("google", "gcp")),
    ("DigitalOcean", ("digitalocean",)),
    ("Linode/Akamai", ("linode", "akamai")),
    ("Vultr", ("vultr",)),
    ("Contabo", ("contabo",)),
    ("Scaleway", ("scaleway",)),
    ("Azure", ("azure", "microsoft")),
)


class GeoResponse(BaseModel):
    """Body returned by ``GET {IP_API_URL}/{ip}``."""

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["success", "fail"]
    country: str | None = None
    country_code: str | None = Field(default=None, alias="countryCode")
    region_name: str | None = Field(default=None, alias="regionName")
    city: str | None = None
    lat: float | None = None
    lon: float | None = None
    isp: str | None = None
    asn: str | None = Field(default=None, alias="as")
    message: str | None = None


class GeoLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    ip: str
    country: str = UNKNOWN
    country_code: str = "XX"
    region: str = UNKNOWN
    city: str = UNKNOWN
    lat: float = 0.0
    lon: float = 0.0
    isp: str = UNKNOWN
    asn: str = UNKNOWN
    data_center: str = UNKNOWN

    @classmethod
    def from_response(cls, ip: str, resp: GeoResponse) -> GeoLocation:
        return cls(
            ip=ip,
            country=resp.country or UNKNOWN,
            country_code=resp.country_code or "XX",
            region=resp.region_name or UNKNOWN,
            city=resp.city or UNKNOWN,
            lat=resp.lat or 0.0,
            lon=resp.lon or 0.0,
            isp=resp.isp or UNKNOWN,
            asn=resp.asn or UNKNOWN,
            data_center=infer_data_center(resp.isp or "", resp.asn or ""),
        )


class GeoLocator:
    """Rate-limited, cached ip-api.com client."""

    def __init__(
        self,
        url: str = IP_API_URL,
        min_interval: float = MIN_INTERVAL,
        ttl: float = GEO_TTL,
        timeout: float = GEO_TIMEOUT,
        cache: SnapshotCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.url = url.rstrip("/")
        self.min_interval = min_interval
        self.ttl = ttl
        self.timeout = timeout
        self._cache = cache or SnapshotCache(max_entries=GEO_CACHE_ENTRIES)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_request: float | None = None
        self.requests = 0

    async def lookup(self, ip: str, session: ClientSession | None = None) -> GeoLocation | None:
        cached = self._cache.get(_cache_key(ip))
        if cached is not None:
            return cached
        if session is None:
            async with ClientSession() as own:
                return await self._fetch(own, ip)
        return await self._fetch(session, ip)

    async def lookup_many(self, ips: Iterable[str]) -> dict[str, GeoLocation]:
        """Locate each distinct IP once; IPs that fail are left out."""
        unique = list(dict.fromkeys(ips))
        found: dict[str, GeoLocation] = {}
        if not unique:
            return found
        async with ClientSession() as session:
            for ip in unique:
                geo = await self.lookup(ip, session)
                if geo is not None:
                    found[ip] = geo
        logger.info("Geolocated %d of %d hosts", len(found), len(unique))
        return found

    async def _fetch(self, session: ClientSession, ip: str) -> GeoLocation | None:
        async with self._lock:
            # Another task may have resolved this IP while we waited
            cached = self._cache.get(_cache_key(ip))
            if cached is not None:
                return cached
            await self._wait_turn()
            self.requests += 1
            try:
                async with session.get(
                    f"{self.url}/{ip}",
                    params={"fields": IP_API_FIELDS},
                    timeout=ClientTimeout(total=self.timeout),
                ) as resp:
                    if resp.status != 200:
                        raise aiohttp.ClientResponseError(
                            resp.request_info, resp.history,
                            status=resp.status, message=resp.reason or "",
                        )
                    data = await resp.json(content_type=None)
                parsed = GeoResponse.model_validate(data)
            except (asyncio.TimeoutError, aiohttp.ClientError, OSError, ValueError) as exc:
                logger.warning("Geolocation for %s failed: %s", ip, exc)
                return None
            finally:
                self._last_request = self._clock()

        if parsed.status == "fail":
            logger.warning("Geolocation for %s refused: %s", ip, parsed.message)
            return None
        geo = GeoLocation.from_response(ip, parsed)
        self._cache.set(_cache_key(ip), geo, self.ttl)
        return geo

    async def _wait_turn(self) -> None:
        if self._last_request is None or self.min_interval <= 0:
            return
        wait = self.min_interval - (self._clock() - self._last_request)
        if wait > 0:
            await asyncio.sleep(wait)


def _cache_key(ip: str) -> str:
    return f"geo:{ip}"


def infer_data_center(isp: str, asn: str) -> str:
    """Hosting provider named in the ISP or AS string, else ``"Other"``."""
    text = f"{isp} {asn}".lower()
    for name, needles in DATA_CENTERS:
        if any(n in text for n in needles):
            return name
    return "Other"


def _risk(percentage: float) -> str:
    if percentage > 30:
        return "HIGH"
    if percentage > 15:
        return "MEDIUM"
    return "LOW"


def dc_concentration(geos: Sequence[GeoLocation]) -> list[dict[str, Any]]:
    """Hosts per data center, largest first.

    ``score`` runs from 2.0 (no concentration) down to 0.0 once a single
    provider holds half the hosts or more.
    """
    counts: dict[str, int] = {}
    for geo in geos:
        counts[geo.data_center] = counts.get(geo.data_center, 0) + 1
    total = len(geos)
    rows = []
    for dc, count in counts.items():
        pct = count / total * 100
        rows.append({
            "data_center": dc,
            "count": count,
            "percentage": round(pct, 1),
            "score": round(max(0.0, 2.0 - pct / 50 * 2.0), 2),
            "risk": _risk(pct),
        })
    rows.sort(key=lambda r: r["count"], reverse=True)
    return rows


def country_distribution(geos: Sequence[GeoLocation]) -> list[dict[str, Any]]:
    counts: dict[str, list] = {}
    for geo in geos:
        entry = counts.setdefault(geo.country, [geo.country_code, 0])
        entry[1] += 1
    total = len(geos)
    rows = [
        {
            "country": country,
            "country_code": code,
            "count": count,
            "percentage": round(count / total * 100, 1),
        }
        for country, (code, count) in counts.items()
    ]
    rows.sort(key=lambda r: r["count"], reverse=True)
    return rows
