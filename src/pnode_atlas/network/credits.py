"""Pod credits: optional reputation numbers from a separate HTTP API.

Best effort only: any failure yields an empty mapping and is logged only
when debugging is enabled.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence

import aiohttp
from aiohttp import ClientSession, ClientTimeout
from pydantic import BaseModel

from pnode_atlas.network.peer import EnrichedPeer
from pnode_atlas.network.seeds import CREDITS_TIMEOUT

logger = logging.getLogger(__name__)


class PodCredits(BaseModel):
    pod_id: str
    credits: float


class CreditsResponse(BaseModel):
    pods_credits: list[PodCredits] = []
    status: str | None = None


async def fetch_credits(
    session: ClientSession,
    url: str,
    timeout: float = CREDITS_TIMEOUT,
    debug: bool = False,
) -> dict[str, float]:
    """Return ``{pubkey: credits}``, or an empty dict if anything goes wrong."""
    try:
        async with session.get(url, timeout=ClientTimeout(total=timeout)) as resp:
            if resp.status != 200:
                raise aiohttp.ClientResponseError(
                    resp.request_info, resp.history,
                    status=resp.status, message=resp.reason or "",
                )
            data = await resp.json(content_type=None)
        parsed = CreditsResponse.model_validate(data)
    except (asyncio.TimeoutError, aiohttp.ClientError, OSError, ValueError):
        # ValueError also covers bad JSON and pydantic validation errors
        if debug:
            logger.debug("Failed to fetch pod credits from %s", url, exc_info=True)
        return {}

    credits = {c.pod_id: c.credits for c in parsed.pods_credits}
    if debug:
        logger.debug("Loaded %d pod credits", len(credits))
    return credits


def apply_credits(
    peers: Sequence[EnrichedPeer],
    credits: Mapping[str, float],
) -> list[EnrichedPeer]:
    """Attach credits by exact pubkey match; unmatched peers are left as-is."""
    merged = []
    for peer in peers:
        value = credits.get(peer.pubkey)
        merged.append(peer if value is None else peer.model_copy(update={"credits": value}))
    return merged
