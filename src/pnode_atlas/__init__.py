"""pNode Atlas: monitoring for the pNode storage network.

Polls the bootstrap seeds, merges their peer lists, enriches every peer
with live telemetry and serves the resulting snapshot over a small
aiohttp dashboard API.
"""

__version__ = "0.3.0"
