"""CLI entry point for pNode Atlas.

Usage:
    pnode-atlas collect
    pnode-atlas collect --no-stats --seeds 173.212.220.65,161.97.97.41
    pnode-atlas collect --credits --persist --db ./atlas-data/history.db
    pnode-atlas seeds
    pnode-atlas serve --config atlas.json --port 8080

Environment variables:
    ATLAS_HOST:         Override API listen host
    ATLAS_PORT:         Override API listen port
    ATLAS_SEEDS:        Comma-separated bootstrap seed hosts
    ATLAS_DB_PATH:      History database path ("" disables history)
    ATLAS_CREDITS_URL:  Pod credits API URL
    ATLAS_RATE_LIMIT:   API requests per minute per client IP (0 disables)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any

from pnode_atlas.network.collector import CollectorConfig, SnapshotCollector, check_seed_health
from pnode_atlas.network.peer import StatusThresholds
from pnode_atlas.retry import RetryPolicy
from pnode_atlas.service import AtlasConfig, AtlasService
from pnode_atlas.stats.network_stats import calculate_network_stats, health_summary
from pnode_atlas.storage.history import HistoryStore

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pnode-atlas",
        description="Monitor the pNode storage network",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", "-c", help="Path to JSON config file")
    parser.add_argument("--seeds", help="Comma-separated bootstrap seed hosts")
    parser.add_argument("--timeout", type=float, help="Per-call timeout in seconds")
    parser.add_argument("--concurrency", type=int, help="Telemetry calls in flight at once")
    parser.add_argument("--debug", action="store_true", help="Log pRPC request/response bodies")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    collect = sub.add_parser("collect", help="Collect one snapshot and print it as JSON")
    collect.add_argument(
        "--stats", dest="fetch_stats", action=argparse.BooleanOptionalAction, default=None,
        help="Fetch per-peer telemetry (default: on)",
    )
    collect.add_argument(
        "--credits", dest="fetch_credits", action=argparse.BooleanOptionalAction, default=None,
        help="Fetch pod credits (default: off for collect)",
    )
    collect.add_argument("--persist", action="store_true", help="Append rows to the history DB")
    collect.add_argument("--db", help="History database path")
    collect.add_argument("--summary", action="store_true", help="Print stats instead of peers")

    sub.add_parser("seeds", help="Check bootstrap seed health")

    serve = sub.add_parser("serve", help="Run the dashboard API with background collection")
    serve.add_argument("--host", help="Listen host")
    serve.add_argument("--port", "-p", type=int, help="Listen port")
    serve.add_argument("--db", help="History database path")
    serve.add_argument("--interval", type=float, help="Seconds between collections")

    return parser.parse_args(argv)


def load_config(
    path: str | None,
    overrides: dict[str, Any],
    defaults: dict[str, Any] | None = None,
) -> AtlasConfig:
    """Build the service config: defaults, JSON file, environment, then flags."""
    raw: dict[str, Any] = dict(defaults or {})
    if path:
        with open(path) as f:
            raw.update(json.load(f))

    env = os.environ
    if "ATLAS_HOST" in env:
        raw["host"] = env["ATLAS_HOST"]
    if "ATLAS_PORT" in env:
        raw["port"] = int(env["ATLAS_PORT"])
    if "ATLAS_SEEDS" in env:
        raw["seeds"] = _split_hosts(env["ATLAS_SEEDS"])
    if "ATLAS_DB_PATH" in env:
        raw["db_path"] = env["ATLAS_DB_PATH"]
    if "ATLAS_CREDITS_URL" in env:
        raw["credits_url"] = env["ATLAS_CREDITS_URL"]
    if "ATLAS_RATE_LIMIT" in env:
        raw["rate_limit_per_minute"] = int(env["ATLAS_RATE_LIMIT"])

    raw.update({k: v for k, v in overrides.items() if v is not None})

    collector_kwargs: dict[str, Any] = {
        "timeout": raw.get("timeout", 10.0),
        "concurrency": raw.get("concurrency", 20),
        "fetch_stats": raw.get("fetch_stats", True),
        "fetch_credits": raw.get("fetch_credits", True),
        "credits_timeout": raw.get("credits_timeout", 10.0),
        "debug": raw.get("debug", False),
    }
    if raw.get("seeds"):
        collector_kwargs["seeds"] = list(raw["seeds"])
    if raw.get("credits_url"):
        collector_kwargs["credits_url"] = raw["credits_url"]
    if "prpc_port" in raw:
        collector_kwargs["port"] = raw["prpc_port"]
    if "thresholds" in raw:
        collector_kwargs["thresholds"] = StatusThresholds(**raw["thresholds"])

    config = AtlasConfig(
        host=raw.get("host", "0.0.0.0"),
        port=raw.get("port", 8080),
        db_path=raw.get("db_path", "./atlas-data/history.db"),
        collect_interval=raw.get("collect_interval", 120.0),
        collector=CollectorConfig(**collector_kwargs),
        detail_timeout=raw.get("detail_timeout", 5.0),
        **{k: raw[k] for k in _PASSTHROUGH if k in raw},
    )
    if "retry" in raw:
        config.detail_retry = RetryPolicy(**raw["retry"])
    if "latest_version" in raw:
        config.latest_version = raw["latest_version"]
    return config


# Config file keys copied onto AtlasConfig unchanged
_PASSTHROUGH = ("rate_limit_per_minute", "geo_url", "geo_min_interval")


def _split_hosts(value: str) -> list[str]:
    return [h.strip() for h in value.split(",") if h.strip()]


# ── Commands ─────────────────────────────────────────────────

async def run_collect(config: AtlasConfig, args: argparse.Namespace) -> int:
    collector_cfg = config.collector
    snapshot = await SnapshotCollector(collector_cfg).collect()

    if args.persist:
        if not config.db_path:
            print("No history database configured", file=sys.stderr)
            return 2
        store = HistoryStore(config.db_path)
        try:
            written = store.insert_batch(snapshot.peers, snapshot.collected_at)
        finally:
            store.close()
        logger.info("Persisted %d rows to %s", written, config.db_path)

    if args.summary:
        stats = calculate_network_stats(snapshot.peers, snapshot.collected_at)
        print(json.dumps(stats, indent=2))
        logger.info(health_summary(stats))
    else:
        print(snapshot.model_dump_json(indent=2))

    return 1 if snapshot.all_seeds_failed(len(collector_cfg.seeds)) else 0


async def run_seeds(config: AtlasConfig) -> int:
    results = await check_seed_health(
        config.collector.seeds,
        port=config.collector.port,
    )
    healthy = 0
    for r in results:
        mark = "ok" if r["healthy"] else "DOWN"
        healthy += r["healthy"]
        print(f"  {r['host']:<18} {mark:<5} {r['latency_ms']:>6} ms")
    print(f"\n  {healthy}/{len(results)} seeds healthy")
    return 0 if healthy else 1


async def run_service(service: AtlasService) -> None:
    """Start the service and run until interrupted."""
    await service.start()

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def handle_signal() -> None:
        print("\nShutting down...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await stop_event.wait()
    await service.stop()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    overrides: dict[str, Any] = {
        "seeds": _split_hosts(args.seeds) if args.seeds else None,
        "timeout": args.timeout,
        "concurrency": args.concurrency,
        "debug": True if args.debug else None,
    }
    defaults: dict[str, Any] = {}
    if args.command in ("collect", "serve"):
        overrides["db_path"] = args.db
    if args.command == "collect":
        overrides.update({"fetch_stats": args.fetch_stats, "fetch_credits": args.fetch_credits})
        defaults["fetch_credits"] = False
    if args.command == "serve":
        overrides.update({"host": args.host, "port": args.port, "collect_interval": args.interval})

    if args.config and not Path(args.config).exists():
        print(f"Config file not found: {args.config}", file=sys.stderr)
        return 2
    try:
        config = load_config(args.config, overrides, defaults)
    except (ValueError, TypeError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    if args.command == "collect":
        return asyncio.run(run_collect(config, args))
    if args.command == "seeds":
        return asyncio.run(run_seeds(config))

    print("=" * 60)
    print("  pNode Atlas")
    print("=" * 60)
    print(f"  Seeds: {len(config.collector.seeds)}")
    print(f"  Collect interval: {config.collect_interval:g}s")
    print(f"  History: {config.db_path or 'disabled'}")
    print(f"  Listening on {config.host}:{config.port}")
    print("=" * 60 + "\n")

    asyncio.run(run_service(AtlasService(config)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
