#!/usr/bin/env python3
"""
Command line entry point.

    python -m solana_token_cache_bundle.token_cache fetch
    python -m solana_token_cache_bundle.token_cache enrich 20
    python -m solana_token_cache_bundle.token_cache watch --interval 300 --max 50
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Optional

from ..common.constants import ensure_app_dirs
from ..common.feature_flags import resolved_run_flags
from ..utils.env_loader import ensure_appdata_env_bootstrap, load_env_first_found
from .service import TokenCacheService
from .settings import CacheSettings
from .utils_exec import load_config, setup_logging


def _positive_int(value):
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return n


def _parse_args(argv=None):
    p = argparse.ArgumentParser(description="Solana token cache")
    p.add_argument("-c", "--config", dest="config", default=None,
                   help="Path to config.yaml (optional; will use AppData default if omitted)")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("fetch", help="fetch the latest listing and cache it")
    enrich = sub.add_parser("enrich", help="fetch, enrich and cache")
    enrich.add_argument("max_tokens", nargs="?", type=_positive_int, default=None,
                        help="only enrich the first N tokens of the listing")
    sub.add_parser("test", help="fetch and enrich 3 tokens")
    sub.add_parser("get", help="print the cached basic snapshot")
    sub.add_parser("enriched", help="print the cached enriched snapshot")
    sub.add_parser("list", help="print successfully enriched tokens by market cap")
    sub.add_parser("info", help="print cache status")
    sub.add_parser("cleanup", help="delete expired cache rows")
    sub.add_parser("stats", help="print enrichment statistics")
    meta = sub.add_parser("meta", help="print metadata for one mint")
    meta.add_argument("mint")
    market = sub.add_parser("market", help="print the best DexScreener pair for one mint")
    market.add_argument("mint")
    watch = sub.add_parser("watch", help="refresh periodically until interrupted")
    watch.add_argument("--interval", type=float, default=None, help="seconds between cycles")
    watch.add_argument("--max", dest="max_tokens", type=_positive_int, default=None, help="tokens to enrich per cycle")
    watch.add_argument("--no-enrich", dest="enrich", action="store_false", help="basic fetch only")
    return p.parse_args(argv)


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2, default=str))


async def _dispatch(svc: TokenCacheService, args: argparse.Namespace) -> Optional[Any]:
    cmd = args.command
    if cmd == "fetch":
        snap = await svc.fetch_and_cache()
        return {"count": snap["count"], "timestamp": snap["timestamp"]}
    if cmd in ("enrich", "test"):
        n = 3 if cmd == "test" else args.max_tokens
        snap = await svc.fetch_enrich_and_cache(n)
        if snap is None:
            return None
        return {k: v for k, v in snap.items() if k != "tokens"} | {"tokens": snap["tokens"][:5]}
    if cmd == "get":
        return await svc.get_cached_basic_tokens()
    if cmd == "enriched":
        return await svc.get_enriched_tokens()
    if cmd == "list":
        return await svc.list_tokens()
    if cmd == "info":
        return await svc.cache_status()
    if cmd == "cleanup":
        return await svc.cleanup_expired()
    if cmd == "stats":
        return await svc.stats()
    if cmd == "meta":
        return await svc.get_token_metadata(args.mint)
    if cmd == "market":
        return await svc.get_market_data(args.mint)
    if cmd == "watch":
        cycles = await svc.run_scheduler(args.interval, args.max_tokens, args.enrich)
        return {"cycles": cycles}
    raise ValueError(f"unknown command {cmd!r}")


def main(argv=None) -> int:
    args = _parse_args(argv)
    ensure_app_dirs()
    if load_env_first_found() is None:
        ensure_appdata_env_bootstrap()
    config = load_config(args.config)
    logger = setup_logging(config)
    logger.info("Run flags: %s", resolved_run_flags(config))
    settings = CacheSettings.from_config(config)

    async def _runner() -> Optional[Any]:
        async with await TokenCacheService.create(settings) as svc:
            return await _dispatch(svc, args)

    try:
        result = asyncio.run(_runner())
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logger.error("Command %s failed: %s", args.command, e, exc_info=True)
        return 1
    _print(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
