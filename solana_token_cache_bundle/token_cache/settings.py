# solana_token_cache_bundle/token_cache/settings.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from solana_token_cache_bundle.common.constants import (
    BATCH_SIZE,
    CACHE_EXPIRY,
    ENRICHED_CACHE_EXPIRY,
    MAX_TOKENS,
    METADATA_CACHE_EXPIRY,
    MIN_MARKET_CAP,
    REQUEST_TIMEOUT,
    TARGET_CHAIN,
    db_path,
)
from solana_token_cache_bundle.common.feature_flags import enrichment_toggle, is_enabled_redis
from solana_token_cache_bundle.utils.env_loader import get_helius_api_key


@dataclass(frozen=True)
class LimiterSettings:
    reservoir: int
    max_concurrent: int
    window_seconds: float = 60.0


@dataclass(frozen=True)
class CacheSettings:
    """Everything the cache components need, resolved once at process start."""

    db_path: str = field(default_factory=lambda: str(db_path()))
    use_redis: bool = False
    redis_url: str = "redis://localhost:6379"
    helius_api_key: Optional[str] = None
    enrichment_enabled: bool = True

    basic_ttl_seconds: int = CACHE_EXPIRY
    enriched_ttl_seconds: int = ENRICHED_CACHE_EXPIRY
    metadata_ttl_seconds: int = METADATA_CACHE_EXPIRY

    max_tokens: int = MAX_TOKENS
    min_market_cap: float = MIN_MARKET_CAP
    batch_size: int = BATCH_SIZE
    chain_id: str = TARGET_CHAIN
    request_timeout_seconds: float = REQUEST_TIMEOUT
    refresh_interval_seconds: float = 300.0

    # coordination markers
    lock_ttl_seconds: int = 10
    recent_ttl_seconds: int = 30
    refresh_flag_ttl_seconds: int = 30
    poll_interval_seconds: float = 0.5
    poll_attempts: int = 20

    dexscreener_limits: LimiterSettings = LimiterSettings(reservoir=50, max_concurrent=1)
    helius_limits: LimiterSettings = LimiterSettings(reservoir=60, max_concurrent=2)

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]] = None) -> "CacheSettings":
        cfg = cfg or {}
        c = cfg.get("cache") or {}
        rl = cfg.get("rate_limits") or {}

        def _limits(name: str, default: LimiterSettings) -> LimiterSettings:
            sec = rl.get(name) or {}
            return LimiterSettings(
                reservoir=max(1, int(sec.get("reservoir", default.reservoir))),
                max_concurrent=max(1, int(sec.get("max_concurrent", default.max_concurrent))),
                window_seconds=float(sec.get("window_seconds", default.window_seconds)),
            )

        base = cls()
        return cls(
            db_path=os.getenv("TOKEN_CACHE_DB_PATH") or str(c.get("db_path") or base.db_path),
            use_redis=is_enabled_redis(cfg),
            redis_url=os.getenv("REDIS_URL") or str(c.get("redis_url") or base.redis_url),
            helius_api_key=get_helius_api_key(),
            enrichment_enabled=enrichment_toggle(cfg),
            basic_ttl_seconds=int(c.get("basic_ttl_seconds", base.basic_ttl_seconds)),
            enriched_ttl_seconds=int(c.get("enriched_ttl_seconds", base.enriched_ttl_seconds)),
            metadata_ttl_seconds=int(c.get("metadata_ttl_seconds", base.metadata_ttl_seconds)),
            max_tokens=max(1, int(c.get("max_tokens", base.max_tokens))),
            min_market_cap=float(c.get("min_market_cap", base.min_market_cap)),
            batch_size=max(1, int(c.get("batch_size", base.batch_size))),
            chain_id=str(c.get("chain_id", base.chain_id)),
            request_timeout_seconds=float(c.get("request_timeout_seconds", base.request_timeout_seconds)),
            refresh_interval_seconds=float(c.get("refresh_interval_seconds", base.refresh_interval_seconds)),
            lock_ttl_seconds=int(c.get("lock_ttl_seconds", base.lock_ttl_seconds)),
            recent_ttl_seconds=int(c.get("recent_ttl_seconds", base.recent_ttl_seconds)),
            refresh_flag_ttl_seconds=int(c.get("refresh_flag_ttl_seconds", base.refresh_flag_ttl_seconds)),
            poll_interval_seconds=float(c.get("poll_interval_seconds", base.poll_interval_seconds)),
            poll_attempts=max(1, int(c.get("poll_attempts", base.poll_attempts))),
            dexscreener_limits=_limits("dexscreener", base.dexscreener_limits),
            helius_limits=_limits("helius", base.helius_limits),
        )
