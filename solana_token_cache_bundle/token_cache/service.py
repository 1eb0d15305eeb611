# solana_token_cache_bundle/token_cache/service.py
"""
TokenCacheService: the one object the CLI (and any bot/transport layer) talks to.

Construct it once with `await TokenCacheService.create(settings)` (or inject the
components directly in tests), share it by reference, and `await close()` it
or use `async with`. It owns:

  * the DualTierStore (SQLite + optional Redis)
  * the marker tier used for single-flight locks and SWR refresh flags
  * the aiohttp session and one ReservoirLimiter per upstream
  * the fetcher / enrichment pipeline / single-flight / SWR helpers

Snapshots written:
  basic_tokens    solana:tokens:latest    {timestamp, count, tokens}
  enriched_tokens solana:tokens:enriched  {timestamp, originalTimestamp, count,
                                           successCount, validCount, tokens,
                                           totalTokens, maxTokens, minMarketCap,
                                           filteredAt}
"""

from __future__ import annotations

import asyncio
import logging
import random
import signal
from typing import Any, Dict, List, Optional

import aiohttp

from solana_token_cache_bundle.common.constants import (
    BASIC_TABLE,
    BASIC_TOKENS_KEY,
    ENRICHED_TABLE,
    ENRICHED_TOKENS_KEY,
    USER_AGENT,
)

from .database import SqliteStore
from .dexscreener_client import DexScreenerClient
from .enrichment import EnrichmentPipeline
from .fetching import ConditionalFetcher, is_valid_mint
from .helius_client import HeliusClient
from .memory_tier import MemoryTier
from .models import MarketPair, QualificationPolicy, RawTokenRecord, utc_now_iso
from .rate_limiter import ReservoirLimiter
from .redis_tier import RedisTier
from .settings import CacheSettings
from .single_flight import SingleFlight
from .store import DualTierStore
from .swr import StaleWhileRevalidate

logger = logging.getLogger("TokenCache")


def _limiter(name: str, limits: Any) -> ReservoirLimiter:
    return ReservoirLimiter(name, limits.reservoir, limits.max_concurrent, limits.window_seconds)


def _pct(part: int, whole: int) -> float:
    return round(100.0 * part / whole, 1) if whole else 0.0


class TokenCacheService:
    def __init__(
        self,
        settings: CacheSettings,
        store: DualTierStore,
        markers: Any,
        dex: DexScreenerClient,
        helius: Optional[HeliusClient] = None,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        limiters: Optional[Dict[str, ReservoirLimiter]] = None,
    ):
        self.settings = settings
        self.store = store
        self.markers = markers
        self.dex = dex
        self.helius = helius
        self._session = session
        self._limiters = dict(limiters or {})
        self._closed = False

        self.fetcher = ConditionalFetcher(
            store, dex, basic_ttl=settings.basic_ttl_seconds, chain_id=settings.chain_id
        )
        self.single_flight = SingleFlight(
            markers,
            self._search_market_dict,
            lock_ttl=settings.lock_ttl_seconds,
            recent_ttl=settings.recent_ttl_seconds,
            poll_interval=settings.poll_interval_seconds,
            poll_attempts=settings.poll_attempts,
        )
        self.metadata_cache = StaleWhileRevalidate(
            store,
            markers,
            self._fetch_metadata_dict,
            ttl=settings.metadata_ttl_seconds,
            flag_ttl=settings.refresh_flag_ttl_seconds,
        )
        self.pipeline: Optional[EnrichmentPipeline] = None
        if helius is not None and settings.enrichment_enabled:
            self.pipeline = EnrichmentPipeline(
                dex,
                helius,
                QualificationPolicy(settings.min_market_cap),
                batch_size=settings.batch_size,
                max_tokens=settings.max_tokens,
                market_lookup=self._market_pair_via_single_flight,
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @classmethod
    async def create(cls, settings: CacheSettings) -> "TokenCacheService":
        """Build every component from `settings`. Redis is optional and falls back to in-process markers."""
        secondary = SqliteStore(settings.db_path)
        await secondary.connect()

        primary: Optional[RedisTier] = None
        if settings.use_redis:
            redis_tier = RedisTier.from_url(settings.redis_url)
            if await redis_tier.ping():
                primary = redis_tier
                logger.info("Connected to Redis at %s", settings.redis_url)
            else:
                logger.warning("Redis unavailable at %s, using SQLite only", settings.redis_url)
                await redis_tier.close()
        else:
            logger.info("Redis disabled, using SQLite only")
        markers = primary if primary is not None else MemoryTier()
        store = DualTierStore(secondary, primary)

        session = aiohttp.ClientSession(
            headers={"User-Agent": USER_AGENT},
            timeout=aiohttp.ClientTimeout(total=settings.request_timeout_seconds),
        )
        limiters = {
            "dexscreener": _limiter("dexscreener", settings.dexscreener_limits),
            "helius": _limiter("helius", settings.helius_limits),
        }
        dex = DexScreenerClient(
            session, limiters["dexscreener"],
            chain_id=settings.chain_id, timeout=settings.request_timeout_seconds,
        )
        helius = None
        if settings.helius_api_key:
            helius = HeliusClient(
                session, limiters["helius"], settings.helius_api_key,
                timeout=settings.request_timeout_seconds,
            )
        else:
            logger.warning("HELIUS_API_KEY not set; enrichment and metadata lookups are disabled")
        return cls(settings, store, markers, dex, helius, session=session, limiters=limiters)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.metadata_cache.drain(timeout=5.0)
        if self._session is not None and not self._session.closed:
            await self._session.close()
        if self.markers is not self.store.primary:
            await self.markers.close()
        await self.store.close()
        logger.info("Token cache service closed")

    async def __aenter__(self) -> "TokenCacheService":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Fetch cycles
    # ------------------------------------------------------------------
    async def fetch_and_cache(self) -> Dict[str, Any]:
        """Fetch the listing and store the basic snapshot. Fetch errors propagate."""
        tokens = await self.fetcher.fetch_latest()
        snapshot = {
            "timestamp": utc_now_iso(),
            "count": len(tokens),
            "tokens": [t.to_dict() for t in tokens],
        }
        await self.store.set(BASIC_TABLE, BASIC_TOKENS_KEY, snapshot, self.settings.basic_ttl_seconds)
        logger.info("Cached %d %s tokens", len(tokens), self.settings.chain_id)
        await self.cleanup_expired()
        return snapshot

    async def fetch_enrich_and_cache(self, max_tokens: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """
        Basic fetch, then enrichment of (at most `max_tokens` of) the listing.

        Only qualifying records are kept in the snapshot, sorted by market cap
        (descending) and truncated to the configured maximum; the counters
        describe every record that was processed. Returns None when there is
        no Helius key or enrichment is switched off in config or env.
        """
        basic = await self.fetch_and_cache()
        if self.pipeline is None:
            if self.helius is None:
                logger.warning("Skipping enrichment: HELIUS_API_KEY is not configured")
            else:
                logger.warning("Skipping enrichment: disabled by configuration")
            return None

        tokens = [RawTokenRecord.from_dict(t) for t in basic["tokens"]]
        records = await self.pipeline.enrich(tokens, max_tokens)

        qualifying = sorted((r for r in records if not r.filtered), key=lambda r: r.market_cap_usd, reverse=True)
        qualifying = qualifying[: self.settings.max_tokens]
        success_count = sum(1 for r in records if r.success)
        valid_count = sum(1 for r in records if not r.filtered)
        now = utc_now_iso()
        snapshot = {
            "timestamp": now,
            "originalTimestamp": basic["timestamp"],
            "count": len(records),
            "successCount": success_count,
            "validCount": valid_count,
            "tokens": [r.to_dict() for r in qualifying],
            "totalTokens": len(qualifying),
            "maxTokens": self.settings.max_tokens,
            "minMarketCap": self.settings.min_market_cap,
            "filteredAt": now,
        }
        await self.store.set(ENRICHED_TABLE, ENRICHED_TOKENS_KEY, snapshot, self.settings.enriched_ttl_seconds)
        logger.info(
            "Enrichment done: success %d/%d (%.0f%%), valid %d/%d, kept %d (max %d)",
            success_count, len(records), _pct(success_count, len(records)),
            valid_count, len(records), len(qualifying), self.settings.max_tokens,
        )
        await self.cleanup_expired()
        return snapshot

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------
    async def get_cached_basic_tokens(self) -> Optional[Dict[str, Any]]:
        return await self.store.get(BASIC_TABLE, BASIC_TOKENS_KEY)

    async def get_enriched_tokens(self) -> Optional[Dict[str, Any]]:
        return await self.store.get(ENRICHED_TABLE, ENRICHED_TOKENS_KEY)

    async def list_tokens(self) -> List[Dict[str, Any]]:
        """Successfully enriched tokens from the current snapshot, biggest market cap first."""
        snap = await self.get_enriched_tokens()
        if not snap:
            return []
        tokens = [t for t in snap.get("tokens") or [] if t.get("success")]
        return sorted(tokens, key=lambda t: float(t.get("marketCapUsd") or 0.0), reverse=True)

    async def cache_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {}
        for label, table, key in (
            ("basic", BASIC_TABLE, BASIC_TOKENS_KEY),
            ("enriched", ENRICHED_TABLE, ENRICHED_TOKENS_KEY),
        ):
            exists = await self.store.exists(table, key)
            value = await self.store.get(table, key) if exists else None
            status[label] = {
                "exists": exists,
                "ttl": await self.store.ttl(table, key),
                "count": int((value or {}).get("count") or 0),
                "timestamp": (value or {}).get("timestamp"),
                "rows": await self.store.secondary.count_rows(table),
            }
        status["backend"] = {
            "primary": "redis" if self.store.primary is not None else None,
            "markers": type(self.markers).__name__,
            "dbPath": self.store.secondary.path,
            "enrichment": self.pipeline is not None,
        }
        status["limiters"] = {name: lim.stats() for name, lim in self._limiters.items()}
        return status

    async def stats(self) -> Optional[Dict[str, Any]]:
        """Aggregate numbers for the current enriched snapshot (None when there is none)."""
        snap = await self.get_enriched_tokens()
        if not snap:
            return None
        count = int(snap.get("count") or 0)
        success = int(snap.get("successCount") or 0)
        valid = int(snap.get("validCount") or 0)
        caps = [float(t.get("marketCapUsd") or 0.0) for t in snap.get("tokens") or []]
        return {
            "timestamp": snap.get("timestamp"),
            "count": count,
            "successCount": success,
            "validCount": valid,
            "totalTokens": len(caps),
            "successRate": _pct(success, count),
            "qualificationRate": _pct(valid, count),
            "avgMarketCap": (sum(caps) / len(caps)) if caps else 0.0,
            "maxMarketCap": max(caps) if caps else 0.0,
            "minMarketCap": snap.get("minMarketCap"),
            "maxTokens": snap.get("maxTokens"),
        }

    async def cleanup_expired(self) -> Dict[str, int]:
        return await self.store.cleanup_expired()

    # ------------------------------------------------------------------
    # Per-token lookups
    # ------------------------------------------------------------------
    async def _search_market_dict(self, mint: str) -> Optional[Dict[str, Any]]:
        pair = await self.dex.search_best_pair(mint)
        return pair.to_dict() if pair is not None else None

    async def _market_pair_via_single_flight(self, mint: str) -> Optional[MarketPair]:
        d = await self.single_flight.get_with_lock(mint)
        return MarketPair.from_dict(d) if d else None

    async def _fetch_metadata_dict(self, mint: str) -> Optional[Dict[str, Any]]:
        if self.helius is None:
            return None
        meta = await self.helius.fetch_metadata(mint)
        return meta.to_dict() if meta is not None else None

    async def get_market_data(self, mint: str) -> Optional[Dict[str, Any]]:
        """Best DexScreener pair for `mint`, de-duplicated across concurrent callers."""
        if not is_valid_mint(mint):
            raise ValueError(f"invalid mint address: {mint!r}")
        return await self.single_flight.get_with_lock(mint)

    async def get_token_metadata(self, mint: str) -> Optional[Dict[str, Any]]:
        """Helius metadata for `mint`; served from cache and refreshed in the background."""
        if not is_valid_mint(mint):
            raise ValueError(f"invalid mint address: {mint!r}")
        return await self.metadata_cache.get_cached_or_refresh(mint)

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------
    async def run_scheduler(
        self,
        interval: Optional[float] = None,
        max_tokens: Optional[int] = None,
        enrich: bool = True,
        *,
        stop_event: Optional[asyncio.Event] = None,
        jitter: float = 5.0,
        install_signal_handlers: bool = True,
    ) -> int:
        """
        Run fetch (+ enrich) cycles until `stop_event` is set or SIGINT/SIGTERM.
        A failing cycle is logged and the loop carries on. Returns cycles completed.
        """
        interval = float(interval if interval is not None else self.settings.refresh_interval_seconds)
        stop_event = stop_event or asyncio.Event()
        loop = asyncio.get_running_loop()
        installed: List[int] = []

        if install_signal_handlers:
            for name in ("SIGINT", "SIGTERM"):
                signum = getattr(signal, name, None)
                if signum is None:
                    continue
                try:
                    loop.add_signal_handler(signum, stop_event.set)
                    installed.append(signum)
                except (NotImplementedError, RuntimeError):
                    # Windows / non-main thread
                    logger.debug("Cannot install %s handler on this platform", name)

        cycles = 0
        logger.info("Scheduler started: interval=%.0fs enrich=%s max_tokens=%s", interval, enrich, max_tokens)
        try:
            while not stop_event.is_set():
                try:
                    if enrich:
                        await self.fetch_enrich_and_cache(max_tokens)
                    else:
                        await self.fetch_and_cache()
                    cycles += 1
                except Exception as e:
                    logger.error("Error in cache refresh cycle: %s", e, exc_info=True)

                sleep_for = max(0.0, interval) + random.uniform(0.0, max(0.0, jitter))
                logger.info("Cycle finished, next in %.1f seconds", sleep_for)
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=sleep_for)
                except asyncio.TimeoutError:
                    continue
        finally:
            for signum in installed:
                loop.remove_signal_handler(signum)
            logger.info("Scheduler stopped after %d cycles", cycles)
        return cycles
