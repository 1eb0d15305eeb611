# solana_token_cache_bundle/token_cache/store.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .database import SqliteStore
from .redis_tier import PRIMARY_TIER_ERRORS

logger = logging.getLogger("TokenCache")


class DualTierStore:
    """
    Key/value cache over a fast primary tier and the durable SQLite tier.

    * writes land in both tiers; a primary failure is logged and ignored,
      a secondary failure propagates to the caller
    * reads try primary, then fall back to secondary (freshness-filtered);
      a secondary hit is NOT copied back into primary
    * `primary` may be None (Redis disabled): correctness is unchanged, only latency

    The secondary tier is the source of truth for TTL bookkeeping.
    """

    def __init__(self, secondary: SqliteStore, primary: Any = None):
        self.secondary = secondary
        self.primary = primary

    @staticmethod
    def _primary_key(table: str, key: str) -> str:
        return f"{table}:{key}"

    async def get(self, table: str, key: str) -> Any:
        if self.primary is not None:
            try:
                hit = await self.primary.get(self._primary_key(table, key))
            except PRIMARY_TIER_ERRORS as e:
                logger.warning("Primary tier GET error for %s:%s: %s", table, key, e)
                hit = None
            except ValueError as e:
                # undecodable payload in primary: treat as a miss
                logger.warning("Primary tier returned undecodable value for %s:%s: %s", table, key, e)
                hit = None
            if hit is not None:
                return hit
        return await self.secondary.get(table, key)

    async def set(self, table: str, key: str, value: Any, ttl_seconds: Optional[float]) -> None:
        if self.primary is not None:
            try:
                await self.primary.set(self._primary_key(table, key), value, ttl_seconds)
            except PRIMARY_TIER_ERRORS as e:
                logger.warning("Primary tier SET error for %s:%s (continuing with durable tier): %s", table, key, e)
        await self.secondary.upsert(table, key, value, ttl_seconds)

    async def exists(self, table: str, key: str) -> bool:
        if self.primary is not None:
            try:
                if await self.primary.exists(self._primary_key(table, key)):
                    return True
            except PRIMARY_TIER_ERRORS as e:
                logger.warning("Primary tier EXISTS error for %s:%s: %s", table, key, e)
        return await self.secondary.exists(table, key)

    async def ttl(self, table: str, key: str) -> Optional[int]:
        return await self.secondary.ttl(table, key)

    async def delete(self, table: str, key: str) -> None:
        if self.primary is not None:
            try:
                await self.primary.delete(self._primary_key(table, key))
            except PRIMARY_TIER_ERRORS as e:
                logger.warning("Primary tier DELETE error for %s:%s: %s", table, key, e)
        await self.secondary.delete(table, key)

    async def cleanup_expired(self) -> Dict[str, int]:
        return await self.secondary.cleanup_expired()

    async def close(self) -> None:
        if self.primary is not None:
            await self.primary.close()
        await self.secondary.close()
