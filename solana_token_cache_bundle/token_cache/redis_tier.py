# solana_token_cache_bundle/token_cache/redis_tier.py
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger("TokenCache")

# Failures a primary tier may raise; callers treat them as "primary unavailable".
PRIMARY_TIER_ERRORS = (RedisError, OSError)


class RedisTier:
    """Primary tier on Redis. Values are JSON strings with native EX expiry."""

    def __init__(self, client: aioredis.Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisTier":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except PRIMARY_TIER_ERRORS as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def get(self, key: str) -> Any:
        raw = await self._redis.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float]) -> None:
        payload = json.dumps(value)
        if ttl_seconds is None:
            await self._redis.set(key, payload)
        else:
            await self._redis.set(key, payload, ex=max(1, int(ttl_seconds)))

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> bool:
        return bool(await self._redis.set(key, json.dumps(value), ex=max(1, int(ttl_seconds)), nx=True))

    async def exists(self, key: str) -> bool:
        return bool(await self._redis.exists(key))

    async def ttl(self, key: str) -> int:
        return int(await self._redis.ttl(key))

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except PRIMARY_TIER_ERRORS:
            logger.debug("Error closing Redis connection", exc_info=True)
