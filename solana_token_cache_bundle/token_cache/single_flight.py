# solana_token_cache_bundle/token_cache/single_flight.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .redis_tier import PRIMARY_TIER_ERRORS

logger = logging.getLogger("TokenCache")


class SingleFlight:
    """
    At most one real fetch per key across every process sharing `markers`.

    The first caller takes `lock:<ns>:<key>` (set-if-absent with a short TTL),
    fetches, publishes the result under `recent:<ns>:<key>` and releases the
    lock. Everyone else polls the recent marker and gives up with None after
    `poll_interval * poll_attempts` seconds. The lock TTL is the only release
    mechanism if the holder dies.

    If the marker store itself is unreachable the caller fetches directly.
    """

    def __init__(
        self,
        markers: Any,
        fetch: Callable[[str], Awaitable[Any]],
        *,
        namespace: str = "market",
        lock_ttl: float = 10,
        recent_ttl: float = 30,
        poll_interval: float = 0.5,
        poll_attempts: int = 20,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._markers = markers
        self._fetch = fetch
        self._ns = namespace
        self._lock_ttl = lock_ttl
        self._recent_ttl = recent_ttl
        self._poll_interval = poll_interval
        self._poll_attempts = max(1, int(poll_attempts))
        self._sleep = sleep

    def lock_key(self, key: str) -> str:
        return f"lock:{self._ns}:{key}"

    def recent_key(self, key: str) -> str:
        return f"recent:{self._ns}:{key}"

    async def get_with_lock(self, key: str) -> Optional[Any]:
        try:
            recent = await self._markers.get(self.recent_key(key))
            if recent is not None:
                return recent
            acquired = await self._markers.set_if_absent(self.lock_key(key), "1", self._lock_ttl)
        except PRIMARY_TIER_ERRORS as e:
            logger.warning("Single-flight markers unavailable for %s, fetching directly: %s", key, e)
            return await self._fetch(key)

        if acquired:
            return await self._fetch_and_publish(key)
        return await self._wait_for_result(key)

    async def _fetch_and_publish(self, key: str) -> Optional[Any]:
        try:
            result = await self._fetch(key)
            if result is not None:
                try:
                    await self._markers.set(self.recent_key(key), result, self._recent_ttl)
                except PRIMARY_TIER_ERRORS as e:
                    logger.warning("Could not publish single-flight result for %s: %s", key, e)
            return result
        finally:
            try:
                await self._markers.delete(self.lock_key(key))
            except PRIMARY_TIER_ERRORS as e:
                logger.warning("Could not release lock for %s (expires on its own): %s", key, e)

    async def _wait_for_result(self, key: str) -> Optional[Any]:
        for _ in range(self._poll_attempts):
            await self._sleep(self._poll_interval)
            try:
                recent = await self._markers.get(self.recent_key(key))
            except PRIMARY_TIER_ERRORS as e:
                logger.warning("Polling recent marker for %s failed: %s", key, e)
                continue
            if recent is not None:
                return recent
        logger.debug("Gave up waiting for in-flight fetch of %s", key)
        return None
