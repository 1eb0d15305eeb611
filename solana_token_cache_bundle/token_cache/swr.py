# solana_token_cache_bundle/token_cache/swr.py
"""
Stale-while-revalidate cache for slow-changing per-token lookups (metadata).

    value = await swr.get_cached_or_refresh(mint)

* cached, nobody refreshing -> cached value now, refresh scheduled in the background
* cached, refresh running    -> cached value now, nothing scheduled
* nothing cached             -> fetched inline, stored on success

The `refreshing:<ns>:<key>` flag is advisory: it is checked and then set by the
background task, so two callers arriving together may both schedule a refresh.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from solana_token_cache_bundle.common.constants import BASIC_TABLE, METADATA_CACHE_EXPIRY, META_KEY_PREFIX

from .redis_tier import PRIMARY_TIER_ERRORS
from .store import DualTierStore
from .utils_exec import safe_create_task

logger = logging.getLogger("TokenCache")


class StaleWhileRevalidate:
    def __init__(
        self,
        store: DualTierStore,
        markers: Any,
        fetch: Callable[[str], Awaitable[Optional[Any]]],
        *,
        table: str = BASIC_TABLE,
        key_prefix: str = META_KEY_PREFIX,
        namespace: str = "meta",
        ttl: float = METADATA_CACHE_EXPIRY,
        flag_ttl: float = 30,
    ):
        self._store = store
        self._markers = markers
        self._fetch = fetch
        self._table = table
        self._prefix = key_prefix
        self._ns = namespace
        self._ttl = ttl
        self._flag_ttl = flag_ttl
        self._pending: Set[asyncio.Task] = set()

    def cache_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def flag_key(self, key: str) -> str:
        return f"refreshing:{self._ns}:{key}"

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _is_refreshing(self, key: str) -> bool:
        try:
            return bool(await self._markers.exists(self.flag_key(key)))
        except PRIMARY_TIER_ERRORS as e:
            logger.warning("Refresh flag check failed for %s: %s", key, e)
            # can't tell; don't pile on another refresh
            return True

    async def get_cached_or_refresh(self, key: str) -> Optional[Any]:
        cached = await self._store.get(self._table, self.cache_key(key))
        if cached is not None:
            if not await self._is_refreshing(key):
                task = safe_create_task(self._refresh(key), name=f"swr-refresh:{key}")
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
            return cached

        value = await self._fetch(key)
        if value is not None:
            await self._store.set(self._table, self.cache_key(key), value, self._ttl)
        return value

    async def _refresh(self, key: str) -> None:
        try:
            await self._markers.set(self.flag_key(key), "1", self._flag_ttl)
        except PRIMARY_TIER_ERRORS as e:
            logger.warning("Could not set refresh flag for %s: %s", key, e)
        try:
            value = await self._fetch(key)
            if value is not None:
                await self._store.set(self._table, self.cache_key(key), value, self._ttl)
                logger.debug("Background refresh stored fresh value for %s", key)
        finally:
            try:
                await self._markers.delete(self.flag_key(key))
            except PRIMARY_TIER_ERRORS as e:
                logger.warning("Could not clear refresh flag for %s: %s", key, e)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for background refreshes; anything still running after `timeout` is cancelled."""
        if not self._pending:
            return
        tasks = list(self._pending)
        _done, pending = await asyncio.wait(tasks, timeout=timeout)
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
