# solana_token_cache_bundle/token_cache/memory_tier.py
"""
In-process primary tier.

Same async surface as RedisTier so the coordination helpers (single-flight
locks, refresh flags) keep working when Redis is disabled. Entries carry their
own expiry; cachetools.TLRUCache evicts them once the timer passes it.
"""

from __future__ import annotations

import json
import math
import time
from typing import Any, Callable, Optional, Tuple

from cachetools import TLRUCache


def _entry_expiry(_key: str, value: Tuple[float, str], _now: float) -> float:
    return value[0]


class MemoryTier:
    def __init__(self, maxsize: int = 10_000, timer: Callable[[], float] = time.monotonic):
        self._timer = timer
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_entry_expiry, timer=timer)

    def _expiry(self, ttl_seconds: Optional[float]) -> float:
        if ttl_seconds is None:
            return math.inf
        return self._timer() + max(0.0, float(ttl_seconds))

    async def get(self, key: str) -> Any:
        item = self._cache.get(key)
        if item is None:
            return None
        return json.loads(item[1])

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float]) -> None:
        self._cache[key] = (self._expiry(ttl_seconds), json.dumps(value))

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> bool:
        # no await between the check and the write, so this is atomic on the loop
        if key in self._cache:
            return False
        self._cache[key] = (self._expiry(ttl_seconds), json.dumps(value))
        return True

    async def exists(self, key: str) -> bool:
        return key in self._cache

    async def ttl(self, key: str) -> int:
        """Redis semantics: -2 missing, -1 no expiry, else whole seconds left."""
        item = self._cache.get(key)
        if item is None:
            return -2
        if math.isinf(item[0]):
            return -1
        return max(0, int(item[0] - self._timer()))

    async def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    async def close(self) -> None:
        self._cache.clear()
