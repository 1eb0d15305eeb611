# solana_token_cache_bundle/token_cache/fetching.py
"""
Conditional fetch of the DexScreener token-profile listing.

The previous ETag and raw body live in the `basic_tokens` table. A 304 replays
the cached body; a 304 with no cached body is an InconsistentCacheError.
Whatever comes back is deduplicated by address (last seen wins) and reduced
to the target chain before anyone downstream sees it.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

import base58

from solana_token_cache_bundle.common.constants import (
    BASIC_TABLE,
    CACHE_EXPIRY,
    DEX_BODY_KEY,
    DEX_ETAG_KEY,
    TARGET_CHAIN,
)

from .dexscreener_client import DexScreenerClient
from .models import RawTokenRecord
from .store import DualTierStore

logger = logging.getLogger("TokenCache")


class InconsistentCacheError(RuntimeError):
    """Upstream said 304 but the body it refers to is no longer cached."""


def is_valid_mint(address: str) -> bool:
    """A Solana address is the base58 encoding of exactly 32 bytes."""
    if not isinstance(address, str) or not 32 <= len(address) <= 44:
        return False
    try:
        return len(base58.b58decode(address)) == 32
    except ValueError:
        return False


def dedupe_and_filter(profiles: Iterable[Dict[str, Any]], chain_id: str = TARGET_CHAIN) -> List[RawTokenRecord]:
    by_address: Dict[str, RawTokenRecord] = {}
    dropped = 0
    for profile in profiles or []:
        rec = RawTokenRecord.from_profile(profile)
        if rec is None or rec.chain_id != chain_id:
            dropped += 1
            continue
        if not is_valid_mint(rec.address):
            logger.debug("Dropping profile with malformed mint %r", rec.address)
            dropped += 1
            continue
        # re-insertion keeps the first position, the value is the last one seen
        by_address[rec.address] = rec
    if dropped:
        logger.debug("Listing filter dropped %d profiles (chain=%s)", dropped, chain_id)
    return list(by_address.values())


class ConditionalFetcher:
    def __init__(
        self,
        store: DualTierStore,
        dex: DexScreenerClient,
        *,
        basic_ttl: float = CACHE_EXPIRY,
        chain_id: str = TARGET_CHAIN,
    ):
        self._store = store
        self._dex = dex
        self._basic_ttl = basic_ttl
        self._chain_id = chain_id

    async def fetch_latest(self) -> List[RawTokenRecord]:
        """Latest listing on the target chain; transport errors propagate unchanged."""
        etag = await self._store.get(BASIC_TABLE, DEX_ETAG_KEY)
        resp = await self._dex.fetch_listing(etag if isinstance(etag, str) else None)

        if resp.status == 304:
            body = await self._store.get(BASIC_TABLE, DEX_BODY_KEY)
            if body is None:
                raise InconsistentCacheError("listing returned 304 but no cached body is available")
            logger.info("Listing not modified (ETag %s); using cached body", etag)
        else:
            body = resp.body or []
            if resp.etag:
                await self._store.set(BASIC_TABLE, DEX_ETAG_KEY, resp.etag, self._basic_ttl)
            await self._store.set(BASIC_TABLE, DEX_BODY_KEY, body, self._basic_ttl)
            logger.info("Fetched %d token profiles from DexScreener", len(body))

        tokens = dedupe_and_filter(body, self._chain_id)
        logger.info("Listing yielded %d unique %s tokens", len(tokens), self._chain_id)
        return tokens
