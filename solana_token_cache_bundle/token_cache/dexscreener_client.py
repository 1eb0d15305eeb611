# dexscreener_client.py
"""
DexScreener client (aiohttp).

Features
--------
* Conditional GET of the latest token-profile listing (ETag / If-None-Match)
* Per-token search, reduced to the single highest-liquidity pair on the target chain
* Every request goes through the shared dexscreener ReservoirLimiter
* 429 -> limiter marked down for Retry-After, RateLimitedError raised;
  search retries it via tenacity, the listing lets it propagate

Public API
----------
DexScreenerClient.fetch_listing(etag) -> ListingResponse
DexScreenerClient.search_best_pair(address) -> Optional[MarketPair]
select_best_pair(pairs, address, chain_id) -> Optional[dict]
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import aiohttp
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from solana_token_cache_bundle.common.constants import REQUEST_TIMEOUT, TARGET_CHAIN, USER_AGENT

from .models import MarketPair
from .rate_limiter import RateLimitedError, ReservoirLimiter, wait_retry_after
from .utils_exec import parse_retry_after_seconds, to_non_negative_float

# ----------------------------------------------------------------------
# Logging
# ----------------------------------------------------------------------
logger = logging.getLogger("TokenCache")

# ----------------------------------------------------------------------
# Constants
# ----------------------------------------------------------------------
LISTING_URL = "https://api.dexscreener.com/token-profiles/latest/v1"
SEARCH_URL = "https://api.dexscreener.com/latest/dex/search/?q={}"

HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "application/json",
}


@dataclass(frozen=True)
class ListingResponse:
    status: int
    etag: Optional[str] = None
    body: Optional[List[Dict[str, Any]]] = None


def select_best_pair(pairs: Iterable[Dict[str, Any]], address: str, chain_id: str = TARGET_CHAIN) -> Optional[Dict[str, Any]]:
    """Highest `liquidity.usd` pair on `chain_id` that trades `address` (first one wins ties)."""
    best: Optional[Dict[str, Any]] = None
    best_liq = -1.0
    for p in pairs or []:
        if not isinstance(p, dict) or p.get("chainId") != chain_id:
            continue
        base_addr = (p.get("baseToken") or {}).get("address")
        quote_addr = (p.get("quoteToken") or {}).get("address")
        if address not in (base_addr, quote_addr):
            continue
        liq = to_non_negative_float((p.get("liquidity") or {}).get("usd"))
        if liq > best_liq:
            best, best_liq = p, liq
    return best


class DexScreenerClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        limiter: ReservoirLimiter,
        *,
        chain_id: str = TARGET_CHAIN,
        timeout: float = REQUEST_TIMEOUT,
        listing_url: str = LISTING_URL,
        search_url: str = SEARCH_URL,
    ):
        self._session = session
        self._limiter = limiter
        self._chain_id = chain_id
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._listing_url = listing_url
        self._search_url = search_url

    def _rate_limited(self, headers: Any) -> RateLimitedError:
        ra = parse_retry_after_seconds(headers, default=2.0)
        self._limiter.mark_down(ra)
        logger.warning("DexScreener 429, backing off %.1f seconds", ra)
        return RateLimitedError("dexscreener", ra)

    # ------------------------------------------------------------------
    # Listing (conditional GET)
    # ------------------------------------------------------------------
    async def fetch_listing(self, etag: Optional[str] = None) -> ListingResponse:
        """
        GET the latest token profiles. Returns status 200 with body/etag, or 304
        with no body. Anything else raises (ClientResponseError, RateLimitedError,
        timeouts) and is left to the caller.
        """
        hdrs = dict(HEADERS)
        if etag:
            hdrs["If-None-Match"] = etag

        async def _do() -> ListingResponse:
            async with self._session.get(self._listing_url, headers=hdrs, timeout=self._timeout) as resp:
                if resp.status == 304:
                    return ListingResponse(status=304, etag=etag)
                if resp.status == 429:
                    raise self._rate_limited(resp.headers)
                if resp.status != 200:
                    body = (await resp.text())[:300]
                    logger.warning("DexScreener listing HTTP %s: %s", resp.status, body)
                    raise aiohttp.ClientResponseError(
                        resp.request_info,
                        resp.history,
                        status=resp.status,
                        message=f"unexpected listing status {resp.status}",
                        headers=resp.headers,
                    )
                data = await resp.json(content_type=None)
                if not isinstance(data, list):
                    raise ValueError(f"unexpected listing payload type {type(data).__name__}")
                return ListingResponse(status=200, etag=resp.headers.get("ETag"), body=data)

        return await self._limiter.schedule(_do)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------
    @retry(
        retry=retry_if_exception_type(RateLimitedError),
        wait=wait_retry_after,
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _search_pairs(self, address: str) -> List[Dict[str, Any]]:
        async def _do() -> List[Dict[str, Any]]:
            url = self._search_url.format(quote(address, safe=""))
            async with self._session.get(url, headers=HEADERS, timeout=self._timeout) as resp:
                if resp.status == 429:
                    raise self._rate_limited(resp.headers)
                if resp.status == 404:
                    logger.debug("DexScreener 404: no pairs for %s", address)
                    return []
                if resp.status != 200:
                    body = (await resp.text())[:200]
                    logger.debug("DexScreener search HTTP %s for %s: %s", resp.status, address, body)
                    return []
                data = await resp.json(content_type=None)
                return list((data or {}).get("pairs") or []) if isinstance(data, dict) else []

        return await self._limiter.schedule(_do)

    async def search_best_pair(self, address: str) -> Optional[MarketPair]:
        """Best pair for one token, or None on no match / any transport failure."""
        try:
            pairs = await self._search_pairs(address)
        except RateLimitedError as e:
            logger.warning("DexScreener search for %s gave up after retries: %s", address, e)
            return None
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("Error fetching DexScreener data for %s: %s", address, e)
            return None
        best = select_best_pair(pairs, address, self._chain_id)
        if best is None:
            return None
        return MarketPair.from_pair(best, address)
