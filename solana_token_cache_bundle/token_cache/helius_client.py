# solana_token_cache_bundle/token_cache/helius_client.py
"""
Helius client: token metadata (REST, batchable) and token supply (JSON-RPC, per mint).

Both calls go through the shared helius ReservoirLimiter. Failures never
raise out of the public methods: metadata lookups degrade to None entries,
supply lookups to None. 429s are retried (tenacity) after the Retry-After.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from solana_token_cache_bundle.common.constants import REQUEST_TIMEOUT, USER_AGENT

from .models import TokenMetadata, TokenSupply
from .rate_limiter import RateLimitedError, ReservoirLimiter, wait_retry_after
from .utils_exec import parse_retry_after_seconds

logger = logging.getLogger("TokenCache")

METADATA_URL = "https://api.helius.xyz/v0/token-metadata"
RPC_URL = "https://mainnet.helius-rpc.com/"

MASK = "REDACTED"


def _redact_key(k: Optional[str]) -> str:
    if not k:
        return "<none>"
    return (k[:4] + "…" + MASK) if len(k) > 8 else MASK


class HeliusClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        limiter: ReservoirLimiter,
        api_key: str,
        *,
        timeout: float = REQUEST_TIMEOUT,
        metadata_url: str = METADATA_URL,
        rpc_url: str = RPC_URL,
    ):
        if not api_key:
            raise ValueError("Helius API key is required")
        self._session = session
        self._limiter = limiter
        self._api_key = api_key
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._metadata_url = metadata_url
        self._rpc_url = rpc_url

    def __repr__(self) -> str:
        return f"HeliusClient(api_key={_redact_key(self._api_key)})"

    def _rate_limited(self, headers: Any) -> RateLimitedError:
        ra = parse_retry_after_seconds(headers, default=2.0)
        self._limiter.mark_down(ra)
        logger.warning("Helius 429, backing off %.1f seconds", ra)
        return RateLimitedError("helius", ra)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------
    @retry(
        retry=retry_if_exception_type(RateLimitedError),
        wait=wait_retry_after,
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _post_metadata(self, addresses: Sequence[str]) -> List[Any]:
        payload = {"mintAccounts": list(addresses), "includeOffChain": False, "disableCache": False}

        async def _do() -> List[Any]:
            async with self._session.post(
                self._metadata_url,
                params={"api-key": self._api_key},
                json=payload,
                headers={"User-Agent": USER_AGENT},
                timeout=self._timeout,
            ) as resp:
                if resp.status == 429:
                    raise self._rate_limited(resp.headers)
                if resp.status != 200:
                    body = (await resp.text())[:200]
                    logger.warning("Helius metadata HTTP %s: %s", resp.status, body)
                    return []
                data = await resp.json(content_type=None)
                return data if isinstance(data, list) else []

        return await self._limiter.schedule(_do)

    async def fetch_metadata_batch(self, addresses: Sequence[str]) -> List[Optional[TokenMetadata]]:
        """One metadata entry per input address (None where Helius had nothing)."""
        if not addresses:
            return []
        try:
            raw = await self._post_metadata(addresses)
        except RateLimitedError as e:
            logger.warning("Helius batch metadata gave up after retries: %s", e)
            raw = []
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("Error fetching batch metadata for %d mints: %s", len(addresses), e)
            raw = []
        out: List[Optional[TokenMetadata]] = []
        for i in range(len(addresses)):
            out.append(TokenMetadata.from_helius(raw[i]) if i < len(raw) else None)
        return out

    async def fetch_metadata(self, address: str) -> Optional[TokenMetadata]:
        return (await self.fetch_metadata_batch([address]))[0]

    # ------------------------------------------------------------------
    # Supply
    # ------------------------------------------------------------------
    @retry(
        retry=retry_if_exception_type(RateLimitedError),
        wait=wait_retry_after,
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _rpc_token_supply(self, address: str) -> Optional[Dict[str, Any]]:
        payload = {"jsonrpc": "2.0", "id": "helius-supply", "method": "getTokenSupply", "params": [address]}

        async def _do() -> Optional[Dict[str, Any]]:
            async with self._session.post(
                self._rpc_url,
                params={"api-key": self._api_key},
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            ) as resp:
                if resp.status == 429:
                    raise self._rate_limited(resp.headers)
                if resp.status == 404:
                    logger.info("Token %s supply not found (404)", address)
                    return None
                if resp.status != 200:
                    logger.warning("Helius supply HTTP %s for %s", resp.status, address)
                    return None
                data = await resp.json(content_type=None)
                if not isinstance(data, dict):
                    return None
                if data.get("error"):
                    logger.info("Supply RPC error for %s: %s", address, (data["error"] or {}).get("message"))
                    return None
                return data.get("result")

        return await self._limiter.schedule(_do)

    async def fetch_supply(self, address: str) -> Optional[TokenSupply]:
        try:
            result = await self._rpc_token_supply(address)
        except RateLimitedError as e:
            logger.warning("Helius supply for %s gave up after retries: %s", address, e)
            return None
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("Error fetching supply for %s: %s", address, e)
            return None
        return TokenSupply.from_rpc_result(result)

    async def fetch_supply_batch(self, addresses: Sequence[str]) -> List[Optional[TokenSupply]]:
        """getTokenSupply is not batchable; per-mint calls, paced by the limiter, aligned with input."""
        if not addresses:
            return []
        return list(await asyncio.gather(*(self.fetch_supply(a) for a in addresses)))
