# solana_token_cache_bundle/token_cache/enrichment.py
"""
Batch enrichment of raw listing records.

For every batch (in order, one at a time):
  1. Helius metadata (one batched POST) and supply (per-mint RPC) run concurrently
  2. each token gets its DexScreener pair, sequentially, in input order
  3. the pieces are merged into an EnrichedTokenRecord and run through the
     qualification policy
After each batch the pipeline stops once `max_tokens` records pass the policy;
the rest of the input is never touched.

A failing token becomes an "Error"/"ERR" record with success=False and
filtered=True. A failing batch turns every token in it into such a record.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from solana_token_cache_bundle.common.constants import BATCH_SIZE, MAX_TOKENS

from .dexscreener_client import DexScreenerClient
from .helius_client import HeliusClient
from .models import (
    DEFAULT_DECIMALS,
    UNKNOWN_NAME,
    UNKNOWN_TICKER,
    EnrichedTokenRecord,
    MarketPair,
    QualificationPolicy,
    RawTokenRecord,
    TokenMetadata,
    TokenSupply,
    utc_now_iso,
)

logger = logging.getLogger("TokenCache")

MarketLookup = Callable[[str], Awaitable[Optional[MarketPair]]]


def merge_token(
    token: RawTokenRecord,
    pair: Optional[MarketPair],
    metadata: Optional[TokenMetadata],
    supply: Optional[TokenSupply],
) -> EnrichedTokenRecord:
    """Combine the three upstream views of one token. `filtered` is left for the policy."""
    name, ticker = UNKNOWN_NAME, UNKNOWN_TICKER
    price = market_cap = 0.0
    if pair is not None:
        name = pair.name or UNKNOWN_NAME
        ticker = pair.symbol or UNKNOWN_TICKER
        price = pair.price_usd
        market_cap = pair.market_cap_usd

    # metadata only fills gaps the market pair left
    if metadata is not None and (name == UNKNOWN_NAME or ticker == UNKNOWN_TICKER):
        if name == UNKNOWN_NAME:
            name = metadata.name or name
        if ticker == UNKNOWN_TICKER:
            ticker = metadata.symbol or ticker

    return EnrichedTokenRecord(
        token=token,
        name=name,
        ticker=ticker,
        price_usd=price,
        market_cap_usd=market_cap,
        total_supply=supply.ui_amount if supply is not None else 0.0,
        decimals=supply.decimals if supply is not None else DEFAULT_DECIMALS,
        mintable=bool(metadata and metadata.mintable),
        freezable=bool(metadata and metadata.freezable),
        enriched_at=utc_now_iso(),
        success=pair is not None or supply is not None,
        has_market_data=pair is not None,
    )


class EnrichmentPipeline:
    def __init__(
        self,
        dex: DexScreenerClient,
        helius: HeliusClient,
        policy: QualificationPolicy,
        *,
        batch_size: int = BATCH_SIZE,
        max_tokens: int = MAX_TOKENS,
        market_lookup: Optional[MarketLookup] = None,
    ):
        self._dex = dex
        self._helius = helius
        self._policy = policy
        self._batch_size = max(1, int(batch_size))
        self._max_tokens = max(1, int(max_tokens))
        self._market_lookup: MarketLookup = market_lookup or dex.search_best_pair

    @property
    def policy(self) -> QualificationPolicy:
        return self._policy

    async def enrich(self, tokens: Sequence[RawTokenRecord], max_tokens: Optional[int] = None) -> List[EnrichedTokenRecord]:
        """
        Enrich `tokens` (first `max_tokens` of them when given) batch by batch.
        Output order follows input order; tokens after an early exit are absent.
        """
        todo = list(tokens if max_tokens is None else tokens[:max(0, max_tokens)])
        n_batches = (len(todo) + self._batch_size - 1) // self._batch_size
        logger.info("Enriching %d tokens in %d batches of %d", len(todo), n_batches, self._batch_size)

        out: List[EnrichedTokenRecord] = []
        for i in range(0, len(todo), self._batch_size):
            batch = todo[i:i + self._batch_size]
            logger.info("Processing batch %d/%d (%d tokens)", i // self._batch_size + 1, n_batches, len(batch))
            out.extend(await self._process_batch(batch))

            qualifying = sum(1 for r in out if not r.filtered)
            if qualifying >= self._max_tokens:
                logger.info("Found %d qualifying tokens, stopping early (%d left unprocessed)",
                            qualifying, len(todo) - len(out))
                break
        return out

    async def _process_batch(self, batch: List[RawTokenRecord]) -> List[EnrichedTokenRecord]:
        addresses = [t.address for t in batch]
        try:
            metadata, supply = await asyncio.gather(
                self._helius.fetch_metadata_batch(addresses),
                self._helius.fetch_supply_batch(addresses),
            )
        except Exception as e:
            logger.error("Error processing batch of %d tokens: %s", len(batch), e, exc_info=True)
            return [EnrichedTokenRecord.failed(t, str(e)) for t in batch]

        meta_by_addr: Dict[str, TokenMetadata] = {a: m for a, m in zip(addresses, metadata) if m is not None}
        supply_by_addr: Dict[str, TokenSupply] = {a: s for a, s in zip(addresses, supply) if s is not None}

        results: List[EnrichedTokenRecord] = []
        for token in batch:
            results.append(await self._enrich_one(token, meta_by_addr.get(token.address), supply_by_addr.get(token.address)))
        return results

    async def _enrich_one(
        self,
        token: RawTokenRecord,
        metadata: Optional[TokenMetadata],
        supply: Optional[TokenSupply],
    ) -> EnrichedTokenRecord:
        try:
            pair = await self._market_lookup(token.address)
            record = self._policy.apply(merge_token(token, pair, metadata, supply))
        except Exception as e:
            logger.warning("Error enriching token %s: %s", token.address, e)
            return EnrichedTokenRecord.failed(token, str(e))
        if not record.filtered:
            logger.debug("Enriched %s (%s) MC=$%.0f", record.name, record.ticker, record.market_cap_usd)
        return record
