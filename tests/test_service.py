import asyncio

import pytest
from conftest import BONK, JUP, SOL, USDC, USDT, make_profile

from solana_token_cache_bundle.token_cache.dexscreener_client import ListingResponse
from solana_token_cache_bundle.token_cache.fetching import InconsistentCacheError
from solana_token_cache_bundle.token_cache.models import MarketPair, TokenMetadata, TokenSupply
from solana_token_cache_bundle.token_cache.service import TokenCacheService
from solana_token_cache_bundle.token_cache.settings import CacheSettings

CAPS = {SOL: 1_000_000, USDC: 5_000_000, USDT: 20_000, BONK: 3_000_000, JUP: 2_000_000}


class FakeDex:
    def __init__(self, listing=None, errors=()):
        self.listing = listing if listing is not None else [make_profile(a) for a in CAPS]
        self.errors = list(errors)
        self.listing_calls = 0
        self.searched = []
        self.on_listing = None

    async def fetch_listing(self, etag=None):
        self.listing_calls += 1
        if self.on_listing:
            self.on_listing(self.listing_calls)
        if self.errors:
            err = self.errors.pop(0)
            if err is not None:
                raise err
        return ListingResponse(status=200, etag='"e1"', body=self.listing)

    async def search_best_pair(self, address):
        self.searched.append(address)
        cap = CAPS.get(address)
        if cap is None:
            return None
        return MarketPair(address=address, name=f"N{address[:3]}", symbol=address[:3].upper(),
                          price_usd=1.0, market_cap_usd=float(cap), liquidity_usd=1.0)


class FakeHelius:
    def __init__(self):
        self.metadata_calls = []

    async def fetch_metadata_batch(self, addresses):
        return [TokenMetadata(name=None, symbol=None) for _ in addresses]

    async def fetch_supply_batch(self, addresses):
        return [TokenSupply(amount=10**9, decimals=9) for _ in addresses]

    async def fetch_metadata(self, address):
        self.metadata_calls.append(address)
        return TokenMetadata(name="Bonk", symbol="BONK", mintable=False, freezable=True)


def _service(store, markers, dex=None, helius=None, **overrides):
    settings = CacheSettings(db_path=store.secondary.path, **overrides)
    return TokenCacheService(settings, store, markers, dex or FakeDex(), helius)


async def test_fetch_and_cache_writes_basic_snapshot(store, markers):
    svc = _service(store, markers)
    snap = await svc.fetch_and_cache()
    assert snap["count"] == 5
    cached = await svc.get_cached_basic_tokens()
    assert cached == snap
    assert {t["address"] for t in cached["tokens"]} == set(CAPS)


async def test_enriched_snapshot_sorted_and_bounded(store, markers):
    svc = _service(store, markers, helius=FakeHelius(), max_tokens=3)
    snap = await svc.fetch_enrich_and_cache()

    caps = [t["marketCapUsd"] for t in snap["tokens"]]
    assert caps == sorted(caps, reverse=True)
    assert len(snap["tokens"]) <= 3
    assert [t["address"] for t in snap["tokens"]] == [USDC, BONK, JUP]
    assert snap["count"] == 5
    assert snap["successCount"] == 5
    assert snap["validCount"] == 4
    assert snap["totalTokens"] == 3
    assert snap["maxTokens"] == 3
    assert snap["minMarketCap"] == 25_000
    assert snap["originalTimestamp"] == (await svc.get_cached_basic_tokens())["timestamp"]
    assert all(not t["filtered"] for t in snap["tokens"])
    assert await svc.get_enriched_tokens() == snap


async def test_enrichment_skipped_without_helius(store, markers):
    svc = _service(store, markers, helius=None)
    assert await svc.fetch_enrich_and_cache() is None
    assert await svc.get_cached_basic_tokens() is not None
    assert await svc.get_enriched_tokens() is None


async def test_enrichment_switched_off_in_config(store, markers):
    svc = _service(store, markers, helius=FakeHelius(), enrichment_enabled=False)
    assert svc.pipeline is None
    assert await svc.fetch_enrich_and_cache() is None
    assert await svc.get_cached_basic_tokens() is not None
    assert await svc.get_enriched_tokens() is None


async def test_read_api_before_any_fetch(store, markers):
    svc = _service(store, markers)
    assert await svc.get_cached_basic_tokens() is None
    assert await svc.get_enriched_tokens() is None
    assert await svc.list_tokens() == []
    assert await svc.stats() is None


async def test_list_tokens_and_stats(store, markers):
    svc = _service(store, markers, helius=FakeHelius())
    await svc.fetch_enrich_and_cache()

    listed = await svc.list_tokens()
    assert [t["address"] for t in listed] == [USDC, BONK, JUP, SOL]

    stats = await svc.stats()
    assert stats["successRate"] == 100.0
    assert stats["qualificationRate"] == 80.0
    assert stats["maxMarketCap"] == 5_000_000
    assert stats["avgMarketCap"] == pytest.approx((5e6 + 3e6 + 2e6 + 1e6) / 4)


async def test_cache_status(store, markers, clock):
    svc = _service(store, markers)
    status = await svc.cache_status()
    assert status["basic"]["exists"] is False
    assert status["basic"]["ttl"] is None

    await svc.fetch_and_cache()
    clock.advance(60)
    status = await svc.cache_status()
    assert status["basic"] == {
        "exists": True,
        "ttl": 240,
        "count": 5,
        "timestamp": status["basic"]["timestamp"],
        "rows": 3,  # snapshot + etag + raw body
    }
    assert status["enriched"]["exists"] is False
    assert status["backend"]["primary"] is None


async def test_snapshot_write_sweeps_expired_rows(store, markers, clock):
    await store.set("enriched_tokens", "stale", {"x": 1}, 5)
    clock.advance(10)
    svc = _service(store, markers)
    await svc.fetch_and_cache()
    assert await store.secondary.count_rows("enriched_tokens") == 0


async def test_inconsistent_cache_propagates(store, markers):
    svc = _service(store, markers, dex=FakeDex(errors=[InconsistentCacheError("gone")]))
    with pytest.raises(InconsistentCacheError):
        await svc.fetch_and_cache()


async def test_metadata_lookup_uses_swr(store, markers):
    helius = FakeHelius()
    svc = _service(store, markers, helius=helius)
    first = await svc.get_token_metadata(BONK)
    assert first["symbol"] == "BONK"
    assert first["freezable"] is True

    again = await svc.get_token_metadata(BONK)
    assert again == first
    await svc.metadata_cache.drain()
    assert helius.metadata_calls == [BONK, BONK]

    with pytest.raises(ValueError):
        await svc.get_token_metadata("not-a-mint")


async def test_market_data_single_flight(store, markers):
    dex = FakeDex()
    svc = _service(store, markers, dex=dex)
    results = await asyncio.gather(*(svc.get_market_data(USDC) for _ in range(5)))
    assert all(r["marketCapUsd"] == 5_000_000 for r in results)
    assert dex.searched == [USDC]


async def test_scheduler_survives_failing_cycle(store, markers):
    stop = asyncio.Event()
    dex = FakeDex(errors=[RuntimeError("network down"), None])
    dex.on_listing = lambda n: stop.set() if n >= 2 else None
    svc = _service(store, markers, dex=dex)

    cycles = await svc.run_scheduler(0.001, enrich=False, stop_event=stop, jitter=0.0,
                                     install_signal_handlers=False)
    assert cycles == 1
    assert dex.listing_calls == 2
    assert await svc.get_cached_basic_tokens() is not None


async def test_close_is_idempotent(store, markers):
    svc = _service(store, markers)
    async with svc:
        await svc.fetch_and_cache()
    await svc.close()
