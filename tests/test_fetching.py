import aiohttp
import pytest
from conftest import BONK, JUP, SOL, USDC, USDT, _DummyResponse, _DummySession, make_profile

from solana_token_cache_bundle.token_cache.dexscreener_client import DexScreenerClient
from solana_token_cache_bundle.token_cache.fetching import (
    ConditionalFetcher,
    InconsistentCacheError,
    dedupe_and_filter,
    is_valid_mint,
)
from solana_token_cache_bundle.token_cache.rate_limiter import ReservoirLimiter


def _fetcher(store, responses):
    session = _DummySession(responses)
    dex = DexScreenerClient(session, ReservoirLimiter("dex", 100, 1))
    return ConditionalFetcher(store, dex, basic_ttl=300), session


def test_is_valid_mint():
    assert is_valid_mint(SOL)
    assert is_valid_mint(USDC)
    assert not is_valid_mint("not-a-mint")
    assert not is_valid_mint("0" * 44)  # '0' is not in the base58 alphabet
    assert not is_valid_mint("")


def test_dedupe_last_seen_wins_and_chain_filter():
    profiles = [
        make_profile(USDC, description="first"),
        make_profile(BONK),
        make_profile(USDC, description="second"),
        make_profile(USDT, chain="ethereum"),
        make_profile(JUP, chain="bsc"),
    ]
    out = dedupe_and_filter(profiles, "solana")
    assert [r.address for r in out] == [USDC, BONK]
    assert out[0].description == "second"


def test_malformed_addresses_dropped():
    out = dedupe_and_filter([make_profile("not-a-mint"), {"chainId": "solana"}, make_profile(SOL)])
    assert [r.address for r in out] == [SOL]


async def test_scenario_a_five_profiles_yield_two(store):
    body = [
        make_profile(USDC),
        make_profile(BONK),
        make_profile(USDC),
        make_profile(USDT, chain="ethereum"),
        make_profile(JUP, chain="base"),
    ]
    fetcher, _ = _fetcher(store, [_DummyResponse(200, payload=body, headers={"ETag": '"v1"'})])
    tokens = await fetcher.fetch_latest()
    assert len(tokens) == 2
    assert {t.address for t in tokens} == {USDC, BONK}
    assert await store.get("basic_tokens", "dex:latest:etag") == '"v1"'
    assert await store.get("basic_tokens", "dex:latest:body") == body


async def test_scenario_d_304_replays_cached_body_without_rewriting_etag(store, clock):
    body = [make_profile(SOL)]
    await store.set("basic_tokens", "dex:latest:etag", '"v1"', 300)
    await store.set("basic_tokens", "dex:latest:body", body, 300)
    clock.advance(100)
    ttl_before = await store.ttl("basic_tokens", "dex:latest:etag")

    fetcher, session = _fetcher(store, [_DummyResponse(304)])
    tokens = await fetcher.fetch_latest()

    assert [t.address for t in tokens] == [SOL]
    assert session.calls[0][2]["headers"]["If-None-Match"] == '"v1"'
    # not rewritten: the expiry did not move
    assert await store.ttl("basic_tokens", "dex:latest:etag") == ttl_before == 200
    assert await store.get("basic_tokens", "dex:latest:body") == body


async def test_304_without_cached_body_is_inconsistent(store):
    await store.set("basic_tokens", "dex:latest:etag", '"v1"', 300)
    fetcher, _ = _fetcher(store, [_DummyResponse(304)])
    with pytest.raises(InconsistentCacheError):
        await fetcher.fetch_latest()


async def test_transport_error_propagates(store):
    fetcher, _ = _fetcher(store, [_DummyResponse(502, text="bad gateway")])
    with pytest.raises(aiohttp.ClientResponseError):
        await fetcher.fetch_latest()
    assert await store.get("basic_tokens", "dex:latest:body") is None


async def test_200_without_etag_keeps_previous_etag(store):
    await store.set("basic_tokens", "dex:latest:etag", '"old"', 300)
    fetcher, _ = _fetcher(store, [_DummyResponse(200, payload=[make_profile(SOL)])])
    await fetcher.fetch_latest()
    assert await store.get("basic_tokens", "dex:latest:etag") == '"old"'
