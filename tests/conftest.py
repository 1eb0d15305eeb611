import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from solana_token_cache_bundle.token_cache.database import SqliteStore
from solana_token_cache_bundle.token_cache.memory_tier import MemoryTier
from solana_token_cache_bundle.token_cache.store import DualTierStore

SOL = "So11111111111111111111111111111111111111112"
USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
JUP = "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class _DummyResponse:
    def __init__(self, status, *, payload=None, text="", headers=None):
        self.status = status
        self._payload = payload
        self._text = text if text else (json.dumps(payload) if payload is not None else "")
        self.headers = headers or {}
        self.request_info = None
        self.history = ()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, *args, **kwargs):
        return self._payload

    async def text(self):
        return self._text


class _DummySession:
    """Hands out queued responses in order and records every request."""

    def __init__(self, responses=()):
        self._responses = list(responses)
        self.calls = []
        self.closed = False

    def queue(self, *responses):
        self._responses.extend(responses)

    def _next(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        if not self._responses:
            raise AssertionError("No more dummy responses available")
        return self._responses.pop(0)

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)

    async def close(self):
        self.closed = True


class FakeRedis:
    """Just enough of redis.asyncio.Redis (decode_responses=True) for RedisTier."""

    def __init__(self, clock=None):
        self._clock = clock or FakeClock()
        self._data = {}
        self.closed = False

    def _live(self, key):
        item = self._data.get(key)
        if item is None:
            return None
        value, expires = item
        if expires is not None and expires <= self._clock():
            del self._data[key]
            return None
        return item

    async def ping(self):
        return True

    async def get(self, key):
        item = self._live(key)
        return item[0] if item else None

    async def set(self, key, value, ex=None, nx=False):
        if nx and self._live(key) is not None:
            return None
        self._data[key] = (value, None if ex is None else self._clock() + ex)
        return True

    async def exists(self, key):
        return 1 if self._live(key) is not None else 0

    async def ttl(self, key):
        item = self._live(key)
        if item is None:
            return -2
        if item[1] is None:
            return -1
        return int(item[1] - self._clock())

    async def delete(self, key):
        return 1 if self._data.pop(key, None) is not None else 0

    async def aclose(self):
        self.closed = True


class BrokenRedis:
    """Every call fails like an unreachable server."""

    async def _fail(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    ping = get = set = exists = ttl = delete = _fail

    async def aclose(self):
        return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def sqlite_store(tmp_path, clock):
    store = SqliteStore(str(tmp_path / "tokens.db"), clock=clock)
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
async def store(sqlite_store):
    return DualTierStore(sqlite_store)


@pytest.fixture
def markers(clock):
    return MemoryTier(timer=clock)


def make_profile(address, chain="solana", **extra):
    profile = {
        "tokenAddress": address,
        "chainId": chain,
        "url": f"https://dexscreener.com/{chain}/{address}",
        "icon": None,
        "header": None,
        "description": f"token {address[:4]}",
        "links": [{"type": "twitter", "url": "https://x.com/example"}],
    }
    profile.update(extra)
    return profile


def make_pair(address, *, market_cap=100_000, liquidity=50_000, name="Token", symbol="TKN",
              chain="solana", price="0.01", as_quote=False):
    side = {"address": address, "name": name, "symbol": symbol}
    other = {"address": SOL, "name": "Wrapped SOL", "symbol": "SOL"}
    return {
        "chainId": chain,
        "dexId": "raydium",
        "pairAddress": f"pair-{address[:6]}",
        "baseToken": other if as_quote else side,
        "quoteToken": side if as_quote else other,
        "priceUsd": price,
        "marketCap": market_cap,
        "liquidity": {"usd": liquidity},
    }
