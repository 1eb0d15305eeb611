import asyncio

import pytest
from conftest import FakeClock
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from solana_token_cache_bundle.token_cache.rate_limiter import (
    MAX_RETRY_AFTER,
    RateLimitedError,
    ReservoirLimiter,
    wait_retry_after,
)


def _limiter(reservoir=2, max_concurrent=1, window=60.0):
    clock = FakeClock(0.0)
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)
        clock.advance(seconds)

    lim = ReservoirLimiter("test", reservoir, max_concurrent, window, clock=clock, sleep=fake_sleep)
    return lim, clock, slept


async def test_waits_for_next_window_instead_of_failing():
    lim, clock, slept = _limiter(reservoir=2)

    async def task():
        return clock()

    times = [await lim.schedule(task) for _ in range(3)]
    assert times[:2] == [0.0, 0.0]
    assert times[2] == 60.0
    assert slept == [60.0]
    assert lim.stats()["waits_total"] == 1
    assert lim.stats()["requests_total"] == 3


async def test_mark_down_holds_permits():
    lim, clock, slept = _limiter(reservoir=10)
    lim.mark_down(5)

    async def task():
        return clock()

    assert await lim.schedule(task) == 5.0
    assert slept == [5.0]
    assert lim.stats()["429_total"] == 1


async def test_concurrency_is_bounded():
    lim = ReservoirLimiter("conc", reservoir=100, max_concurrent=2)
    peak = 0

    async def task():
        nonlocal peak
        peak = max(peak, lim.in_flight)
        await asyncio.sleep(0.01)
        return True

    results = await asyncio.gather(*(lim.schedule(task) for _ in range(6)))
    assert all(results)
    assert peak == 2
    assert lim.in_flight == 0


async def test_in_flight_released_on_error():
    lim, _, _ = _limiter()

    async def task():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await lim.schedule(task)
    assert lim.in_flight == 0


def test_retry_after_is_clamped():
    assert RateLimitedError("x", 10_000).retry_after == MAX_RETRY_AFTER
    assert RateLimitedError("x", -1).retry_after == 0.0


async def test_tenacity_honours_retry_after():
    calls = []

    @retry(retry=retry_if_exception_type(RateLimitedError), wait=wait_retry_after,
           stop=stop_after_attempt(3), reraise=True)
    async def flaky():
        calls.append(1)
        if len(calls) < 2:
            raise RateLimitedError("x", 0.0)
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 2
