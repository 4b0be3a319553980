import asyncio

import pytest

from jimmygate.core.errors import UpstreamError
from jimmygate.core.model_cache import ModelDirectoryCache

PAYLOAD = {"object": "list", "data": [{"id": "llama3.1-8B", "object": "model"}, {"id": "other", "object": "model"}]}


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _counting_fetcher(result=PAYLOAD, error: Exception | None = None, gate: asyncio.Event | None = None):
    calls = {"count": 0}

    async def fetcher():
        calls["count"] += 1
        if gate is not None:
            await gate.wait()
        if error is not None:
            raise error
        return result

    return fetcher, calls


@pytest.mark.asyncio
async def test_concurrent_gets_share_one_fetch():
    gate = asyncio.Event()
    fetcher, calls = _counting_fetcher(gate=gate)
    cache = ModelDirectoryCache(fetcher=fetcher, ttl_seconds=30)

    waiters = [asyncio.create_task(cache.get()) for _ in range(20)]
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*waiters)

    assert calls["count"] == 1
    assert all(result is PAYLOAD for result in results)


@pytest.mark.asyncio
async def test_concurrent_gets_share_the_same_error_and_do_not_poison_cache():
    gate = asyncio.Event()
    fetcher, calls = _counting_fetcher(error=UpstreamError("boom", status_code=503), gate=gate)
    cache = ModelDirectoryCache(fetcher=fetcher, ttl_seconds=30)

    waiters = [asyncio.create_task(cache.get()) for _ in range(5)]
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert calls["count"] == 1
    assert all(isinstance(result, UpstreamError) and result.status_code == 503 for result in results)

    with pytest.raises(UpstreamError):
        await cache.get()
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_cached_payload_served_within_ttl_and_refetched_after():
    clock = FakeClock()
    fetcher, calls = _counting_fetcher()
    cache = ModelDirectoryCache(fetcher=fetcher, ttl_seconds=30, clock=clock)

    assert await cache.get() is PAYLOAD
    clock.now += 30
    assert await cache.get() is PAYLOAD
    assert calls["count"] == 1

    clock.now += 0.5
    await cache.get()
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_zero_ttl_disables_caching():
    fetcher, calls = _counting_fetcher()
    cache = ModelDirectoryCache(fetcher=fetcher, ttl_seconds=0)
    await cache.get()
    await cache.get()
    await cache.get()
    assert calls["count"] == 3


@pytest.mark.asyncio
async def test_get_by_id_found_and_not_found():
    fetcher, calls = _counting_fetcher()
    cache = ModelDirectoryCache(fetcher=fetcher, ttl_seconds=30)
    assert await cache.get_by_id("other") == {"id": "other", "object": "model"}
    assert await cache.get_by_id("missing") is None
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_get_by_id_tolerates_payload_without_data_list():
    fetcher, _calls = _counting_fetcher(result={"models": []})
    cache = ModelDirectoryCache(fetcher=fetcher, ttl_seconds=30)
    assert await cache.get_by_id("llama3.1-8B") is None


@pytest.mark.asyncio
async def test_invalidate_forces_refetch():
    fetcher, calls = _counting_fetcher()
    cache = ModelDirectoryCache(fetcher=fetcher, ttl_seconds=30)
    await cache.get()
    cache.invalidate()
    await cache.get()
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_fetch():
    gate = asyncio.Event()
    fetcher, calls = _counting_fetcher(gate=gate)
    cache = ModelDirectoryCache(fetcher=fetcher, ttl_seconds=30)

    first = asyncio.create_task(cache.get())
    second = asyncio.create_task(cache.get())
    await asyncio.sleep(0)
    first.cancel()
    gate.set()

    assert await second is PAYLOAD
    assert calls["count"] == 1
    with pytest.raises(asyncio.CancelledError):
        await first
