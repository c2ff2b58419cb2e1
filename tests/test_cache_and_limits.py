import asyncio
import time

from chainraffle.utils.cache import Cache
from chainraffle.webapp.middlewares import RateLimiter


async def test_cache_ttl_by_key_prefix(monkeypatch):
    cache = Cache(default_ttl=60, ttl_settings={"raffle": 15})
    assert cache.ttl_for("raffle:123") == 15
    assert cache.ttl_for("winners:100") == 60

    now = time.monotonic()
    monkeypatch.setattr(time, "monotonic", lambda: now)
    await cache.set("raffle:123", {"title": "A"})
    assert await cache.get("raffle:123") == {"title": "A"}

    monkeypatch.setattr(time, "monotonic", lambda: now + 16)
    assert await cache.get("raffle:123") is None
    assert cache.get_stats()["hits"] == 1


async def test_get_or_compute_caches_and_skips_failures():
    cache = Cache(default_ttl=60, ttl_settings={})
    calls = []

    async def compute():
        calls.append(1)
        return ["raffle"]

    assert await cache.get_or_compute("live_raffles", compute) == ["raffle"]
    assert await cache.get_or_compute("live_raffles", compute) == ["raffle"]
    assert len(calls) == 1

    async def broken():
        raise RuntimeError("storage down")

    try:
        await cache.get_or_compute("ended", broken)
    except RuntimeError:
        pass
    assert await cache.get("ended") is None


async def test_delete_by_prefix_and_cleanup(monkeypatch):
    cache = Cache(default_ttl=10, ttl_settings={})
    now = time.monotonic()
    monkeypatch.setattr(time, "monotonic", lambda: now)
    await cache.set("winners:10", [1])
    await cache.set("winners:100", [2])
    await cache.set("live_raffles", [3], ttl=100)

    assert await cache.delete_by_prefix("winners") == 2

    await cache.set("ended", [4])
    monkeypatch.setattr(time, "monotonic", lambda: now + 11)
    assert await cache.cleanup() == 1
    assert await cache.get("live_raffles") == [3]


def test_rate_limiter_sliding_window():
    limiter = RateLimiter(window_size=60, max_requests=2)

    assert limiter.is_allowed("ip:1", now=0)[0] is True
    assert limiter.is_allowed("ip:1", now=1)[0] is True
    allowed, info = limiter.is_allowed("ip:1", now=2)
    assert allowed is False
    assert info["retry_after"] == 58
    assert limiter.is_allowed("ip:2", now=2)[0] is True

    # Первый запрос вышел из окна
    assert limiter.is_allowed("ip:1", now=60.5)[0] is True


def test_rate_limiter_cleanup():
    limiter = RateLimiter(window_size=60, max_requests=5)
    limiter.is_allowed("ip:old", now=0)
    limiter.is_allowed("ip:new", now=4000)
    assert limiter.cleanup(max_idle_time=3600, now=4000) == 1
    assert list(limiter.clients) == ["ip:new"]


async def test_compute_locks_released_after_use():
    cache = Cache(default_ttl=60, ttl_settings={})

    async def missing():
        raise LookupError("raffle not found")

    for i in range(50):
        try:
            await cache.get_or_compute(f"raffle:{i}", missing)
        except LookupError:
            pass
    assert cache.locks == {}
    assert cache.lock_users == {}

    async def winners():
        return ["0xA"]

    for limit in range(20):
        await cache.get_or_compute(f"winners:{limit}", winners)
    assert cache.locks == {}


async def test_concurrent_computes_share_one_call():
    cache = Cache(default_ttl=60, ttl_settings={})
    calls = []
    release = asyncio.Event()

    async def slow():
        calls.append(1)
        await release.wait()
        return {"title": "A"}

    tasks = [asyncio.create_task(cache.get_or_compute("raffle:1", slow)) for _ in range(5)]
    await asyncio.sleep(0)
    assert len(cache.locks) == 1
    release.set()

    assert await asyncio.gather(*tasks) == [{"title": "A"}] * 5
    assert len(calls) == 1
    assert cache.locks == {}
