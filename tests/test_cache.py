import pytest

from httpguard.cache import ResponseCache
from httpguard.cache import default_cache_key
from httpguard.exceptions import ConfigurationError
from httpguard.models import RequestDescriptor

from tests.fakes import FakeClock
from tests.fakes import make_response


class Backend:
    def __init__(self, status=200):
        self.status = status
        self.urls = []

    async def __call__(self, descriptor):
        self.urls.append(descriptor.url)
        return make_response(
            status=self.status,
            body={"url": descriptor.url, "n": len(self.urls)},
            request=descriptor,
        )


def get(url, **kwargs):
    return RequestDescriptor(method="GET", url=url, **kwargs)


@pytest.mark.asyncio
async def test_fifo_eviction():
    cache = ResponseCache(max_age=60, max_size=2, clock=FakeClock())
    backend = Backend()

    for url in ("/a", "/b", "/c"):
        await cache.handle(get(url), backend)
    assert backend.urls == ["/a", "/b", "/c"]

    b = await cache.handle(get("/b"), backend)
    c = await cache.handle(get("/c"), backend)
    assert b.served_from_cache and c.served_from_cache
    assert backend.urls == ["/a", "/b", "/c"]

    a = await cache.handle(get("/a"), backend)
    assert not a.served_from_cache
    assert backend.urls == ["/a", "/b", "/c", "/a"]


@pytest.mark.asyncio
async def test_eviction_is_insertion_order_not_access_order():
    cache = ResponseCache(max_age=60, max_size=2, clock=FakeClock())
    backend = Backend()
    await cache.handle(get("/a"), backend)
    await cache.handle(get("/b"), backend)
    await cache.handle(get("/a"), backend)  # hit, does not refresh position
    await cache.handle(get("/c"), backend)

    assert cache.keys() == [default_cache_key(get("/b")), default_cache_key(get("/c"))]


@pytest.mark.asyncio
async def test_entries_expire_after_max_age():
    clock = FakeClock()
    cache = ResponseCache(max_age=5, max_size=10, clock=clock)
    backend = Backend()

    await cache.handle(get("/a"), backend)
    clock.advance(4.9)
    assert (await cache.handle(get("/a"), backend)).served_from_cache
    clock.advance(0.2)
    assert not (await cache.handle(get("/a"), backend)).served_from_cache
    assert len(backend.urls) == 2


@pytest.mark.asyncio
async def test_expired_entries_are_pruned_before_evicting():
    clock = FakeClock()
    cache = ResponseCache(max_age=5, max_size=2, clock=clock)
    backend = Backend()
    await cache.handle(get("/a"), backend)
    clock.advance(3)
    await cache.handle(get("/b"), backend)
    clock.advance(3)  # /a expired, /b still fresh
    await cache.handle(get("/c"), backend)

    assert cache.size == 2
    assert (await cache.handle(get("/b"), backend)).served_from_cache


@pytest.mark.asyncio
async def test_hit_is_identical_to_original():
    cache = ResponseCache(clock=FakeClock())
    backend = Backend()
    original = await cache.handle(get("/a"), backend)
    original.extras["note"] = "custom"
    # extras added after storing are not part of the cached copy
    hit = await cache.handle(get("/a"), backend)

    assert hit.status == original.status
    assert hit.headers == original.headers
    assert hit.body == original.body
    assert hit.request is original.request
    assert hit.extras == {}

    hit.body["n"] = 99
    again = await cache.handle(get("/a"), backend)
    assert again.body["n"] == 1


@pytest.mark.asyncio
async def test_only_successful_cacheable_requests_are_stored():
    cache = ResponseCache(clock=FakeClock())

    await cache.handle(get("/missing"), Backend(status=404))
    await cache.handle(RequestDescriptor(method="POST", url="/a"), Backend())
    assert cache.size == 0

    assert not await cache.put(get("/err"), make_response(status=500))
    assert await cache.put(get("/ok"), make_response(status=204))
    assert cache.size == 1


@pytest.mark.asyncio
async def test_key_includes_params_and_custom_generator():
    cache = ResponseCache(clock=FakeClock())
    backend = Backend()
    await cache.handle(get("/a", params={"page": 1}), backend)
    await cache.handle(get("/a", params={"page": 2}), backend)
    assert len(backend.urls) == 2

    by_url = ResponseCache(key_generator=lambda d: d.url, clock=FakeClock())
    backend = Backend()
    await by_url.handle(get("/a", params={"page": 1}), backend)
    assert (await by_url.handle(get("/a", params={"page": 2}), backend)).served_from_cache


@pytest.mark.asyncio
async def test_method_matching_is_case_insensitive():
    cache = ResponseCache(methods=["get", "head"], clock=FakeClock())
    backend = Backend()
    await cache.handle(RequestDescriptor(method="head", url="/a"), backend)
    assert (await cache.handle(RequestDescriptor(method="HEAD", url="/a"), backend)).served_from_cache


@pytest.mark.asyncio
async def test_clear():
    cache = ResponseCache(clock=FakeClock())
    backend = Backend()
    await cache.handle(get("/a"), backend)
    await cache.clear()
    assert cache.size == 0
    assert not (await cache.handle(get("/a"), backend)).served_from_cache


def test_invalid_configuration():
    with pytest.raises(ConfigurationError):
        ResponseCache(max_size=0)
