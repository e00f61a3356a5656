import pytest

from httpguard.exceptions import ConfigurationError
from httpguard.exceptions import RateLimitExceededError
from httpguard.models import RequestDescriptor
from httpguard.rate_limit import RateLimiter

from tests.fakes import FakeClock
from tests.fakes import make_response


class Counter:
    def __init__(self):
        self.calls = 0

    async def __call__(self, descriptor):
        self.calls += 1
        return make_response(request=descriptor)


@pytest.mark.asyncio
async def test_sliding_window_rejects_then_recovers():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=2, window=1.0, clock=clock)
    backend = Counter()

    await limiter.handle(RequestDescriptor(), backend)
    await limiter.handle(RequestDescriptor(), backend)
    with pytest.raises(RateLimitExceededError) as exc_info:
        await limiter.handle(RequestDescriptor(), backend)

    assert exc_info.value.code == "RATE_LIMIT_EXCEEDED"
    assert backend.calls == 2

    clock.advance(1.001)
    await limiter.handle(RequestDescriptor(), backend)
    assert backend.calls == 3


def test_window_slides_per_timestamp():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=2, window=1.0, clock=clock)

    limiter.acquire()
    clock.advance(0.6)
    limiter.acquire()
    clock.advance(0.5)
    # first timestamp has left the window, second has not
    assert limiter.remaining == 1
    limiter.acquire()
    with pytest.raises(RateLimitExceededError):
        limiter.acquire()


def test_rejections_are_not_recorded():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=1, window=1.0, clock=clock)
    limiter.acquire()
    for _ in range(5):
        with pytest.raises(RateLimitExceededError):
            limiter.acquire()
    clock.advance(1.5)
    limiter.acquire()


def test_on_limit_called_with_error_and_request():
    seen = []
    limiter = RateLimiter(
        max_requests=1,
        window=10.0,
        on_limit=lambda error, descriptor: seen.append((error, descriptor)),
        clock=FakeClock(),
    )
    descriptor = RequestDescriptor(url="/x")
    limiter.acquire(descriptor)
    with pytest.raises(RateLimitExceededError) as exc_info:
        limiter.acquire(descriptor)

    assert seen == [(exc_info.value, descriptor)]


def test_on_limit_exception_supersedes_rate_limit_error():
    def on_limit(error, descriptor):
        raise RuntimeError("custom rejection")

    limiter = RateLimiter(max_requests=1, window=10.0, on_limit=on_limit, clock=FakeClock())
    limiter.acquire()
    with pytest.raises(RuntimeError, match="custom rejection"):
        limiter.acquire()


@pytest.mark.parametrize("kwargs", [{"window": 0}, {"window": -1}, {"max_requests": 0}])
def test_invalid_configuration(kwargs):
    with pytest.raises(ConfigurationError):
        RateLimiter(**kwargs)
