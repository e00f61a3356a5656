"""
Response cache stage.

Successful responses to cacheable (read) requests are kept in an in-memory
aiocache store. Expiry and first-in-first-out eviction are tracked in an
ordered index on the stage itself, so the decision to hit, insert or evict is
taken without awaiting; the store only holds the response snapshots.
"""

import json
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable
from typing import Iterable
from typing import Optional

from aiocache import Cache

from .exceptions import ConfigurationError
from .models import RequestDescriptor
from .models import ResponseEnvelope
from .pipeline import CACHE_ORDER
from .pipeline import Handler

logger = logging.getLogger("httpguard.cache")


@dataclass
class CacheEntry:
    key: str
    response: ResponseEnvelope
    inserted_at: float
    expires_at: float


def default_cache_key(descriptor: RequestDescriptor) -> str:
    params = json.dumps(descriptor.params or {}, sort_keys=True, default=str)
    return f"{descriptor.method.upper()}:{descriptor.url}:{params}"


class ResponseCache:
    """
    FIFO + TTL cache for responses.

    Args:
        max_age (float): Seconds an entry stays fresh.
        max_size (int): Maximum number of entries; the oldest inserted is evicted.
        key_generator (callable | None): Maps a request to its cache key.
        methods (Iterable[str]): Cacheable methods, GET only by default.
    """

    order = CACHE_ORDER

    def __init__(
        self,
        max_age: float = 300.0,
        max_size: int = 100,
        key_generator: Optional[Callable[[RequestDescriptor], str]] = None,
        methods: Iterable[str] = ("GET",),
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ConfigurationError("max_size must be at least 1")
        if max_age <= 0:
            raise ConfigurationError("max_age must be greater than 0")
        self.max_age = max_age
        self.max_size = max_size
        self.key_generator = key_generator or default_cache_key
        self.methods = {m.upper() for m in methods}
        self._clock = clock
        self._store = Cache(Cache.MEMORY, namespace=f"httpguard-{uuid.uuid4().hex}")
        self._index: OrderedDict[str, float] = OrderedDict()

    def is_cacheable(self, descriptor: RequestDescriptor) -> bool:
        return descriptor.method.upper() in self.methods

    @property
    def size(self) -> int:
        return len(self._index)

    def keys(self) -> list[str]:
        return list(self._index)

    async def get(self, descriptor: RequestDescriptor) -> Optional[ResponseEnvelope]:
        key = self.key_generator(descriptor)
        expires_at = self._index.get(key)
        if expires_at is None:
            logger.debug(f"Cache miss: {key}")
            return None
        if self._clock() >= expires_at:
            del self._index[key]
            await self._store.delete(key)
            logger.debug(f"Cache expired: {key}")
            return None

        entry = await self._store.get(key)
        if entry is None:
            return None
        logger.debug(f"Cache hit: {key}")
        return entry.response.snapshot(served_from_cache=True)

    async def put(self, descriptor: RequestDescriptor, response: ResponseEnvelope) -> bool:
        """Store ``response`` if it is a 2xx answer to a cacheable request."""
        if not self.is_cacheable(descriptor) or not response.ok:
            return False

        key = self.key_generator(descriptor)
        now = self._clock()
        evicted = [k for k, expires_at in self._index.items() if now >= expires_at]
        for k in evicted:
            del self._index[k]
        self._index.pop(key, None)
        if len(self._index) >= self.max_size:
            oldest, _ = self._index.popitem(last=False)
            evicted.append(oldest)
            logger.debug(f"Cache evicted oldest entry: {oldest}")
        self._index[key] = now + self.max_age

        entry = CacheEntry(
            key=key,
            response=response.snapshot(),
            inserted_at=now,
            expires_at=now + self.max_age,
        )
        for k in evicted:
            await self._store.delete(k)
        await self._store.set(key, entry)
        return True

    async def handle(
        self, descriptor: RequestDescriptor, call_next: Handler
    ) -> ResponseEnvelope:
        if not self.is_cacheable(descriptor):
            return await call_next(descriptor)

        cached = await self.get(descriptor)
        if cached is not None:
            return cached

        response = await call_next(descriptor)
        await self.put(descriptor, response)
        return response

    async def clear(self) -> None:
        self._index.clear()
        await self._store.clear()
        logger.info("Response cache cleared")
