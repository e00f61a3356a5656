"""
Example usage of httpguard interceptors.

This example shows how protection stages, conditional interceptors and
groups combine on a single client.
"""

import asyncio
import logging

from httpguard import GuardedClient
from httpguard import GuardSettings
from httpguard.conditions import CommonConditions
from httpguard.conditions import url_matches
from httpguard.events import ENABLED
from httpguard.exceptions import HttpGuardError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def demonstrate_interceptors():
    settings = GuardSettings(base_url="https://httpbin.org", environment="development")

    async with GuardedClient(settings=settings) as client:
        client.on(ENABLED, lambda event: logger.info(f"Enabled {event.name} ({event.kind.value})"))

        # Protection stages always run in the same order, whatever the call order here
        client.use_retry(max_retries=3, base_delay=0.5)
        client.use_rate_limit(max_requests=5, window=1.0)
        client.use_conditional("cache", CommonConditions.is_get_request, max_age=30)
        client.use_conditional("dedup", url_matches("/delay/*"))
        client.use_circuit_breaker(failure_threshold=3, reset_timeout=10)

        try:
            first = await client.get("/get", params={"q": "widgets"})
            second = await client.get("/get", params={"q": "widgets"})
            logger.info(f"First: {first.status}, second served from cache: {second.served_from_cache}")

            # Identical concurrent calls share one network request
            results = await asyncio.gather(*(client.get("/delay/1") for _ in range(3)))
            logger.info(f"Deduplicated: {[r.deduplicated for r in results]}")
        except HttpGuardError as e:
            logger.error(f"Request failed: {e.code} {e}")

        logger.info(f"Circuit breaker: {client.circuit_breaker.get_status()}")


async def demonstrate_groups():
    async with GuardedClient(settings=GuardSettings(base_url="https://httpbin.org")) as client:
        client.setup_common_groups()
        client.create_interceptor_group("protection", ["rate_limit", "circuit_breaker"])

        client.enable_group("development")
        client.enable_group("protection")
        logger.info(f"Active stages: {client.active_interceptors()['stage']}")

        client.toggle_group("protection")
        for name, status in client.interceptor_status().items():
            if status["enabled"]:
                logger.info(f"{name}: {status['kinds']}")


if __name__ == "__main__":
    asyncio.run(demonstrate_interceptors())
    asyncio.run(demonstrate_groups())
