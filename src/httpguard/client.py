"""
Async HTTP client with managed interceptors.

GuardedClient ties the pieces together:

- request hooks (auth, smart timeout, logging, custom) rewrite the request
- protection stages run in a fixed order around the transport call:
  rate limiter -> circuit breaker -> deduplicator -> cache -> retry -> transport
- response and error hooks (logging, token refresh, custom) see the outcome

Interceptors are switched on and off by name, individually, conditionally
or in groups, and can be re-configured at any time without piling up
duplicate hooks.

Example usage:
    from httpguard import GuardedClient
    from httpguard.conditions import method_matches

    async with GuardedClient() as client:
        client.use_rate_limit(max_requests=10, window=1.0)
        client.use_conditional("cache", method_matches("GET"), max_age=60)
        client.use_retry(max_retries=3)

        response = await client.get("https://api.example.com/items")
        print(response.status, response.served_from_cache)
"""

import asyncio
import logging
import time
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Optional

from .cache import ResponseCache
from .cancellation import wait_cancellable
from .circuit_breaker import CircuitBreaker
from .config import GuardSettings
from .dedup import Deduplicator
from .events import LifecycleEvents
from .exceptions import TransportError
from .groups import GroupManager
from .hooks import HookManager
from .hooks import StageChain
from .interceptors import AuthInterceptor
from .interceptors import LoggingInterceptor
from .interceptors import RefreshTokenInterceptor
from .interceptors import SmartTimeout
from .interceptors import TokenRefresher
from .models import InterceptorGroup
from .models import InterceptorKind
from .models import LifecycleEvent
from .models import RequestDescriptor
from .models import ResponseEnvelope
from .pipeline import compose
from .rate_limit import RateLimiter
from .registry import InterceptorRegistry
from .retry import RetryExecutor
from .retry import RetryPolicy
from .retry import RetryStage
from .retry import is_retryable_error
from .token_store import FileTokenStore
from .token_store import MemoryTokenStore
from .token_store import TokenStore
from .transport import BaseTransport
from .transport import get_transport

logger = logging.getLogger("httpguard.client")

COMMON_GROUPS = {
    "api-calls": ["auth", "retry", "cache"],
    "development": ["logging", "retry"],
    "production": ["auth", "retry", "cache", "rate_limit"],
}


def is_retryable_or_throttled(error: BaseException) -> bool:
    """Production retry rule: the default one plus 429 responses."""
    if isinstance(error, TransportError) and error.status == 429:
        return True
    return is_retryable_error(error)


class GuardedClient:
    """
    Async-first HTTP client with named, switchable interceptors.

    Args:
        transport (BaseTransport | None): Backend used for the actual call.
            Defaults to ``get_transport(settings.transport)``.
        settings (GuardSettings | None): Defaults for every built-in
            interceptor; loaded from the environment when omitted.
        token_store (TokenStore | None): Where the auth interceptors read and
            write tokens. A file store is used when ``token_cache_path`` is set,
            memory otherwise.
        clock (callable): Monotonic clock shared by the stateful stages.
        sleep (callable): Async sleep used for retry backoff.
    """

    def __init__(
        self,
        transport: Optional[BaseTransport] = None,
        settings: Optional[GuardSettings] = None,
        token_store: Optional[TokenStore] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or GuardSettings()
        self.transport = transport or get_transport(
            self.settings.transport,
            timeout=self.settings.timeout,
            base_url=self.settings.base_url,
        )
        if token_store is None:
            if self.settings.token_cache_path:
                token_store = FileTokenStore(self.settings.token_cache_path)
            else:
                token_store = MemoryTokenStore()
        self.token_store = token_store
        self._clock = clock
        self._sleep = sleep

        self.request_hooks = HookManager()
        self.response_hooks = HookManager()
        self.stages = StageChain()
        self.events = LifecycleEvents()
        self.registry = InterceptorRegistry(
            self.request_hooks, self.response_hooks, self.stages, self.events
        )
        self.groups = GroupManager(self.registry)

        self._handler = None
        self._handler_version = None
        self._define_builtins()

    def _define_builtins(self) -> None:
        s = self.settings
        define = self.registry.define

        define("auth", lambda cfg: AuthInterceptor(**{"token_store": self.token_store, **cfg}), {})
        define("refresh_token", self._build_refresh, {})
        define(
            "retry",
            lambda cfg: RetryStage(RetryPolicy(**cfg), sleep=self._sleep),
            {
                "max_retries": s.retry_max_retries,
                "base_delay": s.retry_base_delay,
                "max_delay": s.retry_max_delay,
                "backoff_factor": s.retry_backoff_factor,
            },
        )
        define("logging", lambda cfg: LoggingInterceptor(**{"clock": self._clock, **cfg}), {})
        define(
            "cache",
            lambda cfg: ResponseCache(**{"clock": self._clock, **cfg}),
            {"max_age": s.cache_max_age, "max_size": s.cache_max_size},
        )
        define(
            "smart_timeout",
            lambda cfg: SmartTimeout(**cfg),
            {"default_timeout": s.default_timeout},
        )
        define(
            "rate_limit",
            lambda cfg: RateLimiter(**{"clock": self._clock, **cfg}),
            {"max_requests": s.rate_limit_max_requests, "window": s.rate_limit_window},
        )
        define(
            "circuit_breaker",
            lambda cfg: CircuitBreaker(**{"clock": self._clock, **cfg}),
            {
                "failure_threshold": s.circuit_failure_threshold,
                "reset_timeout": s.circuit_reset_timeout,
                "monitoring_period": s.circuit_monitoring_period,
            },
        )
        define("dedup", lambda cfg: Deduplicator(**cfg), {})

    def _build_refresh(self, cfg: dict) -> RefreshTokenInterceptor:
        refresher = TokenRefresher(
            self.token_store,
            refresh_fn=cfg.get("refresh_fn"),
            refresh_url=cfg.get("refresh_url"),
            retry_attempts=cfg.get("retry_attempts", 3),
        )
        return RefreshTokenInterceptor(
            replay=self.request,
            refresher=refresher,
            on_refresh_failed=cfg.get("on_refresh_failed"),
        )

    # === dispatch ===

    async def _dispatch(self, descriptor: RequestDescriptor) -> ResponseEnvelope:
        return await wait_cancellable(
            self.transport.dispatch(descriptor), descriptor.cancel_signal, descriptor
        )

    def _pipeline(self):
        if self._handler is None or self._handler_version != self.stages.version:
            self._handler = compose(self.stages.ordered(), self._dispatch)
            self._handler_version = self.stages.version
        return self._handler

    async def request(
        self, descriptor: Optional[RequestDescriptor] = None, **fields: Any
    ) -> ResponseEnvelope:
        """
        Send a request through every active interceptor.

        Either pass a RequestDescriptor or its fields as keyword arguments
        (``method``, ``url``, ``headers``, ``params``, ``json``, ``data``,
        ``files``, ``timeout``, ``cancel_signal``, ``metadata``).

        Raises:
            HttpGuardError: any rejection not recovered by an error hook.
        """
        if descriptor is None:
            descriptor = RequestDescriptor(**fields)
        elif fields:
            descriptor = descriptor.copy(**fields)

        try:
            descriptor = await self.request_hooks.process_request(descriptor)
            response = await self._pipeline()(descriptor)
        except Exception as error:
            return await self.response_hooks.process_response(descriptor, error=error)
        return await self.response_hooks.process_response(descriptor, response=response)

    async def get(self, url: str, **kwargs: Any) -> ResponseEnvelope:
        return await self.request(method="GET", url=url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> ResponseEnvelope:
        return await self.request(method="POST", url=url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> ResponseEnvelope:
        return await self.request(method="PUT", url=url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> ResponseEnvelope:
        return await self.request(method="PATCH", url=url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> ResponseEnvelope:
        return await self.request(method="DELETE", url=url, **kwargs)

    async def request_with_retry(
        self,
        descriptor: Optional[RequestDescriptor] = None,
        *,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        backoff_factor: Optional[float] = None,
        retry_predicate: Optional[Callable[[BaseException], bool]] = None,
        delay_fn: Optional[Callable[[int, BaseException], float]] = None,
        **fields: Any,
    ) -> ResponseEnvelope:
        """Retry this one call, independently of the ``retry`` interceptor."""
        s = self.settings
        policy = RetryPolicy(
            max_retries=s.retry_max_retries if max_retries is None else max_retries,
            base_delay=s.retry_base_delay if base_delay is None else base_delay,
            max_delay=s.retry_max_delay if max_delay is None else max_delay,
            backoff_factor=s.retry_backoff_factor if backoff_factor is None else backoff_factor,
            retry_predicate=retry_predicate or is_retryable_error,
            delay_fn=delay_fn,
        )
        if descriptor is None:
            descriptor = RequestDescriptor(**fields)
        elif fields:
            descriptor = descriptor.copy(**fields)
        executor = RetryExecutor(policy, sleep=self._sleep)
        return await executor.execute(self.request, descriptor)

    # === interceptor switches ===

    def use_interceptor(
        self, name: str, factory: Callable[[Any], Any], config: Any = None, condition: Any = None
    ) -> "GuardedClient":
        """Define (or redefine) a custom interceptor and enable it."""
        self.registry.define(name, factory)
        self.registry.enable(name, config, condition=condition)
        return self

    def use_conditional(self, name: str, condition: Any, **config: Any) -> "GuardedClient":
        self.registry.enable(name, config, condition=condition)
        return self

    def remove_interceptor(self, name: str) -> "GuardedClient":
        self.registry.disable(name)
        return self

    def use_auth(self, get_token: Optional[Callable[[], Any]] = None, **config: Any) -> "GuardedClient":
        if get_token is not None:
            config["get_token"] = get_token
        self.registry.enable("auth", config)
        return self

    def remove_auth(self) -> "GuardedClient":
        return self.remove_interceptor("auth")

    def use_refresh_token(self, **config: Any) -> "GuardedClient":
        self.registry.enable("refresh_token", config)
        return self

    def remove_refresh_token(self) -> "GuardedClient":
        return self.remove_interceptor("refresh_token")

    def setup_auth(
        self,
        get_token: Optional[Callable[[], Any]] = None,
        refresh: Optional[dict] = None,
    ) -> "GuardedClient":
        if get_token is not None:
            self.use_auth(get_token)
        if refresh:
            self.use_refresh_token(**refresh)
        return self

    def use_retry(self, **config: Any) -> "GuardedClient":
        self.registry.enable("retry", config)
        return self

    def remove_retry(self) -> "GuardedClient":
        return self.remove_interceptor("retry")

    def use_logging(self, **config: Any) -> "GuardedClient":
        self.registry.enable("logging", config)
        return self

    def remove_logging(self) -> "GuardedClient":
        return self.remove_interceptor("logging")

    def use_cache(self, **config: Any) -> "GuardedClient":
        self.registry.enable("cache", config)
        return self

    def remove_cache(self) -> "GuardedClient":
        return self.remove_interceptor("cache")

    def use_smart_timeout(self, **config: Any) -> "GuardedClient":
        self.registry.enable("smart_timeout", config)
        return self

    def remove_smart_timeout(self) -> "GuardedClient":
        return self.remove_interceptor("smart_timeout")

    def use_rate_limit(self, **config: Any) -> "GuardedClient":
        self.registry.enable("rate_limit", config)
        return self

    def remove_rate_limit(self) -> "GuardedClient":
        return self.remove_interceptor("rate_limit")

    def use_circuit_breaker(self, **config: Any) -> "GuardedClient":
        self.registry.enable("circuit_breaker", config)
        return self

    def remove_circuit_breaker(self) -> "GuardedClient":
        return self.remove_interceptor("circuit_breaker")

    def use_dedup(self, **config: Any) -> "GuardedClient":
        self.registry.enable("dedup", config)
        return self

    def remove_dedup(self) -> "GuardedClient":
        return self.remove_interceptor("dedup")

    def add_conditional_interceptor(
        self,
        name: str,
        kind: InterceptorKind,
        predicate: Callable[[RequestDescriptor], bool],
        on_fulfilled: Optional[Callable[..., Any]] = None,
        on_rejected: Optional[Callable[..., Any]] = None,
    ) -> int:
        return self.registry.add_conditional_binding(
            name, kind, predicate, on_fulfilled, on_rejected
        )

    def remove_conditional_interceptor(self, name: str) -> bool:
        return self.registry.remove_conditional_binding(name)

    def clear_conditional_interceptors(self) -> None:
        self.registry.clear_conditional_bindings()

    # === introspection ===

    @property
    def circuit_breaker(self) -> Optional[CircuitBreaker]:
        return self.registry.instance("circuit_breaker")

    @property
    def cache(self) -> Optional[ResponseCache]:
        return self.registry.instance("cache")

    @property
    def deduplicator(self) -> Optional[Deduplicator]:
        return self.registry.instance("dedup")

    @property
    def rate_limiter(self) -> Optional[RateLimiter]:
        return self.registry.instance("rate_limit")

    def interceptor_status(self) -> dict[str, dict]:
        return self.registry.status()

    def active_interceptors(self) -> dict[str, list[tuple[str, int]]]:
        return self.registry.active()

    def on(self, event: str, listener: Callable[[LifecycleEvent], None]) -> None:
        self.events.on(event, listener)

    # === groups ===

    def create_interceptor_group(self, name: str, members: list[str]) -> InterceptorGroup:
        return self.groups.create_group(name, members)

    def enable_group(self, name: str) -> "GuardedClient":
        self.groups.enable_group(name)
        return self

    def disable_group(self, name: str) -> "GuardedClient":
        self.groups.disable_group(name)
        return self

    def toggle_group(self, name: str) -> bool:
        return self.groups.toggle_group(name)

    def get_groups(self) -> dict[str, list[str]]:
        return self.groups.get_groups()

    def get_group_config(self, name: str) -> InterceptorGroup:
        return self.groups.get_group_config(name)

    def delete_group(self, name: str) -> bool:
        return self.groups.delete_group(name)

    # === presets ===

    def setup_common_groups(self) -> "GuardedClient":
        for name, members in COMMON_GROUPS.items():
            self.groups.create_group(name, members)
        return self

    def setup_development(
        self,
        log: Optional[dict] = None,
        retry: Optional[dict] = None,
        timeout: Any = None,
    ) -> "GuardedClient":
        self.setup_common_groups()
        self.enable_group("development")
        self.use_logging(
            **{"log_requests": True, "log_responses": True, "log_errors": True, **(log or {})}
        )
        self.use_retry(**{"max_retries": 3, "base_delay": 1.0, **(retry or {})})
        if timeout is not False:
            self.use_smart_timeout(**{"default_timeout": 30.0, **(timeout or {})})
        return self

    def setup_production(
        self,
        auth: Optional[dict] = None,
        retry: Optional[dict] = None,
        cache: Any = None,
        rate_limit: Any = None,
        timeout: Optional[dict] = None,
    ) -> "GuardedClient":
        self.setup_common_groups()
        self.enable_group("production")
        if auth:
            self.setup_auth(**auth)
        self.use_retry(
            **{
                "max_retries": 5,
                "base_delay": 1.0,
                "retry_predicate": is_retryable_or_throttled,
                **(retry or {}),
            }
        )
        if cache is not False:
            self.use_cache(**{"max_age": 300.0, **(cache or {})})
        if rate_limit is not False:
            self.use_rate_limit(**{"max_requests": 100, "window": 60.0, **(rate_limit or {})})
        self.use_smart_timeout(**{"default_timeout": 60.0, **(timeout or {})})
        return self

    # === lifecycle ===

    async def aclose(self):
        await self.transport.close()

    async def __aenter__(self) -> "GuardedClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
