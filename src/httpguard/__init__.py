"""
httpguard - Async HTTP client with managed interceptors.

This package provides:
- Async client with named, switchable interceptors
- Interceptor groups and conditional interceptors
- Rate limiting, circuit breaking, request deduplication
- Response caching and retry with exponential backoff
- Token authentication with automatic refresh
- Multiple HTTP transport support
"""

from .cache import ResponseCache
from .cancellation import CancellationManager
from .circuit_breaker import CircuitBreaker
from .circuit_breaker import CircuitState
from .client import GuardedClient
from .conditions import CommonConditions
from .conditions import Condition
from .config import GuardSettings
from .dedup import Deduplicator
from .exceptions import CircuitHalfOpenLimitError
from .exceptions import CircuitOpenError
from .exceptions import ConfigurationError
from .exceptions import GroupConfigurationError
from .exceptions import HttpGuardError
from .exceptions import RateLimitExceededError
from .exceptions import RegistryOperationError
from .exceptions import RequestCancelledError
from .exceptions import TokenRefreshError
from .exceptions import TransportError
from .models import InterceptorKind
from .models import RequestDescriptor
from .models import ResponseEnvelope
from .rate_limit import RateLimiter
from .retry import RetryExecutor
from .retry import RetryPolicy
from .token_store import FileTokenStore
from .token_store import MemoryTokenStore
from .token_store import TokenStore

__version__ = "1.0.0"

__all__ = [
    "GuardedClient",
    "GuardSettings",
    "RequestDescriptor",
    "ResponseEnvelope",
    "InterceptorKind",
    "Condition",
    "CommonConditions",
    "CircuitBreaker",
    "CircuitState",
    "RateLimiter",
    "ResponseCache",
    "Deduplicator",
    "RetryExecutor",
    "RetryPolicy",
    "CancellationManager",
    "TokenStore",
    "MemoryTokenStore",
    "FileTokenStore",
    "HttpGuardError",
    "TransportError",
    "RateLimitExceededError",
    "CircuitOpenError",
    "CircuitHalfOpenLimitError",
    "RegistryOperationError",
    "GroupConfigurationError",
    "ConfigurationError",
    "RequestCancelledError",
    "TokenRefreshError",
]
