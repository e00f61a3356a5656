"""
Custom exceptions for httpguard.

Every rejection raised by the library carries a stable ``code`` so calling
code can branch on it without matching messages:

- TRANSPORT_ERROR: network or HTTP-level failure reported by the transport
- RATE_LIMIT_EXCEEDED: the sliding window is full
- ECIRCUITOPEN / ECIRCUITHALFOPEN: the circuit breaker rejected the call
- REGISTRY_OPERATION_ERROR: attaching or detaching an interceptor failed
- INVALID_GROUP: a group references unknown interceptors or does not exist
- INVALID_CONFIGURATION: a component was built with unusable parameters
- REQUEST_CANCELLED: the caller's cancel signal fired
- TOKEN_REFRESH_FAILED: the access token could not be refreshed
"""

from typing import Any, Optional


class HttpGuardError(Exception):
    """
    Base exception for all httpguard failures.

    Args:
        message (str): Short explanation of the error.
        details (Any | None): Optional structured details.
    """

    code = "HTTPGUARD_ERROR"

    # Diagnostic annotations added by the circuit breaker and retry executor
    circuit_breaker_state = None
    circuit_breaker_failures = None
    retry_attempt = None
    retry_delay = None

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class TransportError(HttpGuardError):
    """
    Raised by transports for network failures (no response) and for
    non-2xx HTTP responses (response attached).
    """

    code = "TRANSPORT_ERROR"

    def __init__(
        self,
        message: str,
        request: Any = None,
        response: Any = None,
        is_timeout: bool = False,
        details: Optional[Any] = None,
    ):
        super().__init__(message, details=details)
        self.request = request
        self.response = response
        self.is_timeout = is_timeout

    @property
    def is_network_error(self) -> bool:
        return self.response is None

    @property
    def status(self) -> Optional[int]:
        return self.response.status if self.response is not None else None


class RateLimitExceededError(HttpGuardError):
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str = "Rate limit exceeded", request: Any = None):
        super().__init__(message)
        self.request = request


class CircuitOpenError(HttpGuardError):
    """Raised without invoking the transport while the circuit is open."""

    code = "ECIRCUITOPEN"

    def __init__(self, message: str, state: Any = None):
        super().__init__(message)
        self.circuit_breaker_state = state


class CircuitHalfOpenLimitError(CircuitOpenError):
    """Raised when every half-open probe slot is already taken."""

    code = "ECIRCUITHALFOPEN"


class RegistryOperationError(HttpGuardError):
    code = "REGISTRY_OPERATION_ERROR"

    def __init__(self, name: str, operation: str, cause: BaseException):
        super().__init__(
            f"Failed to {operation} interceptor '{name}': {cause}",
            details={"name": name, "operation": operation, "error": str(cause)},
        )
        self.name = name
        self.operation = operation


class GroupConfigurationError(HttpGuardError):
    code = "INVALID_GROUP"


class ConfigurationError(HttpGuardError, ValueError):
    code = "INVALID_CONFIGURATION"


class RequestCancelledError(HttpGuardError):
    code = "REQUEST_CANCELLED"

    def __init__(self, message: str = "Request was cancelled", request: Any = None):
        super().__init__(message)
        self.request = request


class TokenRefreshError(HttpGuardError):
    """Raised when a new access token could not be obtained."""

    code = "TOKEN_REFRESH_FAILED"
