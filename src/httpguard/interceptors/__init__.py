from .auth import AuthInterceptor
from .auth import RefreshTokenInterceptor
from .auth import TokenRefresher
from .request_logging import LoggingInterceptor
from .timeout import SmartTimeout

__all__ = [
    "AuthInterceptor",
    "LoggingInterceptor",
    "RefreshTokenInterceptor",
    "SmartTimeout",
    "TokenRefresher",
]
