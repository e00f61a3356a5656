"""
Configuration management for httpguard.

This module provides GuardSettings, which holds the defaults used by
GuardedClient when an interceptor is enabled without explicit options
(for example through a group), with support for environment variables,
.env files, and sensible defaults.

Environment variables are automatically loaded with HTTPGUARD_ prefix.
Example: HTTPGUARD_RATE_LIMIT_MAX_REQUESTS=50
"""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict


class GuardSettings(BaseSettings):
    """
    Configuration settings for httpguard with environment variable support.

    All durations are in seconds.

    Example:
        # From environment
        export HTTPGUARD_ENVIRONMENT=production
        export HTTPGUARD_CACHE_MAX_AGE=120

        # In code
        settings = GuardSettings()
    """

    environment: str = "development"
    base_url: str = ""
    timeout: float = Field(default=30.0, gt=0)
    transport: str = "httpx"  # default, can be 'aiohttp' or 'requests'

    rate_limit_max_requests: int = Field(default=100, ge=1)
    rate_limit_window: float = Field(default=60.0, gt=0)

    cache_max_age: float = Field(default=300.0, gt=0)
    cache_max_size: int = Field(default=100, ge=1)

    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_reset_timeout: float = Field(default=60.0, ge=0)
    circuit_monitoring_period: float = Field(default=60.0, ge=0)

    retry_max_retries: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    retry_backoff_factor: float = Field(default=2.0, ge=1)

    default_timeout: float = Field(default=5.0, gt=0)

    token_cache_path: Optional[Path] = None

    model_config = SettingsConfigDict(
        env_prefix="HTTPGUARD_", env_file=".env", extra="ignore"
    )
