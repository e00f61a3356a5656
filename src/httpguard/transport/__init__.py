"""
Transport layer for httpguard.

This module provides a unified transport interface that abstracts different HTTP clients.
Interceptors never talk to an HTTP library directly; they only see
``dispatch(descriptor) -> ResponseEnvelope``:

- httpx: Modern async HTTP client (default, recommended)
- aiohttp: Async HTTP client with advanced features
- requests: Sync HTTP client wrapped in async interface

All transports implement the same interface, making them interchangeable.
"""

from .base import BaseTransport
from .httpx import HttpxTransport


def get_transport(name: str, timeout: float = 10.0, base_url: str = "") -> BaseTransport:
    """
    Get transport instance by name.

    Available transports:
    - httpx: Async HTTP client (default)
    - aiohttp: Async HTTP client
    - requests: Sync HTTP client (wrapped in async interface)
    """
    name = name.lower()
    if name == "httpx":
        return HttpxTransport(timeout, base_url=base_url)
    elif name == "aiohttp":
        try:
            from .aiohttp import AiohttpTransport

            return AiohttpTransport(timeout, base_url=base_url)
        except ImportError as err:
            raise ImportError(
                "aiohttp transport requires aiohttp package. Install with: pip install httpguard[aiohttp]"
            ) from err
    elif name == "requests":
        try:
            from .requests import RequestsTransport

            return RequestsTransport(timeout, base_url=base_url)
        except ImportError as err:
            raise ImportError(
                "requests transport requires requests package. Install with: pip install httpguard[requests]"
            ) from err
    else:
        raise ValueError(
            f"Unknown transport: {name}. Available: httpx, aiohttp, requests"
        )


__all__ = ["BaseTransport", "HttpxTransport", "get_transport"]
