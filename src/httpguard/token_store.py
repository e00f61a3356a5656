# token_store.py

import json
import logging
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger("httpguard.token_store")


class TokenStore:
    """Abstract interface for token storage."""

    async def load(self) -> dict | None:
        raise NotImplementedError

    async def save(
        self,
        access_token: str,
        expires_at: Optional[float] = None,
        refresh_token: Optional[str] = None,
    ):
        raise NotImplementedError

    async def clear(self):
        """Clears the token cache"""
        raise NotImplementedError

    def is_authenticated(self) -> bool:
        raise NotImplementedError


def _is_valid(data: Optional[dict]) -> bool:
    if not data or not data.get("access_token"):
        return False
    expires_at = data.get("expires_at")
    return expires_at is None or time.time() < expires_at


class MemoryTokenStore(TokenStore):
    def __init__(
        self,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        expires_at: Optional[float] = None,
    ):
        self._data: dict | None = None
        if access_token or refresh_token:
            self._data = {
                "access_token": access_token,
                "refresh_token": refresh_token,
                "expires_at": expires_at,
            }

    async def load(self) -> dict | None:
        return dict(self._data) if self._data else None

    async def save(self, access_token, expires_at=None, refresh_token=None):
        previous = self._data or {}
        self._data = {
            "access_token": access_token,
            "refresh_token": refresh_token or previous.get("refresh_token"),
            "expires_at": expires_at,
        }

    async def clear(self):
        self._data = None

    def is_authenticated(self) -> bool:
        return _is_valid(self._data)


class FileTokenStore(TokenStore):
    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> dict | None:
        if not self.path.exists():
            logger.debug("Token cache file does not exist")
            return None
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.debug(f"Failed to load token cache: {e}")
            return None
        if not isinstance(data, dict) or "access_token" not in data:
            logger.debug("Cached token data is invalid")
            return None
        return data

    async def load(self) -> dict | None:
        logger.debug(f"Attempting to load token from: {self.path}")
        data = self._read()
        if data is None:
            return None
        if not _is_valid(data) and not data.get("refresh_token"):
            logger.debug("Cached token is expired")
            return None
        return data

    async def save(self, access_token, expires_at=None, refresh_token=None):
        previous = self._read() or {}
        data = {
            "access_token": access_token,
            "refresh_token": refresh_token or previous.get("refresh_token"),
            "expires_at": expires_at,
        }
        try:
            logger.debug(f"Saving token to: {self.path}")
            self.path.write_text(json.dumps(data))
        except OSError as e:
            logger.warning(f"Failed to save token: {e}")

    async def clear(self):
        """Clears the token cache"""
        try:
            if self.path.exists():
                self.path.unlink()
                logger.debug("Token cache cleared")
        except OSError as e:
            logger.warning(f"Failed to clear token cache: {e}")

    def is_authenticated(self) -> bool:
        return _is_valid(self._read())
