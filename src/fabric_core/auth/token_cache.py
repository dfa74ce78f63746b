"""
Thread-safe token cache with expiration tracking.

This module provides in-memory caching of bearer tokens keyed by audience
scope. Each entry records the expiry reported by the identity provider, and
an entry is only handed out while its remaining lifetime exceeds a refresh
buffer, so a token never expires mid-flight during a slow downstream call.

Thread Safety:
    All cache operations are protected by a lock. Callers that need an
    atomic read-check-refresh-write sequence (CredentialCache) hold their own
    asyncio lock around it.

Example:
    >>> cache = TokenCache()
    >>> cache.set("fabric", "eyJ0eXAi...", expires_on=1767225600)
    >>> token = cache.get("fabric")
    >>> if token:
    ...     # Use cached token
    >>> else:
    ...     # Token near expiry or not cached, fetch new one
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

# Tokens within this margin of expiry are treated as expired
DEFAULT_REFRESH_BUFFER = timedelta(minutes=5)


@dataclass(frozen=True)
class CachedToken:
    """
    Bearer token for one audience scope.

    Attributes:
        scope: Audience scope key (e.g. "fabric", "powerbi")
        value: The access token string
        expires_at: UTC expiry reported by the identity provider
        acquired_at: UTC timestamp when the token was cached
    """

    scope: str
    value: str
    expires_at: datetime
    acquired_at: datetime

    def remaining(self) -> timedelta:
        return self.expires_at - datetime.now(timezone.utc)

    def is_valid(self, buffer: timedelta = DEFAULT_REFRESH_BUFFER) -> bool:
        """
        Check if token is still usable with a safety buffer.

        A token whose remaining lifetime is at or below ``buffer`` is invalid,
        even if it has not technically expired yet.

        Example:
            >>> token.is_valid(timedelta(minutes=5))  # True if > 5 min left
        """
        return self.remaining() > buffer


class TokenCache:
    """
    Thread-safe cache for bearer tokens keyed by audience scope.

    Example:
        >>> cache = TokenCache(refresh_buffer=timedelta(minutes=5))
        >>> cache.set("fabric", "eyJ0eXAi...", expires_on=time.time() + 3600)
        >>> cache.get("fabric")
        'eyJ0eXAi...'
    """

    def __init__(self, refresh_buffer: timedelta = DEFAULT_REFRESH_BUFFER):
        self._tokens: Dict[str, CachedToken] = {}
        self._lock = threading.Lock()
        self.refresh_buffer = refresh_buffer

    def get(self, scope: str) -> Optional[str]:
        """
        Get cached token if its remaining lifetime exceeds the refresh buffer.

        Returns:
            Token string if cached and valid, None if near expiry or not found.
        """
        with self._lock:
            cached = self._tokens.get(scope)
            if cached and cached.is_valid(self.refresh_buffer):
                return cached.value
            return None

    def get_entry(self, scope: str) -> Optional[CachedToken]:
        """Return the raw cache entry regardless of validity (diagnostics)."""
        with self._lock:
            return self._tokens.get(scope)

    def set(self, scope: str, token: str, expires_on: float) -> CachedToken:
        """
        Cache a token.

        Args:
            scope: Audience scope key
            token: Access token string
            expires_on: Expiry as epoch seconds (azure-core AccessToken.expires_on)
        """
        entry = CachedToken(
            scope=scope,
            value=token,
            expires_at=datetime.fromtimestamp(expires_on, tz=timezone.utc),
            acquired_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._tokens[scope] = entry
        return entry

    def clear(self, scope: Optional[str] = None) -> None:
        """
        Clear one or all cached tokens.

        Args:
            scope: Specific scope to clear. If None, clears all tokens.
        """
        with self._lock:
            if scope:
                self._tokens.pop(scope, None)
            else:
                self._tokens.clear()

    def scopes(self) -> list[str]:
        with self._lock:
            return list(self._tokens)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


__all__ = ["TokenCache", "CachedToken", "DEFAULT_REFRESH_BUFFER"]
