"""
Core types and protocols used across modules.

This module provides base types, enums, and protocol definitions that are
shared across the core library to ensure consistency and type safety.
"""

from enum import Enum
from typing import Any, Optional, Protocol


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures a caller may retry
                   (e.g., 429/503 responses, operation timeouts)
        AUTH: Authentication failures requiring a fresh credential
              (e.g., 401 errors, no local Azure session)
        PERMANENT: Failures that won't succeed on retry
                   (e.g., 404, guard denials, failed operations)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class TokenProvider(Protocol):
    """
    Protocol for bearer token providers.

    Implemented by CredentialCache; HTTP clients depend on this protocol only.
    """

    async def get_token(self, scope: str) -> str:
        """
        Get an access token for the given audience scope key.

        Raises:
            AuthenticationFailedError: If token acquisition fails
        """
        ...


class ApiClient(Protocol):
    """
    Protocol for the outbound HTTP client the poller, walker and guard use.

    Every method returns an object exposing ``status``, ``body``, ``headers``
    and ``operation`` (an OperationHandle or None).
    """

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        ...

    async def get_url(self, url: str) -> Any:
        ...

    async def post(self, path: str, json_body: Any = None) -> Any:
        ...

    async def patch(self, path: str, json_body: Any = None) -> Any:
        ...

    async def delete(self, path: str) -> Any:
        ...


__all__ = [
    "ErrorCategory",
    "TokenProvider",
    "ApiClient",
]
