"""
Authentication module.

Components:
    - TokenCache: Thread-safe per-scope token caching with expiry buffer
    - AzureCredentialProvider: azure-identity credential abstraction
      (SPN secret/cert, DefaultAzureCredential chain)
    - CredentialCache: Multi-audience token cache with tenant switching
"""

from .credentials import (
    DATABASE_SCOPE,
    FABRIC_SCOPE,
    KUSTO_SCOPE,
    POWERBI_SCOPE,
    SCOPES,
    AzureCredentialProvider,
    CredentialCache,
    CredentialProvider,
    resolve_scope,
)
from .token_cache import DEFAULT_REFRESH_BUFFER, CachedToken, TokenCache

__all__ = [
    # Token cache
    "TokenCache",
    "CachedToken",
    "DEFAULT_REFRESH_BUFFER",
    # Credentials
    "AzureCredentialProvider",
    "CredentialCache",
    "CredentialProvider",
    "resolve_scope",
    "SCOPES",
    "FABRIC_SCOPE",
    "POWERBI_SCOPE",
    "DATABASE_SCOPE",
    "KUSTO_SCOPE",
]
