"""
Azure credential provider and multi-audience credential cache.

This module supplies bearer tokens for the several API audiences the Fabric
tooling talks to (Fabric REST, Power BI, Azure SQL, Kusto). Tokens are
cached per audience and refreshed when they come within the refresh buffer
of expiry. The active tenant can be switched at runtime; a switch drops
every cached token.

Supported Authentication Methods:
    - Service Principal (Secret): client ID/secret
    - Service Principal (Certificate): client ID/certificate
    - Default Azure Credential: azure-identity's credential chain
      (Azure CLI session, managed identity, environment variables, etc.)

Concurrency:
    CredentialCache serializes read-check-refresh-write with an asyncio.Lock
    so two coroutines never race to refresh the same scope. A tenant switch
    bumps a generation counter; a token acquired under the previous tenant
    is never written into the cache after the switch.
    The replaced provider is closed once no acquisition is using it.

Example:
    >>> credentials = CredentialCache()
    >>> token = await credentials.get_token("fabric")
    >>> credentials.switch_tenant("00000000-0000-0000-0000-000000000000")
"""

import asyncio
import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import (
    CertificateCredential,
    ClientSecretCredential,
    CredentialUnavailableError,
    DefaultAzureCredential,
)

from fabric_core.auth.token_cache import DEFAULT_REFRESH_BUFFER, TokenCache
from fabric_core.errors.exceptions import AuthenticationFailedError

logger = logging.getLogger(__name__)


# Audience scopes
FABRIC_SCOPE = "https://api.fabric.microsoft.com/.default"
POWERBI_SCOPE = "https://analysis.windows.net/powerbi/api/.default"
DATABASE_SCOPE = "https://database.windows.net/.default"
KUSTO_SCOPE = "https://api.kusto.windows.net/.default"

SCOPES: Dict[str, str] = {
    "fabric": FABRIC_SCOPE,
    "powerbi": POWERBI_SCOPE,
    "database": DATABASE_SCOPE,
    "kusto": KUSTO_SCOPE,
}

# Substrings the azure-identity chain uses when no local session exists
SESSION_UNAVAILABLE_MARKERS = ("az login", "please run", "defaultazurecredential")


def resolve_scope(scope: str) -> str:
    """Map an audience key ("fabric", ...) to its OAuth scope URL."""
    try:
        return SCOPES[scope]
    except KeyError:
        raise ValueError(
            f"Unknown token scope: {scope!r}. Expected one of: {', '.join(SCOPES)}"
        ) from None


class CredentialProvider(Protocol):
    """Anything that can mint an AccessToken for an OAuth scope URL."""

    tenant_id: Optional[str]

    def get_access_token(self, scope_url: str) -> AccessToken:
        ...


class AzureCredentialProvider:
    """
    Unified Azure credential provider with multi-mode support.

    Mode priority:
    1. Service Principal with Certificate
    2. Service Principal with Secret
    3. Default Azure Credential (CLI session, managed identity, env vars)

    Credential objects are created lazily and reused.

    Attributes:
        tenant_id: Azure AD tenant ID (None means the provider default)
        client_id: Azure AD client ID (for SPN auth)
        client_secret: Client secret (for secret-based SPN auth)
        certificate_path: Path to certificate file (for cert-based SPN auth)
    """

    def __init__(
        self,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        certificate_path: Optional[str] = None,
        load_env: bool = True,
    ):
        self._credential: Any = None
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.certificate_path = certificate_path

        if load_env and not client_id:
            self._load_config_from_env()

    def _load_config_from_env(self) -> None:
        """
        Load Service Principal configuration from environment variables.

        Environment Variables:
            AZURE_CLIENT_ID: Service principal client ID
            AZURE_CLIENT_SECRET: Service principal secret
            AZURE_CERTIFICATE_PATH: Path to certificate for SPN auth
            AZURE_TENANT_ID: Tenant used when none was given explicitly
        """
        self.client_id = os.getenv("AZURE_CLIENT_ID")
        self.client_secret = os.getenv("AZURE_CLIENT_SECRET")
        self.certificate_path = os.getenv("AZURE_CERTIFICATE_PATH")
        if self.tenant_id is None and self.client_id:
            self.tenant_id = os.getenv("AZURE_TENANT_ID")

    @property
    def has_spn_credentials(self) -> bool:
        has_secret = all([self.client_id, self.client_secret, self.tenant_id])
        has_cert = all([self.client_id, self.certificate_path, self.tenant_id])
        return has_secret or has_cert

    @property
    def auth_mode(self) -> str:
        """Active auth mode for diagnostics: "spn_cert", "spn_secret" or "default"."""
        if self.has_spn_credentials:
            if self.certificate_path:
                return "spn_cert"
            return "spn_secret"
        return "default"

    def _get_azure_credential(self):
        if self._credential is not None:
            return self._credential

        if self.certificate_path and self.client_id and self.tenant_id:
            if not Path(self.certificate_path).exists():
                raise AuthenticationFailedError(
                    f"Certificate file not found: {self.certificate_path}"
                )
            logger.info(
                "Using certificate-based Service Principal authentication",
                extra={"tenant_id": self.tenant_id, "client_id": self.client_id},
            )
            self._credential = CertificateCredential(
                tenant_id=self.tenant_id,
                client_id=self.client_id,
                certificate_path=self.certificate_path,
            )
            return self._credential

        if self.client_secret and self.client_id and self.tenant_id:
            logger.debug(
                "Using client secret Service Principal authentication",
                extra={"tenant_id": self.tenant_id, "client_id": self.client_id},
            )
            self._credential = ClientSecretCredential(
                tenant_id=self.tenant_id,
                client_id=self.client_id,
                client_secret=self.client_secret,
            )
            return self._credential

        logger.info(
            "Using DefaultAzureCredential",
            extra={"tenant_id": self.tenant_id or "default"},
        )
        if self.tenant_id:
            self._credential = DefaultAzureCredential(additionally_allowed_tenants=["*"])
        else:
            self._credential = DefaultAzureCredential()
        return self._credential

    def get_access_token(self, scope_url: str) -> AccessToken:
        """
        Acquire a token for ``scope_url``. Blocking; run it off the event loop.

        Raises:
            azure-identity / azure-core exceptions unchanged; CredentialCache
            translates them.
        """
        credential = self._get_azure_credential()
        if self.tenant_id and self.auth_mode == "default":
            return credential.get_token(scope_url, tenant_id=self.tenant_id)
        return credential.get_token(scope_url)

    def with_tenant(self, tenant_id: Optional[str]) -> "AzureCredentialProvider":
        """Same configuration, different tenant, fresh credential object."""
        return AzureCredentialProvider(
            tenant_id=tenant_id,
            client_id=self.client_id,
            client_secret=self.client_secret,
            certificate_path=self.certificate_path,
            load_env=False,
        )

    def close(self) -> None:
        if self._credential is not None:
            self._credential.close()
            self._credential = None


ProviderFactory = Callable[[Optional[str]], CredentialProvider]


def _default_provider_factory(tenant_id: Optional[str]) -> CredentialProvider:
    return AzureCredentialProvider(tenant_id=tenant_id)


def _to_auth_error(scope: str, scope_url: str, exc: Exception) -> AuthenticationFailedError:
    """Translate a provider exception, flagging the missing-session case."""
    if isinstance(exc, AuthenticationFailedError):
        return exc
    message = str(exc)
    session_unavailable = isinstance(exc, CredentialUnavailableError) or any(
        marker in message.lower() for marker in SESSION_UNAVAILABLE_MARKERS
    )
    if session_unavailable:
        text = "Azure authentication failed: no local Azure session is available"
    elif isinstance(exc, ClientAuthenticationError):
        text = f"Azure authentication was rejected for scope {scope_url}"
    else:
        text = f"Failed to acquire token for scope: {scope_url}"
    return AuthenticationFailedError(
        text,
        scope=scope,
        session_unavailable=session_unavailable,
        cause=exc,
    )


class CredentialCache:
    """
    Multi-audience bearer token cache with tenant switching.

    Owns the active Identity (tenant) and one TokenCache. Construct exactly
    one per process and pass it to every client that needs tokens.

    Attributes:
        refresh_buffer: Minimum remaining lifetime for a cached token to be
            returned (default 5 minutes)
    """

    def __init__(
        self,
        tenant_id: Optional[str] = None,
        refresh_buffer: timedelta = DEFAULT_REFRESH_BUFFER,
        provider_factory: Optional[ProviderFactory] = None,
    ):
        self._provider_factory = provider_factory or _default_provider_factory
        self._tenant_id = tenant_id
        self._provider = self._provider_factory(tenant_id)
        self._cache = TokenCache(refresh_buffer=refresh_buffer)
        self._lock = asyncio.Lock()
        self._generation = 0
        self._retired: list[CredentialProvider] = []

    @property
    def tenant_id(self) -> Optional[str]:
        return self._tenant_id

    @property
    def refresh_buffer(self) -> timedelta:
        return self._cache.refresh_buffer

    async def get_token(self, scope: str) -> str:
        """
        Return a bearer token for the audience ``scope``.

        Serves from cache while the remaining lifetime exceeds the refresh
        buffer; otherwise acquires a fresh token and caches it.

        Raises:
            ValueError: Unknown scope key
            AuthenticationFailedError: The provider could not produce a token
        """
        scope_url = resolve_scope(scope)

        async with self._lock:
            cached = self._cache.get(scope)
            if cached:
                logger.debug("Using cached token", extra={"resource": scope})
                return cached

            generation = self._generation
            provider = self._provider
            try:
                access_token = await asyncio.to_thread(provider.get_access_token, scope_url)
            except Exception as e:
                self._close_retired()
                error = _to_auth_error(scope, scope_url, e)
                logger.warning(
                    "Token acquisition failed",
                    extra={
                        "resource": scope,
                        "tenant_id": self._tenant_id or "default",
                        "error_message": str(e)[:200],
                    },
                )
                raise error from e
            self._close_retired()

            if not access_token or not access_token.token:
                raise AuthenticationFailedError(
                    f"Failed to acquire token for scope: {scope_url}", scope=scope
                )

            if generation == self._generation:
                self._cache.set(scope, access_token.token, access_token.expires_on)
            logger.debug(
                "Acquired token",
                extra={"resource": scope, "tenant_id": self._tenant_id or "default"},
            )
            return access_token.token

    def switch_tenant(self, tenant_id: Optional[str]) -> None:
        """
        Replace the active tenant and drop every cached token.

        No network call is made; verifying the new tenant is the caller's
        job (see Orchestrator.switch_tenant).
        """
        previous = self._tenant_id
        self._retired.append(self._provider)
        self._tenant_id = tenant_id
        self._provider = self._provider_factory(tenant_id)
        self._cache.clear()
        self._generation += 1
        logger.info(
            "Switched tenant",
            extra={"tenant_id": tenant_id or "default", "previous_tenant_id": previous or "default"},
        )
        # An in-flight acquisition may still be using the old provider
        if not self._lock.locked():
            self._close_retired()

    def _close_retired(self) -> None:
        while self._retired:
            provider = self._retired.pop()
            close = getattr(provider, "close", None)
            if close is not None:
                close()

    def clear_cache(self) -> None:
        """Drop all cached tokens without changing the tenant."""
        self._cache.clear()
        self._generation += 1
        logger.debug("Cleared token cache", extra={"resource": "all"})

    def get_cached_token(self, scope: str):
        """Raw cache entry for ``scope`` (may be near expiry), or None."""
        resolve_scope(scope)
        return self._cache.get_entry(scope)

    def get_diagnostics(self) -> Dict[str, Any]:
        """Tenant, auth mode and per-scope remaining lifetime for health checks."""
        diag: Dict[str, Any] = {
            "tenant_id": self._tenant_id or "default",
            "auth_mode": getattr(self._provider, "auth_mode", "custom"),
            "refresh_buffer_seconds": self.refresh_buffer.total_seconds(),
            "cached_scopes": {},
        }
        for scope in self._cache.scopes():
            entry = self._cache.get_entry(scope)
            if entry:
                diag["cached_scopes"][scope] = round(entry.remaining().total_seconds())
        return diag


__all__ = [
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
