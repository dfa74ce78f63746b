"""Tests for AzureCredentialProvider and CredentialCache."""

import asyncio
import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import CredentialUnavailableError

from fabric_core.auth.credentials import (
    FABRIC_SCOPE,
    POWERBI_SCOPE,
    AzureCredentialProvider,
    CredentialCache,
    resolve_scope,
)
from fabric_core.errors import AuthenticationFailedError, ErrorCategory


class CountingProvider:
    """Hands out numbered tokens with a configurable lifetime."""

    def __init__(self, tenant_id=None, lifetime=3600, error=None):
        self.tenant_id = tenant_id
        self.lifetime = lifetime
        self.error = error
        self.requests = []
        self.closed = False

    def get_access_token(self, scope_url):
        self.requests.append(scope_url)
        if self.error:
            raise self.error
        token = f"{self.tenant_id}:{scope_url}:{len(self.requests)}"
        return AccessToken(token, int(time.time() + self.lifetime))

    def close(self):
        self.closed = True


class ProviderRegistry:
    """provider_factory that remembers every provider it built."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.providers = []

    def __call__(self, tenant_id):
        provider = CountingProvider(tenant_id, **self.kwargs)
        self.providers.append(provider)
        return provider

    @property
    def current(self):
        return self.providers[-1]


# ---------------------------------------------------------------------------
# resolve_scope
# ---------------------------------------------------------------------------


class TestResolveScope:

    def test_known_scopes(self):
        assert resolve_scope("fabric") == FABRIC_SCOPE
        assert resolve_scope("powerbi") == POWERBI_SCOPE
        assert resolve_scope("database") == "https://database.windows.net/.default"
        assert resolve_scope("kusto") == "https://api.kusto.windows.net/.default"

    def test_unknown_scope(self):
        with pytest.raises(ValueError, match="Unknown token scope"):
            resolve_scope("graph")


# ---------------------------------------------------------------------------
# AzureCredentialProvider
# ---------------------------------------------------------------------------


class TestAzureCredentialProvider:

    @patch.dict(
        "os.environ",
        {
            "AZURE_CLIENT_ID": "env_cid",
            "AZURE_CLIENT_SECRET": "env_secret",
            "AZURE_TENANT_ID": "env_tid",
        },
        clear=True,
    )
    def test_loads_spn_from_env(self):
        provider = AzureCredentialProvider()
        assert provider.client_id == "env_cid"
        assert provider.tenant_id == "env_tid"
        assert provider.auth_mode == "spn_secret"

    @patch.dict("os.environ", {}, clear=True)
    def test_default_mode_without_spn(self):
        provider = AzureCredentialProvider(tenant_id="t1")
        assert not provider.has_spn_credentials
        assert provider.auth_mode == "default"

    @patch.dict("os.environ", {}, clear=True)
    def test_certificate_mode(self):
        provider = AzureCredentialProvider(
            tenant_id="t1", client_id="cid", certificate_path="/certs/spn.pem"
        )
        assert provider.auth_mode == "spn_cert"

    @patch.dict("os.environ", {}, clear=True)
    def test_missing_certificate_file(self, tmp_path):
        provider = AzureCredentialProvider(
            tenant_id="t1", client_id="cid", certificate_path=str(tmp_path / "missing.pem")
        )
        with pytest.raises(AuthenticationFailedError, match="Certificate file not found"):
            provider.get_access_token(FABRIC_SCOPE)

    @patch("fabric_core.auth.credentials.ClientSecretCredential")
    def test_secret_credential(self, mock_cls):
        mock_cls.return_value.get_token.return_value = AccessToken("tok", 123)
        provider = AzureCredentialProvider(
            tenant_id="t1", client_id="cid", client_secret="s", load_env=False
        )

        assert provider.get_access_token(FABRIC_SCOPE).token == "tok"
        mock_cls.assert_called_once_with(tenant_id="t1", client_id="cid", client_secret="s")
        mock_cls.return_value.get_token.assert_called_once_with(FABRIC_SCOPE)

    @patch("fabric_core.auth.credentials.DefaultAzureCredential")
    def test_default_credential_passes_tenant(self, mock_cls):
        mock_cls.return_value.get_token.return_value = AccessToken("tok", 123)
        provider = AzureCredentialProvider(tenant_id="t1", load_env=False)

        provider.get_access_token(FABRIC_SCOPE)

        mock_cls.assert_called_once_with(additionally_allowed_tenants=["*"])
        mock_cls.return_value.get_token.assert_called_once_with(FABRIC_SCOPE, tenant_id="t1")

    @patch("fabric_core.auth.credentials.DefaultAzureCredential")
    def test_credential_reused(self, mock_cls):
        mock_cls.return_value.get_token.return_value = AccessToken("tok", 123)
        provider = AzureCredentialProvider(load_env=False)
        provider.get_access_token(FABRIC_SCOPE)
        provider.get_access_token(POWERBI_SCOPE)
        assert mock_cls.call_count == 1

    def test_with_tenant_keeps_spn_settings(self):
        provider = AzureCredentialProvider(
            tenant_id="t1", client_id="cid", client_secret="s", load_env=False
        )
        other = provider.with_tenant("t2")
        assert other.tenant_id == "t2"
        assert other.client_id == "cid"
        assert other.client_secret == "s"

    def test_close(self):
        provider = AzureCredentialProvider(load_env=False)
        credential = MagicMock()
        provider._credential = credential
        provider.close()
        credential.close.assert_called_once()
        assert provider._credential is None


# ---------------------------------------------------------------------------
# CredentialCache
# ---------------------------------------------------------------------------


class TestCredentialCache:

    async def test_cache_hit_makes_one_provider_call(self):
        registry = ProviderRegistry()
        credentials = CredentialCache(tenant_id="t1", provider_factory=registry)

        first = await credentials.get_token("fabric")
        second = await credentials.get_token("fabric")

        assert first == second
        assert registry.current.requests == [FABRIC_SCOPE]

    async def test_refreshes_inside_buffer(self):
        registry = ProviderRegistry(lifetime=240)
        credentials = CredentialCache(tenant_id="t1", provider_factory=registry)

        first = await credentials.get_token("fabric")
        second = await credentials.get_token("fabric")

        assert first != second
        assert len(registry.current.requests) == 2

    async def test_custom_refresh_buffer(self):
        registry = ProviderRegistry(lifetime=240)
        credentials = CredentialCache(
            provider_factory=registry, refresh_buffer=timedelta(minutes=1)
        )
        await credentials.get_token("fabric")
        await credentials.get_token("fabric")
        assert len(registry.current.requests) == 1

    async def test_scopes_cached_independently(self):
        registry = ProviderRegistry()
        credentials = CredentialCache(provider_factory=registry)

        await credentials.get_token("fabric")
        await credentials.get_token("powerbi")
        await credentials.get_token("fabric")

        assert registry.current.requests == [FABRIC_SCOPE, POWERBI_SCOPE]

    async def test_unknown_scope(self):
        credentials = CredentialCache(provider_factory=ProviderRegistry())
        with pytest.raises(ValueError):
            await credentials.get_token("graph")

    async def test_switch_tenant_invalidates_every_scope(self):
        registry = ProviderRegistry()
        credentials = CredentialCache(tenant_id="t1", provider_factory=registry)
        await credentials.get_token("fabric")
        await credentials.get_token("powerbi")

        credentials.switch_tenant("t2")

        assert credentials.tenant_id == "t2"
        assert credentials.get_cached_token("fabric") is None
        assert credentials.get_cached_token("powerbi") is None
        token = await credentials.get_token("fabric")
        assert token.startswith("t2:")
        assert registry.current.tenant_id == "t2"

    async def test_switch_closes_previous_provider(self):
        registry = ProviderRegistry()
        credentials = CredentialCache(tenant_id="t1", provider_factory=registry)
        first = registry.current

        credentials.switch_tenant("t2")

        assert first.closed
        assert not registry.current.closed

    async def test_switch_defers_close_until_acquisition_finishes(self):
        started = threading.Event()
        release = threading.Event()

        class BlockingProvider(CountingProvider):
            def get_access_token(self, scope_url):
                started.set()
                release.wait(timeout=5)
                return super().get_access_token(scope_url)

        providers = []

        def factory(tenant_id):
            providers.append(BlockingProvider(tenant_id))
            return providers[-1]

        credentials = CredentialCache(tenant_id="t1", provider_factory=factory)
        task = asyncio.create_task(credentials.get_token("fabric"))
        await asyncio.to_thread(started.wait, 5)

        credentials.switch_tenant("t2")
        assert not providers[0].closed

        release.set()
        token = await task

        assert token.startswith("t1:")
        assert providers[0].closed
        assert credentials.get_cached_token("fabric") is None

    async def test_switch_to_default_tenant(self):
        registry = ProviderRegistry()
        credentials = CredentialCache(tenant_id="t1", provider_factory=registry)
        credentials.switch_tenant(None)
        assert credentials.tenant_id is None
        assert registry.current.tenant_id is None

    async def test_concurrent_requests_share_one_acquisition(self):
        registry = ProviderRegistry()
        credentials = CredentialCache(provider_factory=registry)

        tokens = await asyncio.gather(*(credentials.get_token("fabric") for _ in range(5)))

        assert len(set(tokens)) == 1
        assert len(registry.current.requests) == 1

    async def test_missing_session_flags_az_login(self):
        registry = ProviderRegistry(
            error=CredentialUnavailableError("AzureCliCredential: Please run 'az login' to set up an account")
        )
        credentials = CredentialCache(provider_factory=registry)

        with pytest.raises(AuthenticationFailedError) as exc_info:
            await credentials.get_token("fabric")

        error = exc_info.value
        assert error.session_unavailable
        assert "az login" in error.remediation
        assert error.category is ErrorCategory.AUTH
        assert error.scope == "fabric"

    async def test_rejected_credential(self):
        registry = ProviderRegistry(error=ClientAuthenticationError("AADSTS7000215: Invalid client secret"))
        credentials = CredentialCache(provider_factory=registry)

        with pytest.raises(AuthenticationFailedError) as exc_info:
            await credentials.get_token("powerbi")

        assert not exc_info.value.session_unavailable
        assert isinstance(exc_info.value.cause, ClientAuthenticationError)

    async def test_clear_cache_keeps_tenant(self):
        registry = ProviderRegistry()
        credentials = CredentialCache(tenant_id="t1", provider_factory=registry)
        await credentials.get_token("fabric")

        credentials.clear_cache()

        assert credentials.tenant_id == "t1"
        assert credentials.get_cached_token("fabric") is None
        assert len(registry.providers) == 1

    async def test_diagnostics(self):
        credentials = CredentialCache(tenant_id="t1", provider_factory=ProviderRegistry())
        await credentials.get_token("kusto")

        diag = credentials.get_diagnostics()

        assert diag["tenant_id"] == "t1"
        assert diag["auth_mode"] == "custom"
        assert diag["refresh_buffer_seconds"] == 300
        assert 3500 < diag["cached_scopes"]["kusto"] <= 3600
