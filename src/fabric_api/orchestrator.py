"""
Orchestrator facade.

Composes the credential cache, HTTP client, operation poller, pagination
walker and write guard into the handful of calls a tool handler needs:

    perform_guarded   guard check, then the action
    perform_async     run an action, follow it to completion if it went async
    collect_all       exhaust a paginated listing
    switch_tenant     switch identity with verification and rollback
    current_identity  claims of the active Fabric token
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

import jwt

from fabric_api.client import ApiResponse, FabricApiClient
from fabric_api.guard import WriteGuard
from fabric_api.lro import OperationPoller, OperationState
from fabric_api.pagination import DEFAULT_ITEMS_KEY, PaginationWalker
from fabric_core.auth.credentials import CredentialCache
from fabric_core.errors.exceptions import TenantSwitchError
from fabric_core.logging.context import set_log_context

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNKNOWN = "unknown"


def _timestamp(value: Any) -> str:
    if not isinstance(value, (int, float)):
        return UNKNOWN
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


def decode_claims(token: str) -> dict[str, Any]:
    """Payload of a JWT without verifying its signature."""
    return jwt.decode(token, options={"verify_signature": False})


class Orchestrator:
    """Single entry point for tool handlers; holds exactly one of each collaborator."""

    def __init__(
        self,
        credentials: CredentialCache,
        client: FabricApiClient,
        poller: OperationPoller,
        walker: PaginationWalker,
        guard: WriteGuard,
    ):
        self.credentials = credentials
        self.client = client
        self.poller = poller
        self.walker = walker
        self.guard = guard
        self._switch_lock = asyncio.Lock()

    async def perform_guarded(self, resource_id: str, action: Callable[[], Awaitable[T]]) -> T:
        """Run ``action`` only if the guard permits writes to ``resource_id``."""
        set_log_context(resource_id=resource_id)
        await self.guard.assert_allowed(resource_id)
        return await action()

    async def perform_async(
        self, action: Callable[[], Awaitable[ApiResponse]]
    ) -> tuple[Optional[OperationState], Any]:
        """
        Run ``action`` and follow an accepted-async response to completion.

        Returns:
            (state, result). ``state`` is None when the API answered
            immediately. After an async completion ``result`` is the
            operation's result resource, or the original response body when
            the operation has none.
        """
        response = await action()
        if response.operation is None:
            return None, response.body

        handle = response.operation
        logger.info(
            "Action accepted, polling operation",
            extra={"operation_id": handle.operation_id, "http_status": response.status},
        )
        state = await self.poller.poll(handle)
        result = await self.poller.fetch_result(handle)
        if result is None:
            result = response.body
        return state, result

    async def perform_guarded_async(
        self, resource_id: str, action: Callable[[], Awaitable[ApiResponse]]
    ) -> tuple[Optional[OperationState], Any]:
        return await self.perform_guarded(resource_id, lambda: self.perform_async(action))

    async def collect_all(self, path: str, items_key: str = DEFAULT_ITEMS_KEY) -> list[Any]:
        return await self.walker.collect_all(path, items_key)

    async def switch_tenant(self, tenant_id: Optional[str]) -> dict[str, Any]:
        """
        Switch the active tenant and prove it works by acquiring a Fabric token.

        On failure the previous tenant is restored (with an empty cache) and
        TenantSwitchError is raised naming both tenants. Concurrent switches
        run one at a time.
        """
        async with self._switch_lock:
            previous = self.credentials.tenant_id
            self.credentials.switch_tenant(tenant_id)
            try:
                token = await self.credentials.get_token("fabric")
            except Exception as e:
                self.credentials.switch_tenant(previous)
                logger.warning(
                    "Tenant switch failed, rolled back",
                    extra={
                        "tenant_id": tenant_id or "default",
                        "previous_tenant_id": previous or "default",
                        "error_type": type(e).__name__,
                    },
                )
                raise TenantSwitchError(tenant_id, previous, cause=e) from e

        set_log_context(tenant_id=tenant_id or "")
        claims = decode_claims(token)
        return {
            "switched": True,
            "previous_tenant_id": previous or "default",
            "new_tenant_id": tenant_id or "default",
            "identity": claims.get("upn") or claims.get("unique_name") or claims.get("oid") or UNKNOWN,
            "expires_at": _timestamp(claims.get("exp")),
        }

    async def current_identity(self) -> dict[str, Any]:
        """Who the active Fabric token belongs to, decoded from its claims."""
        claims = decode_claims(await self.credentials.get_token("fabric"))
        return {
            "tenant_id": claims.get("tid") or self.credentials.tenant_id or UNKNOWN,
            "object_id": claims.get("oid", UNKNOWN),
            "app_id": claims.get("appid") or claims.get("azp") or UNKNOWN,
            "upn": claims.get("upn") or claims.get("unique_name") or UNKNOWN,
            "name": claims.get("name", UNKNOWN),
            "expires_at": _timestamp(claims.get("exp")),
            "issued_at": _timestamp(claims.get("iat")),
            "scopes": claims.get("scp") or claims.get("roles") or UNKNOWN,
        }

    def clear_token_cache(self) -> dict[str, Any]:
        self.credentials.clear_cache()
        return {"cleared": True, "current_tenant_id": self.credentials.tenant_id or "default"}

    async def close(self) -> None:
        await self.client.close()


__all__ = ["Orchestrator", "decode_claims"]
