"""
Write guard for destructive actions.

Every mutating call names the workspace it touches. The guard resolves that
workspace id to its display name (once per process) and checks it against an
operator-configured list of glob patterns. Nothing is writable by default.

Patterns:
    "*"            allow everything (no name lookup is made)
    "Sandbox*"     prefix match
    "*-Dev"        suffix match
    "Sales Team"   exact match
All matching is case-insensitive.
"""

import asyncio
import logging
import re
from typing import Iterable, Optional

from fabric_core.errors.exceptions import GuardDeniedError, GuardNotConfiguredError
from fabric_core.types import ApiClient

logger = logging.getLogger(__name__)

ALLOW_ALL = "*"
DEFAULT_NAME_PATH = "/workspaces/{resource_id}"
DEFAULT_NAME_FIELD = "displayName"


def parse_allow_list(raw: Optional[str]) -> tuple[str, ...]:
    """Split a comma-separated pattern list, trimming and dropping empty entries."""
    if not raw or not raw.strip():
        return ()
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def glob_to_regex(pattern: str) -> re.Pattern:
    """Anchored, case-insensitive regex for a ``*`` glob."""
    body = ".*".join(re.escape(segment) for segment in pattern.split("*"))
    return re.compile(f"^{body}$", re.IGNORECASE)


class WriteGuard:
    """
    Gates mutating actions behind an allow-list of resource display names.

    The name cache lives as long as the guard; construct one guard per
    process and share it.
    """

    def __init__(
        self,
        client: ApiClient,
        patterns: Iterable[str] = (),
        name_path: str = DEFAULT_NAME_PATH,
        name_field: str = DEFAULT_NAME_FIELD,
    ):
        self._client = client
        self._patterns = tuple(patterns)
        self._allow_all = ALLOW_ALL in self._patterns
        self._compiled = [glob_to_regex(p) for p in self._patterns if p != ALLOW_ALL]
        self._name_path = name_path
        self._name_field = name_field
        self._names: dict[str, str] = {}
        self._lock = asyncio.Lock()

    @property
    def patterns(self) -> tuple[str, ...]:
        return self._patterns

    @property
    def allow_all(self) -> bool:
        return self._allow_all

    @property
    def is_configured(self) -> bool:
        return bool(self._patterns)

    def matches(self, name: str) -> bool:
        return self._allow_all or any(regex.match(name) for regex in self._compiled)

    async def resolve_name(self, resource_id: str) -> str:
        """Display name for ``resource_id``; fetched at most once per guard."""
        async with self._lock:
            name = self._names.get(resource_id)
            if name is not None:
                return name

            response = await self._client.get(self._name_path.format(resource_id=resource_id))
            body = response.body if isinstance(response.body, dict) else {}
            name = body.get(self._name_field)
            if not name:
                logger.warning(
                    "Resource has no display name, matching on id",
                    extra={"resource_id": resource_id},
                )
                return resource_id

            self._names[resource_id] = name
            return name

    async def assert_allowed(self, resource_id: str) -> None:
        """
        Permit a write to ``resource_id`` or raise.

        Raises:
            GuardNotConfiguredError: No patterns are configured
            GuardDeniedError: The resolved name matches no pattern; the error
                lists the configured patterns
        """
        if self._allow_all:
            return

        if not self._patterns:
            logger.warning(
                "Write blocked: allow-list not configured",
                extra={"resource_id": resource_id},
            )
            raise GuardNotConfiguredError()

        name = await self.resolve_name(resource_id)
        if self.matches(name):
            logger.debug(
                "Write permitted",
                extra={"resource_id": resource_id, "resource_name": name},
            )
            return

        logger.warning(
            "Write denied",
            extra={
                "resource_id": resource_id,
                "resource_name": name,
                "patterns": list(self._patterns),
            },
        )
        raise GuardDeniedError(resource_id, name, self._patterns)


__all__ = [
    "ALLOW_ALL",
    "WriteGuard",
    "glob_to_regex",
    "parse_allow_list",
]
