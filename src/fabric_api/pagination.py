"""
Cursor pagination for listing endpoints.

A listing response carries its items under an items key (``value`` for most
endpoints, ``data`` for a few) plus an optional continuation signal:
``continuationUri`` (absolute URL, fetched as-is) or ``continuationToken``
(appended to the original path). Pages are fetched strictly one after the
other; continuation tokens are server-side cursors and cannot be fanned out.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import quote

from fabric_core.errors.exceptions import PaginationAbortedError
from fabric_core.types import ApiClient

logger = logging.getLogger(__name__)

DEFAULT_ITEMS_KEY = "value"
CONTINUATION_URI_KEY = "continuationUri"
CONTINUATION_TOKEN_KEY = "continuationToken"


def with_continuation_token(path: str, token: str) -> str:
    """Append ``continuationToken=<token>`` to ``path``, respecting an existing query."""
    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{CONTINUATION_TOKEN_KEY}={quote(token, safe='')}"


def _is_absolute(target: str) -> bool:
    return target.startswith(("http://", "https://"))


@dataclass(frozen=True)
class Page:
    """One fetched page of a listing."""

    items: list[Any] = field(default_factory=list)
    continuation_url: Optional[str] = None
    continuation_token: Optional[str] = None

    @classmethod
    def from_body(cls, body: Any, items_key: str = DEFAULT_ITEMS_KEY) -> "Page":
        if not isinstance(body, dict):
            return cls()
        items = body.get(items_key) or []
        return cls(
            items=list(items),
            continuation_url=body.get(CONTINUATION_URI_KEY) or None,
            continuation_token=body.get(CONTINUATION_TOKEN_KEY) or None,
        )

    @property
    def has_more(self) -> bool:
        return bool(self.continuation_url or self.continuation_token)


class PaginationWalker:
    """Exhausts a paginated listing into one ordered list."""

    def __init__(self, client: ApiClient):
        self._client = client

    async def _fetch(self, target: str) -> Any:
        if _is_absolute(target):
            return await self._client.get_url(target)
        return await self._client.get(target)

    async def collect_all(self, start_path: str, items_key: str = DEFAULT_ITEMS_KEY) -> list[Any]:
        """
        Fetch every page of ``start_path`` and concatenate the items in order.

        Raises:
            PaginationAbortedError: A page fetch failed; nothing collected so
                far is returned. The original error is the ``cause``.
        """
        collected: list[Any] = []
        target = start_path
        pages = 0

        while True:
            try:
                response = await self._fetch(target)
            except Exception as e:
                logger.warning(
                    "Pagination aborted",
                    extra={
                        "path": start_path,
                        "page": pages + 1,
                        "items_key": items_key,
                        "error_type": type(e).__name__,
                        "error_message": str(e)[:200],
                    },
                )
                raise PaginationAbortedError(start_path, pages, e) from e

            pages += 1
            page = Page.from_body(response.body, items_key)
            collected.extend(page.items)

            if page.continuation_url:
                target = page.continuation_url
            elif page.continuation_token:
                target = with_continuation_token(start_path, page.continuation_token)
            else:
                break

        logger.debug(
            "Listing complete",
            extra={"path": start_path, "page": pages, "total_items": len(collected)},
        )
        return collected


__all__ = [
    "DEFAULT_ITEMS_KEY",
    "Page",
    "PaginationWalker",
    "with_continuation_token",
]
