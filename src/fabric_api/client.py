"""Fabric / Power BI REST API client with bearer auth and error normalization."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import aiohttp

from fabric_api.lro import OperationHandle, parse_retry_after
from fabric_core.errors.exceptions import (
    ApiError,
    ConnectionFailedError,
    RateLimitedError,
    RequestTimeoutError,
)
from fabric_core.logging.context import get_log_context
from fabric_core.types import TokenProvider

logger = logging.getLogger(__name__)

FABRIC_BASE_URL = "https://api.fabric.microsoft.com/v1"
POWERBI_BASE_URL = "https://api.powerbi.com/v1.0/myorg"

DEFAULT_RETRY_AFTER_SECONDS = 30


@dataclass
class ApiResponse:
    """
    Structured response.

    Attributes:
        status: HTTP status code
        body: Parsed JSON, raw text, or None for empty responses
        headers: Response headers (case-insensitive mapping)
        operation: Handle for an accepted-async (202) response, else None
    """

    status: int
    body: Any
    headers: Mapping[str, str]
    operation: Optional[OperationHandle] = None

    @property
    def accepted(self) -> bool:
        return self.operation is not None


def build_api_error(status: int, body: Any, reason: Optional[str], url: str) -> ApiError:
    """
    Normalize an error body into ApiError.

    The API sometimes nests details under ``error`` and sometimes returns
    them at the top level; both shapes map to the same fields.
    """
    details: dict[str, Any] = {}
    if isinstance(body, dict):
        nested = body.get("error")
        details = nested if isinstance(nested, dict) else body

    message = details.get("message") or reason or f"HTTP {status}"
    if not details and isinstance(body, str) and body.strip():
        message = body.strip()[:500]

    error_code = details.get("errorCode") or details.get("code")
    related = details.get("relatedResource")
    if isinstance(related, dict):
        related = related.get("resourceId") or json.dumps(related)

    return ApiError(
        message,
        status_code=status,
        error_code=error_code,
        related_resource=related,
        context={"url": url},
    )


def build_rate_limited_error(headers: Mapping[str, str], url: str) -> RateLimitedError:
    retry_after = parse_retry_after(headers.get("Retry-After"))
    wait = retry_after if retry_after is not None else DEFAULT_RETRY_AFTER_SECONDS
    return RateLimitedError(
        f"Rate limited. Retry after {wait}s",
        retry_after=float(wait),
        context={"url": url},
    )


class FabricApiClient:
    """
    Async client for the Fabric REST API (or any sibling audience).

    One instance per audience: Fabric uses the defaults, Power BI passes
    ``base_url=POWERBI_BASE_URL, scope="powerbi"``.
    """

    def __init__(
        self,
        credentials: TokenProvider,
        base_url: str = FABRIC_BASE_URL,
        scope: str = "fabric",
        timeout_seconds: int = 60,
        max_concurrent: int = 10,
    ):
        self.base_url = base_url.rstrip("/") if base_url else ""
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(
                f"FabricApiClient base_url must start with http:// or https://, got: {base_url!r}"
            )

        self._credentials = credentials
        self.scope = scope
        self.timeout_seconds = timeout_seconds
        self.max_concurrent = max_concurrent

        self._session: aiohttp.ClientSession | None = None
        self._semaphore: asyncio.Semaphore | None = None
        self._closed = False

    async def __aenter__(self) -> "FabricApiClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        if self._closed:
            raise RuntimeError("FabricApiClient is closed, cannot create new session")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
            self._semaphore = asyncio.Semaphore(self.max_concurrent)

    async def close(self) -> None:
        self._closed = True
        if self._session and not self._session.closed:
            await self._session.close()
            await asyncio.sleep(0)
        self._session = None

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any:
        if response.status == 204 or response.content_length == 0:
            return None
        text = await response.text()
        if not text:
            return None
        if "application/json" in response.headers.get("Content-Type", ""):
            try:
                return json.loads(text)
            except ValueError:
                # Gateways answer 502/503 with HTML under a JSON content type
                logger.debug(
                    "Response body is not valid JSON",
                    extra={"http_status": response.status, "http_url": str(response.url)},
                )
        return text

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Any = None,
    ) -> ApiResponse:
        await self._ensure_session()
        token = await self._credentials.get_token(self.scope)
        request_headers = {"Authorization": f"Bearer {token}"}
        ctx = {k: v for k, v in get_log_context().items() if v}

        async with self._semaphore:
            loop = asyncio.get_running_loop()
            start_time = loop.time()
            try:
                async with self._session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=request_headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as response:
                    duration = loop.time() - start_time
                    body = await self._read_body(response)
                    headers = response.headers.copy()

                    if response.status == 429:
                        error = build_rate_limited_error(headers, url)
                        logger.warning(
                            "API request rate limited",
                            extra={
                                **ctx,
                                "api_method": method,
                                "http_url": url,
                                "http_status": 429,
                                "retry_after_seconds": error.retry_after,
                            },
                        )
                        raise error

                    if not 200 <= response.status < 300:
                        error = build_api_error(response.status, body, response.reason, url)
                        logger.warning(
                            "API request failed",
                            extra={
                                **ctx,
                                "api_method": method,
                                "http_url": url,
                                "http_status": response.status,
                                "error_code": error.error_code,
                                "error_category": error.category.value,
                                "duration_seconds": round(duration, 3),
                            },
                        )
                        raise error

                    operation = None
                    if response.status == 202:
                        operation = OperationHandle.from_headers(headers)

                    logger.debug(
                        "API request succeeded",
                        extra={
                            **ctx,
                            "api_method": method,
                            "http_url": url,
                            "http_status": response.status,
                            "duration_seconds": round(duration, 3),
                        },
                    )
                    return ApiResponse(response.status, body, headers, operation)

            except TimeoutError as e:
                logger.warning(
                    "API request timeout",
                    extra={**ctx, "api_method": method, "http_url": url},
                )
                raise RequestTimeoutError(
                    f"Timeout after {self.timeout_seconds}s: {url}", cause=e
                ) from e

            except aiohttp.ClientError as e:
                logger.error(
                    "API connection error",
                    exc_info=True,
                    extra={**ctx, "api_method": method, "http_url": url},
                )
                raise ConnectionFailedError(f"Connection error: {e}", cause=e) from e

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> ApiResponse:
        return await self._request("GET", self.url_for(path), params=params)

    async def get_url(self, url: str) -> ApiResponse:
        """GET an absolute URL (e.g. a server-provided continuation URI)."""
        return await self._request("GET", url)

    async def post(
        self,
        path: str,
        json_body: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> ApiResponse:
        return await self._request("POST", self.url_for(path), params=params, json_body=json_body)

    async def patch(self, path: str, json_body: Any = None) -> ApiResponse:
        return await self._request("PATCH", self.url_for(path), json_body=json_body)

    async def delete(self, path: str) -> ApiResponse:
        return await self._request("DELETE", self.url_for(path))


__all__ = [
    "ApiResponse",
    "FabricApiClient",
    "FABRIC_BASE_URL",
    "POWERBI_BASE_URL",
    "build_api_error",
    "build_rate_limited_error",
]
