"""
Long-running operation polling.

The Fabric REST API answers slow actions (create with definition, update
definition, deploy, ...) with ``202 Accepted`` and an operation id, found
either in the ``x-ms-operation-id`` header or as the ``.../operations/{id}``
segment of the ``Location`` header. OperationPoller turns that handle into a
terminal OperationState by polling ``/operations/{id}`` at a fixed interval,
and can fetch the materialized ``/operations/{id}/result`` afterwards.

Cancellation:
    The wait between polls is an ``asyncio.sleep``; cancelling the calling
    task (or an enclosing ``asyncio.timeout``) interrupts it immediately.
    ``timeout_ms`` is a policy ceiling on top of that, not a replacement.

Example:
    >>> poller = OperationPoller(client)
    >>> handle = response.operation
    >>> state = await poller.poll(handle)
    >>> result = await poller.fetch_result(handle)
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fabric_core.errors.exceptions import OperationFailedError, OperationTimeoutError
from fabric_core.logging.context import set_log_context
from fabric_core.types import ApiClient

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 2000
DEFAULT_TIMEOUT_MS = 300000  # 5 minutes

OPERATION_ID_HEADER = "x-ms-operation-id"
_LOCATION_OPERATION_PATTERN = re.compile(r"operations/([^/?]+)")


def _header(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    """Case-insensitive header lookup for plain dicts and multidicts alike."""
    if not headers:
        return None
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def extract_operation_id(headers: Optional[Mapping[str, str]]) -> Optional[str]:
    """
    Find the operation id of an accepted-async response.

    The dedicated ``x-ms-operation-id`` header wins; otherwise the id is the
    path segment after ``operations/`` in the ``Location`` header.
    """
    operation_id = _header(headers, OPERATION_ID_HEADER)
    if operation_id:
        return operation_id

    location = _header(headers, "location")
    if location:
        match = _LOCATION_OPERATION_PATTERN.search(location)
        if match:
            return match.group(1)
    return None


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Parse a ``Retry-After`` header given in seconds; None if absent or malformed."""
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


@dataclass(frozen=True)
class OperationHandle:
    """
    One in-flight asynchronous action.

    Attributes:
        operation_id: Opaque operation identifier
        location_url: Server-asserted follow-up URL, if any
        retry_after_seconds: Server polling hint, if any
    """

    operation_id: str
    location_url: Optional[str] = None
    retry_after_seconds: Optional[int] = None

    @classmethod
    def from_headers(cls, headers: Optional[Mapping[str, str]]) -> Optional["OperationHandle"]:
        """Build a handle from 202 response headers, or None without an operation id."""
        operation_id = extract_operation_id(headers)
        if not operation_id:
            return None
        return cls(
            operation_id=operation_id,
            location_url=_header(headers, "location"),
            retry_after_seconds=parse_retry_after(_header(headers, "retry-after")),
        )


class OperationStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    UNDEFINED = "Undefined"

    @classmethod
    def parse(cls, value: Any) -> "OperationStatus":
        """Map a wire status onto the enum; unrecognized values become UNDEFINED."""
        if isinstance(value, cls):
            return value
        for member in cls:
            if member.value == value:
                return member
        return cls.UNDEFINED

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {OperationStatus.SUCCEEDED, OperationStatus.FAILED, OperationStatus.CANCELLED}
)


class OperationErrorDetail(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    error_code: Optional[str] = Field(default=None, alias="errorCode")
    message: Optional[str] = None


class OperationState(BaseModel):
    """Polled status of an operation, parsed from the ``/operations/{id}`` body."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    operation_id: Optional[str] = Field(default=None, alias="id")
    status: OperationStatus = OperationStatus.UNDEFINED
    created_time_utc: Optional[str] = Field(default=None, alias="createdTimeUtc")
    last_updated_time_utc: Optional[str] = Field(default=None, alias="lastUpdatedTimeUtc")
    percent_complete: Optional[float] = Field(default=None, alias="percentComplete")
    error: Optional[OperationErrorDetail] = None

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> OperationStatus:
        return OperationStatus.parse(value)

    @classmethod
    def from_body(cls, body: Any) -> "OperationState":
        if not isinstance(body, dict):
            return cls()
        return cls.model_validate(body)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def error_code(self) -> Optional[str]:
        return self.error.error_code if self.error else None

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None


class OperationPoller:
    """
    Polls an operation to a terminal state.

    Never resubmits the original action; a Failed operation is reported to
    the caller, who decides whether to try again.
    """

    def __init__(
        self,
        client: ApiClient,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ):
        self._client = client
        self.poll_interval_ms = poll_interval_ms
        self.timeout_ms = timeout_ms

    async def poll(
        self,
        handle: OperationHandle,
        poll_interval_ms: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> OperationState:
        """
        Poll until Succeeded/Cancelled (returned) or Failed (raised).

        Raises:
            OperationFailedError: Status reached Failed; carries the provider
                error code and message
            OperationTimeoutError: ``timeout_ms`` elapsed while still
                NotStarted/Running/Undefined
        """
        interval_ms = self.poll_interval_ms if poll_interval_ms is None else poll_interval_ms
        budget_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        operation_id = handle.operation_id
        set_log_context(operation_id=operation_id)

        loop = asyncio.get_running_loop()
        start = loop.time()
        poll_count = 0

        while True:
            response = await self._client.get(f"/operations/{operation_id}")
            poll_count += 1
            state = OperationState.from_body(response.body)

            if state.status is OperationStatus.FAILED:
                logger.warning(
                    "Operation failed",
                    extra={
                        "operation_id": operation_id,
                        "error_code": state.error_code,
                        "error_message": state.error_message,
                        "poll_count": poll_count,
                    },
                )
                raise OperationFailedError(
                    operation_id,
                    error_code=state.error_code,
                    error_message=state.error_message,
                )

            if state.is_terminal:
                logger.info(
                    "Operation completed",
                    extra={
                        "operation_id": operation_id,
                        "operation_status": state.status.value,
                        "poll_count": poll_count,
                        "duration_seconds": round(loop.time() - start, 3),
                    },
                )
                return state

            if state.status is OperationStatus.UNDEFINED:
                logger.warning(
                    "Operation status unrecognized, continuing to poll",
                    extra={"operation_id": operation_id, "poll_count": poll_count},
                )
            else:
                logger.debug(
                    "Operation in progress",
                    extra={
                        "operation_id": operation_id,
                        "operation_status": state.status.value,
                        "percent_complete": state.percent_complete,
                        "poll_count": poll_count,
                    },
                )

            elapsed_ms = (loop.time() - start) * 1000
            if elapsed_ms >= budget_ms:
                logger.warning(
                    "Operation polling timed out",
                    extra={
                        "operation_id": operation_id,
                        "operation_status": state.status.value,
                        "timeout_ms": budget_ms,
                        "poll_count": poll_count,
                    },
                )
                raise OperationTimeoutError(
                    operation_id, budget_ms / 1000, last_status=state.status.value
                )

            await asyncio.sleep(interval_ms / 1000)

    async def fetch_result(self, handle: OperationHandle) -> Any:
        """
        Best-effort fetch of ``/operations/{id}/result``.

        Many operation types have no distinct result resource (404), so every
        fetch failure is reported as None; the caller falls back to the
        original response body.
        """
        try:
            response = await self._client.get(f"/operations/{handle.operation_id}/result")
        except Exception as e:
            logger.debug(
                "No operation result available",
                extra={
                    "operation_id": handle.operation_id,
                    "error_type": type(e).__name__,
                    "error_message": str(e)[:200],
                },
            )
            return None
        return response.body


__all__ = [
    "DEFAULT_POLL_INTERVAL_MS",
    "DEFAULT_TIMEOUT_MS",
    "OPERATION_ID_HEADER",
    "OperationHandle",
    "OperationPoller",
    "OperationState",
    "OperationStatus",
    "TERMINAL_STATUSES",
    "extract_operation_id",
    "parse_retry_after",
]
