"""
Unified exception hierarchy for the Fabric API core.

Provides typed exceptions with retry classification so callers can tell
apart failures worth retrying (timeouts, throttling) from failures that
will not change on retry (failed operations, guard denials).
"""

from fabric_core.types import ErrorCategory


class FabricError(Exception):
    """
    Base exception for all Fabric API core errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)

    @property
    def should_refresh_auth(self) -> bool:
        return self.category == ErrorCategory.AUTH

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class TransientError(FabricError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class PermanentError(FabricError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthError(FabricError):
    """Base class for authentication errors."""

    category = ErrorCategory.AUTH

    @property
    def is_retryable(self) -> bool:
        return False


class AuthenticationFailedError(AuthError):
    """
    The credential provider could not produce a token.

    ``session_unavailable`` is True when no local/interactive session exists
    (e.g. ``az login`` was never run), which has a different remediation
    than a rejected or misconfigured credential.
    """

    def __init__(
        self,
        message: str,
        scope: str | None = None,
        session_unavailable: bool = False,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.scope = scope
        self.session_unavailable = session_unavailable

    @property
    def remediation(self) -> str:
        if self.session_unavailable:
            return "Run 'az login' first to authenticate."
        return "Check the configured Azure credential and tenant."


class TenantSwitchError(AuthError):
    """Switching tenant failed verification and was rolled back."""

    def __init__(
        self,
        tenant_id: str | None,
        previous_tenant_id: str | None,
        cause: Exception | None = None,
    ):
        message = (
            f"Failed to switch to tenant {tenant_id}. "
            f"Rolled back to {previous_tenant_id or 'default'}."
        )
        super().__init__(
            message,
            cause,
            {"tenant_id": tenant_id, "previous_tenant_id": previous_tenant_id},
        )
        self.tenant_id = tenant_id
        self.previous_tenant_id = previous_tenant_id


# =============================================================================
# Write Guard Errors
# =============================================================================


class GuardNotConfiguredError(PermanentError):
    """No writable-resource allow-list is configured; writes are blocked."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or (
                "WRITABLE_WORKSPACES is not configured. Destructive actions are "
                "blocked by default. Set WRITABLE_WORKSPACES to a comma-separated "
                'list of workspace name patterns, or "*" to allow all.'
            )
        )


class GuardDeniedError(PermanentError):
    """Resource name matched none of the configured allow-list patterns."""

    def __init__(self, resource_id: str, resource_name: str, patterns: tuple[str, ...]):
        message = (
            f'Workspace "{resource_name}" is not in the writable workspaces list. '
            f"Allowed patterns: {', '.join(patterns)}"
        )
        super().__init__(message, context={"resource_id": resource_id})
        self.resource_id = resource_id
        self.resource_name = resource_name
        self.patterns = patterns


# =============================================================================
# HTTP / API Errors
# =============================================================================


class ApiError(FabricError):
    """
    Non-2xx response from the remote API, normalized from either the
    nested ``{"error": {...}}`` or the flat error body shape.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        error_code: str | None = None,
        related_resource: str | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.status_code = status_code
        self.error_code = error_code
        self.related_resource = related_resource
        self.category = classify_http_status(status_code)


class RateLimitedError(TransientError):
    """Rate limited (429) - caller should wait ``retry_after`` seconds."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.retry_after = retry_after
        self.status_code = 429
        self.error_code = "TooManyRequests"


class ConnectionFailedError(TransientError):
    """Connection error (transient, retryable)."""

    pass


class RequestTimeoutError(TransientError):
    """Request timeout error (transient, retryable)."""

    pass


# =============================================================================
# Long-Running Operation Errors
# =============================================================================


class OperationFailedError(PermanentError):
    """Operation reached the Failed terminal state."""

    def __init__(
        self,
        operation_id: str,
        error_code: str | None = None,
        error_message: str | None = None,
    ):
        super().__init__(
            error_message or "Operation failed",
            context={"operation_id": operation_id, "error_code": error_code},
        )
        self.operation_id = operation_id
        self.error_code = error_code
        self.error_message = error_message


class OperationTimeoutError(TransientError):
    """Polling budget exhausted while the operation was still non-terminal."""

    def __init__(self, operation_id: str, timeout_seconds: float, last_status: str | None = None):
        super().__init__(
            f"Operation {operation_id} timed out after {timeout_seconds:g}s",
            context={"operation_id": operation_id, "last_status": last_status},
        )
        self.operation_id = operation_id
        self.timeout_seconds = timeout_seconds
        self.last_status = last_status


# =============================================================================
# Pagination Errors
# =============================================================================


class PaginationAbortedError(FabricError):
    """
    A page fetch failed mid-walk. Items from earlier pages are discarded;
    the original failure is available as ``cause``.
    """

    def __init__(self, path: str, pages_fetched: int, cause: Exception):
        super().__init__(
            f"Listing {path} aborted after {pages_fetched} page(s)",
            cause,
            {"path": path, "pages_fetched": pages_fetched},
        )
        self.path = path
        self.pages_fetched = pages_fetched
        self.category = classify_exception(cause)


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify HTTP status code into error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code == 401:
        return ErrorCategory.AUTH

    if status_code in (408, 429):
        return ErrorCategory.TRANSIENT

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT  # Client errors, won't fix with retry

    if status_code >= 500:
        return ErrorCategory.TRANSIENT  # Server errors, may recover

    return ErrorCategory.UNKNOWN


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    if isinstance(exc, FabricError):
        return exc.category

    exc_type = type(exc).__name__.lower()
    if "timeout" in exc_type or "connection" in exc_type:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def is_retryable_error(exc: Exception) -> bool:
    """
    Check if exception is worth retrying by the caller.

    Retryable: throttling, operation timeouts, 5xx, connection failures.
    Non-retryable: failed operations, guard failures, 4xx, auth failures.
    """
    if isinstance(exc, FabricError):
        return exc.is_retryable
    return classify_exception(exc) == ErrorCategory.TRANSIENT


def format_error_message(exc: BaseException) -> str:
    """
    Render an exception as user-facing text for the tool layer.

    Auth failures carry remediation, guard denials list the configured
    patterns, operation failures carry the provider error code verbatim and
    rate limits carry the wait duration.
    """
    if isinstance(exc, PaginationAbortedError) and exc.cause is not None:
        return f"{exc.message}\n{format_error_message(exc.cause)}"

    if isinstance(exc, AuthenticationFailedError):
        message = f"Azure authentication failed. {exc.remediation}"
        if exc.cause:
            message += f"\nDetails: {exc.cause}"
        return message

    if isinstance(exc, TenantSwitchError):
        message = exc.message
        if exc.cause:
            message += f"\nDetails: {format_error_message(exc.cause)}"
        return message

    if isinstance(exc, RateLimitedError):
        wait = exc.retry_after if exc.retry_after is not None else 30
        return f"Fabric API Error (429): Rate limited. Retry after {wait:g}s"

    if isinstance(exc, OperationFailedError):
        message = f"Operation {exc.operation_id} failed: {exc.message}"
        if exc.error_code:
            message += f"\nError code: {exc.error_code}"
        return message

    if isinstance(exc, ApiError):
        message = f"Fabric API Error ({exc.status_code}): {exc.message}"
        if exc.error_code:
            message += f"\nError code: {exc.error_code}"
        if exc.related_resource:
            message += f"\nRelated resource: {exc.related_resource}"
        return message

    if isinstance(exc, FabricError):
        return exc.message

    return str(exc)


__all__ = [
    "FabricError",
    "TransientError",
    "PermanentError",
    "AuthError",
    "AuthenticationFailedError",
    "TenantSwitchError",
    "GuardNotConfiguredError",
    "GuardDeniedError",
    "ApiError",
    "RateLimitedError",
    "ConnectionFailedError",
    "RequestTimeoutError",
    "OperationFailedError",
    "OperationTimeoutError",
    "PaginationAbortedError",
    "classify_http_status",
    "classify_exception",
    "is_retryable_error",
    "format_error_message",
]
