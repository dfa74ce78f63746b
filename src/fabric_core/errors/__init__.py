"""
Error classification and exception hierarchy.

Provides:
- FabricError hierarchy for typed exceptions
- Classification utilities for retry decisions
- User-facing error formatting for the tool layer
"""

from fabric_core.errors.exceptions import (
    ApiError,
    AuthenticationFailedError,
    AuthError,
    ConnectionFailedError,
    # Base classes
    FabricError,
    GuardDeniedError,
    GuardNotConfiguredError,
    OperationFailedError,
    OperationTimeoutError,
    PaginationAbortedError,
    PermanentError,
    RateLimitedError,
    RequestTimeoutError,
    TenantSwitchError,
    TransientError,
    # Classification utilities
    classify_exception,
    classify_http_status,
    format_error_message,
    is_retryable_error,
)
from fabric_core.types import ErrorCategory

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "FabricError",
    "AuthError",
    "TransientError",
    "PermanentError",
    # Auth
    "AuthenticationFailedError",
    "TenantSwitchError",
    # Guard
    "GuardNotConfiguredError",
    "GuardDeniedError",
    # HTTP
    "ApiError",
    "RateLimitedError",
    "ConnectionFailedError",
    "RequestTimeoutError",
    # Operations
    "OperationFailedError",
    "OperationTimeoutError",
    # Pagination
    "PaginationAbortedError",
    # Classification utilities
    "classify_http_status",
    "classify_exception",
    "is_retryable_error",
    "format_error_message",
]
