"""
Structured logging module.

Provides JSON logging with context propagation (tenant, operation, resource).
"""

from fabric_core.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from fabric_core.logging.formatters import ConsoleFormatter, JSONFormatter
from fabric_core.logging.setup import (
    get_log_file_path,
    get_logger,
    setup_logging,
)

__all__ = [
    # Setup
    "setup_logging",
    "get_logger",
    "get_log_file_path",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
]
