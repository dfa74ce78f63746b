"""Logging setup and configuration."""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from fabric_core.logging.context import set_log_context
from fabric_core.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
PLAIN_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"

# Third-party loggers that are chatty at INFO (token acquisition, every HTTP request)
NOISY_LOGGERS = (
    "azure.core.pipeline.policies.http_logging_policy",
    "azure.identity",
    "msal",
    "urllib3",
    "aiohttp.access",
    "aiohttp.client",
)


def get_log_file_path(log_dir: Path, name: str = "fabric") -> Path:
    """
    ``{log_dir}/{YYYY-MM-DD}/{name}_{HHMMSS}_{pid}.log``

    The pid suffix keeps two server processes started in the same second
    from writing the same file.
    """
    now = datetime.now()
    return log_dir / f"{now:%Y-%m-%d}" / f"{name}_{now:%H%M%S}_{os.getpid()}.log"


def _file_handler(
    path: Path,
    level: int,
    json_format: bool,
    when: str,
    interval: int,
    backup_count: int,
) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        path, when=when, interval=interval, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FILE_FORMAT))
    return handler


def setup_logging(
    name: str = "fabric",
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    rotation_when: str = "midnight",
    rotation_interval: int = 1,
    backup_count: int = 7,
    suppress_noisy: bool = True,
    log_to_file: bool = False,
    tenant_id: str | None = None,
) -> logging.Logger:
    """
    Configure the root logger.

    Always installs a ConsoleFormatter handler on stderr (stdout may be a
    stdio tool transport). With ``log_to_file`` a rotating file handler is
    added, JSON by default.

    Args:
        name: Logger name returned, and log file prefix
        log_dir: Directory for log files (default: ./logs)
        json_format: JSON lines in the file handler, otherwise plain text
        console_level / file_level: Per-handler thresholds
        rotation_when / rotation_interval / backup_count: TimedRotatingFileHandler settings
        suppress_noisy: Raise Azure SDK and HTTP client loggers to WARNING
        log_to_file: Add the file handler
        tenant_id: Seed the log context with the active tenant

    Returns:
        ``logging.getLogger(name)``
    """
    if tenant_id:
        set_log_context(tenant_id=tenant_id)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(ConsoleFormatter(stream=sys.stderr))
    root.addHandler(console)

    destination = "stderr"
    if log_to_file:
        log_file = get_log_file_path(log_dir or DEFAULT_LOG_DIR, name=name)
        root.addHandler(
            _file_handler(
                log_file,
                file_level,
                json_format,
                rotation_when,
                rotation_interval,
                backup_count,
            )
        )
        destination = str(log_file)

    if suppress_noisy:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug("Logging initialized", extra={"path": destination})
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
