"""Fabric API core configuration from YAML and environment.

Loads the ``fabric:`` section of a YAML file (src/config/config.yaml by default).
Every setting has a default, so a missing file is not an error.

Environment variables ARE supported using ${VAR_NAME} and ${VAR_NAME:-default}
syntax in YAML files. The following variables override file values:

    AZURE_TENANT_ID                      tenant_id
    WRITABLE_WORKSPACES                  writable_workspaces (comma-separated)
    FABRIC_API_BASE_URL                  api_base_url
    FABRIC_POLL_INTERVAL_MS              poll_interval_ms
    FABRIC_POLL_TIMEOUT_MS               poll_timeout_ms
    FABRIC_TOKEN_REFRESH_BUFFER_SECONDS  token_refresh_buffer_seconds
    FABRIC_HTTP_TIMEOUT_SECONDS          http_timeout_seconds
"""

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv

from fabric_api.client import FABRIC_BASE_URL, POWERBI_BASE_URL, FabricApiClient
from fabric_api.guard import ALLOW_ALL, WriteGuard, parse_allow_list
from fabric_api.lro import DEFAULT_POLL_INTERVAL_MS, DEFAULT_TIMEOUT_MS, OperationPoller
from fabric_api.orchestrator import Orchestrator
from fabric_api.pagination import PaginationWalker
from fabric_core.auth.credentials import CredentialCache

logger = logging.getLogger(__name__)

# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent.parent / "config" / "config.yaml"


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _as_patterns(value: Any) -> List[str]:
    """Allow-list from either a YAML list or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return list(parse_allow_list(value))
    return [str(p).strip() for p in value if str(p).strip()]


@dataclass
class FabricConfig:
    """Settings for the credential cache, HTTP client, poller and guard."""

    tenant_id: Optional[str] = None
    writable_workspaces: List[str] = field(default_factory=list)

    api_base_url: str = FABRIC_BASE_URL
    powerbi_base_url: str = POWERBI_BASE_URL
    http_timeout_seconds: int = 60
    max_concurrent: int = 10

    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    poll_timeout_ms: int = DEFAULT_TIMEOUT_MS

    token_refresh_buffer_seconds: int = 300

    @property
    def token_refresh_buffer(self) -> timedelta:
        return timedelta(seconds=self.token_refresh_buffer_seconds)

    @property
    def writes_allowed_everywhere(self) -> bool:
        return ALLOW_ALL in self.writable_workspaces

    def validate(self) -> None:
        """Validate configuration for correctness and constraints."""
        for name, url in (("api_base_url", self.api_base_url), ("powerbi_base_url", self.powerbi_base_url)):
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"{name} must start with http:// or https://, got '{url}'")

        self._validate_min("poll_interval_ms", 0, inclusive=True)
        self._validate_min("poll_timeout_ms", 0, inclusive=False)
        self._validate_min("http_timeout_seconds", 0, inclusive=False)
        self._validate_min("max_concurrent", 1, inclusive=True)
        self._validate_min("token_refresh_buffer_seconds", 0, inclusive=True)

        if self.poll_interval_ms > self.poll_timeout_ms:
            raise ValueError(
                f"poll_interval_ms ({self.poll_interval_ms}) must not exceed "
                f"poll_timeout_ms ({self.poll_timeout_ms})"
            )

    def _validate_min(self, key: str, min_value: float, inclusive: bool) -> None:
        value = getattr(self, key)
        if inclusive and value < min_value:
            raise ValueError(f"fabric: {key} must be >= {min_value}, got {value}")
        elif not inclusive and value <= min_value:
            raise ValueError(f"fabric: {key} must be > {min_value}, got {value}")


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
    dotenv_path: Optional[Union[str, Path]] = None,
) -> FabricConfig:
    """Load configuration from YAML, then apply overrides and environment.

    Priority (highest first): environment variables, ``overrides``, YAML file,
    dataclass defaults. When ``dotenv_path`` is given that file is loaded into
    the environment first (existing variables win).
    """
    if dotenv_path is not None:
        load_dotenv(dotenv_path)

    config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_FILE

    if config_path.exists():
        logger.info(f"Loading configuration from file: {config_path}")
        yaml_data = _expand_env_vars(load_yaml(config_path))
    else:
        logger.debug(f"No configuration file at {config_path}, using defaults")
        yaml_data = {}

    fabric = dict(yaml_data.get("fabric") or {})
    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        fabric.update(overrides)

    defaults = FabricConfig()
    env_patterns = os.getenv("WRITABLE_WORKSPACES")

    config = FabricConfig(
        tenant_id=os.getenv("AZURE_TENANT_ID") or fabric.get("tenant_id") or None,
        writable_workspaces=_as_patterns(
            env_patterns if env_patterns is not None else fabric.get("writable_workspaces")
        ),
        api_base_url=os.getenv("FABRIC_API_BASE_URL") or fabric.get("api_base_url", defaults.api_base_url),
        powerbi_base_url=fabric.get("powerbi_base_url", defaults.powerbi_base_url),
        http_timeout_seconds=int(
            os.getenv("FABRIC_HTTP_TIMEOUT_SECONDS")
            or fabric.get("http_timeout_seconds", defaults.http_timeout_seconds)
        ),
        max_concurrent=int(fabric.get("max_concurrent", defaults.max_concurrent)),
        poll_interval_ms=int(
            os.getenv("FABRIC_POLL_INTERVAL_MS")
            or fabric.get("poll_interval_ms", defaults.poll_interval_ms)
        ),
        poll_timeout_ms=int(
            os.getenv("FABRIC_POLL_TIMEOUT_MS")
            or fabric.get("poll_timeout_ms", defaults.poll_timeout_ms)
        ),
        token_refresh_buffer_seconds=int(
            os.getenv("FABRIC_TOKEN_REFRESH_BUFFER_SECONDS")
            or fabric.get("token_refresh_buffer_seconds", defaults.token_refresh_buffer_seconds)
        ),
    )

    if not config.writable_workspaces:
        logger.warning("WRITABLE_WORKSPACES not configured, destructive actions are blocked")

    config.validate()
    return config


def build_orchestrator(config: FabricConfig, credentials: Optional[CredentialCache] = None) -> Orchestrator:
    """Wire one credential cache, client, poller, walker and guard together."""
    credentials = credentials or CredentialCache(
        tenant_id=config.tenant_id,
        refresh_buffer=config.token_refresh_buffer,
    )
    client = FabricApiClient(
        credentials,
        base_url=config.api_base_url,
        timeout_seconds=config.http_timeout_seconds,
        max_concurrent=config.max_concurrent,
    )
    return Orchestrator(
        credentials=credentials,
        client=client,
        poller=OperationPoller(
            client,
            poll_interval_ms=config.poll_interval_ms,
            timeout_ms=config.poll_timeout_ms,
        ),
        walker=PaginationWalker(client),
        guard=WriteGuard(client, config.writable_workspaces),
    )


def build_powerbi_client(config: FabricConfig, credentials: CredentialCache) -> FabricApiClient:
    """Client for the Power BI audience sharing ``credentials`` with the Fabric client."""
    return FabricApiClient(
        credentials,
        base_url=config.powerbi_base_url,
        scope="powerbi",
        timeout_seconds=config.http_timeout_seconds,
        max_concurrent=config.max_concurrent,
    )


_fabric_config: Optional[FabricConfig] = None


def get_config() -> FabricConfig:
    """Get or load the singleton config instance."""
    global _fabric_config
    if _fabric_config is None:
        _fabric_config = load_config()
    return _fabric_config


def set_config(config: FabricConfig) -> None:
    """Set the singleton config instance (useful for testing)."""
    global _fabric_config
    _fabric_config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _fabric_config
    _fabric_config = None
