"""Configuration loading for the Fabric API core.

Main Functions
--------------

    - load_config(): Load FabricConfig from src/config/config.yaml and the environment
    - get_config(): Get or load singleton config instance
    - set_config() / reset_config(): Replace or drop the singleton
    - build_orchestrator(): Wire the production object graph from a config

Usage Examples
--------------

    >>> from fabric_config import load_config, build_orchestrator
    >>>
    >>> config = load_config(dotenv_path=".env")
    >>> orchestrator = build_orchestrator(config)
    >>> workspaces = await orchestrator.collect_all("/workspaces")
"""

from fabric_config.config import (
    DEFAULT_CONFIG_FILE,
    FabricConfig,
    build_orchestrator,
    build_powerbi_client,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "FabricConfig",
    "build_orchestrator",
    "build_powerbi_client",
    "get_config",
    "load_config",
    "reset_config",
    "set_config",
]
