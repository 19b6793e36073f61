"""Configuration loader utilities."""

from .loader import DEFAULT_CONFIG_PATH, ServerConfig, load_config

__all__ = [
    "ServerConfig",
    "DEFAULT_CONFIG_PATH",
    "load_config",
]
