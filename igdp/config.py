"""Configuration management for igdp.

Loads configuration hierarchically: defaults → TOML config file →
environment variables.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import toml
from pydantic import ValidationError

from igdp.exceptions import ConfigurationError
from igdp.models import Config

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "igdp.toml"

# Mapping of environment variables to config paths
ENV_MAPPING: dict[str, str] = {
    "IGDP_BIND_ADDRESSES": "bind_addresses",
    "IGDP_MULTICAST_ADDRESS": "discovery.multicast_address",
    "IGDP_MULTICAST_PORT": "discovery.multicast_port",
    "IGDP_DISCOVERY_ATTEMPTS": "discovery.attempts",
    "IGDP_DISCOVERY_TIMEOUT": "discovery.attempt_timeout",
    "IGDP_HTTP_TIMEOUT": "http.request_timeout",
    "IGDP_MAX_RESPONSE_SIZE": "http.max_response_size",
    "IGDP_LOG_LEVEL": "observability.log_level",
    "IGDP_LOG_FILE": "observability.log_file",
    "IGDP_STRUCTURED_LOGGING": "observability.structured_logging",
}


def _set_nested(target: dict[str, Any], dotted: str, value: Any) -> None:
    keys = dotted.split(".")
    node = target
    for key in keys[:-1]:
        node = node.setdefault(key, {})
    node[keys[-1]] = value


def _merge_config(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge_config(result[key], value)
        else:
            result[key] = value
    return result


class ConfigManager:
    """Locates, loads and validates the igdp configuration."""

    def __init__(self, config_file: str | Path | None = None):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches for igdp.toml

        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()

    def _find_config_file(self, config_file: str | Path | None) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            return Path(config_file)

        search_paths = [
            Path.cwd() / CONFIG_FILE_NAME,
            Path.home() / ".config" / "igdp" / CONFIG_FILE_NAME,
        ]
        for path in search_paths:
            if path.exists():
                return path
        return None

    def _load_config(self) -> Config:
        """Load configuration from file and environment."""
        config_data: dict[str, Any] = {}

        if self.config_file is not None:
            if not self.config_file.exists():
                msg = f"Config file not found: {self.config_file}"
                raise ConfigurationError(msg)
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    config_data.update(toml.load(f))
            except (OSError, toml.TomlDecodeError) as e:
                msg = f"Failed to load config file {self.config_file}: {e}"
                raise ConfigurationError(msg) from e
            logger.debug("Loaded configuration from %s", self.config_file)

        config_data = _merge_config(config_data, self._get_env_config())

        try:
            return Config(**config_data)
        except ValidationError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        env_config: dict[str, Any] = {}
        for env_var, path in ENV_MAPPING.items():
            raw = os.environ.get(env_var)
            if raw is None:
                continue
            # pydantic coerces the strings to the field types
            if path == "observability.log_level":
                raw = raw.upper()
            _set_nested(env_config, path, raw)
        return env_config


def load_config(config_file: str | Path | None = None) -> Config:
    """Load configuration using :class:`ConfigManager`."""
    return ConfigManager(config_file).config
