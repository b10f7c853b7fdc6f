"""
Configuration management for sdjournal.

Handles loading and merging configuration from:
- Built-in defaults
- An optional YAML configuration file
- Environment variables
"""

import copy
import os
from typing import Any, Dict, Optional

import yaml

DEFAULT_CONFIG: Dict[str, Any] = {
    "store": {
        "backend": "systemd",
    },
    "follow": {
        "wait_timeout_ms": 300,
        "join_timeout_s": 5.0,
    },
    "connection": {
        "strict_affinity": False,
        "data_threshold": 65536,
    },
    "logging": {
        "level": "INFO",
        "format": "json",
    },
}

_TRUE_VALUES = ("1", "true", "yes", "on")


class Config:
    """Configuration manager for sdjournal."""

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_file: Path to a YAML configuration file. Falls back to
                the file named by ``SDJOURNAL_CONFIG`` when omitted.
        """
        self._config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)

        config_file = config_file or os.getenv("SDJOURNAL_CONFIG")
        if config_file:
            self._load_config_file(config_file)

        self._apply_env_overrides()

    def _load_config_file(self, config_file: str) -> None:
        """
        Load configuration from YAML file.

        Args:
            config_file: Path to YAML configuration file
        """
        with open(config_file, "r") as f:
            file_config = yaml.safe_load(f)
            if file_config:
                self._merge_config(file_config)

    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        """
        Deep merge new configuration into existing configuration.

        Args:
            new_config: Configuration dictionary to merge
        """
        self._config = self._deep_merge(self._config, new_config)

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep merge two dictionaries.

        Args:
            base: Base dictionary
            override: Override dictionary

        Returns:
            Merged dictionary
        """
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        if backend := os.getenv("SDJOURNAL_BACKEND"):
            self.set("store.backend", backend)

        if wait_timeout := os.getenv("SDJOURNAL_WAIT_TIMEOUT_MS"):
            self.set("follow.wait_timeout_ms", int(wait_timeout))

        if strict := os.getenv("SDJOURNAL_STRICT_AFFINITY"):
            self.set("connection.strict_affinity", strict.lower() in _TRUE_VALUES)

        if log_level := os.getenv("LOG_LEVEL"):
            self.set("logging.level", log_level)

        if log_format := os.getenv("LOG_FORMAT"):
            self.set("logging.format", log_format)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., "follow.wait_timeout_ms")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in dot notation
            value: Value to set
        """
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def to_dict(self) -> Dict[str, Any]:
        """
        Get entire configuration as dictionary.

        Returns:
            Configuration dictionary
        """
        return copy.deepcopy(self._config)


# Global configuration instance
_config: Optional[Config] = None


def get_config(config_file: Optional[str] = None) -> Config:
    """
    Get global configuration instance.

    Args:
        config_file: Optional configuration file path

    Returns:
        Configuration instance
    """
    global _config
    if _config is None:
        _config = Config(config_file)
    return _config


def reset_config() -> None:
    """Reset global configuration (mainly for testing)."""
    global _config
    _config = None
