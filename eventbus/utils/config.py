"""
Configuration management for the event bus.

Handles loading and merging configuration from:
- Built-in defaults
- An optional YAML configuration file
- Environment variables

The resolved log directory is handed to ``EventBus`` explicitly; there is
no process-wide configuration instance.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_CONFIG: Dict[str, Any] = {
    "bus": {
        "dir": str(Path("~") / ".emx-mail" / "events"),
    },
    "segment": {
        "max_size": 64 * 1024 * 1024,
        "rotation_headroom": 64 * 1024,
        "fsync": False,
    },
    "lock": {
        "attempts": 50,
        "retry_interval_ms": 100,
    },
    "logging": {
        "level": "WARNING",
        "format": "console",
        "output": "stderr",
    },
}


class Config:
    """Configuration manager for the event bus."""

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_file: Path to a YAML configuration file (optional)

        Raises:
            FileNotFoundError: If the configuration file does not exist
            ValueError: If the configuration file is not a mapping
        """
        self._config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)

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

        if file_config is None:
            return
        if not isinstance(file_config, dict):
            raise ValueError(f"Configuration file {config_file} must contain a mapping")

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
        if bus_dir := os.getenv("EVENTBUS_DIR"):
            self.set("bus.dir", bus_dir)

        if max_size := os.getenv("EVENTBUS_MAX_SEGMENT_SIZE"):
            self.set("segment.max_size", int(max_size))

        if log_level := os.getenv("LOG_LEVEL"):
            self.set("logging.level", log_level)

        if log_format := os.getenv("LOG_FORMAT"):
            self.set("logging.format", log_format)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., "segment.max_size")
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

    def bus_dir(self) -> Path:
        """Resolved log directory (``~`` expanded)."""
        return Path(self.get("bus.dir")).expanduser()

    def to_dict(self) -> Dict[str, Any]:
        """
        Get entire configuration as dictionary.

        Returns:
            Configuration dictionary
        """
        return copy.deepcopy(self._config)
