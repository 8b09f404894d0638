"""
Configuration management for the DistributedDB client.

Handles loading and merging configuration from:
- Default configuration file (distributeddb/config/default.yaml)
- A user supplied configuration file
- Environment variables
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "default.yaml"

# Environment variable -> (config key, converter)
ENV_OVERRIDES = {
    "DISTRIBUTEDDB_RETRY_INITIAL_BACKOFF_MS": ("retry.initial_backoff_ms", int),
    "DISTRIBUTEDDB_RETRY_MAX_BACKOFF_MS": ("retry.max_backoff_ms", int),
    "DISTRIBUTEDDB_RETRY_TOTAL_TIMEOUT_MS": ("retry.total_timeout_ms", int),
    "LOG_LEVEL": ("logging.level", str),
}


class Config:
    """Configuration manager for the DistributedDB client."""
    
    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration.
        
        Args:
            config_file: Path to configuration file merged over the defaults.
        """
        self._config: Dict[str, Any] = {}
        self._load_default_config()
        
        if config_file:
            self._load_config_file(config_file)
        
        self._apply_env_overrides()
    
    def _load_default_config(self) -> None:
        """Load default configuration."""
        if DEFAULT_CONFIG_PATH.exists():
            self._load_config_file(str(DEFAULT_CONFIG_PATH))
    
    def _load_config_file(self, config_file: str) -> None:
        """
        Load configuration from YAML file.
        
        Args:
            config_file: Path to YAML configuration file
        """
        with open(config_file, "r") as f:
            file_config = yaml.safe_load(f) or {}
            self._merge_config(file_config)
    
    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        """Deep merge new configuration into existing configuration."""
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
        for env_name, (key, convert) in ENV_OVERRIDES.items():
            if raw := os.getenv(env_name):
                self.set(key, convert(raw))
    
    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.
        
        Args:
            key: Configuration key in dot notation (e.g., "retry.total_timeout_ms")
            default: Default value if key not found
        
        Returns:
            Configuration value
        """
        value = self._config
        for k in key.split("."):
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
        """Get entire configuration as dictionary."""
        return self._config.copy()

