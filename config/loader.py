"""
Configuration loading and management.

Merges the JSON config file over built-in defaults, applies environment
variable overrides and validates the result into a SyncConfig.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

from pydantic import ValidationError

from core.models.config import GlobalSettings, SyncConfig
from .defaults import ENV_VAR_MAPPING, STRING_CONFIG_PATHS, get_default_config

logger = logging.getLogger(__name__)


class ConfigurationLoader:
    """Load and save synchronization configuration"""

    def __init__(self, global_settings: Optional[GlobalSettings] = None):
        self.global_settings = global_settings or GlobalSettings()
        self._cached: Optional[SyncConfig] = None

    @property
    def default_config_file(self) -> Path:
        return self.global_settings.config_file

    def load_config(self, config_file: Optional[Union[str, Path]] = None) -> SyncConfig:
        """
        Load configuration.

        Args:
            config_file: Explicit JSON file; defaults to <config_dir>/config.json

        Returns:
            Validated configuration; defaults when the file is invalid
        """
        path = Path(config_file) if config_file else self.default_config_file

        config_data = get_default_config()
        file_data = self._read_config_file(path)
        if file_data:
            config_data = self._deep_merge(config_data, file_data)

        config_data = self._apply_env_overrides(config_data)

        try:
            config = SyncConfig(**config_data)
        except ValidationError as e:
            logger.error(f"Invalid configuration in {path}: {e}")
            config = self._fallback_config()

        self._cached = config
        return config

    def _fallback_config(self) -> SyncConfig:
        """Defaults with env overrides, or bare defaults if the env is invalid too"""
        try:
            return SyncConfig(**self._apply_env_overrides(get_default_config()))
        except ValidationError as e:
            logger.error(f"Invalid configuration in environment: {e}")
            return SyncConfig(**get_default_config())

    def _read_config_file(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            logger.debug(f"No config file at {path}; using defaults")
            return {}

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load config from {path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"Config file {path} must contain a JSON object")
            return {}

        logger.info(f"Loaded configuration from {path}")
        return data

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override into a copy of base"""
        merged = dict(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = self._deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration"""
        for env_var, config_path in ENV_VAR_MAPPING.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(config_data, config_path, env_value)

        return config_data

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: str) -> None:
        """Set nested dictionary value using dot notation path"""
        keys = path.split('.')
        current = data

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        if path in STRING_CONFIG_PATHS:
            current[keys[-1]] = value
        else:
            current[keys[-1]] = self._convert_env_value(value)

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type"""
        # Boolean conversion
        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        # Numeric conversion
        try:
            if '.' in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        # Return as string
        return value

    def save_config(self, config: SyncConfig, config_file: Optional[Union[str, Path]] = None) -> bool:
        """Save configuration to disk"""
        path = Path(config_file) if config_file else self.default_config_file
        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            with open(path, 'w', encoding='utf-8') as f:
                json.dump(config.model_dump(mode='json'), f, indent=2, ensure_ascii=False)

            logger.info(f"Saved configuration to {path}")
            self._cached = config
            return True

        except OSError as e:
            logger.error(f"Failed to save config to {path}: {e}")
            return False

    def get_config(self) -> SyncConfig:
        """Cached configuration, loading it on first use"""
        if self._cached is None:
            return self.load_config()
        return self._cached

    def clear_cache(self) -> None:
        """Clear configuration cache"""
        self._cached = None
        logger.info("Configuration cache cleared")
