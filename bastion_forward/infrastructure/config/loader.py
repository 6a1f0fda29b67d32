"""
Configuration loading and saving utilities.

This module loads configuration from YAML or JSON files and applies
overrides from the environment variables the database scripts already use
(SSH_ADDR, SSH_USER, SSH_PRIVATE_KEY_FILE, SSH_DESTINATION, ...).
"""

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import yaml

from .models import ApplicationConfig


def _parse_bool(value: str) -> bool:
    """Parse boolean value from string."""
    return value.lower() in ('true', '1', 'yes', 'on', 'enabled')


ENV_MAPPINGS: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "SSH_ADDR": ("tunnel.bastion_address", str),
    "SSH_USER": ("tunnel.username", str),
    "SSH_PRIVATE_KEY_FILE": ("tunnel.private_key_file", str),
    "SSH_KEY_PASSPHRASE": ("tunnel.key_passphrase", str),
    "SSH_DESTINATION": ("tunnel.destination", str),
    "SSH_LOCAL_PORT": ("tunnel.local_port", int),
    "SSH_HOST_KEY_POLICY": ("tunnel.host_key_policy", str),
    "SSH_KNOWN_HOSTS": ("tunnel.known_hosts_file", str),
    "SSH_HOST_FINGERPRINT": ("tunnel.host_key_fingerprint", str),
    "SSH_CONNECT_TIMEOUT": ("tunnel.connect_timeout", float),
    "TUNNEL_DEBUG": ("debug", _parse_bool),
    "TUNNEL_LOG_LEVEL": ("logging.level", str),
    "TUNNEL_LOG_DIR": ("logging.log_directory", str),
}


class ConfigLoader:
    """Configuration loader supporting YAML, JSON and environment overrides."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        """
        Args:
            environ: Environment to read overrides from (default: os.environ)
        """
        self._environ = environ if environ is not None else os.environ

    def load_config(self, config_file: Optional[str] = None) -> ApplicationConfig:
        """
        Load configuration from file and environment variables.

        Args:
            config_file: Path to configuration file (optional)

        Returns:
            Loaded and validated configuration
        """
        config_data: Dict[str, Any] = {}

        if config_file:
            config_data = self._load_from_file(config_file)

        env_overrides = self._load_from_environment()
        config_data = self._merge_configs(config_data, env_overrides)

        config = ApplicationConfig.from_dict(config_data)
        config.config_file_path = config_file

        return config

    def save_config(self, config: ApplicationConfig, file_path: str, format: str = "yaml") -> None:
        """
        Save configuration to file.

        Args:
            config: Configuration to save
            file_path: Output file path
            format: File format (yaml or json)
        """
        config_data = config.to_dict()
        config_data.pop('config_file_path', None)

        if format.lower() == "yaml":
            self._save_yaml(config_data, file_path)
        elif format.lower() == "json":
            self._save_json(config_data, file_path)
        else:
            raise ValueError(f"Unsupported format: {format}")

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from file."""
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {file_path}")

        if path.suffix.lower() in ['.yaml', '.yml']:
            return self._load_yaml(file_path)
        elif path.suffix.lower() == '.json':
            return self._load_json(file_path)
        else:
            raise ValueError(
                f"Unsupported configuration file format: {path.suffix}")

    def _load_yaml(self, file_path: str) -> Dict[str, Any]:
        """Load YAML configuration file."""
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {file_path}: {e}")
        except OSError as e:
            raise ValueError(f"Error reading {file_path}: {e}")

    def _load_json(self, file_path: str) -> Dict[str, Any]:
        """Load JSON configuration file."""
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return json.load(f)  # type: ignore[no-any-return]
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {file_path}: {e}")
        except OSError as e:
            raise ValueError(f"Error reading {file_path}: {e}")

    def _save_yaml(self, data: Dict[str, Any], file_path: str) -> None:
        """Save configuration as YAML."""
        try:
            with open(file_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(data, f, default_flow_style=False, indent=2)
        except OSError as e:
            raise ValueError(f"Error writing YAML to {file_path}: {e}")

    def _save_json(self, data: Dict[str, Any], file_path: str) -> None:
        """Save configuration as JSON."""
        try:
            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            raise ValueError(f"Error writing JSON to {file_path}: {e}")

    def _load_from_environment(self) -> Dict[str, Any]:
        """Load configuration overrides from environment variables."""
        config: Dict[str, Any] = {}

        for env_var, (config_path, converter) in ENV_MAPPINGS.items():
            value = self._environ.get(env_var)
            if value is None or value == "":
                continue
            try:
                self._set_nested_value(config, config_path, converter(value))
            except (ValueError, TypeError) as e:
                raise ValueError(
                    f"Invalid value for {env_var}: {value} ({e})")

        return config

    def _set_nested_value(self, config: Dict[str, Any], path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation."""
        keys = path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge two configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result
