"""Configuration management for sitectl"""

import copy
import os
from pathlib import Path
from typing import Any

import yaml

# Default values - Hierarchical structure
DEFAULT_CONFIG: dict[str, Any] = {
    "web_server": {
        "container_name": "nginx",
        "container_root": "/opt/nginx",  # Host directory mounted into the container
        "native_root": "/etc/nginx",
        "use_sudo": True,  # Prefix native nginx/systemctl calls with sudo
    },
    "acme": {
        "container_name": "acme",
        "native_path": "~/.acme.sh/acme.sh",
        "default_server": "letsencrypt",
        "dns_plugin": "dns_cf",
        "container_webroot": "/webroot",  # Document roots as seen by the container
        "container_certs": "/certs",  # Certificate roots as seen by the container
        "account_email": "my@example.com",  # Used by the native installer
    },
    "paths": {
        # Paths as seen by nginx itself, used inside rendered configs
        "server_html_dir": "/var/www",
        "server_log_dir": "/var/log/nginx",
        "server_cert_dir": "/etc/nginx/certs",
        # Host paths used in native mode
        "native_html_dir": "/var/www",
        "native_log_dir": "/var/log/nginx",
        "native_cert_dir": "/etc/nginx/certs",
    },
    "safety": {
        "restore_on_failed_test": True,
        "delete_confirmation": "yes",
    },
    "system": {
        "log_level": "WARNING",
    },
}

# Define type for expected types that can be a single type or a tuple of types
ConfigType = type | tuple[type, ...]

CONFIG_SCHEMA: dict[str, Any] = {
    "web_server": {
        "container_name": str,
        "container_root": str,
        "native_root": str,
        "use_sudo": bool,
    },
    "acme": {
        "container_name": str,
        "native_path": str,
        "default_server": str,
        "dns_plugin": str,
        "container_webroot": str,
        "container_certs": str,
        "account_email": (str, type(None)),
    },
    "paths": {
        "server_html_dir": str,
        "server_log_dir": str,
        "server_cert_dir": str,
        "native_html_dir": str,
        "native_log_dir": str,
        "native_cert_dir": str,
    },
    "safety": {
        "restore_on_failed_test": bool,
        "delete_confirmation": str,
    },
    "system": {
        "log_level": str,
    },
}

# Valid values for specific keys
CONFIG_VALID_VALUES: dict[str, list[Any]] = {
    "default_server": ["letsencrypt", "zerossl", "google", "buypass"],
    "log_level": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
}

# Environment variables that take precedence over the config file
ENV_OVERRIDES: dict[str, str] = {
    "ACME_SERVER": "acme.default_server",
    "SITECTL_NGINX_ROOT": "web_server.container_root",
    "SITECTL_ACME_SH": "acme.native_path",
}


def get_config_dir() -> Path:
    """Return the sitectl configuration directory."""
    env_config_dir = os.environ.get("SITECTL_CONFIG_DIR")
    if env_config_dir:
        return Path(env_config_dir)
    return Path.home() / ".config" / "sitectl"


def _get_nested_value(config: dict[str, Any], path: str) -> Any:
    """Get a value from nested config using dotted path notation.

    Raises:
        KeyError: If the path doesn't exist
    """
    current: Any = config
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            raise KeyError(f"Config path not found: {path}")
        current = current[part]
    return current


def _set_nested_value(config: dict[str, Any], path: str, value: Any) -> None:
    """Set a value in nested config using dotted path notation."""
    parts = path.split(".")
    current = config

    for part in parts[:-1]:
        if part not in current:
            current[part] = {}
        elif not isinstance(current[part], dict):
            raise ValueError(f"Cannot set nested value: {part} is not a dictionary")
        current = current[part]

    current[parts[-1]] = value


def _schema_for(path: str) -> Any:
    """Return the schema entry for a dotted path.

    Raises:
        ValueError: If the path is invalid
    """
    parts = path.split(".")
    current_schema: Any = CONFIG_SCHEMA

    for i, part in enumerate(parts):
        if not isinstance(current_schema, dict) or part not in current_schema:
            current_path = ".".join(parts[:i])
            if current_path:
                available_keys = (
                    list(current_schema.keys())
                    if isinstance(current_schema, dict)
                    else []
                )
                raise ValueError(
                    f"Invalid config path: {path}. "
                    f"'{part}' not found in section '{current_path}'. "
                    f"Available keys: {available_keys}"
                )
            raise ValueError(
                f"Invalid config section: {part}. "
                f"Available sections: {list(CONFIG_SCHEMA.keys())}"
            )
        current_schema = current_schema[part]

    if isinstance(current_schema, dict):
        raise ValueError(f"Config path {path} is a section, not a key")
    return current_schema


class Config:
    """Manages sitectl configuration"""

    def __init__(self, base_dir: Path | None = None) -> None:
        """Initialize configuration.

        Args:
            base_dir: Optional base directory for configuration (used in testing)
        """
        if base_dir is not None:
            self.config_dir = base_dir / ".config" / "sitectl"
        else:
            self.config_dir = get_config_dir()

        self.config_file = self.config_dir / "config.yaml"
        self._config: dict[str, Any] = {}

        self.config_dir.mkdir(parents=True, exist_ok=True)

        if self.config_file.exists():
            self._load_config()
        else:
            self._config = copy.deepcopy(DEFAULT_CONFIG)
            self._save_config()

    def _load_config(self) -> None:
        """Load configuration from file."""
        try:
            if self.config_file.stat().st_size == 0:
                loaded_config: dict[str, Any] = {}
            else:
                with open(self.config_file, encoding="utf-8") as f:
                    loaded_config = yaml.safe_load(f) or {}

            self._config = copy.deepcopy(DEFAULT_CONFIG)
            self._deep_merge(self._config, loaded_config)
        except (yaml.YAMLError, OSError) as e:
            raise ValueError(f"Failed to load config: {e}") from e

    def _deep_merge(self, base: dict[str, Any], updates: dict[str, Any]) -> None:
        """Deep merge updates into base dictionary."""
        for key, value in updates.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def _save_config(self) -> None:
        """Save configuration to file."""
        try:
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(self._config, f, default_flow_style=False)
        except (yaml.YAMLError, OSError) as e:
            raise ValueError(f"Failed to save config: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using a dotted path.

        Environment overrides listed in ENV_OVERRIDES win over the file.
        """
        for env_name, path in ENV_OVERRIDES.items():
            if path == key and os.environ.get(env_name):
                return os.environ[env_name]

        if "." in key:
            try:
                return _get_nested_value(self._config, key)
            except KeyError:
                return default
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using a dotted path."""
        expected_type = _schema_for(key)
        converted_value = self._convert_value(key, expected_type, value)
        self._validate_value(key, expected_type, converted_value)
        _set_nested_value(self._config, key, converted_value)
        self._save_config()

    def unset(self, key: str) -> None:
        """Reset a configuration key to its default."""
        _schema_for(key)
        _set_nested_value(
            self._config, key, copy.deepcopy(_get_nested_value(DEFAULT_CONFIG, key))
        )
        self._save_config()

    def _validate_value(self, path: str, expected_type: Any, value: Any) -> None:
        if value is None:
            if isinstance(expected_type, tuple) and type(None) in expected_type:
                return
            raise ValueError(f"None is not a valid value for {path}")

        key_name = path.split(".")[-1]
        valid_values = CONFIG_VALID_VALUES.get(key_name)
        if valid_values is not None and value not in valid_values:
            raise ValueError(
                f"Invalid value for {path}: {value}. Valid values are: {valid_values}"
            )

    def _convert_value(self, path: str, expected_type: Any, value: Any) -> Any:
        """Convert string value to the type the schema expects."""
        if not isinstance(value, str):
            return value

        if value.lower() == "none":
            return None

        target = expected_type
        if isinstance(expected_type, tuple):
            target = next(t for t in expected_type if t is not type(None))

        try:
            if target is bool:
                return self._convert_to_bool(path, value)
            if target is int:
                return int(value)
            return value
        except ValueError as e:
            if "Invalid" in str(e):
                raise
            raise ValueError(f"Invalid value for {path}: {e}") from e

    def _convert_to_bool(self, key: str, value: str) -> bool:
        """Convert a string value to a boolean."""
        if value.lower() in ("true", "yes", "1", "on"):
            return True
        if value.lower() in ("false", "no", "0", "off"):
            return False
        raise ValueError(
            f"Invalid boolean value for {key}: {value}. "
            f"Use true/false, yes/no, 1/0, or on/off"
        )

    def get_all(self) -> dict[str, Any]:
        """Get all configuration values."""
        return copy.deepcopy(self._config)

    def show(self) -> dict[str, Any]:
        """Show the current configuration."""
        return self.get_all()

    def expand_path(self, key: str) -> Path:
        """Get a path-valued key with ``~`` expanded."""
        return Path(str(self.get(key))).expanduser()
