"""labdesk settings, read from and written to labdesk.toml in the config directory."""

from __future__ import annotations

import copy
import os
import sys
from pathlib import Path
from typing import Any

import tomli_w

from labdesk.core.exceptions import ConfigError

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

_DEFAULT_CONFIG: dict[str, Any] = {
    "general": {
        "data_dir": "~/.local/share/labdesk",
        "actor": "",
    },
    "verification": {
        "max_workers": 4,
    },
    "logging": {
        "level": "WARNING",
    },
    "display": {
        "date_format": "%Y-%m-%d",
    },
}


def get_config_dir() -> Path:
    """Return the config directory, creating it if needed."""
    config_dir = Path(os.environ.get("LABDESK_CONFIG_DIR", "~/.config/labdesk")).expanduser()
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_path() -> Path:
    """Return the path to the config TOML file."""
    return get_config_dir() / "labdesk.toml"


def get_data_dir(config: dict[str, Any] | None = None) -> Path:
    """Return the data directory, creating it if needed."""
    if config is None:
        config = load_config()
    data_dir = Path(config.get("general", {}).get("data_dir", "~/.local/share/labdesk")).expanduser()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_actor(config: dict[str, Any] | None = None) -> str:
    """Return the name stamped on verifications and status changes."""
    if config is None:
        config = load_config()
    actor = config.get("general", {}).get("actor", "")
    return actor or os.environ.get("USER", "") or "Unknown User"


def load_config() -> dict[str, Any]:
    """Load configuration from TOML file, returning defaults if not found."""
    config_path = get_config_path()
    if not config_path.exists():
        return copy.deepcopy(_DEFAULT_CONFIG)
    try:
        with open(config_path, "rb") as f:
            user_config = tomllib.load(f)
        return _merge_config(copy.deepcopy(_DEFAULT_CONFIG), user_config)
    except Exception as e:
        raise ConfigError(f"Failed to load config: {e}") from e


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to TOML file."""
    config_path = get_config_path()
    try:
        with open(config_path, "wb") as f:
            tomli_w.dump(config, f)
    except Exception as e:
        raise ConfigError(f"Failed to save config: {e}") from e


def set_value(key: str, value: str) -> dict[str, Any]:
    """Set one ``section.name`` setting, save the file, and return the config.

    Only keys present in the defaults are accepted; the value takes the type
    of the default (``verification.max_workers`` stays an int).
    """
    section, _, name = key.partition(".")
    default = _DEFAULT_CONFIG.get(section, {}).get(name) if name else None
    if default is None:
        raise ConfigError(f"Unknown setting: '{key}'")
    if isinstance(default, int):
        try:
            coerced: Any = int(value)
        except ValueError:
            raise ConfigError(f"{key} must be a whole number, got '{value}'") from None
        if coerced < 1:
            raise ConfigError(f"{key} must be at least 1")
    else:
        coerced = value
    config = load_config()
    config[section][name] = coerced
    save_config(config)
    return config


def _merge_config(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_config(base[key], value)
        else:
            base[key] = value
    return base
