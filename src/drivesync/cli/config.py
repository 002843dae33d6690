"""Configuration utilities for DriveSync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from drivesync.core.config import DriveSyncConfig
from drivesync.core.errors import ConfigError


def get_config_dir() -> Path:
    """Get the configuration directory for DriveSync.

    Returns:
        Path from DRIVESYNC_CONFIG_DIR, or ~/.drivesync.
    """
    override = os.environ.get("DRIVESYNC_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".drivesync"


def get_config_file(config_dir: Path | None = None) -> Path:
    """Get the path to the config file."""
    return (config_dir or get_config_dir()) / "config.json"


def load_config(config_dir: Path | None = None) -> dict[str, Any]:
    """Load configuration from config file.

    Raises:
        ConfigError: If the file is not valid JSON or not an object.
    """
    config_file = get_config_file(config_dir)
    if not config_file.exists():
        return {}
    try:
        data = json.loads(config_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read {config_file}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{config_file} must contain a JSON object")
    return data


def save_config(config: dict[str, Any], config_dir: Path | None = None) -> None:
    """Save configuration to config file."""
    config_file = get_config_file(config_dir)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2, ensure_ascii=False), encoding="utf-8")


def load_settings(config_dir: Path | None = None) -> DriveSyncConfig:
    """Load the runtime configuration from config.json and the environment.

    Raises:
        ConfigError: If the configuration is invalid.
    """
    directory = config_dir or get_config_dir()
    return DriveSyncConfig.from_dict(load_config(directory), directory)
