"""Configuration utilities for the punchlist CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any


def get_config_dir() -> Path:
    """Get the configuration directory for punchlist.

    Returns:
        Path from PUNCHLIST_CONFIG_DIR, or ~/.punchlist.
    """
    override = os.environ.get("PUNCHLIST_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".punchlist"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_db_path() -> Path:
    """Get the path to the offline cache database."""
    return get_config_dir() / "offline.db"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))
