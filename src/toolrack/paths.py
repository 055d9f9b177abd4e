"""Common path utilities for toolrack."""

from __future__ import annotations

import os
from pathlib import Path


def get_toolrack_home() -> Path:
    """Return the base toolrack directory, honoring TOOLRACK_HOME if set."""

    env_path = os.environ.get("TOOLRACK_HOME")
    return Path(env_path).expanduser() if env_path else Path.home() / ".toolrack"


def default_config_path() -> Path:
    return get_toolrack_home() / "config.toml"


__all__ = ["default_config_path", "get_toolrack_home"]
