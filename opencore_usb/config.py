"""
Runtime settings.

Defaults live here as module constants. An optional YAML file can override the
tunable ones; the volume label and confirmation tokens are fixed.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

from opencore_usb.errors import PreconditionError

# =============================================================================
# Defaults
# =============================================================================

# Payload location, relative to the working directory
DEFAULT_PAYLOAD_DIR = Path("./BOOTEFIX64/EFI")

# Config file lookup
CONFIG_ENV_VAR = "OPENCORE_USB_CONFIG"
DEFAULT_CONFIG_FILE = Path("./opencore-usb.yaml")

# Confirmation tokens (case-sensitive)
ERASE_TOKEN = "ERASE"
RESTORE_TOKEN = "RESTORE"
NON_REMOVABLE_TOKEN = "YES"
SHOW_ALL_TOKEN = "SHOW ALL"

# Partition settle wait
DEFAULT_SETTLE_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 1.0

# Linux mounts land under here
DEFAULT_MOUNT_ROOT = Path("/mnt")


@dataclass(frozen=True)
class Settings:
    """Tunable settings."""

    payload_dir: Path = DEFAULT_PAYLOAD_DIR
    settle_timeout: float = DEFAULT_SETTLE_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    mount_root: Path = DEFAULT_MOUNT_ROOT
    # None means "next to the mount point"
    backup_root: Path | None = None


_PATH_KEYS = {"payload_dir", "mount_root", "backup_root"}
_FLOAT_KEYS = {"settle_timeout", "poll_interval"}


def config_path() -> Path | None:
    """Return the config file to load, or None when there is none."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        path = Path(env_path).expanduser()
        if not path.exists():
            raise PreconditionError(f"Config file not found: {path}")
        return path
    if DEFAULT_CONFIG_FILE.exists():
        return DEFAULT_CONFIG_FILE
    return None


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from YAML, falling back to defaults."""
    if path is None:
        path = config_path()
    if path is None:
        return Settings()

    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise PreconditionError(f"Could not read config file {path}: {e}") from e

    if data is None:
        return Settings()
    if not isinstance(data, dict):
        raise PreconditionError(f"Config file {path} must contain a mapping")

    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise PreconditionError(f"Unknown config keys in {path}: {', '.join(unknown)}")

    values: dict[str, object] = {}
    for key, value in data.items():
        if key in _PATH_KEYS:
            if value is None and key == "backup_root":
                values[key] = None
                continue
            if not isinstance(value, str):
                raise PreconditionError(f"Config key '{key}' must be a path string")
            values[key] = Path(value).expanduser()
        elif key in _FLOAT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise PreconditionError(f"Config key '{key}' must be a positive number")
            values[key] = float(value)

    return Settings(**values)
