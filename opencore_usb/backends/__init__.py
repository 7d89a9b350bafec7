"""
Platform backends.
"""

from __future__ import annotations

import platform
from collections.abc import Callable

from opencore_usb.backends.base import DiskBackend
from opencore_usb.errors import PreconditionError


def get_backend(
    system: str | None = None, warn: Callable[[str], None] | None = None
) -> DiskBackend:
    """Return the backend for the running (or named) platform.

    ``warn`` receives non-fatal problems the backend runs into.
    """
    system = system or platform.system()

    if system == "Darwin":
        from opencore_usb.backends.macos import MacOSBackend

        return MacOSBackend(warn)
    if system == "Linux":
        from opencore_usb.backends.linux import LinuxBackend

        return LinuxBackend(warn)
    if system == "Windows":
        from opencore_usb.backends.windows import WindowsBackend

        return WindowsBackend(warn)

    raise PreconditionError(f"Unsupported platform: {system}")


__all__ = ["DiskBackend", "get_backend"]
