"""
The capability interface every platform backend implements.

The enumerator, resolver, provisioner and orchestrator only talk to a
``DiskBackend``. Named platform tools (diskutil, parted, PowerShell) appear
only in the concrete backends.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

from opencore_usb.errors import DestructiveStepFailure, PreconditionError
from opencore_usb.models import DiskHandle, MountedVolume, Partition


class DiskBackend(ABC):
    """Platform disk operations used by the create and restore workflows."""

    #: Human readable platform name
    name: str = ""

    #: Executables that must be on PATH before anything runs
    required_tools: tuple[str, ...] = ()

    def __init__(self, warn: Callable[[str], None] | None = None) -> None:
        # Non-fatal problems, such as a mount directory left behind
        self.warn = warn or (lambda message: None)

    def missing_tools(self) -> list[str]:
        """Return required tools that are not on PATH."""
        return [tool for tool in self.required_tools if shutil.which(tool) is None]

    def is_elevated(self) -> bool:
        """Check whether the process runs with administrative privileges."""
        return os.geteuid() == 0

    # -------------------------------------------------------------------------
    # Command helpers
    # -------------------------------------------------------------------------

    def query(self, args: list[str]) -> str:
        """Run a read-only command and return stdout.

        A failing query means the platform tool is unusable, which is a
        precondition failure rather than a destructive one.
        """
        try:
            result = subprocess.run(args, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise PreconditionError(f"Command '{args[0]}' not found") from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            raise PreconditionError(f"{' '.join(args[:2])} failed: {detail}")
        return result.stdout

    def run(self, args: list[str], step: str) -> str:
        """Run a state-changing command; failure raises DestructiveStepFailure."""
        try:
            result = subprocess.run(args, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise DestructiveStepFailure(step, f"Command '{args[0]}' not found") from e

        if result.returncode != 0:
            raise DestructiveStepFailure(step, result.stderr or result.stdout)
        return result.stdout

    # -------------------------------------------------------------------------
    # Enumeration
    # -------------------------------------------------------------------------

    @abstractmethod
    def list_disks(self) -> list[DiskHandle]:
        """Enumerate every whole disk on the host, freshly queried."""

    def get_disk(self, identifier: str) -> DiskHandle | None:
        """Query the platform again for one disk by exact identifier."""
        for disk in self.list_disks():
            if disk.identifier == identifier:
                return disk
        return None

    # -------------------------------------------------------------------------
    # Provisioning steps
    # -------------------------------------------------------------------------

    @abstractmethod
    def unmount_disk(self, disk: DiskHandle) -> None:
        """Unmount every volume on the disk."""

    @abstractmethod
    def wipe_disk(self, disk: DiskHandle) -> None:
        """Destroy the existing partition table and filesystem signatures."""

    @abstractmethod
    def create_partition_table(self, disk: DiskHandle) -> None:
        """Write an empty GPT."""

    @abstractmethod
    def create_partition(self, disk: DiskHandle) -> None:
        """Create one partition spanning the free space."""

    @abstractmethod
    def find_new_partition(self, disk_identifier: str) -> Partition | None:
        """Return the freshly created partition once its device is usable."""

    @abstractmethod
    def format_partition(self, partition: Partition, label: str) -> None:
        """Format the partition FAT32 with the given label."""

    @abstractmethod
    def mount_partition(self, partition: Partition, mount_root: Path) -> Path:
        """Mount the partition (if not already) and return its mount point."""

    def release(self, volume: MountedVolume) -> None:
        """Flush and detach a finished volume. Default only flushes."""
        self.sync()

    def sync(self) -> None:
        if hasattr(os, "sync"):
            os.sync()

    # -------------------------------------------------------------------------
    # Firmware side effect
    # -------------------------------------------------------------------------

    def reset_firmware_and_power_off(self) -> bool:
        """Clear NVRAM boot entries and power off.

        Returns False when the platform has no supported way to do it; the
        caller then tells the operator to do it by hand.
        """
        return False
