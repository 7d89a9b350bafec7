"""
Value types threaded through the create and restore pipelines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

# Fixed output contract
VOLUME_LABEL = "OPENCORE"
PARTITION_SCHEME = "GPT"
FILESYSTEM = "FAT32"

# Subtrees every payload must carry, in install order
PAYLOAD_SUBTREES = ("BOOT", "OC")


class BusType(Enum):
    """Bus a disk is attached through."""

    USB = "usb"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


class InstallMode(Enum):
    """How the payload is laid onto the destination."""

    FRESH = "fresh"
    MERGE_WITH_BACKUP = "merge-with-backup"


@dataclass(frozen=True)
class Partition:
    """A partition as reported by the platform at enumeration time."""

    identifier: str
    device: str
    filesystem: str = ""
    label: str = ""
    mount_point: Path | None = None
    is_esp: bool = False
    size_bytes: int = 0


@dataclass(frozen=True)
class DiskHandle:
    """A whole disk as reported by one enumeration call.

    Handles are never cached: they go stale as soon as the disk's layout
    changes, so callers ask the backend again instead of reusing one.
    """

    identifier: str
    device: str
    name: str
    size_bytes: int
    bus: BusType
    removable: bool = False
    is_boot_disk: bool = False
    partitions: tuple[Partition, ...] = field(default_factory=tuple)

    @property
    def is_removable(self) -> bool:
        return self.bus is BusType.USB or self.removable

    @property
    def size_display(self) -> str:
        return format_size(self.size_bytes)


@dataclass(frozen=True)
class ProvisionRequest:
    """What to build on a disk. Consumed exactly once by a Provisioner."""

    disk: DiskHandle
    label: str = VOLUME_LABEL
    scheme: str = PARTITION_SCHEME
    filesystem: str = FILESYSTEM


@dataclass(frozen=True)
class MountedVolume:
    """A formatted volume and where it is mounted."""

    disk_identifier: str
    device: str
    mount_point: Path
    label: str = VOLUME_LABEL


@dataclass(frozen=True)
class PayloadSource:
    """A validated payload ``EFI`` directory.

    Build it with ``installer.validate_payload`` so the subtrees are known to
    exist before anything destructive runs.
    """

    root: Path
    subtrees: tuple[str, ...] = PAYLOAD_SUBTREES

    def subtree(self, name: str) -> Path:
        return self.root / name


@dataclass(frozen=True)
class BackupRecord:
    """An existing subtree moved out of the way. Left for the operator to clean up."""

    original: Path
    renamed_to: Path


def format_size(size_bytes: int) -> str:
    """Render a byte count the way disk tools do (decimal units)."""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1000 or unit == "TB":
            if unit == "B":
                return f"{int(size)} B"
            return f"{size:.1f} {unit}"
        size /= 1000
    return f"{size_bytes} B"
