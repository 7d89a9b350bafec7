"""
Disk enumeration.
"""

from __future__ import annotations

from opencore_usb.backends.base import DiskBackend
from opencore_usb.models import DiskHandle, Partition


def list_candidates(backend: DiskBackend, include_all: bool = False) -> list[DiskHandle]:
    """List disks the operator may pick.

    Only removable/USB disks by default. ``include_all`` lists every disk and
    must only be passed after the operator explicitly asked for it.
    """
    disks = backend.list_disks()
    if include_all:
        return disks
    return [disk for disk in disks if disk.is_removable]


def list_efi_partitions(backend: DiskBackend) -> list[tuple[DiskHandle, Partition]]:
    """List every EFI system partition on the host with its disk."""
    return [
        (disk, partition)
        for disk in backend.list_disks()
        for partition in disk.partitions
        if partition.is_esp
    ]
