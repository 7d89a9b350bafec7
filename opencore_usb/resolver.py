"""
Turn an operator-typed identifier into exactly one disk or partition.

Matching is exact against the platform identifier or the device node. There
is no prefix matching: ``disk1`` never selects ``disk10``.
"""

from __future__ import annotations

from collections.abc import Iterable

from opencore_usb.backends.base import DiskBackend
from opencore_usb.errors import AmbiguousError, NotFoundError
from opencore_usb.models import DiskHandle, Partition


def _normalise(identifier: str) -> str:
    identifier = identifier.strip()
    if not identifier:
        raise NotFoundError("No disk selected.")
    return identifier


def match_disks(disks: Iterable[DiskHandle], identifier: str) -> DiskHandle:
    """Pick the one disk whose identifier or device node equals ``identifier``."""
    identifier = _normalise(identifier)
    matches = [d for d in disks if identifier in (d.identifier, d.device)]

    if not matches:
        raise NotFoundError(f"Device not found: {identifier}")
    if len(matches) > 1:
        names = ", ".join(d.identifier for d in matches)
        raise AmbiguousError(f"'{identifier}' matches more than one device: {names}")
    return matches[0]


def resolve(backend: DiskBackend, identifier: str) -> DiskHandle:
    """Resolve against a fresh enumeration of every disk on the host."""
    return match_disks(backend.list_disks(), identifier)


def match_partitions(
    candidates: Iterable[tuple[DiskHandle, Partition]], identifier: str
) -> tuple[DiskHandle, Partition]:
    identifier = _normalise(identifier)
    matches = [
        (disk, part)
        for disk, part in candidates
        if identifier in (part.identifier, part.device)
    ]

    if not matches:
        raise NotFoundError(f"Partition not found: {identifier}")
    if len(matches) > 1:
        names = ", ".join(part.identifier for _, part in matches)
        raise AmbiguousError(f"'{identifier}' matches more than one partition: {names}")
    return matches[0]


def resolve_partition(backend: DiskBackend, identifier: str) -> tuple[DiskHandle, Partition]:
    """Resolve a partition identifier against a fresh enumeration."""
    return match_partitions(
        ((disk, part) for disk in backend.list_disks() for part in disk.partitions),
        identifier,
    )
