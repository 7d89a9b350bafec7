"""
macOS backend built on ``diskutil`` property-list output.
"""

from __future__ import annotations

import plistlib
import re
from pathlib import Path
from typing import Any

from opencore_usb.backends.base import DiskBackend
from opencore_usb.errors import DestructiveStepFailure, PreconditionError
from opencore_usb.models import BusType, DiskHandle, MountedVolume, Partition

WHOLE_DISK_RE = re.compile(r"^(disk\d+)")


def load_plist(output: str) -> dict[str, Any]:
    try:
        return plistlib.loads(output.encode())
    except plistlib.InvalidFileException as e:
        raise PreconditionError(f"Could not parse diskutil output: {e}") from e


def whole_disk(identifier: str) -> str:
    """Strip the slice suffix: ``disk0s2`` -> ``disk0``."""
    match = WHOLE_DISK_RE.match(identifier.replace("/dev/", ""))
    return match.group(1) if match else identifier


def _bus_type(info: dict[str, Any]) -> BusType:
    protocol = (info.get("BusProtocol") or "").upper()
    if protocol == "USB":
        return BusType.USB
    if info.get("Internal") is True:
        return BusType.INTERNAL
    return BusType.UNKNOWN


def build_disk(
    entry: dict[str, Any], info: dict[str, Any], boot_disks: set[str]
) -> DiskHandle:
    """Combine a ``diskutil list`` entry with its ``diskutil info`` record."""
    identifier = entry["DeviceIdentifier"]

    partitions = []
    for part in entry.get("Partitions", []):
        mount_point = part.get("MountPoint")
        partitions.append(
            Partition(
                identifier=part["DeviceIdentifier"],
                device=f"/dev/{part['DeviceIdentifier']}",
                filesystem=part.get("Content", ""),
                label=part.get("VolumeName", ""),
                mount_point=Path(mount_point) if mount_point else None,
                is_esp=part.get("Content") == "EFI",
                size_bytes=int(part.get("Size", 0)),
            )
        )

    return DiskHandle(
        identifier=identifier,
        device=info.get("DeviceNode", f"/dev/{identifier}"),
        name=info.get("MediaName") or info.get("IORegistryEntryName") or "Unknown",
        size_bytes=int(info.get("TotalSize") or info.get("Size") or entry.get("Size", 0)),
        bus=_bus_type(info),
        removable=bool(info.get("RemovableMedia") or info.get("Removable") or info.get("Ejectable")),
        is_boot_disk=identifier in boot_disks,
        partitions=tuple(partitions),
    )


class MacOSBackend(DiskBackend):
    """Disk operations via diskutil."""

    name = "macOS"
    required_tools = ("diskutil", "nvram", "shutdown")

    def _info(self, target: str) -> dict[str, Any]:
        return load_plist(self.query(["diskutil", "info", "-plist", target]))

    def boot_disks(self) -> set[str]:
        """Whole disks backing the root volume.

        On APFS the root volume lives on a synthesized disk; the physical
        stores behind its container count as the boot disk too.
        """
        root = self._info("/")
        parent = root.get("ParentWholeDisk")
        if not parent:
            raise PreconditionError("Could not determine the boot disk")

        disks = {parent}
        stores = list(root.get("APFSPhysicalStores", []))
        stores += self._info(parent).get("APFSPhysicalStores", [])
        for store in stores:
            store_id = store.get("APFSPhysicalStore") if isinstance(store, dict) else store
            if store_id:
                disks.add(whole_disk(store_id))
        return disks

    def list_disks(self) -> list[DiskHandle]:
        listing = load_plist(self.query(["diskutil", "list", "-plist"]))
        boot_disks = self.boot_disks()

        disks = []
        for entry in listing.get("AllDisksAndPartitions", []):
            info = self._info(entry["DeviceIdentifier"])
            # Synthesized APFS containers are views onto another disk
            if info.get("VirtualOrPhysical") == "Virtual":
                continue
            disks.append(build_disk(entry, info, boot_disks))
        return disks

    def unmount_disk(self, disk: DiskHandle) -> None:
        self.run(["diskutil", "unmountDisk", "force", disk.device], "Unmount")

    def wipe_disk(self, disk: DiskHandle) -> None:
        self.run(["diskutil", "eraseDisk", "free", "EMPTY", "MBR", disk.device], "Wipe")

    def create_partition_table(self, disk: DiskHandle) -> None:
        # GPT holding only free space; diskutil adds its own small ESP in front
        self.run(
            ["diskutil", "partitionDisk", disk.device, "1", "GPT", "free", "EMPTY", "R"],
            "Create partition table",
        )

    def create_partition(self, disk: DiskHandle) -> None:
        fresh = self.get_disk(disk.identifier)
        if fresh is None:
            raise DestructiveStepFailure("Create partition", f"{disk.identifier} disappeared")

        if fresh.partitions:
            anchor = fresh.partitions[-1].identifier
            args = ["diskutil", "addPartition", anchor, "%noformat%", "%noformat%", "0"]
        else:
            args = [
                "diskutil", "partitionDisk", fresh.device,
                "1", "GPT", "%noformat%", "%noformat%", "R",
            ]
        self.run(args, "Create partition")

    def find_new_partition(self, disk_identifier: str) -> Partition | None:
        disk = self.get_disk(disk_identifier)
        if disk is None:
            return None
        candidates = [p for p in disk.partitions if not p.is_esp]
        if not candidates:
            return None
        return max(candidates, key=lambda p: p.size_bytes)

    def format_partition(self, partition: Partition, label: str) -> None:
        self.run(
            ["diskutil", "eraseVolume", "FAT32", label, partition.device],
            "Format",
        )

    def mount_partition(self, partition: Partition, mount_root: Path) -> Path:
        info = self._info(partition.identifier)
        if not info.get("MountPoint"):
            self.run(["diskutil", "mount", partition.identifier], "Mount")
            info = self._info(partition.identifier)

        mount_point = info.get("MountPoint")
        if not mount_point or not Path(mount_point).exists():
            raise DestructiveStepFailure("Mount", f"{partition.identifier} has no mount point")
        return Path(mount_point)

    def release(self, volume: MountedVolume) -> None:
        self.sync()
        self.run(["diskutil", "eject", f"/dev/{whole_disk(volume.disk_identifier)}"], "Eject")

    def reset_firmware_and_power_off(self) -> bool:
        self.run(["nvram", "-c"], "Clear NVRAM")
        self.run(["shutdown", "-h", "now"], "Shut down")
        return True
