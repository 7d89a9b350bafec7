"""
Linux backend: lsblk for enumeration, wipefs/parted/mkfs.vfat for provisioning.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

from opencore_usb.backends.base import DiskBackend
from opencore_usb.errors import DestructiveStepFailure, PreconditionError
from opencore_usb.models import BusType, DiskHandle, MountedVolume, Partition

LSBLK_COLUMNS = "NAME,PATH,SIZE,TRAN,RM,TYPE,FSTYPE,LABEL,MOUNTPOINT,PARTTYPE,MODEL"

ESP_PARTTYPES = {"c12a7328-f81f-11d2-ba4b-00a0c93ec93b", "0xef"}

# A disk holding any of these is the one the system runs from
SYSTEM_MOUNTS = {"/", "/boot", "/boot/efi", "/efi", "/usr"}

INTERNAL_TRANSPORTS = {"sata", "ata", "nvme", "sas", "scsi", "virtio"}


def _as_bool(value: Any) -> bool:
    # Older lsblk releases emit "0"/"1" strings instead of JSON booleans
    if isinstance(value, str):
        return value.strip() in ("1", "true")
    return bool(value)


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _bus_type(transport: str | None) -> BusType:
    if not transport:
        return BusType.UNKNOWN
    transport = transport.lower()
    if transport == "usb":
        return BusType.USB
    if transport in INTERNAL_TRANSPORTS:
        return BusType.INTERNAL
    return BusType.UNKNOWN


def _mount_points(block: dict[str, Any]) -> set[str]:
    """Collect mount points of a block device and everything stacked on it."""
    found = set()
    if block.get("mountpoint"):
        found.add(block["mountpoint"])
    for child in block.get("children") or []:
        found |= _mount_points(child)
    return found


def _device_path(block: dict[str, Any]) -> str:
    return block.get("path") or f"/dev/{block['name']}"


def parse_lsblk(output: str) -> list[DiskHandle]:
    """Build disk handles from ``lsblk -J -b`` output."""
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise PreconditionError(f"Could not parse lsblk output: {e}") from e

    disks = []
    for block in data.get("blockdevices", []):
        if block.get("type") != "disk":
            continue

        partitions = []
        for child in block.get("children") or []:
            if child.get("type") != "part":
                continue
            mount_point = child.get("mountpoint")
            partitions.append(
                Partition(
                    identifier=child["name"],
                    device=_device_path(child),
                    filesystem=child.get("fstype") or "",
                    label=child.get("label") or "",
                    mount_point=Path(mount_point) if mount_point else None,
                    is_esp=(child.get("parttype") or "").lower() in ESP_PARTTYPES,
                    size_bytes=_as_int(child.get("size")),
                )
            )

        disks.append(
            DiskHandle(
                identifier=_device_path(block),
                device=_device_path(block),
                name=(block.get("model") or block["name"]).strip(),
                size_bytes=_as_int(block.get("size")),
                bus=_bus_type(block.get("tran")),
                removable=_as_bool(block.get("rm")),
                is_boot_disk=bool(_mount_points(block) & SYSTEM_MOUNTS),
                partitions=tuple(partitions),
            )
        )
    return disks


class LinuxBackend(DiskBackend):
    """Disk operations via util-linux, parted and dosfstools."""

    name = "Linux"
    required_tools = ("lsblk", "wipefs", "parted", "mkfs.vfat", "mount", "umount")

    def list_disks(self) -> list[DiskHandle]:
        output = self.query(["lsblk", "-J", "-b", "-o", LSBLK_COLUMNS])
        return parse_lsblk(output)

    def unmount_disk(self, disk: DiskHandle) -> None:
        for partition in disk.partitions:
            if partition.mount_point:
                self.run(["umount", str(partition.mount_point)], "Unmount")

    def wipe_disk(self, disk: DiskHandle) -> None:
        self.run(["wipefs", "--all", "--force", disk.device], "Wipe")

    def create_partition_table(self, disk: DiskHandle) -> None:
        self.run(["parted", "-s", disk.device, "mklabel", "gpt"], "Create partition table")

    def create_partition(self, disk: DiskHandle) -> None:
        self.run(
            ["parted", "-s", disk.device, "mkpart", "primary", "fat32", "1MiB", "100%"],
            "Create partition",
        )
        self.run(["parted", "-s", disk.device, "set", "1", "esp", "on"], "Set ESP flag")

    def find_new_partition(self, disk_identifier: str) -> Partition | None:
        disk = self.get_disk(disk_identifier)
        if disk is None or not disk.partitions:
            return None
        partition = disk.partitions[0]
        # lsblk reads sysfs; udev may not have created the node yet
        if not Path(partition.device).exists():
            return None
        return partition

    def format_partition(self, partition: Partition, label: str) -> None:
        self.run(["mkfs.vfat", "-F", "32", "-n", label, partition.device], "Format")

    def mount_partition(self, partition: Partition, mount_root: Path) -> Path:
        if partition.mount_point:
            return partition.mount_point

        mount_point = mount_root / f"opencore_{partition.identifier}_{int(time.time())}"
        try:
            mount_point.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DestructiveStepFailure("Mount", str(e)) from e
        self.run(["mount", partition.device, str(mount_point)], "Mount")
        return mount_point

    def release(self, volume: MountedVolume) -> None:
        self.sync()
        self.run(["umount", str(volume.mount_point)], "Unmount")
        try:
            volume.mount_point.rmdir()
        except OSError as e:
            self.warn(f"Could not remove mount directory {volume.mount_point}: {e}")
