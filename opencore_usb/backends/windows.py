"""
Windows backend using the Storage module cmdlets through PowerShell.
"""

from __future__ import annotations

import ctypes
import json
from pathlib import Path
from typing import Any

from opencore_usb.backends.base import DiskBackend
from opencore_usb.errors import DestructiveStepFailure, PreconditionError
from opencore_usb.models import BusType, DiskHandle, Partition

POWERSHELL = "powershell.exe"

ESP_GPT_TYPE = "{c12a7328-f81f-11d2-ba4b-00a0c93ec93b}"

INTERNAL_BUSES = {"SATA", "ATA", "NVME", "SAS", "SCSI", "RAID", "SPACES"}
REMOVABLE_BUSES = {"USB", "SD", "MMC"}

# Enums are stringified so Windows PowerShell 5.1 doesn't emit them as integers
INVENTORY_SCRIPT = """
$disks = Get-Disk | Select-Object Number, FriendlyName, Size, Path, IsBoot, IsSystem,
    @{n='BusType';e={"$($_.BusType)"}}
$parts = Get-Partition | Select-Object DiskNumber, PartitionNumber, Size, GptType,
    @{n='DriveLetter';e={"$($_.DriveLetter)".Trim([char]0)}}, @{n='Type';e={"$($_.Type)"}}
$vols = Get-Volume | Select-Object FileSystem, FileSystemLabel,
    @{n='DriveLetter';e={"$($_.DriveLetter)".Trim([char]0)}}
[pscustomobject]@{ Disks = @($disks); Partitions = @($parts); Volumes = @($vols) } |
    ConvertTo-Json -Depth 4 -Compress
"""


def _as_list(value: Any) -> list[dict[str, Any]]:
    # ConvertTo-Json collapses one-element arrays into a bare object
    if value is None:
        return []
    if isinstance(value, dict):
        return [value]
    return list(value)


def _bus_type(bus: str) -> BusType:
    bus = (bus or "").upper()
    if bus == "USB":
        return BusType.USB
    if bus in INTERNAL_BUSES:
        return BusType.INTERNAL
    return BusType.UNKNOWN


def parse_inventory(output: str) -> list[DiskHandle]:
    """Build disk handles from the inventory script's JSON."""
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise PreconditionError(f"Could not parse PowerShell output: {e}") from e

    volumes = {
        v["DriveLetter"]: v for v in _as_list(data.get("Volumes")) if v.get("DriveLetter")
    }
    partitions_by_disk: dict[int, list[Partition]] = {}
    for part in _as_list(data.get("Partitions")):
        letter = part.get("DriveLetter") or ""
        volume = volumes.get(letter, {})
        gpt_type = (part.get("GptType") or "").lower()
        partitions_by_disk.setdefault(int(part["DiskNumber"]), []).append(
            Partition(
                identifier=f"{part['DiskNumber']}:{part['PartitionNumber']}",
                device=f"{letter}:" if letter else "",
                filesystem=volume.get("FileSystem") or "",
                label=volume.get("FileSystemLabel") or "",
                mount_point=Path(f"{letter}:\\") if letter else None,
                is_esp=gpt_type == ESP_GPT_TYPE or part.get("Type") == "System",
                size_bytes=int(part.get("Size") or 0),
            )
        )

    disks = []
    for disk in _as_list(data.get("Disks")):
        number = int(disk["Number"])
        bus = (disk.get("BusType") or "").upper()
        disks.append(
            DiskHandle(
                identifier=str(number),
                device=f"\\\\.\\PHYSICALDRIVE{number}",
                name=(disk.get("FriendlyName") or "Unknown").strip(),
                size_bytes=int(disk.get("Size") or 0),
                bus=_bus_type(bus),
                removable=bus in REMOVABLE_BUSES,
                is_boot_disk=bool(disk.get("IsBoot") or disk.get("IsSystem")),
                partitions=tuple(partitions_by_disk.get(number, [])),
            )
        )
    return disks


class WindowsBackend(DiskBackend):
    """Disk operations via Get-Disk, Clear-Disk, Initialize-Disk and friends."""

    name = "Windows"
    required_tools = (POWERSHELL,)

    def _command(self, script: str) -> list[str]:
        return [
            POWERSHELL,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy", "Bypass",
            "-Command", script,
        ]

    def is_elevated(self) -> bool:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())

    def list_disks(self) -> list[DiskHandle]:
        return parse_inventory(self.query(self._command(INVENTORY_SCRIPT)))

    def unmount_disk(self, disk: DiskHandle) -> None:
        # Clear-Disk dismounts the volumes itself; just make sure the disk is online
        self.run(
            self._command(
                f"Set-Disk -Number {disk.identifier} -IsOffline $false; "
                f"Set-Disk -Number {disk.identifier} -IsReadOnly $false"
            ),
            "Bring disk online",
        )

    def wipe_disk(self, disk: DiskHandle) -> None:
        # Clear-Disk refuses RAW disks, which have nothing to clear anyway
        script = (
            f"$d = Get-Disk -Number {disk.identifier}; "
            "if ($d.PartitionStyle -ne 'RAW') { "
            f"Clear-Disk -Number {disk.identifier} -RemoveData -RemoveOEM -Confirm:$false }}"
        )
        self.run(self._command(script), "Wipe")

    def create_partition_table(self, disk: DiskHandle) -> None:
        self.run(
            self._command(f"Initialize-Disk -Number {disk.identifier} -PartitionStyle GPT"),
            "Create partition table",
        )

    def create_partition(self, disk: DiskHandle) -> None:
        self.run(
            self._command(
                f"New-Partition -DiskNumber {disk.identifier} -UseMaximumSize "
                "-AssignDriveLetter | Out-Null"
            ),
            "Create partition",
        )

    def find_new_partition(self, disk_identifier: str) -> Partition | None:
        disk = self.get_disk(disk_identifier)
        if disk is None:
            return None
        # Initialize-Disk adds a reserved partition without a drive letter
        candidates = [p for p in disk.partitions if p.mount_point and not p.is_esp]
        if not candidates:
            return None
        return max(candidates, key=lambda p: p.size_bytes)

    def format_partition(self, partition: Partition, label: str) -> None:
        letter = partition.device.rstrip(":")
        self.run(
            self._command(
                f"Format-Volume -DriveLetter {letter} -FileSystem FAT32 "
                f"-NewFileSystemLabel '{label}' -Confirm:$false -Force | Out-Null"
            ),
            "Format",
        )

    def mount_partition(self, partition: Partition, mount_root: Path) -> Path:
        if partition.mount_point:
            return partition.mount_point

        disk_number, partition_number = partition.identifier.split(":")
        script = (
            f"Add-PartitionAccessPath -DiskNumber {disk_number} "
            f"-PartitionNumber {partition_number} -AssignDriveLetter; "
            f"(Get-Partition -DiskNumber {disk_number} -PartitionNumber {partition_number})"
            ".DriveLetter"
        )
        letter = self.run(self._command(script), "Mount").strip().strip("\x00")
        if not letter:
            raise DestructiveStepFailure("Mount", f"No drive letter assigned to {partition.identifier}")
        return Path(f"{letter[-1]}:\\")
