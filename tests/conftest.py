"""
Pytest fixtures for opencore-usb tests.

Disk tools are never invoked: ``FakeBackend`` keeps an in-memory disk layout
and records every call, and ``ScriptedConsole`` answers prompts from a list.
"""

from __future__ import annotations

import io
from dataclasses import replace
from pathlib import Path

import pytest
from rich.console import Console as RichConsole

from opencore_usb.backends.base import DiskBackend
from opencore_usb.config import Settings
from opencore_usb.console import Console
from opencore_usb.errors import DestructiveStepFailure, SafetyAbort
from opencore_usb.models import BusType, DiskHandle, MountedVolume, Partition

GB = 1000**3


def make_disk(
    identifier: str,
    bus: BusType = BusType.USB,
    is_boot_disk: bool = False,
    partitions: tuple[Partition, ...] = (),
    size_bytes: int = 16 * GB,
) -> DiskHandle:
    return DiskHandle(
        identifier=identifier,
        device=f"/dev/{identifier}",
        name=f"Test {identifier}",
        size_bytes=size_bytes,
        bus=bus,
        is_boot_disk=is_boot_disk,
        partitions=partitions,
    )


def make_esp(identifier: str, mount_point: Path | None = None) -> Partition:
    return Partition(
        identifier=identifier,
        device=f"/dev/{identifier}",
        filesystem="EFI",
        label="EFI",
        mount_point=mount_point,
        is_esp=True,
        size_bytes=200 * 1000**2,
    )


class FakeBackend(DiskBackend):
    """In-memory backend that records every call."""

    name = "Fake"

    def __init__(
        self,
        disks: list[DiskHandle],
        mount_root: Path,
        elevated: bool = True,
        missing: tuple[str, ...] = (),
        settle_polls: int = 0,
        fail_step: str | None = None,
        firmware_supported: bool = True,
    ) -> None:
        super().__init__()
        self.disks = list(disks)
        self.mount_root = mount_root
        self.elevated = elevated
        self.missing = missing
        self.settle_polls = settle_polls
        self.fail_step = fail_step
        self.firmware_supported = firmware_supported

        self.calls: list[tuple[str, str]] = []
        self.list_calls = 0
        self.find_calls = 0
        self._created: dict[str, Partition] = {}

    # Preflight

    def missing_tools(self) -> list[str]:
        return list(self.missing)

    def is_elevated(self) -> bool:
        return self.elevated

    # Enumeration

    def list_disks(self) -> list[DiskHandle]:
        self.list_calls += 1
        return list(self.disks)

    # Steps

    def _record(self, step: str, target: str) -> None:
        self.calls.append((step, target))
        if step == self.fail_step:
            raise DestructiveStepFailure(step, f"{step}: simulated tool error on {target}\n")

    @property
    def steps(self) -> list[str]:
        return [step for step, _ in self.calls]

    def unmount_disk(self, disk: DiskHandle) -> None:
        self._record("unmount", disk.identifier)

    def wipe_disk(self, disk: DiskHandle) -> None:
        self._record("wipe", disk.identifier)
        self._replace(disk.identifier, partitions=())

    def create_partition_table(self, disk: DiskHandle) -> None:
        self._record("gpt", disk.identifier)

    def create_partition(self, disk: DiskHandle) -> None:
        self._record("partition", disk.identifier)
        self._created[disk.identifier] = Partition(
            identifier=f"{disk.identifier}s1",
            device=f"/dev/{disk.identifier}s1",
            size_bytes=disk.size_bytes,
        )

    def find_new_partition(self, disk_identifier: str) -> Partition | None:
        self.find_calls += 1
        if self.find_calls <= self.settle_polls:
            return None
        return self._created.get(disk_identifier)

    def format_partition(self, partition: Partition, label: str) -> None:
        self._record("format", f"{partition.identifier}:{label}")

    def mount_partition(self, partition: Partition, mount_root: Path) -> Path:
        self._record("mount", partition.identifier)
        mount_point = partition.mount_point or self.mount_root / partition.identifier
        mount_point.mkdir(parents=True, exist_ok=True)
        return mount_point

    def release(self, volume: MountedVolume) -> None:
        self._record("release", volume.disk_identifier)

    def sync(self) -> None:
        self.calls.append(("sync", ""))

    def reset_firmware_and_power_off(self) -> bool:
        self._record("firmware-reset", "")
        return self.firmware_supported

    def _replace(self, identifier: str, **changes) -> None:
        self.disks = [
            replace(d, **changes) if d.identifier == identifier else d for d in self.disks
        ]


class ScriptedConsole(Console):
    """Console that answers prompts from a script and captures output."""

    def __init__(self, answers: list[str] | None = None) -> None:
        self.buffer = io.StringIO()
        super().__init__(RichConsole(file=self.buffer, width=200, color_system=None))
        self.answers = list(answers or [])
        self.prompts: list[str] = []

    def prompt(self, message: str) -> str:
        self.prompts.append(message)
        if not self.answers:
            # Same as a closed stdin
            raise SafetyAbort("input", "Input closed. Aborted.")
        return self.answers.pop(0)

    @property
    def output(self) -> str:
        return self.buffer.getvalue()


def write_tree(root: Path, files: dict[str, bytes]) -> Path:
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
    return root


PAYLOAD_FILES = {
    "BOOT/BOOTx64.efi": b"\x4d\x5a new boot loader",
    "OC/OpenCore.efi": b"\x4d\x5a opencore",
    "OC/config.plist": b"<plist version='1.0'><dict/></plist>",
    "OC/Drivers/OpenRuntime.efi": b"\x4d\x5a runtime",
    "OC/Kexts/Lilu.kext/Contents/Info.plist": b"<plist/>",
}


@pytest.fixture
def payload_dir(tmp_path: Path) -> Path:
    """A complete payload EFI directory."""
    return write_tree(tmp_path / "BOOTEFIX64" / "EFI", PAYLOAD_FILES)


@pytest.fixture
def mount_root(tmp_path: Path) -> Path:
    root = tmp_path / "Volumes"
    root.mkdir()
    return root


@pytest.fixture
def settings(payload_dir: Path, mount_root: Path, tmp_path: Path) -> Settings:
    return Settings(
        payload_dir=payload_dir,
        settle_timeout=5,
        poll_interval=0.01,
        mount_root=mount_root,
        backup_root=tmp_path / "backups",
    )


@pytest.fixture
def usb_disk() -> DiskHandle:
    return make_disk("disk4", bus=BusType.USB)


@pytest.fixture
def internal_disk() -> DiskHandle:
    return make_disk("disk2", bus=BusType.INTERNAL, size_bytes=500 * GB)


@pytest.fixture
def boot_disk() -> DiskHandle:
    return make_disk(
        "disk0",
        bus=BusType.INTERNAL,
        is_boot_disk=True,
        partitions=(make_esp("disk0s1"),),
        size_bytes=1000 * GB,
    )


@pytest.fixture
def backend(usb_disk, internal_disk, boot_disk, mount_root) -> FakeBackend:
    return FakeBackend([boot_disk, internal_disk, usb_disk], mount_root=mount_root)
