"""
The two workflows: create a bootable USB from scratch, and restore OpenCore
onto an existing EFI system partition.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from opencore_usb.backends.base import DiskBackend
from opencore_usb.config import SHOW_ALL_TOKEN, Settings
from opencore_usb.console import Console
from opencore_usb.enumerator import list_candidates, list_efi_partitions
from opencore_usb.errors import (
    BootDiskRefused,
    DestructiveStepFailure,
    NotFoundError,
    OpenCoreUsbError,
    PreconditionError,
    SafetyAbort,
)
from opencore_usb.installer import backup_efi_tree, install, validate_payload
from opencore_usb.models import (
    BackupRecord,
    DiskHandle,
    InstallMode,
    MountedVolume,
    Partition,
    PayloadSource,
    ProvisionRequest,
)
from opencore_usb.provisioner import Provisioner
from opencore_usb.resolver import match_disks, resolve, resolve_partition
from opencore_usb.safety import erase_gate, restore_gate, token_matches


def preflight(backend: DiskBackend) -> None:
    """Fail before touching any disk if tools or privileges are missing."""
    missing = backend.missing_tools()
    if missing:
        raise PreconditionError(
            f"Required command(s) not found: {', '.join(missing)}. "
            f"This tool needs the standard {backend.name} disk utilities."
        )
    if not backend.is_elevated():
        raise PreconditionError(
            "This tool must be run with administrative privileges (e.g. sudo)."
        )


# =============================================================================
# Create
# =============================================================================


def select_disk(backend: DiskBackend, console: Console) -> DiskHandle:
    """Show removable disks and resolve the operator's choice.

    Every disk is only listed after the operator types the show-all token.
    """
    include_all = False
    while True:
        console.info("Scanning for drives..." if include_all else "Scanning for external drives...")
        disks = list_candidates(backend, include_all=include_all)

        if disks:
            console.disk_table("All Disks" if include_all else "External Drives", disks)
        else:
            console.warn("No drives found." if include_all else "No removable drives found.")

        if include_all:
            answer = console.prompt("Enter the disk identifier to format (e.g., disk4 or /dev/sdb)")
        else:
            answer = console.prompt(
                f"Enter the disk identifier to format, or type '{SHOW_ALL_TOKEN}' to list every disk"
            )
            if token_matches(answer, SHOW_ALL_TOKEN):
                include_all = True
                continue

        # Resolve against a fresh listing of exactly what was offered
        if include_all:
            return resolve(backend, answer)
        return match_disks(list_candidates(backend), answer)


def create_usb(
    backend: DiskBackend,
    console: Console,
    settings: Settings,
    provisioner: Provisioner | None = None,
) -> MountedVolume:
    """Erase a drive, make it GPT/FAT32 and install the payload."""
    preflight(backend)
    source = validate_payload(settings.payload_dir)
    console.success(f"Found EFI source at {source.root}")

    disk = select_disk(backend, console)

    console.blank()
    console.warn("WARNING: ALL DATA ON THE TARGET DRIVE WILL BE LOST!")
    erase_gate(console.prompt, console.warn).evaluate(disk)

    # The handle the gate approved must still describe the disk we touch
    current = backend.get_disk(disk.identifier)
    if current is None:
        raise NotFoundError(f"Device not found: {disk.identifier}")
    if current.is_boot_disk:
        raise BootDiskRefused(current.identifier)

    provisioner = provisioner or Provisioner(
        backend,
        settle_timeout=settings.settle_timeout,
        poll_interval=settings.poll_interval,
        mount_root=settings.mount_root,
        report=console.info,
    )
    volume = provisioner.provision(ProvisionRequest(disk=current))
    console.success(f"Drive formatted and mounted at {volume.mount_point}")

    console.info("Copying EFI folder...")
    try:
        install(source, volume.mount_point, InstallMode.FRESH)
    except OpenCoreUsbError:
        _release_after_failure(backend, console, volume)
        raise
    console.success("EFI folder copied successfully.")

    console.info("Syncing...")
    backend.release(volume)
    return volume


def _release_after_failure(backend: DiskBackend, console: Console, volume: MountedVolume) -> None:
    console.warn(f"Unmounting {volume.mount_point} after the failed copy...")
    try:
        backend.release(volume)
    except OpenCoreUsbError as e:
        console.warn(str(e))


# =============================================================================
# Restore
# =============================================================================


class RestoreState(Enum):
    INIT = "init"
    SOURCE_VALIDATED = "source-validated"
    TARGET_ENUMERATED = "target-enumerated"
    TARGET_SELECTED = "target-selected"
    CONFIRMED = "confirmed"
    MOUNTED = "mounted"
    BACKED_UP = "backed-up"
    INSTALLED = "installed"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass
class RestoreResult:
    """Where a restore run ended.

    ``last_state`` is the last state reached successfully; on failure
    ``state`` is FAILED and ``error`` holds the cause.
    """

    state: RestoreState
    last_state: RestoreState
    error: OpenCoreUsbError | None = None
    aborted: bool = False
    disk: DiskHandle | None = None
    partition: Partition | None = None
    mount_point: Path | None = None
    backup_dir: Path | None = None
    backups: list[BackupRecord] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        if self.error is not None:
            return self.error.exit_code
        return 0


class RestorationOrchestrator:
    """Walk the restore state machine, one component call per transition."""

    def __init__(
        self,
        backend: DiskBackend,
        console: Console,
        settings: Settings,
        request_firmware_reset: Callable[[], None] | None = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.backend = backend
        self.console = console
        self.settings = settings
        self.request_firmware_reset = request_firmware_reset
        self.now = now
        self.state = RestoreState.INIT

        self._source: PayloadSource | None = None
        self._candidates: list[tuple[DiskHandle, Partition]] = []

    def run(self) -> RestoreResult:
        result = RestoreResult(state=self.state, last_state=self.state)
        steps = [
            (RestoreState.SOURCE_VALIDATED, "Validate source", self._validate_source),
            (RestoreState.TARGET_ENUMERATED, "Find EFI partitions", self._enumerate),
            (RestoreState.TARGET_SELECTED, "Select partition", self._select),
            (RestoreState.CONFIRMED, "Confirm", self._confirm),
            (RestoreState.MOUNTED, "Mount", self._mount),
            (RestoreState.BACKED_UP, "Back up EFI", self._backup),
            (RestoreState.INSTALLED, "Install", self._install),
            (RestoreState.FINALIZED, "Finalize", self._finalize),
        ]

        for next_state, step_name, step in steps:
            try:
                step(result)
            except SafetyAbort:
                result.aborted = True
                return result
            except OpenCoreUsbError as e:
                return self._fail(result, e)
            except OSError as e:
                return self._fail(result, DestructiveStepFailure(step_name, str(e)))
            self.state = next_state
            result.state = next_state
            result.last_state = next_state

        return result

    def _fail(self, result: RestoreResult, error: OpenCoreUsbError) -> RestoreResult:
        self.state = RestoreState.FAILED
        result.state = RestoreState.FAILED
        result.error = error
        return result

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _validate_source(self, result: RestoreResult) -> None:
        preflight(self.backend)
        self._source = validate_payload(self.settings.payload_dir)
        self.console.success("Found source EFI files.")

    def _enumerate(self, result: RestoreResult) -> None:
        self.console.info("Scanning for EFI partitions...")
        self._candidates = list_efi_partitions(self.backend)
        if not self._candidates:
            raise NotFoundError("No EFI partitions found!")

    def _select(self, result: RestoreResult) -> None:
        if len(self._candidates) == 1:
            disk, partition = self._candidates[0]
            self.console.info(f"Found single EFI partition: {partition.identifier}")
        else:
            disk, partition = self._choose_partition()
        result.disk = disk
        result.partition = partition

    def _choose_partition(self) -> tuple[DiskHandle, Partition]:
        self.console.table(
            "EFI Partitions",
            ["#", "Partition", "Device", "Disk", "Mounted at"],
            [
                [str(i), part.identifier, part.device, disk.name, str(part.mount_point or "")]
                for i, (disk, part) in enumerate(self._candidates)
            ],
        )
        answer = self.console.prompt(
            f"Select partition number [0-{len(self._candidates) - 1}] or identifier"
        ).strip()

        if answer.isdigit():
            index = int(answer)
            if index >= len(self._candidates):
                raise NotFoundError("Invalid selection.")
            return self._candidates[index]
        disk, partition = resolve_partition(self.backend, answer)
        if not partition.is_esp:
            raise NotFoundError(f"{partition.identifier} is not an EFI system partition")
        return disk, partition

    def _confirm(self, result: RestoreResult) -> None:
        self.console.blank()
        restore_gate(self.console.prompt, self.console.warn).evaluate(
            result.disk, target=result.partition.identifier
        )

    def _mount(self, result: RestoreResult) -> None:
        self.console.info(f"Mounting {result.partition.identifier}...")
        result.mount_point = self.backend.mount_partition(
            result.partition, self.settings.mount_root
        )
        self.console.success(f"Mounted at: {result.mount_point}")

    def _backup(self, result: RestoreResult) -> None:
        now = self.now()
        result.backup_dir = backup_efi_tree(result.mount_point, self.settings.backup_root, now)
        if result.backup_dir is None:
            self.console.info("No existing EFI folder found. Skipping backup.")
        else:
            self.console.success(f"Backed up existing EFI to {result.backup_dir}")

    def _install(self, result: RestoreResult) -> None:
        self.console.info("Restoring OpenCore EFI...")
        result.backups = install(
            self._source, result.mount_point, InstallMode.MERGE_WITH_BACKUP, self.now()
        )
        for record in result.backups:
            self.console.info(f"Renamed existing {record.original.name} to {record.renamed_to.name}")
        self.backend.sync()
        self.console.success("EFI folders restored successfully!")

    def _finalize(self, result: RestoreResult) -> None:
        if self.request_firmware_reset is not None:
            self.request_firmware_reset()
