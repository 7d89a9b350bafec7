"""
Partition and format a disk: GPT with one FAT32 volume.

Once the wipe has started nothing is cancellable and nothing is rolled back;
a failing step leaves the disk in whatever state the tools left it.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path

from opencore_usb.backends.base import DiskBackend
from opencore_usb.config import DEFAULT_MOUNT_ROOT, DEFAULT_POLL_INTERVAL, DEFAULT_SETTLE_TIMEOUT
from opencore_usb.errors import DestructiveStepFailure
from opencore_usb.models import DiskHandle, MountedVolume, Partition, ProvisionRequest

Report = Callable[[str], None]


class Provisioner:
    """Run the provisioning steps for a ProvisionRequest."""

    def __init__(
        self,
        backend: DiskBackend,
        settle_timeout: float = DEFAULT_SETTLE_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        mount_root: Path = DEFAULT_MOUNT_ROOT,
        report: Report | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.settle_timeout = settle_timeout
        self.poll_interval = poll_interval
        self.mount_root = mount_root
        self.report = report or (lambda message: None)
        self.sleep = sleep
        self.clock = clock
        self._consumed: list[ProvisionRequest] = []

    def provision(self, request: ProvisionRequest) -> MountedVolume:
        if any(done is request for done in self._consumed):
            raise ValueError("ProvisionRequest has already been provisioned")
        self._consumed.append(request)

        disk = request.disk

        self.report(f"Unmounting volumes on {disk.device}...")
        self.backend.unmount_disk(disk)

        self.report(f"Wiping {disk.device}...")
        self.backend.wipe_disk(disk)

        self.report(f"Creating {request.scheme} partition table on {disk.device}...")
        self.backend.create_partition_table(self._refresh(disk, "Create partition table"))

        self.report(f"Creating {request.filesystem} partition...")
        self.backend.create_partition(self._refresh(disk, "Create partition"))

        self.report("Waiting for the new partition...")
        partition = self.wait_for_partition(disk.identifier)

        self.report(f"Formatting {partition.device} as {request.filesystem} ({request.label})...")
        self.backend.format_partition(partition, request.label)

        # Formatting changes the partition's identity on some platforms
        partition = self.wait_for_partition(disk.identifier)

        self.report(f"Mounting {partition.device}...")
        mount_point = self.backend.mount_partition(partition, self.mount_root)

        return MountedVolume(
            disk_identifier=disk.identifier,
            device=partition.device,
            mount_point=mount_point,
            label=request.label,
        )

    def _refresh(self, disk: DiskHandle, step: str) -> DiskHandle:
        """Query the disk again; the previous handle is stale after a layout change."""
        fresh = self.backend.get_disk(disk.identifier)
        if fresh is None:
            raise DestructiveStepFailure(step, f"{disk.identifier} is no longer present")
        return fresh

    def wait_for_partition(self, disk_identifier: str) -> Partition:
        """Poll until the OS exposes the new partition, up to settle_timeout."""
        deadline = self.clock() + self.settle_timeout
        while True:
            partition = self.backend.find_new_partition(disk_identifier)
            if partition is not None:
                return partition
            if self.clock() >= deadline:
                raise DestructiveStepFailure(
                    "Wait for partition",
                    f"No partition appeared on {disk_identifier} within {self.settle_timeout:g}s",
                )
            self.sleep(self.poll_interval)
