"""
Tests for disk enumeration and target resolution.
"""

from dataclasses import replace

import pytest

from conftest import FakeBackend, make_disk, make_esp
from opencore_usb.enumerator import list_candidates, list_efi_partitions
from opencore_usb.errors import AmbiguousError, NotFoundError
from opencore_usb.models import BusType
from opencore_usb.resolver import match_disks, resolve, resolve_partition


class TestListCandidates:
    """Test the removable-disk filter."""

    def test_default_lists_only_removable(self, backend):
        """Only USB/removable disks are offered unless asked otherwise."""
        disks = list_candidates(backend)
        assert [d.identifier for d in disks] == ["disk4"]

    def test_include_all_lists_every_disk(self, backend):
        disks = list_candidates(backend, include_all=True)
        assert [d.identifier for d in disks] == ["disk0", "disk2", "disk4"]

    def test_removable_flag_without_usb_bus(self, mount_root):
        """A card reader reporting an unknown bus but removable media is a candidate."""
        reader = make_disk("disk5", bus=BusType.UNKNOWN)
        reader = replace(reader, removable=True)
        backend = FakeBackend([reader], mount_root=mount_root)
        assert list_candidates(backend) == [reader]

    def test_no_devices_is_empty_not_error(self, boot_disk, mount_root):
        backend = FakeBackend([boot_disk], mount_root=mount_root)
        assert list_candidates(backend) == []

    def test_every_call_queries_the_platform(self, backend):
        """Handles are never cached between calls."""
        list_candidates(backend)
        list_candidates(backend)
        assert backend.list_calls == 2


class TestListEfiPartitions:
    def test_lists_esps_with_their_disk(self, mount_root):
        disk_a = make_disk("disk0", bus=BusType.INTERNAL, partitions=(make_esp("disk0s1"),))
        disk_b = make_disk("disk3", partitions=(make_esp("disk3s1"),))
        backend = FakeBackend([disk_a, disk_b], mount_root=mount_root)

        found = list_efi_partitions(backend)

        assert [(d.identifier, p.identifier) for d, p in found] == [
            ("disk0", "disk0s1"),
            ("disk3", "disk3s1"),
        ]

    def test_disks_without_esp(self, backend):
        found = list_efi_partitions(backend)
        assert [p.identifier for _, p in found] == ["disk0s1"]


class TestResolve:
    """Test exact identifier resolution."""

    def test_resolves_identifier(self, backend):
        assert resolve(backend, "disk4").identifier == "disk4"

    def test_resolves_device_node(self, backend):
        assert resolve(backend, "/dev/disk2").identifier == "disk2"

    def test_strips_whitespace(self, backend):
        assert resolve(backend, "  disk4\n").identifier == "disk4"

    def test_no_prefix_matching(self, mount_root):
        """'disk1' must not select disk10."""
        backend = FakeBackend([make_disk("disk10")], mount_root=mount_root)
        with pytest.raises(NotFoundError):
            resolve(backend, "disk1")

    def test_unknown_identifier(self, backend):
        with pytest.raises(NotFoundError, match="disk9"):
            resolve(backend, "disk9")

    def test_empty_identifier(self, backend):
        with pytest.raises(NotFoundError, match="No disk selected"):
            resolve(backend, "   ")

    def test_ambiguous_identifier_is_rejected(self):
        """Two devices answering to the same name are never guessed between."""
        first = make_disk("disk4")
        second = replace(first, identifier="usb-stick")
        with pytest.raises(AmbiguousError):
            match_disks([first, second], "/dev/disk4")

    def test_resolve_partition(self, backend):
        disk, partition = resolve_partition(backend, "disk0s1")
        assert disk.identifier == "disk0"
        assert partition.is_esp

    def test_resolve_partition_not_found(self, backend):
        with pytest.raises(NotFoundError):
            resolve_partition(backend, "disk0s9")
