"""
Copy the OpenCore payload onto a mounted volume.

Existing ``BOOT``/``OC`` trees are renamed aside, never deleted. Backup names
carry a second-resolution timestamp plus a counter when that name is taken,
so two runs within the same second still get distinct backups.
"""

from __future__ import annotations

import fnmatch
import os
import shutil
from datetime import datetime
from pathlib import Path, PurePath

from opencore_usb.errors import DestructiveStepFailure, PreconditionError
from opencore_usb.models import PAYLOAD_SUBTREES, BackupRecord, InstallMode, PayloadSource

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Finder litter that should not end up on a FAT volume
IGNORED_PATTERNS = (".DS_Store", "._*", ".Spotlight-V100", ".fseventsd")


def timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def unique_path(path: Path) -> Path:
    """Return ``path`` or, if taken, ``path`` with ``_2``, ``_3``... appended."""
    if not path.exists():
        return path
    counter = 2
    while True:
        candidate = path.with_name(f"{path.name}_{counter}")
        if not candidate.exists():
            return candidate
        counter += 1


def validate_payload(root: Path) -> PayloadSource:
    """Check the payload ``EFI`` directory has every required subtree."""
    if not root.is_dir():
        raise PreconditionError(f"EFI source not found at {root}")

    missing = [name for name in PAYLOAD_SUBTREES if not (root / name).is_dir()]
    if missing:
        raise PreconditionError(
            f"EFI source at {root} is missing: {', '.join(missing)}"
        )
    return PayloadSource(root=root.resolve())


def backup_name(name: str, now: datetime | None = None) -> str:
    return f"{name}_OLD_{timestamp(now)}"


def install(
    source: PayloadSource,
    destination_root: Path,
    mode: InstallMode,
    now: datetime | None = None,
) -> list[BackupRecord]:
    """Install the payload under ``destination_root/EFI``.

    FRESH copies the whole payload into an empty volume. MERGE_WITH_BACKUP
    renames each existing subtree aside, then copies the new one in.
    """
    efi_dir = destination_root / "EFI"

    if mode is InstallMode.FRESH:
        _copy_tree(source.root, efi_dir, "Copy EFI folder", skip_metadata=True)
        return []

    try:
        efi_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DestructiveStepFailure("Create EFI folder", str(e)) from e

    backups = []
    for name in source.subtrees:
        existing = efi_dir / name
        if existing.exists():
            renamed = unique_path(efi_dir / backup_name(name, now))
            try:
                existing.rename(renamed)
            except OSError as e:
                raise DestructiveStepFailure(f"Back up {name}", str(e)) from e
            backups.append(BackupRecord(original=existing, renamed_to=renamed))

    for name in source.subtrees:
        _copy_tree(source.subtree(name), efi_dir / name, f"Copy {name}", skip_metadata=True)

    return backups


def backup_efi_tree(
    mount_point: Path, backup_root: Path | None = None, now: datetime | None = None
) -> Path | None:
    """Copy the volume's whole ``EFI`` tree into ``EFI_BACKUP_<timestamp>/EFI``.

    Nothing is skipped. The backup directory sits next to the mount point
    unless ``backup_root`` says otherwise. Returns None when there is no
    ``EFI`` to back up.
    """
    efi_dir = mount_point / "EFI"
    if not efi_dir.is_dir():
        return None

    root = backup_root if backup_root is not None else default_backup_root(mount_point)
    backup_dir = unique_path(root / f"EFI_BACKUP_{timestamp(now)}")
    _copy_tree(efi_dir, backup_dir / "EFI", "Back up EFI")
    return backup_dir


def default_backup_root(mount_point: PurePath) -> Path:
    """Directory that holds EFI backups when none is configured.

    Normally the mount point's parent. A drive root such as ``S:\\`` is its
    own parent, so the backup would land on the partition being replaced;
    use the working directory instead.
    """
    if mount_point.parent == mount_point:
        return Path.cwd()
    return Path(mount_point.parent)


def _ignored(name: str) -> bool:
    return any(fnmatch.fnmatch(name, pattern) for pattern in IGNORED_PATTERNS)


def _copy_tree(
    source: Path, destination: Path, step: str, skip_metadata: bool = False
) -> None:
    # Contents only: FAT has no Unix modes and vfat rejects most chmod calls
    try:
        for dirpath, dirnames, filenames in os.walk(source):
            target = destination / Path(dirpath).relative_to(source)
            target.mkdir(parents=True, exist_ok=True)
            dirnames[:] = sorted(d for d in dirnames if not (skip_metadata and _ignored(d)))
            for filename in sorted(filenames):
                if not (skip_metadata and _ignored(filename)):
                    shutil.copyfile(Path(dirpath) / filename, target / filename)
    except OSError as e:
        raise DestructiveStepFailure(step, str(e)) from e
