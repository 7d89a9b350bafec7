"""
Confirmation checks that guard every destructive step.

Checks run in order and stop at the first failure. The boot-disk check is
fatal and cannot be answered away; the others require typed tokens rather
than a y/N so that a reflexive keypress never erases a disk.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from opencore_usb.config import ERASE_TOKEN, NON_REMOVABLE_TOKEN, RESTORE_TOKEN
from opencore_usb.errors import BootDiskRefused, SafetyAbort
from opencore_usb.models import DiskHandle

Ask = Callable[[str], str]
Warn = Callable[[str], None]

BOOT_DISK = "boot-disk"
NON_REMOVABLE = "non-removable"
CONFIRM = "confirm"


def token_matches(answer: str | None, token: str) -> bool:
    """Exact, case-sensitive comparison; only surrounding whitespace is ignored."""
    if answer is None:
        return False
    return answer.strip() == token


@dataclass(frozen=True)
class SafetyGate:
    """An ordered set of checks evaluated against one resolved disk."""

    ask: Ask
    confirm_token: str = ERASE_TOKEN
    checks: Sequence[str] = (BOOT_DISK, NON_REMOVABLE, CONFIRM)
    warn: Warn | None = None
    action: str = "ERASE ALL DATA on"

    def evaluate(self, disk: DiskHandle, target: str | None = None) -> None:
        """Return normally only when every check passed.

        Raises BootDiskRefused for the boot disk and SafetyAbort when the
        operator declines.
        """
        target = target or disk.device
        for check in self.checks:
            if check == BOOT_DISK:
                self._check_boot_disk(disk)
            elif check == NON_REMOVABLE:
                self._check_non_removable(disk, target)
            elif check == CONFIRM:
                self._check_confirm(target)
            else:
                raise ValueError(f"Unknown safety check: {check}")

    def _say(self, message: str) -> None:
        if self.warn is not None:
            self.warn(message)

    def _check_boot_disk(self, disk: DiskHandle) -> None:
        if disk.is_boot_disk:
            raise BootDiskRefused(disk.identifier)

    def _check_non_removable(self, disk: DiskHandle, target: str) -> None:
        if disk.is_removable:
            return
        self._say(f"{target} is not a removable/USB disk ({disk.bus.value} bus).")
        answer = self.ask(f"Are you ABSOLUTELY sure? (type '{NON_REMOVABLE_TOKEN}' to proceed)")
        if not token_matches(answer, NON_REMOVABLE_TOKEN):
            raise SafetyAbort(NON_REMOVABLE)

    def _check_confirm(self, target: str) -> None:
        self._say(f"About to {self.action} {target}.")
        answer = self.ask(f"Type '{self.confirm_token}' to confirm")
        if not token_matches(answer, self.confirm_token):
            raise SafetyAbort(CONFIRM)


def erase_gate(ask: Ask, warn: Warn | None = None) -> SafetyGate:
    """Gate for wiping a whole disk."""
    return SafetyGate(ask=ask, warn=warn)


def restore_gate(ask: Ask, warn: Warn | None = None) -> SafetyGate:
    """Gate for restoring onto an existing EFI partition.

    Restoring never reformats and usually targets the machine's own internal
    disk, so only the typed confirmation applies.
    """
    return SafetyGate(
        ask=ask,
        confirm_token=RESTORE_TOKEN,
        checks=(CONFIRM,),
        warn=warn,
        action="replace the OpenCore bootloader on",
    )
