"""
Error taxonomy.

Every failure carries the process exit code the CLI should use. A declined
confirmation is not an error: ``SafetyAbort`` exits 0 and is deliberately not
an ``OpenCoreUsbError``.
"""

from __future__ import annotations


class OpenCoreUsbError(Exception):
    """Base class for failures that end the run with exit code 1."""

    exit_code = 1


class PreconditionError(OpenCoreUsbError):
    """Missing privileges, payload or platform tool. Raised before any disk is touched."""


class NotFoundError(OpenCoreUsbError):
    """No device matches the operator's identifier."""


class AmbiguousError(OpenCoreUsbError):
    """More than one device matches the operator's identifier."""


class BootDiskRefused(OpenCoreUsbError):
    """The resolved target is the system/boot disk. Cannot be overridden."""

    def __init__(self, identifier: str) -> None:
        super().__init__(f"Refusing to touch {identifier}: it is the system boot disk")
        self.identifier = identifier
        self.check = "boot-disk"


class DestructiveStepFailure(OpenCoreUsbError):
    """A provisioning or install step failed.

    ``detail`` is the underlying tool's message, passed through verbatim.
    """

    def __init__(self, step: str, detail: str) -> None:
        detail = detail.strip()
        message = f"{step} failed: {detail}" if detail else f"{step} failed"
        super().__init__(message)
        self.step = step
        self.detail = detail


class SafetyAbort(Exception):
    """The operator declined a confirmation, or input was closed."""

    exit_code = 0

    def __init__(self, check: str, message: str = "Aborted.") -> None:
        super().__init__(message)
        self.check = check
