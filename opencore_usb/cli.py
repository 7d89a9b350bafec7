"""
Command line entry points.

Both commands are fully interactive: every decision is a prompt, and the only
exit codes are 0 (finished, or aborted by the operator) and 1 (failure).
"""

from __future__ import annotations

import click

from opencore_usb import __version__
from opencore_usb.backends import DiskBackend, get_backend
from opencore_usb.config import load_settings
from opencore_usb.console import Console
from opencore_usb.errors import OpenCoreUsbError, SafetyAbort
from opencore_usb.orchestrator import RestorationOrchestrator, RestoreState, create_usb

console = Console()


def _fail(error: OpenCoreUsbError) -> None:
    console.error(str(error))
    raise SystemExit(error.exit_code)


def _abort(abort: SafetyAbort) -> None:
    console.info(str(abort))
    raise SystemExit(abort.exit_code)


def firmware_reset_request(backend: DiskBackend):
    """Build the callback run once a restore has finished."""

    def _request() -> None:
        console.blank()
        console.banner("Restoration Complete!")
        console.warn("IMPORTANT: NVRAM must be cleared so the firmware picks up the new boot entry.")
        console.console.print("The system will now clear NVRAM and SHUT DOWN.")
        console.console.print("Please perform a COLD BOOT (power button) after shutdown.")
        console.blank()
        console.pause("Press Enter to clear NVRAM and shut down")

        console.info("Clearing NVRAM and shutting down...")
        if not backend.reset_firmware_and_power_off():
            console.warn(
                f"Clearing NVRAM is not supported on {backend.name}. "
                "Reset NVRAM from the firmware setup, then power the machine off and on."
            )

    return _request


@click.group()
@click.version_option(__version__, prog_name="opencore-usb")
def cli() -> None:
    """Create OpenCore USB drives and restore OpenCore onto EFI partitions."""


@cli.command()
def create() -> None:
    """Erase a USB drive and make it a bootable OpenCore drive."""
    console.banner("OpenCore USB Creator")
    console.console.print("This will format a USB drive and install OpenCore.")

    try:
        settings = load_settings()
        backend = get_backend(warn=console.warn)
        volume = create_usb(backend, console, settings)
    except SafetyAbort as e:
        _abort(e)
    except OpenCoreUsbError as e:
        _fail(e)

    console.success(f"Done! OpenCore USB created from {volume.disk_identifier}.")
    console.info("You can now boot macOS, Windows, or Linux from this drive.")


@cli.command()
def restore() -> None:
    """Restore the OpenCore bootloader onto an existing EFI partition."""
    console.banner("OpenCore Bootloader Restoration Assistant")

    try:
        settings = load_settings()
        backend = get_backend(warn=console.warn)
    except OpenCoreUsbError as e:
        _fail(e)

    orchestrator = RestorationOrchestrator(
        backend,
        console,
        settings,
        request_firmware_reset=firmware_reset_request(backend),
    )
    result = orchestrator.run()

    if result.aborted:
        console.info("Operation cancelled.")
        raise SystemExit(0)
    if result.state is RestoreState.FAILED:
        console.error(str(result.error))
        if result.last_state is not RestoreState.INIT:
            console.warn(f"Stopped after step: {result.last_state.value}")
        raise SystemExit(result.exit_code)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
