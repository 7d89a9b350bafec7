"""
Operator-facing output and prompts.
"""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from opencore_usb.errors import SafetyAbort
from opencore_usb.models import DiskHandle


class Console:
    """Pretty console output using rich."""

    def __init__(self, console: RichConsole | None = None) -> None:
        self.console = console or RichConsole()

    def info(self, message: str) -> None:
        self.console.print(f"[blue][INFO][/blue] {message}")

    def success(self, message: str) -> None:
        self.console.print(f"[green][OK][/green] {message}")

    def warn(self, message: str) -> None:
        self.console.print(f"[yellow][WARN][/yellow] {message}")

    def error(self, message: str) -> None:
        # Tool output is passed through verbatim, so don't let rich parse it
        self.console.print("[red][ERROR][/red] ", end="")
        self.console.print(message, markup=False, highlight=False)

    def banner(self, title: str) -> None:
        self.console.print(Panel(title, style="bold blue"))

    def blank(self) -> None:
        self.console.print()

    def prompt(self, message: str) -> str:
        """Ask for free text. A closed input stream aborts the run."""
        try:
            return Prompt.ask(message, console=self.console, default="", show_default=False)
        except (EOFError, KeyboardInterrupt) as e:
            self.console.print()
            raise SafetyAbort("input", "Input closed. Aborted.") from e

    def pause(self, message: str) -> None:
        self.prompt(message)

    def table(self, title: str, columns: list[str], rows: list[list[str]]) -> None:
        table = Table(title=title)
        for col in columns:
            table.add_column(col)
        for row in rows:
            table.add_row(*row)
        self.console.print(table)

    def disk_table(self, title: str, disks: Sequence[DiskHandle]) -> None:
        self.table(
            title,
            ["Identifier", "Device", "Name", "Size", "Bus", "Boot disk"],
            [
                [
                    d.identifier,
                    d.device,
                    d.name,
                    d.size_display,
                    d.bus.value,
                    "yes" if d.is_boot_disk else "no",
                ]
                for d in disks
            ],
        )
