"""Rich-backed output helpers for the ``canvas`` CLI.

Color is off when ``--no-color`` is passed, when ``NO_COLOR`` is set, or when
stdout is not a terminal. All text is markup-escaped so provider names and
config values print verbatim.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from collections.abc import Sequence


def _wants_color(no_color_flag: bool) -> bool:
    if no_color_flag or os.environ.get("NO_COLOR"):
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


class CLIRenderer:
    def __init__(self, *, no_color: bool = False, console: Console | None = None) -> None:
        if console is None:
            console = Console(no_color=not _wants_color(no_color), highlight=False, soft_wrap=True)
        self.console = console

    def heading(self, text: str) -> None:
        self.console.print(f"[bold]{escape(text)}[/bold]")

    def text(self, line: str) -> None:
        self.console.print(escape(line))

    def ok(self, label: str) -> None:
        self.console.print(f"  [green]OK[/green]  {escape(label)}")

    def fail(self, label: str) -> None:
        self.console.print(f"  [red]FAIL[/red]  {escape(label)}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print ``rows`` under ``headers``; an empty row set prints nothing."""

        if not rows:
            return
        table = Table(title=title, title_justify="left")
        for header in headers:
            table.add_column(header, overflow="fold")
        for row in rows:
            table.add_row(*(escape(str(cell)) for cell in row))
        self.console.print(table)


__all__ = ["CLIRenderer"]
