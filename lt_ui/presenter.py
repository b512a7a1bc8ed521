"""Rich-based output helpers shared by the CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table


@dataclass
class TableModel:
    title: str
    columns: list[str]
    rows: list[list[str]]


def build_rich_table(model: TableModel, *, show_lines: bool = False) -> Table:
    table = Table(
        title=model.title,
        box=box.ROUNDED,
        show_lines=show_lines,
        border_style="blue",
        header_style="bold blue",
        title_style="bold blue",
    )
    for column in model.columns:
        table.add_column(column, overflow="ellipsis")
    for row in model.rows:
        table.add_row(*[str(cell) for cell in row])
    return table


class Presenter:
    """Thin wrapper over a rich Console with consistent message styles."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def info(self, message: str) -> None:
        self.console.print(f"[cyan]{escape(message)}[/cyan]")

    def success(self, message: str) -> None:
        self.console.print(f"[green]{escape(message)}[/green]")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]Warning:[/yellow] {escape(message)}")

    def error(self, message: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {escape(message)}")

    def table(self, model: TableModel, *, show_lines: bool = False) -> None:
        self.console.print(build_rich_table(model, show_lines=show_lines))

    def key_values(self, title: str, pairs: Sequence[tuple[str, object]]) -> None:
        rows = [[key, "-" if value is None else str(value)] for key, value in pairs]
        self.table(TableModel(title=title, columns=["Field", "Value"], rows=rows))
