"""Rich console output for the maintenance commands.

The service itself only logs; these helpers are for humans at a terminal.
"""

from rich.console import Console
from rich.table import Table

_console: Console | None = None


def get_console() -> Console:
    global _console
    if _console is None:
        _console = Console()
    return _console


def safe_print(message: str, style: str | None = None) -> None:
    """Print a line, styled when a Rich style string is given (e.g. "bold red")."""
    if style:
        get_console().print(message, style=style)
    else:
        get_console().print(message)


def format_size(size_bytes: int) -> str:
    return f"{size_bytes / (1024 * 1024):.1f} MB"


def print_table(title: str, columns: list[str], rows: list[tuple[str, ...]]) -> None:
    """Render rows under a titled table. The second column onwards is right-aligned."""
    table = Table(title=title)
    for i, column in enumerate(columns):
        table.add_column(column, justify="left" if i == 0 else "right")
    for row in rows:
        table.add_row(*row)
    get_console().print(table)
