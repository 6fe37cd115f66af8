from __future__ import annotations

from rich.console import Console
from rich.prompt import Confirm

console = Console()


def confirm(question: str, default: bool = True) -> bool:
    """Ask a yes/no question on the terminal."""
    return bool(Confirm.ask(question, default=default, console=console))
