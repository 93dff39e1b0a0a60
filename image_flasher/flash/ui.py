"""Prompt and output surface for flash runs.

The flash pipeline never talks to the terminal directly. It receives an
object with two operations, ``ask`` and ``say``, so the CLI can supply a
Rich console while tests supply a scripted implementation.
"""

from typing import Protocol

from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt


class Ui(Protocol):
    """Request/response abstraction over a user interface."""

    def ask(self, question: str) -> str:
        """Ask a question and block until the user answers."""
        ...

    def say(self, message: str) -> None:
        """Show a status message."""
        ...


class ConsoleUi:
    """Ui backed by a Rich console.

    Text is printed literally; image names and device models may contain
    square brackets that Rich would otherwise read as markup.

    Attributes:
        prompting: True while ``ask`` is waiting for an answer.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self.prompting = False

    def ask(self, question: str) -> str:
        self.prompting = True
        try:
            return Prompt.ask(
                escape(question), console=self.console, default="", show_default=False
            )
        finally:
            self.prompting = False

    def say(self, message: str) -> None:
        self.console.print(message, markup=False, highlight=False)


__all__ = ["ConsoleUi", "Ui"]
