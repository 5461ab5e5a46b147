"""Interactive prompting for build configuration.

The resolver talks to a ``Prompter``; the CLI supplies ``RichPrompter``,
tests supply scripted fakes.
"""

from typing import Protocol

from rich.console import Console
from rich.prompt import Confirm, IntPrompt, Prompt


class Prompter(Protocol):
    """Source of interactive answers."""

    def ask(self, label: str, default: str) -> str:
        """Ask for a free-form value; empty input keeps the default."""
        ...

    def ask_int(self, label: str, default: int) -> int:
        """Ask for an integer value."""
        ...

    def choose(self, label: str, choices: tuple[str, ...], default: str) -> str:
        """Ask the user to pick one of ``choices``."""
        ...

    def confirm(self, label: str, default: bool = False) -> bool:
        """Ask a yes/no question."""
        ...

    def secret(self, label: str) -> str:
        """Ask for a secret with echo suppressed."""
        ...


class RichPrompter:
    """Prompter backed by rich.prompt."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def ask(self, label: str, default: str) -> str:
        return Prompt.ask(label, default=default, console=self.console)

    def ask_int(self, label: str, default: int) -> int:
        return IntPrompt.ask(label, default=default, console=self.console)

    def choose(self, label: str, choices: tuple[str, ...], default: str) -> str:
        self.console.print(f"\n[bold]{label}:[/bold]")
        for index, choice in enumerate(choices, start=1):
            self.console.print(f"  {index}) {choice}")
        default_index = choices.index(default) + 1 if default in choices else 1
        answer = Prompt.ask(
            f"Select [1-{len(choices)}]",
            default=str(default_index),
            console=self.console,
        )
        try:
            picked = int(answer)
        except ValueError:
            return choices[default_index - 1]
        if 1 <= picked <= len(choices):
            return choices[picked - 1]
        return choices[default_index - 1]

    def confirm(self, label: str, default: bool = False) -> bool:
        return Confirm.ask(label, default=default, console=self.console)

    def secret(self, label: str) -> str:
        return Prompt.ask(label, password=True, console=self.console)


__all__ = ["Prompter", "RichPrompter"]
