"""Output sinks: where finished text goes.

``write`` delivers the text for downstream use (the clipboard, by default);
``display`` shows it to the person driving the session.
"""

import logging
from typing import List, Optional, Protocol

import pyperclip  # type: ignore
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

logger = logging.getLogger(__name__)


class OutputSink(Protocol):
    def write(self, text: str) -> None:
        ...

    def display(self, text: str) -> None:
        ...


class ConsoleSink:
    """Displays results on the terminal; ``write`` is a no-op."""

    def __init__(self, console: Optional[Console] = None, title: str = "Result"):
        self.console = console or Console()
        self.title = title

    def write(self, text: str) -> None:
        pass

    def display(self, text: str) -> None:
        self.console.print(Panel(Text(text), title=self.title, expand=False))


class ClipboardSink(ConsoleSink):
    """Copies results to the system clipboard and displays them."""

    def __init__(self, console: Optional[Console] = None, title: str = "Result"):
        super().__init__(console, title)
        self.copied = False

    def write(self, text: str) -> None:
        try:
            pyperclip.copy(text)
        except pyperclip.PyperclipException as e:
            self.copied = False
            logger.warning(f"Clipboard not available: {e}")
            self.console.print("[yellow]Clipboard not available 📋[/yellow]")
            return
        self.copied = True
        self.console.print("[green]Result copied to clipboard ✅[/green]")


class MemorySink:
    """Records everything it receives."""

    def __init__(self):
        self.writes: List[str] = []
        self.displays: List[str] = []

    def write(self, text: str) -> None:
        self.writes.append(text)

    def display(self, text: str) -> None:
        self.displays.append(text)

    @property
    def last_write(self) -> Optional[str]:
        return self.writes[-1] if self.writes else None

    @property
    def last_display(self) -> Optional[str]:
        return self.displays[-1] if self.displays else None
