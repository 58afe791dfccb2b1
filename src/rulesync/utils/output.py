"""Rich console output utilities."""

from rich.console import Console
from rich.markup import escape


console = Console()


class Logger:
    """Leveled status output on the shared rich console.

    Messages are escaped before printing so skill names, paths and hashes are
    never interpreted as rich markup, and soft wrapping keeps long tokens on
    one line.
    """

    def __init__(self) -> None:
        self.verbose = False
        self.silent = False

    def configure(self, *, verbose: bool = False, silent: bool = False) -> None:
        """Set verbosity for subsequent messages.

        Args:
            verbose: Print debug messages
            silent: Suppress everything except errors
        """
        self.verbose = verbose
        self.silent = silent

    def _emit(self, prefix: str, message: str, style: str | None = None) -> None:
        console.print(
            f"{prefix} {escape(message)}", style=style, soft_wrap=True, emoji=False
        )

    def debug(self, message: str) -> None:
        """Print a debug message (verbose mode only)."""
        if self.verbose and not self.silent:
            self._emit("[dim]·[/dim]", message, style="dim")

    def info(self, message: str) -> None:
        """Print an info message."""
        if not self.silent:
            self._emit("[blue]ℹ[/blue]", message)

    def success(self, message: str) -> None:
        """Print a success message."""
        if not self.silent:
            self._emit("[green]✓[/green]", message)

    def warn(self, message: str) -> None:
        """Print a warning message."""
        if not self.silent:
            self._emit("[yellow]⚠[/yellow]", message, style="yellow")

    def error(self, message: str) -> None:
        """Print an error message. Errors are printed even in silent mode."""
        self._emit("[red]✗[/red]", message, style="red")


logger = Logger()
