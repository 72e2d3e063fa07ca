"""Shared Rich Console for greg's command line output."""

from rich.console import Console

_console: Console | None = None


def get_console() -> Console:
    """Get or create the global Rich Console instance."""
    global _console
    if _console is None:
        # stderr keeps progress lines out of anything piped from stdout
        _console = Console(stderr=True, highlight=False)
    return _console


def safe_print(message: str, style: str | None = None) -> None:
    """Print using Rich Console with optional styling.

    Args:
        message: The message to print
        style: Optional Rich style string (e.g., "bold red", "green")
    """
    console = get_console()
    if style:
        console.print(message, style=style)
    else:
        console.print(message)


def print_status(message: str, style: str | None = None) -> None:
    """Overwrite the current terminal line (used for live progress)."""
    console = get_console()
    console.print(message, style=style, end="\r", soft_wrap=True)
