"""Thin wrapper around rich.Console with project theme and helper functions."""

from __future__ import annotations

from rich.console import Console, RenderableType
from rich.markdown import Markdown
from rich.theme import Theme

_THEME = Theme(
    {
        "success": "bold green",
        "error": "bold red",
        "failed": "color(160)",
        "warning": "bold yellow",
        "muted": "dim",
        "rule": "dim",
    }
)

_console: Console | None = None


def get_console() -> Console:
    """Return the singleton Console instance."""
    global _console
    if _console is None:
        _console = Console(theme=_THEME, highlight=False)
    return _console


def set_console(console: Console) -> None:
    """Replace the singleton Console (test seam)."""
    global _console
    _console = console


def make_console(**kwargs) -> Console:
    """Build a Console with the project theme (used by tests to record output)."""
    kwargs.setdefault("highlight", False)
    return Console(theme=_THEME, **kwargs)


def print_info(msg: str) -> None:
    get_console().print(msg, markup=False)


def print_success(msg: str) -> None:
    """Print a bold green success message."""
    get_console().print(msg, style="success", markup=False)


def print_error(msg: str) -> None:
    """Print a bold red error message."""
    get_console().print(msg, style="error", markup=False)


def print_warning(msg: str) -> None:
    get_console().print(msg, style="warning", markup=False)


def print_markdown(text: str) -> None:
    """Render markdown text via rich."""
    get_console().print(Markdown(text))


def print_renderable(renderable: RenderableType) -> None:
    get_console().print(renderable)
