"""Common CLI option types and helpers.

This module centralizes reusable CLI options to reduce duplication
and consolidate noqa comments for Typer's required function call pattern.

It also provides:
- `OutputFormat`: text or JSON-lines output
- Header and URL-file parsing with user-friendly validation errors
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

# Shared console instance for CLI output
console = Console()


class OutputFormat(str, Enum):
    """Output format for CLI commands."""

    TEXT = "text"
    """Human-readable text output."""

    JSON = "json"
    """One JSON object per completed request."""


# Typer requires function calls as default arguments, which triggers B008.
# Using Annotated with a centralized type alias keeps the noqa in one place.

OutputFormatOption = Annotated[
    OutputFormat,
    typer.Option(
        "--format",
        "-f",
        help="Output format",
    ),
]

LimitOption = Annotated[
    int | None,
    typer.Option(
        "--limit",
        "-n",
        help="Requests in flight at once (>= 2). Defaults to settings.",
    ),
]

MethodOption = Annotated[
    str,
    typer.Option(
        "--method",
        "-X",
        help="HTTP method for every URL",
    ),
]

HeaderOption = Annotated[
    list[str] | None,
    typer.Option(
        "--header",
        "-H",
        help="Header in 'Name: value' form (repeatable)",
    ),
]
"""Repeatable header option.

Usage:
    def fetch(header: HeaderOption = None) -> None:
"""

DataOption = Annotated[
    str | None,
    typer.Option(
        "--data",
        "-d",
        help="Request body sent with every URL",
    ),
]

TimeoutOption = Annotated[
    float | None,
    typer.Option(
        "--timeout",
        help="Overall timeout per request in seconds",
    ),
]

InputFileOption = Annotated[
    Path | None,
    typer.Option(
        "--input",
        "-i",
        help="File with one URL per line ('#' starts a comment)",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
]


# -----------------------------------------------------------------------------
# Validation Helpers
# -----------------------------------------------------------------------------


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Parse 'Name: value' header strings.

    Raises:
        typer.Exit(1): If a header has no name or no colon
    """
    headers: dict[str, str] = {}
    for line in lines:
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            console.print(f"[red]Error:[/red] Header '{line}' must be in 'Name: value' form")
            raise typer.Exit(1)
        headers[name.strip()] = value.strip()
    return headers


def read_url_file(path: Path) -> list[str]:
    """Read URLs from a file, skipping blank lines and comments."""
    urls = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            urls.append(line)
    return urls
