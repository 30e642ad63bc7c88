"""contextkit rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from contextkit.cli.errors import err_file_not_found
    console.print(err_file_not_found(path))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_file_not_found(path: str) -> str:
    """Input file does not exist."""
    return (
        f"[red]Error:[/] File not found: '{path}'\n"
        "  Check the path and try again."
    )


def err_invalid_chunks(path: str, detail: str) -> str:
    """Chunks file is not valid JSON or has the wrong shape."""
    return (
        f"[red]Error:[/] Could not read chunks from '{path}': {detail}\n"
        "  Expected a JSON array of objects with at least 'content', e.g.\n"
        '    [{"id": "c1", "document_id": "d1", "content": "...", '
        '"similarity_score": 0.9, "bm25_score": 0.4}]'
    )


def err_config(detail: str) -> str:
    """Configuration file contains an invalid value."""
    return (
        f"[red]Error:[/] Invalid configuration: {detail}\n"
        "  Fix contextkit.yaml (or ~/.contextkit/config.yaml) and try again."
    )


def err_negative_value(option: str, value: float) -> str:
    """A numeric option received a negative value."""
    return (
        f"[red]Error:[/] {option} must not be negative (got {value}).\n"
        f"  Pass a value >= 0 for {option}."
    )


def warn_chunks_dropped(dropped: int, max_tokens: int) -> str:
    """Some chunks did not fit the token budget."""
    return (
        f"[yellow]⚠[/] {dropped} chunk(s) did not fit in {max_tokens} tokens.\n"
        "  Raise --max-tokens to include more context."
    )
