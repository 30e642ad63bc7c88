"""contextkit score — explain a document's priority from its raw signals.

Usage:
  contextkit score --access-count 12 --days-since-access 3 --relevance 0.8 --embedded
"""

from __future__ import annotations

from datetime import timedelta
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from contextkit.cli.errors import err_config, err_negative_value
from contextkit.config import ConfigError, load_config
from contextkit.models import utcnow
from contextkit.priority.scoring import (
    WEIGHTS,
    clamp_unit,
    compute_factors,
    raw_score,
    select_reason,
)

console = Console()


def score_cmd(
    access_count: Annotated[
        int, typer.Option("--access-count", help="Number of times the document was accessed.")
    ] = 0,
    days_since_access: Annotated[
        float, typer.Option("--days-since-access", help="Days since the last access.")
    ] = 0.0,
    relevance: Annotated[
        float, typer.Option("--relevance", help="Context relevance in [0, 1].")
    ] = 0.0,
    embedded: Annotated[
        bool, typer.Option("--embedded/--not-embedded", help="Whether embeddings are ready.")
    ] = False,
    size_bytes: Annotated[
        int, typer.Option("--size-bytes", help="File size in bytes.")
    ] = 0,
    preference: Annotated[
        float, typer.Option("--preference", help="User preference in [0, 1].")
    ] = 0.0,
) -> None:
    """Show the six priority factors, their weights and the resulting priority."""
    for option, value in (
        ("--access-count", access_count),
        ("--days-since-access", days_since_access),
        ("--size-bytes", size_bytes),
    ):
        if value < 0:
            console.print(err_negative_value(option, value))
            raise typer.Exit(1)

    try:
        threshold = load_config().cache.priority_threshold
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    now = utcnow()
    factors = compute_factors(
        now=now,
        access_count=access_count,
        last_accessed=now - timedelta(days=days_since_access),
        context_relevance=relevance,
        embedding_ready=embedded,
        file_size_bytes=size_bytes,
        user_preference=preference,
    )
    score = raw_score(factors)

    table = Table(title="Priority factors")
    table.add_column("Factor")
    table.add_column("Value", justify="right")
    table.add_column("Weight", justify="right")
    table.add_column("Contribution", justify="right")
    for name, weight in WEIGHTS.items():
        value = getattr(factors, name)
        table.add_row(name, f"{value:.3f}", f"{weight:+.2f}", f"{value * weight:+.3f}")
    console.print(table)

    priority = clamp_unit(score)
    marker = "[green]cache[/]" if priority >= threshold else "[dim]below threshold[/]"
    console.print(f"Priority: [bold]{priority:.3f}[/] ({marker}, threshold {threshold:.2f})")
    console.print(f"Reason:   {select_reason(factors, score, threshold)}")
