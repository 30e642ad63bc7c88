"""contextkit pack / allocate / validate — offline context-packing tools.

Usage:
  contextkit pack chunks.json --max-tokens 1500 --scores --show-context
  contextkit allocate chunks.json --total 4000
  contextkit validate rag.txt conversation.txt --limit 4000
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from contextkit.cli.errors import (
    err_config,
    err_file_not_found,
    err_invalid_chunks,
    warn_chunks_dropped,
)
from contextkit.config import ConfigError, ContextkitConfig, load_config
from contextkit.models import DocumentChunk
from contextkit.rag.packer import (
    calculate_optimal_token_allocation,
    combined_score,
    estimate_tokens,
    format_context_for_ai,
    validate_context_size,
)

console = Console()


def pack_cmd(
    chunks_file: Annotated[Path, typer.Argument(help="JSON file with retrieved chunks.")],
    max_tokens: Annotated[
        int | None,
        typer.Option("--max-tokens", "-m", help="Token budget (default: packer.max_rag_tokens)."),
    ] = None,
    scores: Annotated[
        bool,
        typer.Option("--scores", help="Prefix each chunk with its combined score."),
    ] = False,
    show_context: Annotated[
        bool,
        typer.Option("--show-context", help="Print the packed context."),
    ] = False,
) -> None:
    """Pack retrieved chunks into a token-bounded context."""
    cfg = _load_config()
    chunks = _read_chunks(chunks_file)
    budget = max_tokens if max_tokens is not None else cfg.packer.max_rag_tokens

    result = format_context_for_ai(chunks, budget, scores or cfg.packer.include_scores)

    table = Table(title="Chunks by combined score", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Chunk")
    table.add_column("Document")
    table.add_column("Score", justify="right")
    table.add_column("Tokens", justify="right")
    for i, chunk in enumerate(sorted(chunks, key=combined_score, reverse=True), start=1):
        status = "[green]✓[/]" if i <= result.chunks_included else "[dim]–[/]"
        table.add_row(
            f"{status} {i}",
            chunk.id,
            chunk.document_id,
            f"{combined_score(chunk):.3f}",
            str(estimate_tokens(chunk.content)),
        )
    console.print(table)
    console.print(
        f"Included: [bold]{result.chunks_included}[/]  |  "
        f"Dropped: [bold]{result.chunks_dropped}[/]  |  "
        f"Tokens: [bold]{result.tokens_used}[/]/{budget}"
    )
    if result.chunks_dropped:
        console.print(warn_chunks_dropped(result.chunks_dropped, budget))
    if show_context and result.context:
        console.print(Panel(Text(result.context), title="[bold]Context[/]", expand=False))


def allocate_cmd(
    chunks_file: Annotated[Path, typer.Argument(help="JSON file with retrieved chunks.")],
    total: Annotated[
        int | None, typer.Option("--total", help="Total prompt token budget.")
    ] = None,
    min_conversation: Annotated[
        int | None,
        typer.Option("--min-conversation", help="Tokens reserved for conversation history."),
    ] = None,
    max_rag: Annotated[
        int | None, typer.Option("--max-rag", help="Upper bound for retrieved context.")
    ] = None,
) -> None:
    """Split a token budget between retrieved context and conversation history."""
    cfg = _load_config()
    chunks = _read_chunks(chunks_file)

    allocation = calculate_optimal_token_allocation(
        chunks,
        total_budget=total if total is not None else cfg.packer.total_budget,
        min_conversation_tokens=(
            min_conversation if min_conversation is not None else cfg.packer.min_conversation_tokens
        ),
        max_rag_tokens=max_rag if max_rag is not None else cfg.packer.allocation_max_rag_tokens,
    )
    console.print(f"RAG tokens:          [bold]{allocation.rag_tokens}[/]")
    console.print(f"Conversation tokens: [bold]{allocation.conversation_tokens}[/]")


def validate_cmd(
    rag_file: Annotated[Path, typer.Argument(help="Text file with the packed RAG context.")],
    conversation_file: Annotated[
        Path, typer.Argument(help="Text file with the conversation history.")
    ],
    limit: Annotated[
        int | None, typer.Option("--limit", help="Total token limit.")
    ] = None,
) -> None:
    """Check that context plus conversation fit the token limit. Exits 1 if not."""
    cfg = _load_config()
    rag_text = _read_text(rag_file)
    conversation_text = _read_text(conversation_file)
    total_limit = limit if limit is not None else cfg.packer.total_budget

    check = validate_context_size(rag_text, conversation_text, total_limit)
    console.print(
        f"RAG: [bold]{check.rag_tokens}[/]  |  "
        f"Conversation: [bold]{check.conversation_tokens}[/]  |  "
        f"Limit: {total_limit}"
    )
    if check.is_valid:
        console.print("[green]✓[/] Fits within the limit.")
        return
    for suggestion in check.suggestions or []:
        console.print(f"  [yellow]•[/] {suggestion}")
    raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------


def _load_config() -> ContextkitConfig:
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def _read_text(path: Path) -> str:
    if not path.exists():
        console.print(err_file_not_found(str(path)))
        raise typer.Exit(1)
    return path.read_text(encoding="utf-8")


def _read_chunks(path: Path) -> list[DocumentChunk]:
    raw = _read_text(path)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        console.print(err_invalid_chunks(str(path), f"invalid JSON ({exc.msg})"))
        raise typer.Exit(1)

    if isinstance(data, dict):
        data = data.get("chunks")
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        console.print(err_invalid_chunks(str(path), "expected a list of objects"))
        raise typer.Exit(1)

    try:
        return [DocumentChunk.from_dict(item) for item in data]
    except (TypeError, ValueError) as exc:
        console.print(err_invalid_chunks(str(path), str(exc)))
        raise typer.Exit(1)
