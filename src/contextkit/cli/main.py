"""contextkit CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from contextkit.cli.config_cmd import config_cmd
from contextkit.cli.pack import allocate_cmd, pack_cmd, validate_cmd
from contextkit.cli.score import score_cmd
from contextkit.logging_config import setup_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("contextkit")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"contextkit {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="contextkit",
    help=(
        "contextkit — inspect document priority and RAG context packing offline.\n\n"
        "  contextkit pack      Pack retrieved chunks into a token budget.\n"
        "  contextkit score     Explain a document's priority score."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="Logging level for contextkit messages."),
    ] = "WARNING",
) -> None:
    """contextkit — document priority and RAG context tools."""
    setup_logging(log_level)


app.command("pack")(pack_cmd)
app.command("allocate")(allocate_cmd)
app.command("validate")(validate_cmd)
app.command("score")(score_cmd)
app.command("config")(config_cmd)


if __name__ == "__main__":
    app()
