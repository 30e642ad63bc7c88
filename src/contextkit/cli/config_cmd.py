"""contextkit config — show the effective merged configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich.console import Console
from rich.syntax import Syntax

from contextkit.cli.errors import err_config
from contextkit.config import ConfigError, load_config

console = Console()


def config_cmd(
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", help="Directory containing contextkit.yaml (default: CWD)."),
    ] = None,
) -> None:
    """Print the configuration after merging global, project and env layers."""
    try:
        cfg = load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    text = yaml.safe_dump(cfg.to_dict(), sort_keys=False)
    console.print(Syntax(text, "yaml", theme="ansi_dark", background_color="default"))
