"""CLI — Inspect the effective configuration."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.syntax import Syntax

from triggerflow.config import Settings

app = typer.Typer(help="Inspect triggerflow configuration.")
console = Console()

_SECRET = "********"


@app.command("show")
def show(
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
) -> None:
    """Print the merged settings (files + environment) as JSON."""
    settings = Settings.load(config_file=config)
    data = settings.model_dump(mode="json")
    if data["llm"].get("api_key"):
        data["llm"]["api_key"] = _SECRET
    console.print(Syntax(json.dumps(data, indent=2), "json"))
