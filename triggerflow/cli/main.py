"""triggerflow CLI — Entry point.

Usage:
    triggerflow run --event-name Tick --interval 12 --hot-start --template "Write a haiku about {{name}}"
    triggerflow render "{{name}}:{{payload.id}}" --name NewEmail --payload '{"id": "abc123"}'
    triggerflow config show
"""

from __future__ import annotations

import typer
from rich.console import Console

from triggerflow.cli.commands import config, render, run

app = typer.Typer(
    name="triggerflow",
    help="triggerflow — Event-driven agent coordinator.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

console = Console()

app.command("run")(run.run)
app.command("render")(render.render)
app.add_typer(config.app, name="config")


@app.callback()
def main_callback() -> None:
    pass


if __name__ == "__main__":
    app()
