"""CLI — Render a prompt template against a sample event."""

from __future__ import annotations

import json

import typer
from rich.console import Console

from triggerflow.exceptions import TemplateError
from triggerflow.template import TemplateRenderer
from triggerflow.triggers.event import Event

console = Console(stderr=True)


def render(
    template: str = typer.Argument(help="Template text, e.g. '{{name}}:{{payload.id}}'."),
    name: str = typer.Option("Event", "--name", "-n", help="Event name."),
    payload: str | None = typer.Option(None, "--payload", "-p", help="Event payload as JSON."),
    lenient: bool = typer.Option(False, "--lenient", help="Render missing paths as ''."),
) -> None:
    """Render TEMPLATE for one event and print the prompt."""
    try:
        data = json.loads(payload) if payload is not None else None
        event = Event(name, data)
    except ValueError as exc:
        console.print(f"[red]Invalid event: {exc}[/red]")
        raise typer.Exit(1)

    try:
        prompt = TemplateRenderer(strict=not lenient).render(template, event.to_context())
    except TemplateError as exc:
        console.print(f"[red]{exc.message}[/red]", highlight=False)
        raise typer.Exit(1)

    typer.echo(prompt)
