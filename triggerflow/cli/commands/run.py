"""CLI — Run a poll-driven agent until a signal or a deadline."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from pydantic import ValidationError
from rich.table import Table

from triggerflow.agent import AgentBuilder, ShutdownReport
from triggerflow.config import LoggingConfig, Settings
from triggerflow.events.bus import EventBus, LogEventBus, NullEventBus
from triggerflow.exceptions import TriggerFlowError
from triggerflow.llm import LLMAction, create_llm_client
from triggerflow.logging import configure_from_settings
from triggerflow.shutdown import ShutdownHandler, SignalShutdown, TimeBasedShutdown
from triggerflow.triggers import PollTrigger

console = Console()


def _event_bus(settings: Settings) -> EventBus:
    if settings.events.log_file is None:
        return NullEventBus()
    return LogEventBus(settings.events.log_file)


async def _run_agent(
    settings: Settings,
    trigger: PollTrigger,
    template: str,
    handler: ShutdownHandler,
    drain_timeout: float | None,
) -> ShutdownReport:
    action = LLMAction(create_llm_client(settings.llm))
    builder = (
        AgentBuilder(settings.agent)
        .with_action(action)
        .with_prompt_template(template)
        .add_trigger(trigger)
        .with_shutdown_handler(handler)
        .with_event_bus(_event_bus(settings))
    )
    if drain_timeout is not None:
        builder.with_drain_timeout(drain_timeout)
    try:
        return await builder.build().run()
    finally:
        await action.close()


def _print_report(report: ShutdownReport) -> None:
    table = Table(title="Shutdown report")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for key, value in report.to_dict().items():
        if isinstance(value, list):
            value = ", ".join(value) or "-"
        table.add_row(key, str(value))
    console.print(table)


def run(
    event_name: str = typer.Option(..., "--event-name", "-e", help="Name of the emitted event."),
    interval: float = typer.Option(..., "--interval", "-i", help="Seconds between events."),
    hot_start: bool = typer.Option(False, "--hot-start", help="Emit the first event immediately."),
    template: str = typer.Option(
        "{{name}}", "--template", "-t", help="Prompt template rendered for every event."
    ),
    duration: float | None = typer.Option(
        None, "--duration", "-d", help="Stop after this many seconds instead of waiting for a signal."
    ),
    drain_timeout: float | None = typer.Option(
        None, "--drain-timeout", help="Override agent.drain_timeout_seconds."
    ),
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
    log_level: str | None = typer.Option(None, "--log-level", help="Override logging.level."),
) -> None:
    """Run an agent fed by a single poll trigger."""
    settings = Settings.load(config_file=config)
    if log_level:
        try:
            settings.logging = LoggingConfig.model_validate(
                {**settings.logging.model_dump(), "level": log_level.lower()}
            )
        except ValidationError:
            console.print(f"[red]Invalid log level: {log_level}[/red]")
            raise typer.Exit(1)
    configure_from_settings(settings.logging)

    try:
        trigger = PollTrigger(event_name, interval_seconds=interval, hot_start=hot_start)
        handler: ShutdownHandler = (
            TimeBasedShutdown(duration) if duration is not None else SignalShutdown()
        )
    except ValueError as exc:
        console.print(f"[red]Invalid option: {exc}[/red]")
        raise typer.Exit(1)

    console.print(
        f"[bold green]Running agent[/bold green] event={event_name} interval={interval}s"
        + (f" duration={duration}s" if duration is not None else " (Ctrl+C to stop)")
    )

    try:
        report = asyncio.run(_run_agent(settings, trigger, template, handler, drain_timeout))
    except TriggerFlowError as exc:
        console.print(f"[red]Error: {exc.message}[/red]")
        raise typer.Exit(1)

    _print_report(report)
    if not report.drained:
        console.print(
            f"[yellow]{report.residual_inflight} invocation(s) still running at shutdown[/yellow]"
        )
