"""triggerflow — Structured logging.

structlog renders every record, including records from the stdlib loggers of
third-party libraries, through one ProcessorFormatter.  Records are written to
stderr so that command output on stdout (``triggerflow render``) stays clean.

Every record carries an ISO timestamp, the level and the logger name.  Inside
an action invocation it also carries ``trigger_name`` and ``invocation_id``.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

if TYPE_CHECKING:
    from triggerflow.config import LoggingConfig

_trigger_name: ContextVar[str | None] = ContextVar("trigger_name", default=None)
_invocation_id: ContextVar[str | None] = ContextVar("invocation_id", default=None)

_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


@contextmanager
def invocation_context(trigger_name: str, invocation_id: str) -> Iterator[None]:
    """Tag every record logged inside the block with the invocation it serves."""
    name_token = _trigger_name.set(trigger_name)
    id_token = _invocation_id.set(invocation_id)
    try:
        yield
    finally:
        _invocation_id.reset(id_token)
        _trigger_name.reset(name_token)


def add_invocation_fields(
    _logger: WrappedLogger, _method: str, event_dict: EventDict
) -> EventDict:
    """structlog processor: copy the invocation context into the record."""
    for key, var in (("trigger_name", _trigger_name), ("invocation_id", _invocation_id)):
        value = var.get()
        if value is not None:
            event_dict.setdefault(key, value)
    return event_dict


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        add_invocation_fields,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]


def _renderer(fmt: str) -> Processor:
    if fmt == "json":
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(
    level: str = "info",
    format: str = "console",
    log_file: str | None = None,
) -> None:
    """Route structlog and stdlib logging through one formatter.

    Call once at process startup.

    Args:
        level:    debug, info, warning, error or critical.
        format:   ``"console"`` (coloured when attached to a terminal) or
                  ``"json"`` (one object per line).
        log_file: Also append records to this file.
    """
    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer(format)],
    )

    outputs: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        outputs.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in outputs:
        handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = outputs
    root.setLevel(level.upper())
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_from_settings(config: LoggingConfig) -> None:
    configure_logging(
        level=config.level,
        format=config.format,
        log_file=str(config.file) if config.file else None,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return the structlog logger for module *name*.

    Usage::

        log = get_logger(__name__)
        log.warning("drain_incomplete", residual_inflight=1)
    """
    return structlog.get_logger(name)
