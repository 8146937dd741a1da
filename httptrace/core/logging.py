"""Structured logging configuration for http-trace.

Diagnostics always go to stderr so that stdout carries nothing but the
report. structlog events are routed through the standard library and rendered
by a rich ``RichHandler``, as JSON lines, or as plain console text.
"""

import logging
import sys
from typing import Any

import structlog
from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme


CUSTOM_THEME = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "critical": "bold white on red",
        "debug": "dim white",
        "timestamp": "dim cyan",
        "path": "dim blue",
    }
)

# Third-party loggers that are chatty at DEBUG
NOISY_LOGGERS = ("httpx", "httpcore", "hpack", "h2")


def _shared_processors(fmt: str) -> list[Any]:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
    ]
    # RichHandler renders its own time and level columns
    if fmt != "rich":
        processors += [
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
        ]
    processors += [
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]
    return processors


def _renderer(fmt: str) -> Any:
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    if fmt == "plain":
        return structlog.dev.ConsoleRenderer(colors=False)
    return structlog.processors.KeyValueRenderer(
        key_order=["event"], drop_missing=True
    )


def setup_logging(
    level: str = "WARNING",
    fmt: str = "rich",
    show_time: bool = True,
    console_width: int | None = None,
) -> None:
    """Configure structlog and the standard library logging to stderr.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: Output format: 'rich', 'json' or 'plain'
        show_time: Whether rich output shows a time column
        console_width: Optional console width override for rich output
    """
    shared = _shared_processors(fmt)

    structlog.configure(
        processors=[
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    final_processors: list[Any] = [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta
    ]
    # ConsoleRenderer formats exceptions itself
    if fmt != "plain":
        final_processors.append(structlog.processors.format_exc_info)
    final_processors.append(_renderer(fmt))

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=final_processors,
    )

    handler: logging.Handler
    if fmt == "rich":
        handler = RichHandler(
            console=Console(theme=CUSTOM_THEME, stderr=True, width=console_width),
            show_time=show_time,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=[handler],
        force=True,
    )

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(
            max(logging.WARNING, logging.getLogger().level)
        )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger bound to ``name`` (typically ``__name__``)."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
