"""Main entry point for the http-trace command."""

import sys
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console

from httptrace._version import __version__
from httptrace.config.settings import get_settings
from httptrace.core.logging import get_logger, setup_logging
from httptrace.exceptions import HTTPTraceError
from httptrace.report import Presentation, Report
from httptrace.tracer import RequestTracer, build_request
from httptrace.transport import HTTPClientFactory


logger = get_logger(__name__)

err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"http-trace {__version__}")
        raise typer.Exit()


def exit_with_error(error: BaseException) -> NoReturn:
    err_console.print(
        f"Error: {error}", style="bold red", markup=False, highlight=False, soft_wrap=True
    )
    raise typer.Exit(1)


app = typer.Typer(
    rich_markup_mode="rich",
    add_completion=False,
    pretty_exceptions_enable=False,
)


@app.command()
def trace(
    url: str = typer.Argument(..., help="The URL to request"),
    method: str = typer.Option("GET", "--method", "-m", help="The HTTP method to use"),
    header: list[str] | None = typer.Option(
        None,
        "--header",
        "-H",
        help="HTTP header to send with the request, as 'Name: Value' (repeatable)",
    ),
    data: str = typer.Option("", "--data", "-d", help="The HTTP request body data"),
    timeout: float | None = typer.Option(
        None, "--timeout", "-t", help="Timeout for the HTTP request in seconds"
    ),
    suppress_headers: bool = typer.Option(
        False, "--suppress-headers", help="Suppress the response headers in the output"
    ),
    suppress_body: bool = typer.Option(
        False, "--suppress-body", help="Suppress the response body in the output"
    ),
    http2: bool | None = typer.Option(
        None, "--http2/--no-http2", help="Offer HTTP/2 during TLS negotiation"
    ),
    insecure: bool = typer.Option(
        False, "--insecure", "-k", help="Skip TLS certificate verification"
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="Diagnostic log level written to stderr"
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a TOML configuration file",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Trace a single HTTP request and print a timing breakdown of its phases."""
    http_overrides: dict[str, Any] = {}
    if timeout is not None:
        http_overrides["timeout"] = timeout
    if http2 is not None:
        http_overrides["http2"] = http2
    if insecure:
        http_overrides["verify"] = False

    overrides: dict[str, Any] = {}
    if http_overrides:
        overrides["http"] = http_overrides
    if log_level is not None:
        overrides["logging"] = {"level": log_level}

    try:
        settings = get_settings(config, **overrides)
    except HTTPTraceError as e:
        exit_with_error(e)

    setup_logging(
        level=settings.logging.level,
        fmt=settings.logging.format,
        show_time=settings.logging.show_time,
    )

    try:
        with HTTPClientFactory.managed_client(settings.http) as client:
            request = build_request(client, method, url, data)
            tracer = RequestTracer(client, request)
            tracer.set_headers(header or [])
            exchange = tracer.execute()

            logger.debug(
                "trace_completed",
                url=str(request.url),
                status_code=exchange.response.status_code,
                body_complete=exchange.body_complete,
                **exchange.timings.as_milliseconds(),
            )

            presentation = Presentation(
                suppress_headers=suppress_headers,
                suppress_body=suppress_body,
            )
            Report.from_exchange(exchange, presentation).write(sys.stdout)
    except HTTPTraceError as e:
        exit_with_error(e)


def main() -> None:
    """Entry point for the CLI application."""
    app()


if __name__ == "__main__":
    main()
