"""Text report of a traced exchange."""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, TextIO

import httpx

from httptrace.exceptions import RenderError
from httptrace.timings import TimingRecord


if TYPE_CHECKING:
    from httptrace.tracer import TracedExchange


TRACE_TEMPLATE = """\
Trace
  Request
    Connection
      DNS Resolution:  {dns_duration}
      Connecting:      {connection_dial_duration}
      TLS handshake:   {tls_duration}
    Connection total:  {total_connection_duration}

    Request write:     {request_write_duration}
    Response delay:    {response_delay_duration}
    Response read:     {response_read_duration}

  Request total:       {total_request_duration}
"""


def duration_millis(duration: timedelta) -> str:
    """Milliseconds to two decimals, right-aligned in a 9-character field."""
    return f"{duration.total_seconds() * 1000:9.2f}ms"


def join_values(values: Sequence[str]) -> str:
    return "".join(values)


@dataclass(frozen=True)
class RenderConfig:
    """Format functions used by the report."""

    format_duration: Callable[[timedelta], str] = duration_millis
    join_values: Callable[[Sequence[str]], str] = join_values


DEFAULT_RENDER_CONFIG = RenderConfig()


@dataclass(frozen=True)
class Presentation:
    """Which parts of the response the report leaves out."""

    suppress_headers: bool = False
    suppress_body: bool = False


def group_headers(
    headers: httpx.Headers, exclude: Sequence[str] = ()
) -> list[tuple[str, list[str]]]:
    """Group header values by case-insensitive name, sorted by name.

    The first spelling seen for a name is kept for display.
    """
    excluded = {name.lower() for name in exclude}
    grouped: dict[str, tuple[str, list[str]]] = {}
    for raw_name, raw_value in headers.raw:
        name = raw_name.decode(headers.encoding)
        key = name.lower()
        if key in excluded:
            continue
        value = raw_value.decode(headers.encoding)
        if key not in grouped:
            grouped[key] = (name, [])
        grouped[key][1].append(value)
    return [grouped[key] for key in sorted(grouped)]


class Report:
    """Renders request, response and timings into a fixed text layout."""

    def __init__(
        self,
        request: httpx.Request,
        response: httpx.Response,
        body: str,
        timings: TimingRecord,
        presentation: Presentation | None = None,
        config: RenderConfig = DEFAULT_RENDER_CONFIG,
    ) -> None:
        self.request = request
        self.response = response
        self.body = body
        self.timings = timings
        self.presentation = presentation or Presentation()
        self.config = config
        self._output: str | None = None

    @classmethod
    def from_exchange(
        cls,
        exchange: "TracedExchange",
        presentation: Presentation | None = None,
    ) -> "Report":
        return cls(
            exchange.request,
            exchange.response,
            exchange.body,
            exchange.timings,
            presentation,
        )

    @property
    def output(self) -> str | None:
        return self._output

    def build(self) -> str:
        """Render the report and keep the result for ``write``.

        Raises:
            RenderError: If any part of the report cannot be formatted.
        """
        try:
            lines = self._request_lines()
            lines.extend(self._response_lines())
            lines.append("")
            trace = TRACE_TEMPLATE.format(
                **{
                    name: self.config.format_duration(duration)
                    for name, duration in self.timings.phases()
                }
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise RenderError(f"Error building report: {e}") from e

        self._output = "\n".join(lines) + "\n" + trace
        return self._output

    def write(self, stream: TextIO) -> None:
        """Write the report to ``stream``, building it first if needed.

        Raises:
            RenderError: If the report cannot be built or written.
        """
        output = self._output if self._output is not None else self.build()
        try:
            stream.write(output)
            stream.flush()
        except OSError as e:
            raise RenderError(f"Error writing output: {e}") from e

    def _request_lines(self) -> list[str]:
        url = self.request.url
        target = url.netloc.decode("ascii") + url.raw_path.decode("ascii")
        lines = [f"> {self.request.method} {target} {self.response.http_version}"]
        for name, values in group_headers(self.request.headers, exclude=("host",)):
            lines.append(f"> {name}: {self.config.join_values(values)}")
        lines.append(">")
        return lines

    def _response_lines(self) -> list[str]:
        status = f"{self.response.status_code} {self.response.reason_phrase}"
        lines = [f"< {status.rstrip()}"]
        if not self.presentation.suppress_headers:
            for name, values in group_headers(self.response.headers):
                lines.append(f"< {name}: {self.config.join_values(values)}")
        if not self.presentation.suppress_body:
            lines.append(self.body)
        return lines
