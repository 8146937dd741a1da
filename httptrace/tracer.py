"""Request tracer: one HTTP exchange, measured phase by phase."""

import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

import httpx

from httptrace.core.logging import get_logger
from httptrace.exceptions import (
    HeaderParseError,
    RequestConstructionError,
    TracerStateError,
    TransportError,
)
from httptrace.observer import PhaseObserver
from httptrace.timings import TimingRecord


logger = get_logger(__name__)


# RFC 9110 token characters
_METHOD_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

BODY_READ_ERROR_PREFIX = "Error reading response body"


class TracerState(str, Enum):
    """Lifecycle of a RequestTracer."""

    CREATED = "created"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class TracedExchange:
    """Result of a completed exchange.

    ``body_error`` is set when the response body could not be read; ``body``
    then holds a diagnostic placeholder while the response and timings stay
    valid.
    """

    request: httpx.Request
    response: httpx.Response
    body: str
    timings: TimingRecord
    body_error: str | None = None

    @property
    def body_complete(self) -> bool:
        return self.body_error is None


def build_request(
    client: httpx.Client,
    method: str,
    url: str,
    body: str | bytes | None = None,
) -> httpx.Request:
    """Build the request to trace, validating method and URL.

    Raises:
        RequestConstructionError: If the method is not an HTTP token or the
            URL is not an absolute http(s) URL with a host.
    """
    if not _METHOD_RE.match(method):
        raise RequestConstructionError(f"invalid method {method!r}")

    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise RequestConstructionError(f"invalid URL {url!r}: {e}") from e
    if parsed.scheme not in ("http", "https"):
        raise RequestConstructionError(
            f"invalid URL {url!r}: scheme must be http or https"
        )
    if not parsed.host:
        raise RequestConstructionError(f"invalid URL {url!r}: missing host")

    return client.build_request(method, parsed, content=body or None)


def exchange_timeout(client: httpx.Client) -> float | None:
    """Longest of the client's connect, read, write and pool timeouts."""
    timeout = client.timeout
    values = [
        value
        for value in (timeout.connect, timeout.read, timeout.write, timeout.pool)
        if value is not None
    ]
    return max(values) if values else None


def parse_header(raw: str) -> tuple[str, str]:
    """Split a ``Name: Value`` header line on its first colon."""
    name, sep, value = raw.partition(":")
    if not sep:
        raise HeaderParseError(raw, "expected 'Name: Value'")
    name = name.strip()
    if not name:
        raise HeaderParseError(raw, "header name is empty")
    return name, value.strip()


class RequestTracer:
    """Performs exactly one HTTP exchange while measuring its phases.

    Usage:
        tracer = RequestTracer(client, request)
        tracer.set_headers(["X-Hello: hi"])
        exchange = tracer.execute()

    The tracer is single-use: ``created -> executing -> completed | failed``.
    It is not safe to call ``execute`` concurrently on one instance.

    ``timeout`` bounds the whole exchange, body read included; it defaults to
    the longest timeout configured on the client.
    """

    def __init__(
        self,
        client: httpx.Client,
        request: httpx.Request,
        *,
        clock: Callable[[], float] = time.perf_counter,
        timeout: float | None = None,
    ) -> None:
        self._client = client
        self._request = request
        self._clock = clock
        self._timeout = timeout if timeout is not None else exchange_timeout(client)
        self._state = TracerState.CREATED
        self._exchange: TracedExchange | None = None

    @property
    def state(self) -> TracerState:
        return self._state

    @property
    def request(self) -> httpx.Request:
        return self._request

    def set_headers(self, raw: Sequence[str]) -> None:
        """Set ``Name: Value`` headers on the request, replacing existing values.

        Every entry is validated before any header is applied.

        Raises:
            HeaderParseError: If an entry has no colon or an empty name.
            TracerStateError: If the request has already been executed.
        """
        self._require_state(TracerState.CREATED, "set headers")
        parsed = [parse_header(entry) for entry in raw]
        for name, value in parsed:
            self._request.headers[name] = value

    def execute(self) -> TracedExchange:
        """Send the request, read the response body and measure every phase.

        Raises:
            TransportError: If no response was received (DNS, connect, TLS or
                timeout failure). No timings are kept in that case. A timeout
                during the body read yields the error placeholder instead.
            TracerStateError: If the tracer has already executed.
        """
        self._require_state(TracerState.CREATED, "execute")
        self._state = TracerState.EXECUTING

        observer = PhaseObserver(clock=self._clock)
        observer.start(timeout=self._timeout)
        self._request.extensions = {
            **self._request.extensions,
            "trace": observer.trace,
        }

        try:
            with observer.activated():
                response = self._client.send(self._request, stream=True)
                observer.response_headers_received()
                body, body_error = self._read_body(response)
                timings = observer.finish()
        except httpx.RequestError as e:
            self._state = TracerState.FAILED
            raise TransportError(
                f"error sending request: {e}",
                details={"url": str(self._request.url), "error_type": type(e).__name__},
            ) from e
        except BaseException:
            self._state = TracerState.FAILED
            raise

        self._exchange = TracedExchange(
            request=self._request,
            response=response,
            body=body,
            timings=timings,
            body_error=body_error,
        )
        self._state = TracerState.COMPLETED
        return self._exchange

    def _read_body(self, response: httpx.Response) -> tuple[str, str | None]:
        """Read the whole body; a failed read yields a placeholder body."""
        try:
            response.read()
            return response.text, None
        except (httpx.HTTPError, httpx.StreamError) as e:
            body_error = f"{BODY_READ_ERROR_PREFIX}: {e}"
            logger.warning(
                "response_body_read_failed",
                url=str(self._request.url),
                status_code=response.status_code,
                error=str(e),
                error_type=type(e).__name__,
            )
            return body_error, body_error
        finally:
            response.close()

    # Accessors: empty until the exchange has completed

    @property
    def exchange(self) -> TracedExchange | None:
        return self._exchange

    @property
    def response(self) -> httpx.Response | None:
        return self._exchange.response if self._exchange else None

    @property
    def response_body(self) -> str:
        return self._exchange.body if self._exchange else ""

    @property
    def timings(self) -> TimingRecord | None:
        return self._exchange.timings if self._exchange else None

    def _require_state(self, expected: TracerState, action: str) -> None:
        if self._state is not expected:
            raise TracerStateError(
                f"cannot {action}: tracer is {self._state.value}",
                details={"state": self._state.value},
            )
