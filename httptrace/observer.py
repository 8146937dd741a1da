"""Phase-boundary observer for a single HTTP exchange.

The observer turns boundary callbacks (connection requested, DNS, dial, TLS,
request written, first response byte) into the durations of a
:class:`~httptrace.timings.TimingRecord`. Boundaries arrive from two places:

- the ``trace`` request extension understood by httpx/httpcore, which reports
  TCP connect, TLS and HTTP/1.1 or HTTP/2 send/receive events;
- :mod:`httptrace.transport`, which reports connection acquisition, DNS
  resolution and the first response byte through :func:`current_observer`.
"""

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from .timings import ZERO, TimingRecord


_active_observer: ContextVar["PhaseObserver | None"] = ContextVar(
    "httptrace_active_observer", default=None
)


def current_observer() -> "PhaseObserver | None":
    """Return the observer of the exchange running in this context, if any."""
    return _active_observer.get()


@dataclass
class _Markers:
    """Elapsed-time markers, relative to the start of the exchange."""

    get_conn_start: timedelta = ZERO
    dns_start: timedelta | None = None
    connect_start: timedelta | None = None
    tls_start: timedelta | None = None
    request_start: timedelta | None = None
    delay_start: timedelta | None = None
    response_start: timedelta | None = None


class PhaseObserver:
    """Collects phase boundaries for one exchange.

    Single-writer invariant: an observer belongs to exactly one exchange and
    is the only writer of its markers and durations. Boundaries are delivered
    synchronously, one at a time, on the thread executing the request, so no
    locking is involved. Sharing an observer between exchanges, or calling it
    from another thread while a request runs, is not supported.
    """

    # httpcore trace event name -> boundary method name
    TRACE_EVENTS: dict[str, str] = {
        "connection.connect_tcp.started": "connect_started",
        "connection.connect_tcp.complete": "connect_done",
        "connection.connect_unix_socket.started": "connect_started",
        "connection.connect_unix_socket.complete": "connect_done",
        "connection.start_tls.started": "tls_started",
        "connection.start_tls.complete": "tls_done",
        "http11.send_request_headers.started": "connection_acquired",
        "http2.send_request_headers.started": "connection_acquired",
        "http11.send_request_body.complete": "request_written",
        "http2.send_request_body.complete": "request_written",
        "http11.receive_response_headers.complete": "response_headers_received",
        "http2.receive_response_headers.complete": "response_headers_received",
    }

    def __init__(self, clock: Callable[[], float] = time.perf_counter) -> None:
        self._clock = clock
        self._origin: float | None = None
        self._timeout: float | None = None
        self._markers = _Markers()
        self._fresh_connection = False

        self._dns = ZERO
        self._dial = ZERO
        self._tls = ZERO
        self._connection_total = ZERO
        self._request_write = ZERO
        self._response_delay = ZERO

    def start(self, timeout: float | None = None) -> None:
        """Record the start instant; every marker is measured from here.

        ``timeout`` bounds the whole exchange, in seconds from this instant.
        """
        self._origin = self._clock()
        self._timeout = timeout
        self._markers = _Markers()
        self._fresh_connection = False

    def elapsed(self) -> timedelta:
        if self._origin is None:
            raise RuntimeError("observer has not been started")
        return timedelta(seconds=self._clock() - self._origin)

    def remaining(self) -> float | None:
        """Seconds left before the exchange deadline, or None without one."""
        if self._timeout is None:
            return None
        return self._timeout - self.elapsed().total_seconds()

    @contextmanager
    def activated(self) -> Iterator["PhaseObserver"]:
        """Publish this observer to the transport layer for one exchange."""
        token = _active_observer.set(self)
        try:
            yield self
        finally:
            _active_observer.reset(token)

    # Phase boundaries

    def connection_requested(self) -> None:
        self._markers.get_conn_start = self.elapsed()

    def dns_started(self, host: str | None = None) -> None:
        self._fresh_connection = True
        self._markers.dns_start = self.elapsed()

    def dns_done(self) -> None:
        now = self.elapsed()
        if self._markers.dns_start is not None:
            self._dns = _span(self._markers.dns_start, now)
        # Dialing starts once the address is known.
        if self._markers.connect_start is not None:
            self._markers.connect_start = now

    def connect_started(self) -> None:
        self._fresh_connection = True
        self._markers.connect_start = self.elapsed()

    def connect_done(self) -> None:
        if self._markers.connect_start is not None:
            self._dial = _span(self._markers.connect_start, self.elapsed())

    def tls_started(self) -> None:
        self._markers.tls_start = self.elapsed()

    def tls_done(self) -> None:
        if self._markers.tls_start is not None:
            self._tls = _span(self._markers.tls_start, self.elapsed())

    def connection_acquired(self) -> None:
        now = self.elapsed()
        if self._fresh_connection:
            self._connection_total = _span(self._markers.get_conn_start, now)
        self._markers.request_start = now

    def request_written(self) -> None:
        now = self.elapsed()
        if self._markers.request_start is not None:
            self._request_write = _span(self._markers.request_start, now)
        self._markers.delay_start = now

    def response_byte_received(self) -> None:
        """Mark the first response byte; later calls are ignored."""
        if self._markers.delay_start is None or self._markers.response_start is not None:
            return
        now = self.elapsed()
        self._response_delay = _span(self._markers.delay_start, now)
        self._markers.response_start = now

    def response_headers_received(self) -> None:
        """Fallback first-byte boundary for streams that report no reads."""
        if self._markers.response_start is not None:
            return
        if self._markers.delay_start is not None:
            self.response_byte_received()
        else:
            self._markers.response_start = self.elapsed()

    def finish(self) -> TimingRecord:
        """Close the exchange and materialize its timing record."""
        finish = self.elapsed()
        response_read = ZERO
        if self._markers.response_start is not None:
            response_read = _span(self._markers.response_start, finish)

        return TimingRecord(
            dns_duration=self._dns,
            connection_dial_duration=self._dial,
            tls_duration=self._tls,
            total_connection_duration=self._connection_total,
            request_write_duration=self._request_write,
            response_delay_duration=self._response_delay,
            response_read_duration=response_read,
            total_request_duration=_span(ZERO, finish),
        )

    # httpx "trace" extension

    def trace(self, event_name: str, info: dict[str, Any]) -> None:
        """Dispatch an httpcore trace event to the matching boundary."""
        boundary = self.TRACE_EVENTS.get(event_name)
        if boundary is not None:
            getattr(self, boundary)()


def _span(start: timedelta, end: timedelta) -> timedelta:
    return max(end - start, ZERO)
