"""Timing record for one traced HTTP exchange."""

from dataclasses import dataclass, fields
from datetime import timedelta


ZERO = timedelta(0)


@dataclass(frozen=True)
class TimingRecord:
    """Phase durations measured for one request/response exchange.

    A zero duration means the phase did not occur (for instance DNS, dial and
    TLS on a reused connection) or was not observed by the transport.

    The connection phases are components of ``total_connection_duration``;
    ``total_connection_duration``, ``request_write_duration``,
    ``response_delay_duration`` and ``response_read_duration`` add up to
    ``total_request_duration`` within timer resolution.
    """

    dns_duration: timedelta = ZERO
    connection_dial_duration: timedelta = ZERO
    tls_duration: timedelta = ZERO
    total_connection_duration: timedelta = ZERO
    request_write_duration: timedelta = ZERO
    response_delay_duration: timedelta = ZERO
    response_read_duration: timedelta = ZERO
    total_request_duration: timedelta = ZERO

    def __post_init__(self) -> None:
        for field in fields(self):
            if getattr(self, field.name) < ZERO:
                raise ValueError(f"{field.name} must not be negative")

    def phases(self) -> list[tuple[str, timedelta]]:
        """Return ``(field name, duration)`` pairs in lifecycle order."""
        return [(field.name, getattr(self, field.name)) for field in fields(self)]

    def as_milliseconds(self) -> dict[str, float]:
        """Return every duration in milliseconds, keyed by field name."""
        return {
            name: duration.total_seconds() * 1000 for name, duration in self.phases()
        }

    @property
    def connection_reused(self) -> bool:
        """Whether no connection setup was measured."""
        return self.total_connection_duration == ZERO
