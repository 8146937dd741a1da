"""Shared test fixtures for http-trace tests.

The ``http_server`` fixture runs a real keep-alive HTTP/1.1 server on the
loopback interface so that connection, write, delay and read phases are
actually exercised. Everything else is tested against in-process fakes.
"""

import os
import threading
import time
from collections.abc import Generator, Iterator
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest


@dataclass
class RecordedRequest:
    method: str
    path: str
    headers: dict[str, str]
    body: bytes


@dataclass
class ServerBehaviour:
    status: int = 200
    body: bytes = b""
    delay: float = 0.0
    headers: dict[str, str] = field(default_factory=dict)
    # Pause between each header line, and between each body byte
    header_drip: float = 0.0
    body_drip: float = 0.0


class _TraceTestServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self) -> None:
        super().__init__(("127.0.0.1", 0), _Handler)
        self.behaviour = ServerBehaviour()
        self.requests: list[RecordedRequest] = []


class _Handler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"
    server: _TraceTestServer

    def _respond(self) -> None:
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length else b""
        self.server.requests.append(
            RecordedRequest(
                method=self.command,
                path=self.path,
                headers={name.lower(): value for name, value in self.headers.items()},
                body=body,
            )
        )

        behaviour = self.server.behaviour
        if behaviour.delay:
            time.sleep(behaviour.delay)

        if behaviour.header_drip or behaviour.body_drip:
            self._drip(behaviour)
            return

        self.send_response(behaviour.status)
        for name, value in behaviour.headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(behaviour.body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(behaviour.body)

    def _drip(self, behaviour: ServerBehaviour) -> None:
        """Send the response piece by piece, pausing between pieces."""
        self.close_connection = True
        head = [f"HTTP/1.1 {behaviour.status} Slow\r\n".encode()]
        head += [f"X-Padding-{i}: {i}\r\n".encode() for i in range(8)]
        head.append(f"Content-Length: {len(behaviour.body)}\r\n\r\n".encode())
        try:
            for piece in head:
                self.wfile.write(piece)
                time.sleep(behaviour.header_drip)
            for i in range(len(behaviour.body)):
                self.wfile.write(behaviour.body[i : i + 1])
                time.sleep(behaviour.body_drip)
        except (BrokenPipeError, ConnectionResetError):
            pass

    do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = do_HEAD = _respond

    def log_message(self, format: str, *args: object) -> None:
        pass


@dataclass
class LocalHTTPServer:
    host: str
    port: int
    _server: _TraceTestServer

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def requests(self) -> list[RecordedRequest]:
        return self._server.requests

    def configure(self, **behaviour: object) -> None:
        self._server.behaviour = ServerBehaviour(**behaviour)  # type: ignore[arg-type]


@pytest.fixture
def http_server() -> Iterator[LocalHTTPServer]:
    """Run a local HTTP/1.1 server for the duration of one test."""
    server = _TraceTestServer()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    try:
        yield LocalHTTPServer(host=str(host), port=int(port), _server=server)
    finally:
        server.shutdown()
        server.server_close()


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, milliseconds: float) -> None:
        self.now += milliseconds / 1000


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def isolated_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Path, None, None]:
    """Isolate configuration discovery from the developer's machine.

    Points XDG_CONFIG_HOME into the temporary directory, clears HTTPTRACE_*
    variables and makes the temporary directory the working directory.
    """
    for key in list(os.environ):
        if key.upper().startswith("HTTPTRACE_") or key in (
            "SSL_VERIFY",
            "SSL_CERT_FILE",
            "REQUESTS_CA_BUNDLE",
        ):
            monkeypatch.delenv(key, raising=False)

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_dir))
    monkeypatch.chdir(tmp_path)
    yield tmp_path
