"""HTTPX transport and client factory for traced requests.

httpcore reports TCP connect, TLS and HTTP send/receive events through the
``trace`` request extension, but it resolves host names inside the TCP
connect and never reports when the first response byte arrives. The network
backend below fills those gaps by resolving names itself and watching stream
reads, reporting to the observer of the exchange running in the current
context. The same streams clamp every connect, TLS, read and write timeout to
what is left of the exchange deadline, so a slow server cannot stretch one
exchange past its timeout.
"""

import ipaddress
import os
import socket
import ssl
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import httpcore
import httpx

from httptrace.config.http import HTTPSettings
from httptrace.core.logging import get_logger
from httptrace.observer import current_observer


logger = get_logger(__name__)


DEFAULT_LIMITS = httpx.Limits(max_connections=10, max_keepalive_connections=10)


class TracingNetworkStream(httpcore.NetworkStream):
    """Wraps a network stream to report the first bytes of a response."""

    def __init__(self, stream: httpcore.NetworkStream) -> None:
        self._stream = stream

    def read(self, max_bytes: int, timeout: float | None = None) -> bytes:
        timeout = _bounded_timeout(timeout, httpcore.ReadTimeout)
        data = self._stream.read(max_bytes, timeout)
        if data:
            observer = current_observer()
            if observer is not None:
                observer.response_byte_received()
        return data

    def write(self, buffer: bytes, timeout: float | None = None) -> None:
        timeout = _bounded_timeout(timeout, httpcore.WriteTimeout)
        self._stream.write(buffer, timeout)

    def close(self) -> None:
        self._stream.close()

    def start_tls(
        self,
        ssl_context: ssl.SSLContext,
        server_hostname: str | None = None,
        timeout: float | None = None,
    ) -> "TracingNetworkStream":
        timeout = _bounded_timeout(timeout, httpcore.ConnectTimeout)
        return TracingNetworkStream(
            self._stream.start_tls(ssl_context, server_hostname, timeout)
        )

    def get_extra_info(self, info: str) -> Any:
        return self._stream.get_extra_info(info)


class TracingNetworkBackend(httpcore.NetworkBackend):
    """Network backend that times DNS resolution separately from dialing."""

    def __init__(self, backend: httpcore.NetworkBackend | None = None) -> None:
        self._backend = backend or httpcore.SyncBackend()

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: Iterable[Any] | None = None,
    ) -> httpcore.NetworkStream:
        observer = current_observer()
        if observer is None or _is_ip_address(host):
            addresses = [host]
        else:
            observer.dns_started(host)
            addresses = _resolve(host, port)
            observer.dns_done()

        socket_options = list(socket_options) if socket_options is not None else None
        last_error: httpcore.ConnectError | None = None
        for address in addresses:
            try:
                stream = self._backend.connect_tcp(
                    address,
                    port,
                    timeout=_bounded_timeout(timeout, httpcore.ConnectTimeout),
                    local_address=local_address,
                    socket_options=socket_options,
                )
            except httpcore.ConnectError as e:
                last_error = e
                continue
            return TracingNetworkStream(stream)

        if last_error is None:
            raise httpcore.ConnectError(f"no address to connect to for {host}")
        raise last_error

    def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: Iterable[Any] | None = None,
    ) -> httpcore.NetworkStream:
        return TracingNetworkStream(
            self._backend.connect_unix_socket(
                path, timeout=timeout, socket_options=socket_options
            )
        )

    def sleep(self, seconds: float) -> None:
        self._backend.sleep(seconds)


def _bounded_timeout(
    timeout: float | None, timeout_error: type[httpcore.TimeoutException]
) -> float | None:
    """Clamp an operation timeout to what is left of the exchange deadline.

    Raises ``timeout_error`` once the deadline has passed.
    """
    observer = current_observer()
    remaining = observer.remaining() if observer is not None else None
    if remaining is None:
        return timeout
    if remaining <= 0:
        raise timeout_error("request timeout exceeded")
    return remaining if timeout is None else min(timeout, remaining)


def _is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def _resolve(host: str, port: int) -> list[str]:
    """Resolve ``host`` to its stream addresses, in resolver order."""
    try:
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise httpcore.ConnectError(f"DNS lookup for {host} failed: {e}") from e

    addresses: list[str] = []
    for _family, _type, _proto, _canonname, sockaddr in infos:
        address = str(sockaddr[0])
        if address not in addresses:
            addresses.append(address)
    if not addresses:
        raise httpcore.ConnectError(f"DNS lookup for {host} returned no addresses")
    return addresses


class TracingHTTPTransport(httpx.HTTPTransport):
    """HTTP transport whose connections report phase boundaries."""

    def __init__(
        self,
        verify: ssl.SSLContext | bool = True,
        http1: bool = True,
        http2: bool = False,
        limits: httpx.Limits = DEFAULT_LIMITS,
        retries: int = 0,
        network_backend: httpcore.NetworkBackend | None = None,
    ) -> None:
        ssl_context = (
            verify
            if isinstance(verify, ssl.SSLContext)
            else httpx.create_ssl_context(verify=verify)
        )
        super().__init__(
            verify=ssl_context,
            http1=http1,
            http2=http2,
            limits=limits,
            retries=retries,
        )
        # The pool httpx built has opened no connections yet; replace it with
        # the same pool on the tracing backend.
        self._pool.close()
        self._pool = httpcore.ConnectionPool(
            ssl_context=ssl_context,
            max_connections=limits.max_connections,
            max_keepalive_connections=limits.max_keepalive_connections,
            keepalive_expiry=limits.keepalive_expiry,
            http1=http1,
            http2=http2,
            retries=retries,
            network_backend=network_backend or TracingNetworkBackend(),
        )

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        observer = current_observer()
        if observer is not None:
            observer.connection_requested()
        return super().handle_request(request)


class HTTPClientFactory:
    """Factory for HTTP clients suited to tracing one request.

    Clients created here:
    - use the tracing transport, so DNS and first-byte boundaries are reported
    - carry an explicit timeout
    - never follow redirects, so one send is one exchange
    """

    @staticmethod
    def create_client(
        settings: HTTPSettings | None = None,
        *,
        timeout: float | None = None,
        verify: bool | None = None,
        http2: bool | None = None,
        **kwargs: Any,
    ) -> httpx.Client:
        """Create a client for traced requests.

        Args:
            settings: HTTP settings supplying defaults for the other arguments
            timeout: Timeout in seconds for connect, write, read and pool waits
            verify: Verify TLS certificates
            http2: Offer HTTP/2 during TLS negotiation
            **kwargs: Additional httpx.Client arguments

        Returns:
            Configured httpx.Client instance
        """
        settings = settings or HTTPSettings()
        if timeout is None:
            timeout = settings.timeout
        if verify is None:
            verify = settings.verify
        if http2 is None:
            http2 = settings.http2

        ssl_verify: ssl.SSLContext | bool = _get_ssl_context() if verify else False
        transport = TracingHTTPTransport(verify=ssl_verify, http2=http2)

        headers: dict[str, str] = {}
        if settings.user_agent:
            headers["user-agent"] = settings.user_agent
        if "headers" in kwargs:
            headers.update(kwargs.pop("headers"))

        logger.debug(
            "http_client_created",
            timeout=timeout,
            http2=http2,
            verify=ssl_verify is not False,
        )

        return httpx.Client(
            timeout=httpx.Timeout(timeout),
            transport=transport,
            follow_redirects=False,
            headers=headers,
            **kwargs,
        )

    @staticmethod
    @contextmanager
    def managed_client(
        settings: HTTPSettings | None = None, **kwargs: Any
    ) -> Iterator[httpx.Client]:
        """Create a client that is closed when the block exits.

        Example:
            with HTTPClientFactory.managed_client(timeout=2.0) as client:
                tracer = RequestTracer(client, request)
        """
        client = HTTPClientFactory.create_client(settings, **kwargs)
        try:
            yield client
        finally:
            client.close()
            logger.debug("managed_http_client_closed")


def _get_ssl_context() -> ssl.SSLContext | bool:
    """Get TLS verification configuration from environment variables.

    Returns:
        - An SSL context trusting the CA bundle named by SSL_CERT_FILE or
          REQUESTS_CA_BUNDLE
        - True for default verification
        - False when SSL_VERIFY disables verification (insecure)
    """
    ca_bundle = os.environ.get("REQUESTS_CA_BUNDLE") or os.environ.get("SSL_CERT_FILE")
    ssl_verify = os.environ.get("SSL_VERIFY", "true").lower()

    if ca_bundle and Path(ca_bundle).exists():
        logger.debug("ssl_ca_bundle_configured", ca_bundle_path=ca_bundle)
        return ssl.create_default_context(cafile=ca_bundle)
    elif ssl_verify in ("false", "0", "no"):
        logger.warning(
            "ssl_verification_disabled",
            ssl_verify_value=ssl_verify,
            security_warning=True,
        )
        return False
    else:
        return True
