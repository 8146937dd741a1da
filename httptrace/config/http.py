"""HTTP client configuration settings."""

from pydantic import BaseModel, Field

from httptrace._version import __version__


class HTTPSettings(BaseModel):
    """HTTP client configuration settings.

    Controls the timeout and connection options of the client used to issue
    the traced request.
    """

    timeout: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for the HTTP request in seconds",
    )

    http2: bool = Field(
        default=False,
        description="Offer HTTP/2 during TLS negotiation",
    )

    verify: bool = Field(
        default=True,
        description="Verify TLS certificates of the target server",
    )

    user_agent: str | None = Field(
        default=f"http-trace/{__version__}",
        description="User-Agent header sent with the request (None for the httpx default)",
    )
