"""Error kinds surfaced by the catalog services, each bound to one HTTP status."""


class OpdsError(Exception):
    """Base exception for catalog operations.

    ``detail`` is the only text sent to clients; the exception message is for logs.
    """

    status_code: int = 500
    detail: str = "Internal Server Error"
    headers: dict[str, str] | None = None


class Unauthorized(OpdsError):
    """Missing or invalid credentials."""

    status_code = 401
    detail = "Authentication required"
    headers = {"WWW-Authenticate": 'Basic realm="OPDS"'}


class Forbidden(OpdsError):
    """Feature disabled by configuration."""

    status_code = 403
    detail = "Forbidden"


class NotFound(OpdsError):
    """Unknown navigation path or library."""

    status_code = 404
    detail = "Not Found"


class MethodNotAllowed(OpdsError):
    """Only GET may pass through the proxy."""

    status_code = 405
    detail = "Method Not Allowed"
    headers = {"Allow": "GET"}


class BadGateway(OpdsError):
    """Proxy or stream failure before the response started."""

    status_code = 502
    detail = "Bad Gateway"


class UpstreamUnreachable(BadGateway):
    """Network failure or timeout talking to the upstream server."""


class UpstreamError(BadGateway):
    """Upstream answered with a non-200 status or an unusable payload.

    Attributes:
        status: Upstream HTTP status code.
        status_text: Upstream reason phrase.
    """

    def __init__(self, status: int, status_text: str):
        self.status = status
        self.status_text = status_text
        super().__init__(f"Upstream responded {status} {status_text}")
