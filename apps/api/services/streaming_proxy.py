"""Streaming GET relay from /opds/proxy to the upstream server."""

import asyncio
import logging
from collections.abc import AsyncGenerator, Mapping

import httpx
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from api.schemas import InternalUser
from core.config import Settings
from services.errors import BadGateway, Forbidden, MethodNotAllowed

logger = logging.getLogger(__name__)

PROXY_PREFIX = "/opds/proxy"

# Request headers a reader app may legitimately need passed on (seeking, caching).
FORWARDED_REQUEST_HEADERS = ("range", "accept", "if-none-match", "if-modified-since", "if-range")

# Framing is re-done by the ASGI server, so these never cross the proxy.
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})


class StreamingProxy:
    """Forwards single GET requests to the upstream server without buffering bodies."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient):
        self.settings = settings
        self.http = http

    def check(self, method: str) -> None:
        """
        Reject the request before any authentication or upstream contact.

        Raises:
            Forbidden: Proxying is disabled.
            MethodNotAllowed: Method other than GET.
        """
        if not self.settings.use_proxy:
            raise Forbidden("proxy disabled")
        if method.upper() != "GET":
            raise MethodNotAllowed(f"proxy does not accept {method}")

    def target_url(self, path: str, query: str | None = None) -> str:
        """Upstream URL for a path relative to ``/opds/proxy``; always on the upstream host."""
        relative = path.lstrip("/")
        url = f"{self.settings.abs_url}/{relative}"
        return f"{url}?{query}" if query else url

    def upstream_headers(
        self,
        user: InternalUser,
        request_headers: Mapping[str, str],
        scheme: str,
    ) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {user.api_key}",
            "X-Forwarded-Proto": scheme,
            "X-Forwarded-Host": request_headers.get("host", ""),
        }
        for name in FORWARDED_REQUEST_HEADERS:
            value = request_headers.get(name)
            if value is not None:
                headers[name] = value
        return headers

    @staticmethod
    def response_headers(upstream: httpx.Response) -> list[tuple[str, str]]:
        """Upstream header pairs in order, repeats kept, hop-by-hop dropped."""
        return [
            (name, value)
            for name, value in upstream.headers.multi_items()
            if name.lower() not in HOP_BY_HOP_HEADERS
        ]

    async def _relay(self, upstream: httpx.Response, path: str) -> AsyncGenerator[bytes, None]:
        """Yield raw upstream chunks; errors abort the already-started client response."""
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except asyncio.CancelledError:
            logger.info("Client disconnected, closing upstream stream for %s", path)
            raise
        except httpx.HTTPError as e:
            logger.warning("Upstream stream for %s aborted: %s", path, type(e).__name__)
            raise
        finally:
            await upstream.aclose()

    async def open(
        self,
        path: str,
        query: str | None,
        user: InternalUser,
        request_headers: Mapping[str, str],
        scheme: str = "http",
    ) -> StreamingResponse:
        """
        Start the upstream request and wrap it in a StreamingResponse.

        Redirects are relayed to the client, never followed.

        Raises:
            BadGateway: Upstream unreachable or timed out before headers arrived.
        """
        request = self.http.build_request(
            "GET",
            self.target_url(path, query),
            headers=self.upstream_headers(user, request_headers, scheme),
            timeout=httpx.Timeout(self.settings.proxy_timeout_seconds),
        )
        try:
            upstream = await self.http.send(request, stream=True, follow_redirects=False)
        except httpx.HTTPError as e:
            logger.warning("Proxy request for %s failed: %s", path, type(e).__name__)
            raise BadGateway(f"proxy request for {path} failed") from e

        logger.debug("Proxying %s -> %d", path, upstream.status_code)
        response = StreamingResponse(
            self._relay(upstream, path),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        for name, value in self.response_headers(upstream):
            response.headers.append(name, value)
        return response
