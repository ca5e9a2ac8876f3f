"""Asset proxy endpoint forwarding covers, ebooks and audio to the upstream server."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from api.deps import authenticate, basic_credentials, get_auth_bridge, get_streaming_proxy
from services.auth_bridge import AuthBridge
from services.streaming_proxy import StreamingProxy

logger = logging.getLogger(__name__)

router = APIRouter()

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@router.api_route("/{path:path}", methods=ALL_METHODS, response_model=None)
async def proxy_asset(
    path: str,
    request: Request,
    proxy: StreamingProxy = Depends(get_streaming_proxy),
    bridge: AuthBridge = Depends(get_auth_bridge),
) -> StreamingResponse:
    """
    Stream ``/opds/proxy/<path>`` from the upstream server.

    Disabled proxying (403) and non-GET methods (405) are rejected before the
    caller is authenticated, so neither reaches the upstream server.
    """
    proxy.check(request.method)
    user = await authenticate(bridge, basic_credentials(request))
    return await proxy.open(
        path,
        request.url.query or None,
        user,
        request.headers,
        scheme=request.url.scheme,
    )
