"""FastAPI dependencies wiring settings, upstream client and services together."""

import base64
import binascii

from fastapi import Depends, Request
from fastapi.security import HTTPBasicCredentials

from api.schemas import InternalUser
from core.config import Settings, get_settings
from core.i18n import Translator, get_translator
from services.auth_bridge import AuthBridge
from services.catalog_indexer import CatalogIndexer
from services.feed_assembler import FeedAssembler
from services.streaming_proxy import StreamingProxy
from services.upstream_client import UpstreamClient

# Singleton upstream client, rebuilt if the settings object changes
_upstream_client: UpstreamClient | None = None


def get_upstream_client(settings: Settings = Depends(get_settings)) -> UpstreamClient:
    """Get or create the shared upstream client."""
    global _upstream_client
    if _upstream_client is None or _upstream_client.settings is not settings:
        _upstream_client = UpstreamClient(settings)
    return _upstream_client


async def close_upstream_client() -> None:
    global _upstream_client
    if _upstream_client is not None:
        await _upstream_client.aclose()
        _upstream_client = None


def get_auth_bridge(
    settings: Settings = Depends(get_settings),
    upstream: UpstreamClient = Depends(get_upstream_client),
) -> AuthBridge:
    return AuthBridge(settings, upstream)


def get_catalog_indexer(
    settings: Settings = Depends(get_settings),
    upstream: UpstreamClient = Depends(get_upstream_client),
) -> CatalogIndexer:
    return CatalogIndexer(settings, upstream)


def get_feed_assembler(settings: Settings = Depends(get_settings)) -> FeedAssembler:
    return FeedAssembler(settings)


def get_streaming_proxy(
    settings: Settings = Depends(get_settings),
    upstream: UpstreamClient = Depends(get_upstream_client),
) -> StreamingProxy:
    return StreamingProxy(settings, upstream.http)


def get_i18n(settings: Settings = Depends(get_settings)) -> Translator:
    return get_translator(settings.languages_dir)


def basic_credentials(request: Request) -> HTTPBasicCredentials | None:
    """
    Decode the Basic ``Authorization`` header.

    Malformed headers count as absent so the auth bridge decides the outcome
    (a challenge, or the no-auth identity).
    """
    scheme, _, param = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "basic" or not param.strip():
        return None
    try:
        decoded = base64.b64decode(param.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, separator, password = decoded.partition(":")
    if not separator:
        return None
    return HTTPBasicCredentials(username=username, password=password)


async def authenticate(
    bridge: AuthBridge,
    credentials: HTTPBasicCredentials | None,
) -> InternalUser:
    if credentials is None:
        return await bridge.resolve(None, None)
    return await bridge.resolve(credentials.username, credentials.password)


async def get_current_user(
    credentials: HTTPBasicCredentials | None = Depends(basic_credentials),
    bridge: AuthBridge = Depends(get_auth_bridge),
) -> InternalUser:
    """Resolve the request's Basic credentials (or the no-auth identity)."""
    return await authenticate(bridge, credentials)


def accept_language(request: Request) -> str | None:
    return request.headers.get("accept-language")
