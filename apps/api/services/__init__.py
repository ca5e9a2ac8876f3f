"""Services module."""

from .auth_bridge import AuthBridge
from .catalog_indexer import Axis, CatalogIndexer, CatalogLevel, CatalogNode, NodeKind
from .errors import (
    BadGateway,
    Forbidden,
    MethodNotAllowed,
    NotFound,
    OpdsError,
    Unauthorized,
    UpstreamError,
    UpstreamUnreachable,
)
from .feed_assembler import FeedAssembler, FeedDocument, FeedEntry, FeedLink
from .pagination import Page, paginate
from .streaming_proxy import StreamingProxy
from .upstream_client import UpstreamClient

__all__ = [
    # AuthBridge
    "AuthBridge",
    # CatalogIndexer
    "Axis",
    "CatalogIndexer",
    "CatalogLevel",
    "CatalogNode",
    "NodeKind",
    # Errors
    "OpdsError",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "MethodNotAllowed",
    "BadGateway",
    "UpstreamError",
    "UpstreamUnreachable",
    # FeedAssembler
    "FeedAssembler",
    "FeedDocument",
    "FeedEntry",
    "FeedLink",
    # PaginationEngine
    "Page",
    "paginate",
    # StreamingProxy
    "StreamingProxy",
    # UpstreamClient
    "UpstreamClient",
]
