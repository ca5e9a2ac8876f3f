"""API routes module."""

from . import health, opds, proxy

__all__ = ["health", "opds", "proxy"]
