"""Liveness, readiness and status endpoints for container orchestration."""

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.deps import get_upstream_client
from core.config import Settings, get_settings
from services.upstream_client import UpstreamClient

router = APIRouter()

AuthMode = Literal["no_auth", "virtual_users", "upstream_login", "disabled"]


class BridgeStatus(BaseModel):
    """Bridge status with upstream reachability and the active feature switches."""

    status: Literal["healthy", "degraded"]
    upstream: Literal["reachable", "unreachable"]
    proxy: Literal["enabled", "disabled"]
    auth_mode: AuthMode
    version: str
    environment: str


class LiveStatus(BaseModel):
    status: Literal["ok"]


class ReadyStatus(BaseModel):
    status: Literal["ready", "not_ready"]
    details: dict[str, bool]


def _auth_mode(settings: Settings) -> AuthMode:
    if settings.opds_no_auth:
        return "no_auth"
    if settings.virtual_users:
        return "virtual_users"
    if settings.allow_upstream_login:
        return "upstream_login"
    return "disabled"


@router.get("/health", response_model=BridgeStatus)
async def bridge_status(
    settings: Settings = Depends(get_settings),
    upstream: UpstreamClient = Depends(get_upstream_client),
) -> BridgeStatus:
    """Degraded (still 200) while the upstream server does not answer its ping."""
    reachable = await upstream.ping()
    return BridgeStatus(
        status="healthy" if reachable else "degraded",
        upstream="reachable" if reachable else "unreachable",
        proxy="enabled" if settings.use_proxy else "disabled",
        auth_mode=_auth_mode(settings),
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get("/health/live", response_model=LiveStatus)
async def live() -> LiveStatus:
    return LiveStatus(status="ok")


@router.get("/health/ready", response_model=ReadyStatus)
async def ready(upstream: UpstreamClient = Depends(get_upstream_client)) -> ReadyStatus:
    """Ready once the upstream server answers."""
    upstream_ok = await upstream.ping()
    return ReadyStatus(
        status="ready" if upstream_ok else "not_ready",
        details={"upstream": upstream_ok},
    )
