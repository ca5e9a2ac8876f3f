"""ABS OPDS bridge: FastAPI application and uvicorn entrypoint."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from api.deps import close_upstream_client
from api.routes import health, opds, proxy
from core.config import Settings, get_settings
from services.errors import OpdsError

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Root logger to stdout at LOG_LEVEL; chatty third-party loggers capped at WARNING."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    # httpx logs full request URLs at INFO, and direct-mode URLs carry tokens
    logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info("Starting OPDS bridge for upstream %s", settings.abs_url)
    logger.info(
        "Proxy %s, audiobooks %s, char cards %s, page size %d, %d virtual user(s), no-auth %s",
        "enabled" if settings.use_proxy else "disabled",
        "shown" if settings.show_audiobooks else "hidden",
        "on" if settings.show_char_cards else "off",
        settings.opds_page_size,
        len(settings.virtual_users),
        settings.opds_no_auth,
    )
    yield

    await close_upstream_client()
    logger.info("Upstream connections closed")


async def opds_error_handler(request: Request, exc: OpdsError) -> PlainTextResponse:
    """Map service errors to fixed status codes without echoing upstream detail."""
    if exc.status_code >= 500:
        logger.warning("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc)
    else:
        logger.debug("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc)
    return PlainTextResponse(exc.detail, status_code=exc.status_code, headers=exc.headers)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application; routers are mounted proxy first so it owns every method under its prefix."""
    settings = settings or get_settings()
    configure_logging(settings)

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="OPDS catalog and asset proxy in front of an Audiobookshelf server",
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    application.add_exception_handler(OpdsError, opds_error_handler)

    application.include_router(health.router, tags=["Health"])
    application.include_router(proxy.router, prefix="/opds/proxy", tags=["Proxy"])
    application.include_router(opds.router, prefix="/opds", tags=["OPDS"])
    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=settings.debug)
