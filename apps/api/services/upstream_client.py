"""Typed HTTP client for the upstream library server API."""

import hashlib
import logging
import time
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from api.schemas import (
    AbsItemsResponse,
    AbsLibrariesResponse,
    AbsLibrary,
    AbsLoginResponse,
    BookEntry,
    InternalUser,
    Library,
    book_from_upstream,
    library_from_upstream,
)
from core.config import Settings
from services.errors import UpstreamError, UpstreamUnreachable

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


class UpstreamClient:
    """Authenticated GET surface over the upstream REST API.

    Every payload is validated with pydantic before it leaves this class, so a
    malformed upstream response fails here instead of inside feed assembly.
    """

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None):
        self.settings = settings
        self.base_url = settings.abs_url
        self.http = http or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.upstream_timeout_seconds),
            follow_redirects=False,
        )
        # (username, sha256(password)) -> (InternalUser, expires_at)
        self._login_cache: dict[tuple[str, str], tuple[InternalUser, float]] = {}

    async def aclose(self) -> None:
        await self.http.aclose()

    async def fetch(self, path: str, user: InternalUser) -> Any:
        """
        GET ``{base}/api{path}`` as ``user`` and return the decoded JSON.

        Raises:
            UpstreamError: Upstream answered with a non-200 status or invalid JSON.
            UpstreamUnreachable: Network failure or timeout.
        """
        url = f"{self.base_url}{API_PREFIX}{path}"
        try:
            response = await self.http.get(
                url,
                headers={"Authorization": f"Bearer {user.api_key}"},
            )
        except httpx.HTTPError as e:
            logger.warning("Upstream unreachable for GET %s: %s", path, type(e).__name__)
            raise UpstreamUnreachable(f"GET {path} failed: {type(e).__name__}") from e

        if response.status_code != 200:
            logger.warning(
                "Upstream GET %s returned %d %s",
                path,
                response.status_code,
                response.reason_phrase,
            )
            raise UpstreamError(response.status_code, response.reason_phrase)

        try:
            return response.json()
        except ValueError as e:
            logger.warning("Upstream GET %s returned invalid JSON", path)
            raise UpstreamError(502, "Malformed upstream payload") from e

    async def _fetch_model(self, path: str, user: InternalUser, model: type[BaseModel]) -> Any:
        data = await self.fetch(path, user)
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning("Upstream GET %s payload failed validation: %d error(s)", path, e.error_count())
            raise UpstreamError(502, "Malformed upstream payload") from e

    async def get_libraries(self, user: InternalUser) -> list[Library]:
        payload: AbsLibrariesResponse = await self._fetch_model("/libraries", user, AbsLibrariesResponse)
        return [library_from_upstream(lib) for lib in payload.libraries]

    async def get_library(self, user: InternalUser, library_id: str) -> Library:
        payload: AbsLibrary = await self._fetch_model(f"/libraries/{library_id}", user, AbsLibrary)
        return library_from_upstream(payload)

    async def get_items(self, user: InternalUser, library_id: str) -> list[BookEntry]:
        payload: AbsItemsResponse = await self._fetch_model(
            f"/libraries/{library_id}/items", user, AbsItemsResponse
        )
        return [book_from_upstream(item) for item in payload.results]

    async def login(self, username: str, password: str) -> InternalUser:
        """
        Exchange upstream credentials for an access token.

        Successful logins are cached for ``login_cache_ttl_seconds``.

        Raises:
            UpstreamError: Upstream rejected the credentials.
            UpstreamUnreachable: Network failure or timeout.
        """
        cache_key = (username, hashlib.sha256(password.encode("utf-8")).hexdigest())
        cached = self._login_cache.get(cache_key)
        now = time.monotonic()
        if cached and cached[1] > now:
            return cached[0]

        try:
            response = await self.http.post(
                f"{self.base_url}/login",
                json={"username": username, "password": password},
            )
        except httpx.HTTPError as e:
            logger.warning("Upstream login unreachable: %s", type(e).__name__)
            raise UpstreamUnreachable("login request failed") from e

        if response.status_code != 200:
            logger.debug("Upstream login for %s rejected with %d", username, response.status_code)
            raise UpstreamError(response.status_code, response.reason_phrase)

        try:
            payload = AbsLoginResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise UpstreamError(502, "Malformed upstream payload") from e

        user = InternalUser(username=payload.user.username, api_key=payload.user.access_token)
        ttl = self.settings.login_cache_ttl_seconds
        if ttl > 0:
            self._prune_login_cache(now)
            self._login_cache[cache_key] = (user, now + ttl)
        return user

    def _prune_login_cache(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._login_cache.items() if expires_at <= now]
        for key in expired:
            del self._login_cache[key]

    async def ping(self) -> bool:
        """Whether the upstream server answers its unauthenticated ping."""
        try:
            response = await self.http.get(f"{self.base_url}/ping")
        except httpx.HTTPError:
            return False
        return response.status_code == 200
