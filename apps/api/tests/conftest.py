"""Pytest fixtures for API tests."""

import json
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from api.deps import get_upstream_client
from api.schemas import InternalUser
from core.config import Settings, get_settings
from main import app
from services.upstream_client import UpstreamClient

ABS_URL = "http://abs.test"
LIBRARY_ID = "lib-books"
LANGUAGES_DIR = Path(__file__).resolve().parents[3] / "languages"


def make_item(
    item_id: str,
    title: str,
    author: str | None = None,
    narrator: str | None = None,
    genres: list[str] | None = None,
    series: str | None = None,
    ebook_format: str | None = "epub",
    **metadata: Any,
) -> dict[str, Any]:
    """Upstream library item payload as the server sends it."""
    return {
        "id": item_id,
        "mediaType": "book",
        "media": {
            "ebookFormat": ebook_format,
            "metadata": {
                "title": title,
                "authorName": author,
                "narratorName": narrator,
                "genres": genres or [],
                "seriesName": series,
                **metadata,
            },
        },
    }


def streamed(status: int, headers: list[tuple[str, str]], body: bytes) -> httpx.Response:
    """Response whose body is only read when the client iterates it."""
    return httpx.Response(status, headers=headers, stream=httpx.ByteStream(body))


class FakeUpstream:
    """In-memory stand-in for the upstream server, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.libraries: list[dict[str, Any]] = [{"id": LIBRARY_ID, "name": "Books", "icon": "book"}]
        self.items: dict[str, list[dict[str, Any]]] = {LIBRARY_ID: []}
        self.accounts: dict[str, tuple[str, str]] = {}
        self.failures: dict[str, int | Exception] = {}
        # path -> (status, headers, body), served as a fresh stream on every request
        self.assets: dict[str, tuple[int, list[tuple[str, str]], bytes]] = {}
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        failure = self.failures.get(path)
        if isinstance(failure, Exception):
            raise failure
        if failure is not None:
            return streamed(failure, [], b"")

        if path == "/ping":
            return httpx.Response(200, json={"success": True})

        if path == "/login" and request.method == "POST":
            body = json.loads(request.content)
            account = self.accounts.get(body.get("username", ""))
            if account is None or account[0] != body.get("password"):
                return httpx.Response(401, text="Unauthorized")
            return httpx.Response(
                200,
                json={"user": {"id": "u1", "username": body["username"], "accessToken": account[1]}},
            )

        if path == "/api/libraries":
            return httpx.Response(200, json={"libraries": self.libraries})

        if path.startswith("/api/libraries/"):
            parts = path.split("/")[3:]
            library = next((lib for lib in self.libraries if lib["id"] == parts[0]), None)
            if library is None:
                return httpx.Response(404, text="Not Found")
            if len(parts) == 1:
                return httpx.Response(200, json=library)
            if parts[1:] == ["items"]:
                return httpx.Response(200, json={"results": self.items.get(parts[0], [])})

        if path in self.assets:
            status, headers, body = self.assets[path]
            return streamed(status, headers, body)

        return streamed(404, [("Content-Type", "text/plain")], b"Not Found")

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    """Fake upstream with an empty single library."""
    return FakeUpstream()


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with overrides."""
    return Settings(
        _env_file=None,
        abs_url=ABS_URL,
        opds_users="reader:tok-reader:secret,Other:tok-other:pa:ss",
        opds_page_size=2,
        environment="development",
        languages_dir=LANGUAGES_DIR,
    )


@pytest.fixture
def reader() -> InternalUser:
    return InternalUser(username="reader", api_key="tok-reader")


@pytest.fixture
async def upstream_client(
    test_settings: Settings,
    fake_upstream: FakeUpstream,
) -> AsyncGenerator[UpstreamClient, None]:
    """UpstreamClient wired to the fake upstream."""
    client = UpstreamClient(
        test_settings,
        http=httpx.AsyncClient(transport=httpx.MockTransport(fake_upstream.handler)),
    )
    yield client
    await client.aclose()


@pytest.fixture
async def make_client(
    fake_upstream: FakeUpstream,
) -> AsyncGenerator[Callable[[Settings], Awaitable[AsyncClient]], None]:
    """Factory for HTTP clients against the app with the given settings."""
    opened: list[tuple[AsyncClient, UpstreamClient]] = []

    async def _make(settings: Settings) -> AsyncClient:
        upstream = UpstreamClient(
            settings,
            http=httpx.AsyncClient(transport=httpx.MockTransport(fake_upstream.handler)),
        )
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[get_upstream_client] = lambda: upstream
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        opened.append((client, upstream))
        return client

    yield _make

    for client, upstream in opened:
        await client.aclose()
        await upstream.aclose()
    app.dependency_overrides.clear()


@pytest.fixture
async def client(
    make_client: Callable[[Settings], Awaitable[AsyncClient]],
    test_settings: Settings,
) -> AsyncClient:
    """Create test HTTP client with dependency overrides."""
    return await make_client(test_settings)


@pytest.fixture
def reader_auth() -> httpx.BasicAuth:
    return httpx.BasicAuth("reader", "secret")


@pytest.fixture
def item_factory() -> Callable[..., dict[str, Any]]:
    """Builder for upstream item payloads."""
    return make_item


@pytest.fixture
def catalog(fake_upstream: FakeUpstream) -> FakeUpstream:
    """Fake upstream seeded with a small mixed ebook/audiobook library."""
    fake_upstream.items[LIBRARY_ID] = [
        make_item("b1", "Mort", author="Terry Pratchett", genres=["Fantasy"], series="Discworld #4"),
        make_item("b2", "Dune", author="Frank Herbert", narrator="Scott Brick", genres=["Sci-Fi"]),
        make_item("b3", "Good Omens", author="Terry Pratchett, Neil Gaiman", genres=["Fantasy", "Humor"]),
        make_item("b4", "1984", author="George Orwell", genres=["Dystopia"]),
        make_item("a1", "Spoken Dune", author="Frank Herbert", narrator="Scott Brick", ebook_format=None),
    ]
    return fake_upstream
