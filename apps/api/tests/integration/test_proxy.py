"""Integration tests for the /opds/proxy asset relay."""

import httpx
import pytest

from core.config import Settings

COVER_PATH = "/api/items/b1/cover"


@pytest.fixture
async def proxy_client(make_client, test_settings: Settings):
    return await make_client(test_settings.model_copy(update={"use_proxy": True}))


class TestProxyGuards:
    """Requests rejected before authentication or any upstream contact."""

    @pytest.mark.asyncio
    async def test_disabled_proxy_is_forbidden(self, client, reader_auth: httpx.BasicAuth, fake_upstream) -> None:
        response = await client.get(f"/opds/proxy{COVER_PATH}", auth=reader_auth)

        assert response.status_code == 403
        assert fake_upstream.requests == []

    @pytest.mark.asyncio
    async def test_disabled_proxy_is_forbidden_without_credentials(self, client, fake_upstream) -> None:
        response = await client.get(f"/opds/proxy{COVER_PATH}")

        assert response.status_code == 403
        assert fake_upstream.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE"])
    async def test_non_get_is_rejected(self, proxy_client, fake_upstream, method: str) -> None:
        response = await proxy_client.request(method, f"/opds/proxy{COVER_PATH}")

        assert response.status_code == 405
        assert response.headers["allow"] == "GET"
        assert fake_upstream.requests == []

    @pytest.mark.asyncio
    async def test_unauthenticated_get_is_challenged(self, proxy_client, fake_upstream) -> None:
        response = await proxy_client.get(f"/opds/proxy{COVER_PATH}")

        assert response.status_code == 401
        assert fake_upstream.requests == []


class TestProxyStreaming:
    """Successful relays."""

    @pytest.mark.asyncio
    async def test_streams_body_with_bearer(
        self, proxy_client, reader_auth: httpx.BasicAuth, fake_upstream
    ) -> None:
        fake_upstream.assets[COVER_PATH] = (200, [("Content-Type", "image/png")], b"\x89PNG-cover-bytes")

        response = await proxy_client.get(f"/opds/proxy{COVER_PATH}?width=400", auth=reader_auth)

        assert response.status_code == 200
        assert response.content == b"\x89PNG-cover-bytes"
        assert response.headers["content-type"] == "image/png"
        upstream_request = fake_upstream.requests[-1]
        assert str(upstream_request.url) == f"http://abs.test{COVER_PATH}?width=400"
        assert upstream_request.headers["Authorization"] == "Bearer tok-reader"
        assert "basic" not in upstream_request.headers["Authorization"].lower()

    @pytest.mark.asyncio
    async def test_range_is_forwarded(self, proxy_client, reader_auth: httpx.BasicAuth, fake_upstream) -> None:
        fake_upstream.assets["/api/items/b1/ebook"] = (
            206,
            [("Content-Range", "bytes 0-9/100"), ("Accept-Ranges", "bytes")],
            b"0123456789",
        )

        response = await proxy_client.get(
            "/opds/proxy/api/items/b1/ebook",
            auth=reader_auth,
            headers={"Range": "bytes=0-9"},
        )

        assert response.status_code == 206
        assert response.headers["content-range"] == "bytes 0-9/100"
        assert fake_upstream.requests[-1].headers["Range"] == "bytes=0-9"

    @pytest.mark.asyncio
    async def test_redirect_passed_through(self, proxy_client, reader_auth: httpx.BasicAuth, fake_upstream) -> None:
        fake_upstream.assets[COVER_PATH] = (302, [("Location", "http://abs.test/covers/b1.jpg")], b"")

        response = await proxy_client.get(f"/opds/proxy{COVER_PATH}", auth=reader_auth)

        assert response.status_code == 302
        assert response.headers["location"] == "http://abs.test/covers/b1.jpg"
        assert fake_upstream.paths() == [COVER_PATH]

    @pytest.mark.asyncio
    async def test_repeated_headers_passed_through(
        self, proxy_client, reader_auth: httpx.BasicAuth, fake_upstream
    ) -> None:
        fake_upstream.assets[COVER_PATH] = (
            200,
            [("Content-Type", "image/jpeg"), ("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")],
            b"jpeg",
        )

        response = await proxy_client.get(f"/opds/proxy{COVER_PATH}", auth=reader_auth)

        assert response.headers.get_list("set-cookie") == ["a=1", "b=2"]
        assert response.content == b"jpeg"

    @pytest.mark.asyncio
    async def test_same_asset_streams_on_every_request(
        self, proxy_client, reader_auth: httpx.BasicAuth, fake_upstream
    ) -> None:
        fake_upstream.assets[COVER_PATH] = (200, [("Content-Type", "image/png")], b"cover")

        first = await proxy_client.get(f"/opds/proxy{COVER_PATH}", auth=reader_auth)
        second = await proxy_client.get(f"/opds/proxy{COVER_PATH}", auth=reader_auth)

        assert first.content == second.content == b"cover"

    @pytest.mark.asyncio
    async def test_upstream_status_passed_through(
        self, proxy_client, reader_auth: httpx.BasicAuth, fake_upstream
    ) -> None:
        response = await proxy_client.get("/opds/proxy/api/items/missing/cover", auth=reader_auth)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_timeout_is_bad_gateway(self, proxy_client, reader_auth: httpx.BasicAuth, fake_upstream) -> None:
        fake_upstream.failures[COVER_PATH] = httpx.ReadTimeout("upstream too slow")

        response = await proxy_client.get(f"/opds/proxy{COVER_PATH}", auth=reader_auth)

        assert response.status_code == 502
        assert response.text == "Bad Gateway"
