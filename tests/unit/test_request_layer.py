"""
Unit tests for RequestLayer
===========================
Runs against a local aiohttp test server.

Test coverage:
- Default headers and cookie persistence
- Error mapping (401, other non-2xx, network failure)
- on_401 behaviours
- Cached queries with one automatic retry
"""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from psiconnect_sync.core.exceptions import AuthenticationError, RequestError, TransientNetworkError
from psiconnect_sync.infrastructure.config.settings import RequestSettings
from psiconnect_sync.infrastructure.http.request_layer import RequestLayer

USER = {"id": 7, "username": "ana", "user_type": "patient"}


def build_app(counters):
    async def me(request):
        if request.cookies.get("connect.sid") != "abc":
            return web.json_response({"message": "Not authenticated"}, status=401)
        return web.json_response(USER)

    async def login(request):
        body = await request.json()
        if body.get("password") != "secret":
            return web.json_response({"message": "Invalid credentials"}, status=401)
        response = web.json_response({"user": USER})
        response.set_cookie("connect.sid", "abc")
        return response

    async def echo_headers(request):
        names = ("Accept", "X-Requested-With", "Cache-Control", "Pragma")
        return web.json_response({name: request.headers.get(name) for name in names})

    async def flaky(request):
        counters["flaky"] += 1
        if counters["flaky"] == 1:
            return web.Response(status=503, text="Service Unavailable")
        return web.json_response({"attempt": counters["flaky"]})

    async def broken(request):
        counters["broken"] += 1
        return web.Response(status=500, text="Internal Server Error")

    async def empty(request):
        return web.Response(status=204)

    async def undecodable(request):
        return web.Response(status=500, body=b"\xff\xfe gateway", content_type="text/plain", charset="utf-8")

    app = web.Application()
    app.router.add_get("/api/auth/me", me)
    app.router.add_post("/api/auth/login", login)
    app.router.add_get("/headers", echo_headers)
    app.router.add_get("/flaky", flaky)
    app.router.add_get("/broken", broken)
    app.router.add_get("/undecodable", undecodable)
    app.router.add_get("/api/auth/logout", empty)
    return app


@pytest.fixture
async def server():
    counters = {"flaky": 0, "broken": 0}
    test_server = TestServer(build_app(counters))
    await test_server.start_server()
    test_server.counters = counters
    yield test_server
    await test_server.close()


@pytest.fixture
async def layer(server, logger):
    request_layer = RequestLayer(
        str(server.make_url("")),
        settings=RequestSettings(timeout_seconds=2),
        logger=logger,
    )
    yield request_layer
    await request_layer.close()


class TestRequests:

    async def test_default_headers_sent(self, layer):
        headers = await layer.get_json("/headers")

        assert headers == {
            "Accept": "application/json",
            "X-Requested-With": "XMLHttpRequest",
            "Cache-Control": "no-cache, no-store, max-age=0",
            "Pragma": "no-cache",
        }

    async def test_cookie_session_persists(self, layer):
        with pytest.raises(AuthenticationError):
            await layer.get_json("/api/auth/me")

        await layer.request("POST", "/api/auth/login", {"username": "ana", "password": "secret"})

        assert await layer.get_json("/api/auth/me") == USER
        assert layer.cookie_header() == {"Cookie": "connect.sid=abc"}

    async def test_on_401_return_none(self, layer):
        assert await layer.get_json("/api/auth/me", on_401="return_none") is None

    async def test_non_2xx_maps_to_request_error(self, layer):
        with pytest.raises(RequestError) as exc_info:
            await layer.request("GET", "/broken")

        assert exc_info.value.status == 500
        assert str(exc_info.value) == "500: Internal Server Error"

    async def test_undecodable_error_body_still_maps_to_request_error(self, layer):
        with pytest.raises(RequestError) as exc_info:
            await layer.request("GET", "/undecodable")

        assert exc_info.value.status == 500
        assert "gateway" in str(exc_info.value)

    async def test_empty_body_returns_none(self, layer):
        assert await layer.request("GET", "/api/auth/logout") is None

    async def test_unreachable_server_is_transient(self, logger):
        layer = RequestLayer("http://127.0.0.1:1", settings=RequestSettings(timeout_seconds=2), logger=logger)
        try:
            with pytest.raises(TransientNetworkError):
                await layer.get_json("/api/auth/me")
        finally:
            await layer.close()


class TestQueries:

    async def test_query_retries_once(self, layer, server):
        assert await layer.query("/flaky") == {"attempt": 2}
        assert server.counters["flaky"] == 2

    async def test_query_gives_up_after_retry(self, layer, server):
        with pytest.raises(RequestError):
            await layer.query("/broken")
        assert server.counters["broken"] == 2

    async def test_query_does_not_retry_401(self, layer):
        with pytest.raises(AuthenticationError):
            await layer.query("/api/auth/me")

    async def test_query_cached_until_invalidated(self, layer, server):
        await layer.query("/flaky")
        await layer.query("/flaky")
        assert server.counters["flaky"] == 2

        await layer.invalidate("/flaky")
        await layer.cache.wait_idle()

        assert server.counters["flaky"] == 3
        assert layer.cache.get_data("/flaky") == {"attempt": 3}
