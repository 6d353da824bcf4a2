"""
Tests for LedgerTransport against a local aiohttp server.
"""

import asyncio

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from pool_monitor.exceptions import TransportError
from pool_monitor.transport import LedgerTransport


# ============================================================
# FIXTURES
# ============================================================

async def handle_ok(request):
    return web.json_response({"query": dict(request.query)})


async def handle_api_error(request):
    return web.json_response(
        {"error": {"code": 150, "message": "Address is not a token contract"}},
        status=400,
    )


async def handle_error_body(request):
    return web.json_response({"error": {"code": "104", "message": "Invalid pool"}})


async def handle_plain_500(request):
    return web.Response(text="upstream down", status=500)


async def handle_bad_json(request):
    return web.Response(text="<html>oops</html>")


async def handle_empty(request):
    return web.Response(text="")


async def handle_form(request):
    fields = await request.post()
    return web.json_response({"method": request.method, "fields": dict(fields)})


async def handle_slow(request):
    await asyncio.sleep(1)
    return web.json_response({})


@pytest_asyncio.fixture
async def base_url():
    app = web.Application()
    app.router.add_get("/ok", handle_ok)
    app.router.add_get("/api-error", handle_api_error)
    app.router.add_get("/error-body", handle_error_body)
    app.router.add_get("/plain-500", handle_plain_500)
    app.router.add_get("/bad-json", handle_bad_json)
    app.router.add_get("/empty", handle_empty)
    app.router.add_post("/form", handle_form)
    app.router.add_get("/slow", handle_slow)

    server = TestServer(app)
    await server.start_server()
    try:
        yield f"http://{server.host}:{server.port}"
    finally:
        await server.close()


@pytest_asyncio.fixture
async def transport():
    transport = LedgerTransport(timeout=0.2)
    try:
        yield transport
    finally:
        await transport.close()


# ============================================================
# REQUEST TESTS
# ============================================================

class TestGetJson:
    """Tests for LedgerTransport.get_json."""

    @pytest.mark.asyncio
    async def test_decodes_json_and_sends_params(self, transport, base_url):
        data = await transport.get_json(f"{base_url}/ok", params={"apiKey": "key", "period": 300})

        assert data == {"query": {"apiKey": "key", "period": "300"}}
        assert transport.request_count == 1

    @pytest.mark.asyncio
    async def test_api_error_with_code(self, transport, base_url):
        with pytest.raises(TransportError) as exc_info:
            await transport.get_json(f"{base_url}/api-error")

        error = exc_info.value
        assert error.status_code == 400
        assert error.error_code == 150
        assert error.message == "Address is not a token contract"
        assert error.request_url == f"{base_url}/api-error"

    @pytest.mark.asyncio
    async def test_error_body_on_success_status(self, transport, base_url):
        with pytest.raises(TransportError) as exc_info:
            await transport.get_json(f"{base_url}/error-body")

        assert exc_info.value.error_code == 104
        assert exc_info.value.message == "Invalid pool"

    @pytest.mark.asyncio
    async def test_http_error_without_json(self, transport, base_url):
        with pytest.raises(TransportError) as exc_info:
            await transport.get_json(f"{base_url}/plain-500")

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "HTTP 500"
        assert exc_info.value.response_body == "upstream down"

    @pytest.mark.asyncio
    async def test_invalid_json(self, transport, base_url):
        with pytest.raises(TransportError, match="Impossible to parse JSON body"):
            await transport.get_json(f"{base_url}/bad-json")

    @pytest.mark.asyncio
    async def test_empty_body(self, transport, base_url):
        assert await transport.get_json(f"{base_url}/empty") is None

    @pytest.mark.asyncio
    async def test_timeout(self, transport, base_url):
        with pytest.raises(TransportError) as exc_info:
            await transport.get_json(f"{base_url}/slow")

        assert exc_info.value.original_error is not None

    @pytest.mark.asyncio
    async def test_connection_refused(self, transport, base_url):
        with pytest.raises(TransportError, match="Connection error"):
            await transport.get_json("http://127.0.0.1:1/ok")


class TestPostForm:
    """Tests for LedgerTransport.post_form."""

    @pytest.mark.asyncio
    async def test_posts_fields(self, transport, base_url):
        data = await transport.post_form(
            f"{base_url}/form",
            {"apiKey": "key", "poolId": "pool-1", "addresses": "0xa,0xb"},
        )

        assert data == {
            "method": "POST",
            "fields": {"apiKey": "key", "poolId": "pool-1", "addresses": "0xa,0xb"},
        }


class TestSessionLifecycle:
    """Tests for session ownership."""

    @pytest.mark.asyncio
    async def test_context_manager_closes_session(self, base_url):
        async with LedgerTransport() as transport:
            await transport.get_json(f"{base_url}/ok")
            session = transport._session

        assert session.closed

    @pytest.mark.asyncio
    async def test_injected_session_is_not_closed(self, base_url):
        async with aiohttp.ClientSession() as session:
            transport = LedgerTransport(session=session)
            await transport.get_json(f"{base_url}/ok")
            await transport.close()

            assert not session.closed
