import pytest
from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient

from app.middleware.security import DEVELOPMENT_CSP, PRODUCTION_CSP, SecurityHeadersMiddleware


def build_app(production=False):
    app = FastAPI()
    app.add_middleware(
        SecurityHeadersMiddleware,
        allowed_origins=["https://nutribot.example"],
        production=production,
    )

    @app.get("/api/ping")
    async def ping():
        return {"pong": True}

    @app.get("/page")
    async def page():
        return {"ok": True}

    @app.get("/static/app.js")
    async def asset():
        return {"asset": True}

    return app


async def request(app, method, path, **kwargs):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.request(method, path, **kwargs)


@pytest.mark.asyncio
async def test_security_headers_on_pages():
    response = await request(build_app(), "GET", "/page")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
    assert response.headers["Content-Security-Policy"] == DEVELOPMENT_CSP
    assert "Access-Control-Allow-Origin" not in response.headers


@pytest.mark.asyncio
async def test_production_csp_is_stricter():
    response = await request(build_app(production=True), "GET", "/page")
    csp = response.headers["Content-Security-Policy"]
    assert csp == PRODUCTION_CSP
    assert "unsafe-eval" not in csp
    assert "upgrade-insecure-requests" in csp


@pytest.mark.asyncio
async def test_static_paths_are_left_alone():
    response = await request(build_app(), "GET", "/static/app.js")
    assert "Content-Security-Policy" not in response.headers


@pytest.mark.asyncio
async def test_allowed_origin_is_echoed_on_api_routes():
    response = await request(build_app(), "GET", "/api/ping", headers={"Origin": "https://nutribot.example"})
    assert response.headers["Access-Control-Allow-Origin"] == "https://nutribot.example"
    assert response.headers["Access-Control-Allow-Credentials"] == "true"


@pytest.mark.asyncio
async def test_unknown_origin_is_not_echoed():
    response = await request(build_app(), "GET", "/api/ping", headers={"Origin": "https://evil.example"})
    assert response.status_code == 200
    assert "Access-Control-Allow-Origin" not in response.headers


@pytest.mark.asyncio
async def test_preflight_returns_empty_200():
    response = await request(
        build_app(), "OPTIONS", "/api/ping",
        headers={"Origin": "https://nutribot.example", "Access-Control-Request-Method": "POST"},
    )
    assert response.status_code == 200
    assert response.content == b""
    assert "OPTIONS" in response.headers["Access-Control-Allow-Methods"]
    assert response.headers["Access-Control-Allow-Origin"] == "https://nutribot.example"


@pytest.mark.asyncio
async def test_endpoints_behind_the_middleware_see_client_disconnect():
    seen = {}
    app = build_app()

    @app.post("/api/wait")
    async def wait(request: Request):
        await request.body()
        seen["disconnected"] = await request.is_disconnected()
        return {}

    incoming = [
        {"type": "http.request", "body": b"{}", "more_body": False},
        {"type": "http.disconnect"},
    ]
    sent = []

    async def receive():
        return incoming.pop(0) if incoming else {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/api/wait",
        "raw_path": b"/api/wait",
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"test"), (b"content-type", b"application/json")],
        "client": ("127.0.0.1", 50000),
        "server": ("test", 80),
    }
    await app(scope, receive, send)

    assert seen["disconnected"] is True
    start = next(m for m in sent if m["type"] == "http.response.start")
    assert (b"x-frame-options", b"DENY") in start["headers"]
