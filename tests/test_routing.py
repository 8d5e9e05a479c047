"""
tests/test_routing.py -- Unit tests for route-level middleware chains.

Covers:
  - compose(): entry in declaration order, exit in reverse, endpoint last
  - compose(): a middleware that returns without call_next short-circuits
    everything after it, endpoint included
  - compose(): an empty chain is just the endpoint
  - gated() + auth_middleware on a throwaway app with a stub auth provider:
    redirect without a session (handler never runs), pass-through with one
    (response unchanged, session on request.state)
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, FastAPI, Request
from fastapi.testclient import TestClient
from starlette.responses import PlainTextResponse, Response

from api.routing import auth_middleware, compose, gated
from auth.models import AuthSession, Session, User


def _request() -> Request:
    return Request({"type": "http", "method": "GET", "path": "/", "headers": []})


def _tracing(name: str, trace: list[str]):
    async def middleware(request, call_next):
        trace.append(f"{name}:enter")
        response = await call_next(request)
        trace.append(f"{name}:exit")
        return response

    return middleware


class TestCompose:
    def test_order(self) -> None:
        trace: list[str] = []

        async def endpoint(request):
            trace.append("endpoint")
            return PlainTextResponse("done")

        handler = compose([_tracing("a", trace), _tracing("b", trace)], endpoint)
        response = asyncio.run(handler(_request()))

        assert response.body == b"done"
        assert trace == ["a:enter", "b:enter", "endpoint", "b:exit", "a:exit"]

    def test_short_circuit_skips_rest(self) -> None:
        trace: list[str] = []

        async def deny(request, call_next):
            trace.append("deny")
            return Response(status_code=403)

        async def endpoint(request):
            trace.append("endpoint")
            return PlainTextResponse("done")

        handler = compose([_tracing("a", trace), deny, _tracing("c", trace)], endpoint)
        response = asyncio.run(handler(_request()))

        assert response.status_code == 403
        assert trace == ["a:enter", "deny", "a:exit"]

    def test_empty_chain_calls_endpoint(self) -> None:
        async def endpoint(request):
            return PlainTextResponse("bare")

        response = asyncio.run(compose([], endpoint)(_request()))
        assert response.body == b"bare"


# ---------------------------------------------------------------------------
# gated() + auth_middleware
# ---------------------------------------------------------------------------


class _StubAuth:
    """Minimal AuthProvider: returns a fixed session and counts lookups."""

    def __init__(self, session: AuthSession | None) -> None:
        self.session = session
        self.lookups = 0

    async def handle(self, request: Request) -> Response:
        return PlainTextResponse("stub")

    async def get_session(self, headers) -> AuthSession | None:
        self.lookups += 1
        return self.session


def _session() -> AuthSession:
    return AuthSession(
        session=Session(id="s1", user_id="u1", token_hash="h", expires_at="2999-01-01T00:00:00+00:00"),
        user=User(id="u1", name="Ada", email="ada@example.com"),
    )


def _gated_app(auth: _StubAuth) -> tuple[FastAPI, list[str]]:
    calls: list[str] = []
    app = FastAPI()
    app.state.auth = auth
    router = APIRouter(route_class=gated(auth_middleware))

    @router.get("/private")
    def private(request: Request) -> PlainTextResponse:
        calls.append(request.state.session.user.name)
        return PlainTextResponse("secret", status_code=201, headers={"X-Handler": "yes"})

    @app.get("/public")
    def public() -> PlainTextResponse:
        return PlainTextResponse("open")

    app.include_router(router)
    return app, calls


class TestAuthGate:
    def test_no_session_redirects_and_skips_handler(self) -> None:
        auth = _StubAuth(None)
        app, calls = _gated_app(auth)
        resp = TestClient(app, follow_redirects=False).get("/private")

        assert resp.status_code == 302
        assert resp.headers["location"] == "/sign-in"
        assert calls == []
        assert auth.lookups == 1

    def test_session_passes_response_through_unchanged(self) -> None:
        auth = _StubAuth(_session())
        app, calls = _gated_app(auth)
        resp = TestClient(app, follow_redirects=False).get("/private")

        assert resp.status_code == 201
        assert resp.text == "secret"
        assert resp.headers["x-handler"] == "yes"
        assert calls == ["Ada"]

    def test_decided_per_request(self) -> None:
        auth = _StubAuth(_session())
        app, calls = _gated_app(auth)
        client = TestClient(app, follow_redirects=False)

        assert client.get("/private").status_code == 201
        auth.session = None
        assert client.get("/private").status_code == 302
        assert auth.lookups == 2
        assert calls == ["Ada"]

    def test_ungated_route_never_consults_auth(self) -> None:
        auth = _StubAuth(None)
        app, _ = _gated_app(auth)
        resp = TestClient(app, follow_redirects=False).get("/public")

        assert resp.status_code == 200
        assert auth.lookups == 0
