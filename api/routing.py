"""
api/routing.py -- Route-level middleware chains and the auth gate.

Starlette middleware (api/middleware.py) wraps every request. Some concerns
belong to specific routes only -- the auth gate guards "/" but must never run
for /sign-in or /api/health. This module adds that second tier.

A route middleware has the same shape as Starlette's function middleware:

    async def middleware(request: Request, call_next: CallNext) -> Response

It either returns a response without calling call_next (short-circuit), or
awaits call_next(request) and returns that response, optionally after
inspecting it. compose() nests a list of them around an endpoint: entry runs
in declaration order, exit unwinds in reverse.

Attaching middleware to routes:

    protected = APIRouter(route_class=gated(auth_middleware))

    @protected.get("/")
    def home(request: Request): ...

Every route registered on that router runs through the chain before its
handler (including before FastAPI resolves the handler's dependencies).

Layer rule: imports auth.service for the AuthProvider type only; the provider
instance is read from request.app.state.auth at request time.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from functools import partial

from fastapi.routing import APIRoute
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from auth.service import SIGN_IN_PATH, AuthProvider

logger = logging.getLogger("homebase.routing")

CallNext = Callable[[Request], Awaitable[Response]]
RouteMiddleware = Callable[[Request, CallNext], Awaitable[Response]]


def compose(middleware: Sequence[RouteMiddleware], endpoint: CallNext) -> CallNext:
    """Build one handler that runs middleware[0] -> ... -> middleware[-1] -> endpoint."""
    chain = tuple(middleware)

    async def call(index: int, request: Request) -> Response:
        if index == len(chain):
            return await endpoint(request)
        return await chain[index](request, partial(call, index + 1))

    async def handler(request: Request) -> Response:
        return await call(0, request)

    return handler


def gated(*middleware: RouteMiddleware) -> type[APIRoute]:
    """Return an APIRoute subclass that wraps its handler in the given chain."""

    class GatedRoute(APIRoute):
        route_middleware = middleware

        def get_route_handler(self) -> CallNext:
            return compose(self.route_middleware, super().get_route_handler())

    return GatedRoute


# ---------------------------------------------------------------------------
# Auth gate
# ---------------------------------------------------------------------------


async def auth_middleware(request: Request, call_next: CallNext) -> Response:
    """Let the request through only with a valid session.

    No session: 302 to /sign-in, and nothing further down the chain runs.
    Session: stored on request.state.session for the handler, then the
    downstream response is returned as-is. The decision is made fresh on
    every request; only the auth provider's own cache sits in between.
    """
    auth: AuthProvider = request.app.state.auth
    session = await auth.get_session(request.headers)
    if session is None:
        logger.debug("No session, redirecting", extra={"url": request.url.path})
        return RedirectResponse(SIGN_IN_PATH, status_code=302)
    request.state.session = session
    return await call_next(request)
