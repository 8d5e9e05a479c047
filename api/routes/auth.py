"""
api/routes/auth.py -- Mount point for the authentication protocol.

Routes:
  GET  /api/auth/{path}  -- forwarded to app.state.auth.handle()
  POST /api/auth/{path}  -- forwarded to app.state.auth.handle(), rate-limited

The router does not know which endpoints exist under /api/auth/ or what their
bodies look like. That contract belongs to the auth provider (auth/service.py);
this module only decides where it is mounted and how often it may be hit.

Security:
  POST is limited per client address to AUTH_RATE_LIMIT_MAX requests per
  AUTH_RATE_LIMIT_WINDOW seconds (default 10 per 60s) -- sign-in, sign-up and
  admin writes are the brute-force surface. GET (get-session, list-*) is not
  limited; pages poll it.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response

from api.limiter import auth_rate_limit, limiter
from auth.service import AuthProvider

router = APIRouter()


@router.get("/auth/{path:path}", include_in_schema=False)
async def auth_get(request: Request, path: str) -> Response:
    auth: AuthProvider = request.app.state.auth
    return await auth.handle(request)


@router.post("/auth/{path:path}", include_in_schema=False)
@limiter.limit(auth_rate_limit)  # below @router: the route must register the limited wrapper
async def auth_post(request: Request, path: str) -> Response:
    auth: AuthProvider = request.app.state.auth
    return await auth.handle(request)
