"""
web/routes.py -- Jinja2 template routes for the Homebase web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (the same auth provider) but return HTML instead of JSON.

Routes:
  GET /          -- home page (session required; otherwise 302 /sign-in)
  GET /sign-in   -- sign-in and sign-up forms (public)

Session gating is route-level middleware, not a check inside each handler:
every route on `protected` runs auth_middleware first, so a handler body on
that router only ever executes with request.state.session set. The forms
post to /api/auth/* with a callbackURL, so the auth provider answers with a
redirect instead of JSON.
"""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from api.routing import auth_middleware, gated
from auth.models import AuthSession
from auth.service import AuthProvider

logger = logging.getLogger("homebase.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

router = APIRouter()
protected = APIRouter(route_class=gated(auth_middleware))

# Whitelist mapping for ?error= query params on /sign-in.
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted error query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "INVALID_EMAIL_OR_PASSWORD": "Invalid email or password.",
    "BANNED_USER": "This account has been banned. Contact an admin.",
    "USER_ALREADY_EXISTS": "An account with that email already exists.",
    "VALIDATION_ERROR": "Check the form: passwords need at least 8 characters.",
}


# ---------------------------------------------------------------------------
# GET / -- home (gated)
# ---------------------------------------------------------------------------


@protected.get("/", response_class=HTMLResponse)
def home(request: Request) -> HTMLResponse:
    session: AuthSession = request.state.session
    return templates.TemplateResponse(
        request,
        "index.html",
        {"user": session.user},
    )


# ---------------------------------------------------------------------------
# GET /sign-in -- public
# ---------------------------------------------------------------------------


@router.get("/sign-in", response_class=HTMLResponse)
async def sign_in(request: Request) -> Response:
    """Render the sign-in page. Users who already have a session go to /."""
    auth: AuthProvider = request.app.state.auth
    if await auth.get_session(request.headers) is not None:
        return RedirectResponse("/", status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    return templates.TemplateResponse(
        request,
        "sign_in.html",
        {"error_msg": error_msg},
    )


router.include_router(protected)
