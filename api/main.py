"""
api/main.py -- FastAPI application entry point for Homebase.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. RequestLoggingMiddleware -- ENTER/EXIT log lines with a request id
  2. SlowAPIMiddleware        -- default limits; @limiter.limit routes check their own
  Route-level middleware (the auth gate) is attached per router, see
  api/routing.py and web/routes.py.

Lifespan handles startup and shutdown symmetrically. Startup is fail-fast:
invalid configuration exits the process, and an unreachable database raises
out of startup, so uvicorn never begins accepting connections in either case.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.middleware import RequestIds, RequestLoggingMiddleware
from api.routes.auth import router as auth_router
from auth.service import AuthService
from auth.store import AuthStore
from core.config import get_settings
from core.database import Database
from core.logging import configure_logging, shutdown_logging

logger = logging.getLogger("homebase.api")

VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Settings first -- everything else is configured from them. Invalid
         settings raise SystemExit(1) here.
      2. Logging second -- so every later step is logged the configured way.
      3. Database third -- pool, then the SELECT 1 probe. A failed probe
         propagates and aborts startup; there is no retry.
      4. Auth last -- the store creates its tables through the database, and
         the service needs both store and settings.
    """
    settings = get_settings()
    configure_logging(settings)
    logger.info("Homebase starting up", extra={"env": settings.node_env, "port": settings.port})

    database = Database(settings.database_url)
    try:
        database.ping()
    except Exception:
        logger.critical("Database probe failed, refusing to start")
        database.dispose()
        shutdown_logging()
        raise
    app.state.database = database

    app.state.auth = AuthService(AuthStore(database), settings)
    logger.info("Auth initialized")

    yield

    database.dispose()
    logger.info("Homebase shutdown complete")
    shutdown_logging()


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Homebase",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette puts the most recently added middleware outermost. SlowAPI is
# added first so request logging wraps it: a 429 still gets ENTER/EXIT lines.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)
app.add_middleware(RequestLoggingMiddleware, request_ids=RequestIds())

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api")
# Web pages are mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"error": {"code", "message"}} envelope the
# auth protocol uses, so clients parse one error shape everywhere.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"code": code, "message": message}})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After set to the rate limit window."""
    response = _error(429, "RATE_LIMITED", "Too many requests. Try again later.")
    response.headers["Retry-After"] = str(get_settings().auth_rate_limit_window)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(422, "VALIDATION_ERROR", "Request validation failed.")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured error for FastAPI/Starlette HTTP exceptions (404, 405, ...)."""
    response = _error(exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only, never to the response body.
    """
    logger.exception(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        extra={"request_id": getattr(request.state, "request_id", None)},
    )
    return _error(500, "INTERNAL_ERROR", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Not rate limited and not gated:
# load balancers must get a plain 200 without a session.
# ---------------------------------------------------------------------------


@app.get("/api/health", response_class=PlainTextResponse, tags=["Health"])
async def health() -> PlainTextResponse:
    """Liveness probe. Always 200 with body OK."""
    return PlainTextResponse("OK")
