"""
api/middleware.py -- Global request logging middleware.

Pattern: Interceptor / Chain of Responsibility. Every request passes through
RequestLoggingMiddleware before reaching any route (and any route-level
middleware from api/routing.py). It is purely observational: it never builds
or alters a response, and anything raised downstream propagates unchanged.

Per request it emits exactly two records on the "homebase.request" logger,
sharing one request id:

  ENTER  request_id, method, url
  EXIT   request_id, method, url, duration (ms, rounded)

EXIT is emitted from a finally block so a request that raises still logs it.

Request ids come from a RequestIds object passed in at registration time,
not from module globals, so tests can build their own and the numbering is
owned by whoever constructs the app.
"""

from __future__ import annotations

import logging
import secrets
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

logger = logging.getLogger("homebase.request")

_COUNTER_MASK = 0xFFFFFFFF  # wrap like an unsigned 32-bit integer


class RequestIds:
    """Process-lifetime request id allocator: "<base>-<counter>".

    base is 8 random URL-safe characters chosen once. counter increments
    before each id and wraps to 0 after 2**32 - 1, so ids are unique for
    2**32 consecutive requests. Only the event loop thread calls next(),
    so no lock is needed.
    """

    def __init__(self, base: str | None = None, start: int = 0) -> None:
        self.base = base if base is not None else secrets.token_urlsafe(6)
        self.counter = start & _COUNTER_MASK

    def next(self) -> str:
        self.counter = (self.counter + 1) & _COUNTER_MASK
        return f"{self.base}-{self.counter}"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log ENTER/EXIT around every request.

    Register once on the app:
        app.add_middleware(RequestLoggingMiddleware, request_ids=RequestIds())
    """

    def __init__(self, app: ASGIApp, request_ids: RequestIds | None = None) -> None:
        super().__init__(app)
        self.request_ids = request_ids if request_ids is not None else RequestIds()

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        request_id = self.request_ids.next()
        fields = {"request_id": request_id, "method": request.method, "url": request.url.path}
        request.state.request_id = request_id

        logger.info("ENTER", extra=fields)
        try:
            return await call_next(request)
        finally:
            duration = round((time.perf_counter() - start) * 1000)
            logger.info("EXIT", extra={**fields, "duration": duration})
