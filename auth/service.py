"""
auth/service.py -- Session issuance, verification, and administration.

The rest of the application talks to authentication through exactly two
entry points, captured by the AuthProvider protocol:

  handle(request) -> Response
      Serves the authentication protocol mounted under /api/auth/. The API
      route forwards every request there untouched and returns whatever comes
      back; nothing outside this module interprets the wire format.

  get_session(headers) -> AuthSession | None
      Resolves request headers to the current session, or None. Used by the
      auth-gate middleware and the sign-in page.

AuthService is the implementation backed by AuthStore. Anything else that
satisfies AuthProvider (a stub in tests, a remote identity provider) can be
placed on app.state.auth instead.

Protocol endpoints (relative to /api/auth/):
  POST sign-up/email                -- create account + session
  POST sign-in/email                -- password sign-in
  POST sign-out                     -- end the current session
  GET  get-session                  -- current {session, user} or null
  GET  list-sessions                -- sessions of the current user
  POST revoke-session               -- end one of the current user's sessions
  GET  ok                           -- liveness of the auth handler
  GET  admin/list-users             -- admin only
  POST admin/set-role               -- admin only
  POST admin/ban-user               -- admin only; revokes the user's sessions
  POST admin/unban-user             -- admin only
  POST admin/revoke-user-sessions   -- admin only

Session cache:
  Sign-in and get-session write a signed session_data cookie valid for
  SESSION_CACHE_MAX_AGE seconds. While it is valid, get_session() answers
  from the cookie without a database round trip. A revoked or banned session
  can therefore stay usable for up to that long on a browser that already
  holds a cache cookie. That is the price of not hitting the database on
  every gated page view.

Concurrency:
  AuthStore and bcrypt are blocking. Every call into them from a coroutine
  goes through run_in_threadpool so the event loop keeps serving other
  requests while a query or hash runs.

Layer rule: may import core/ (config, database). No imports from api/ or web/.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, TypeVar
from urllib.parse import quote

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import IntegrityError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import Headers
from starlette.requests import Request, cookie_parser
from starlette.responses import JSONResponse, RedirectResponse, Response

from auth.errors import AuthError, forbidden, unauthorized
from auth.models import AuthSession, Session, User
from auth.schemas import (
    BanUserRequest,
    RevokeSessionRequest,
    SetRoleRequest,
    SignInRequest,
    SignUpRequest,
    UserIdRequest,
)
from auth.store import AuthStore, new_id
from auth.tokens import (
    CACHE_COOKIE,
    DUMMY_HASH,
    SESSION_COOKIE,
    clear_session_cookies,
    decode_session_cache,
    encode_session_cache,
    generate_session_token,
    hash_password,
    hash_session_token,
    set_cache_cookie,
    set_session_cookies,
    verify_password,
)
from core.config import Settings

logger = logging.getLogger("homebase.auth")

AUTH_BASE_PATH = "/api/auth"
SIGN_IN_PATH = "/sign-in"

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

BodyT = TypeVar("BodyT", bound=BaseModel)
Endpoint = Callable[[Request], Awaitable[Response]]


class AuthProvider(Protocol):
    """Anything that can serve the auth protocol and resolve sessions."""

    async def handle(self, request: Request) -> Response: ...

    async def get_session(self, headers: Mapping[str, str]) -> Optional[AuthSession]: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _safe_callback(url: Optional[str]) -> str:
    """Only relative, server-local paths are accepted as post-auth targets.

    Rejects absolute URLs and protocol-relative ones (//evil.example), both of
    which would bounce the user off-site after signing in.
    """
    if url and url.startswith("/") and not url.startswith("//"):
        return url
    return "/"


def _is_form(request: Request) -> bool:
    return request.headers.get("content-type", "").startswith(_FORM_TYPES)


def _ban_active(user: User, now: datetime) -> bool:
    if not user.banned:
        return False
    return user.ban_expires is None or _parse_ts(user.ban_expires) > now


def _public_session(session: Session, current_id: Optional[str] = None) -> dict:
    data = asdict(session)
    data.pop("token_hash")
    if current_id is not None:
        data["current"] = session.id == current_id
    return data


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class AuthService:
    """Database-backed AuthProvider.

    Usage:
        service = AuthService(AuthStore(database), settings)
        response = await service.handle(request)          # /api/auth/*
        auth_session = await service.get_session(request.headers)
    """

    def __init__(self, store: AuthStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings
        self._endpoints: dict[str, tuple[str, Endpoint]] = {
            "sign-up/email": ("POST", self._sign_up),
            "sign-in/email": ("POST", self._sign_in),
            "sign-out": ("POST", self._sign_out),
            "get-session": ("GET", self._get_session_endpoint),
            "list-sessions": ("GET", self._list_sessions),
            "revoke-session": ("POST", self._revoke_session),
            "ok": ("GET", self._ok),
            "admin/list-users": ("GET", self._admin_list_users),
            "admin/set-role": ("POST", self._admin_set_role),
            "admin/ban-user": ("POST", self._admin_ban_user),
            "admin/unban-user": ("POST", self._admin_unban_user),
            "admin/revoke-user-sessions": ("POST", self._admin_revoke_user_sessions),
        }

    # ------------------------------------------------------------------
    # Entry point 1: protocol handler
    # ------------------------------------------------------------------

    async def handle(self, request: Request) -> Response:
        """Dispatch one /api/auth/* request and render AuthError uniformly.

        Form submissions (the sign-in page) get redirects instead of JSON
        errors: back to /sign-in?error=<CODE> so the page can show a message.
        """
        path = request.url.path.removeprefix(AUTH_BASE_PATH).strip("/")
        try:
            entry = self._endpoints.get(path)
            if entry is None:
                raise AuthError(404, "NOT_FOUND", "Unknown auth endpoint.")
            method, endpoint = entry
            if request.method != method:
                raise AuthError(405, "METHOD_NOT_ALLOWED", f"Use {method} for this endpoint.")
            return await endpoint(request)
        except AuthError as exc:
            if exc.status_code >= 500:
                logger.error("Auth endpoint failed: %s", exc.message, extra={"path": path, "code": exc.code})
            if request.method == "POST" and _is_form(request):
                return RedirectResponse(f"{SIGN_IN_PATH}?error={quote(exc.code)}", status_code=302)
            return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # ------------------------------------------------------------------
    # Entry point 2: session lookup
    # ------------------------------------------------------------------

    async def get_session(self, headers: Mapping[str, str], use_cache: bool = True) -> Optional[AuthSession]:
        """Return the valid session the headers carry, or None.

        Token source: the session_token cookie, else Authorization: Bearer.
        A valid session_data cookie bound to the same token short-circuits
        the database lookup.
        """
        auth_session, _ = await self._resolve_session(headers, use_cache)
        return auth_session

    async def _resolve_session(
        self, headers: Mapping[str, str], use_cache: bool
    ) -> tuple[Optional[AuthSession], bool]:
        """get_session() plus whether the lookup pushed the expiry out."""
        if not isinstance(headers, Headers):
            headers = Headers(headers=dict(headers))
        cookies = cookie_parser(headers.get("cookie", ""))

        token = cookies.get(SESSION_COOKIE)
        if not token:
            authorization = headers.get("authorization", "")
            if authorization.startswith("Bearer "):
                token = authorization[7:].strip()
        if not token:
            return None, False

        token_hash = hash_session_token(token, self.settings.secret_key)

        if use_cache and cookies.get(CACHE_COOKIE):
            cached = decode_session_cache(cookies[CACHE_COOKIE], token_hash, self.settings.secret_key)
            if cached is not None and _parse_ts(cached.session.expires_at) > _now():
                return cached, False

        return await run_in_threadpool(self._load_session, token_hash)

    def _load_session(self, token_hash: str) -> tuple[Optional[AuthSession], bool]:
        auth_session = self.store.get_session_by_token_hash(token_hash)
        if auth_session is None:
            return None, False

        now = _now()
        session = auth_session.session
        expires_at = _parse_ts(session.expires_at)
        if expires_at <= now:
            self.store.delete_session(session.id)
            return None, False
        if _ban_active(auth_session.user, now):
            return None, False

        # Sliding expiry: a session last refreshed more than update_age ago
        # is pushed out to a full lifetime again.
        lifetime = timedelta(seconds=self.settings.session_expire_seconds)
        update_age = timedelta(seconds=self.settings.session_update_age_seconds)
        if expires_at - lifetime + update_age <= now:
            session.expires_at = (now + lifetime).isoformat()
            self.store.extend_session(session.id, session.expires_at)
            return auth_session, True
        return auth_session, False

    # ------------------------------------------------------------------
    # Account creation (also used by the CLI)
    # ------------------------------------------------------------------

    def create_user(self, name: str, email: str, password: str, role: str = "user") -> User:
        """Create a user with a credential account. Blocking; hashes with bcrypt.

        Raises AuthError(422, USER_ALREADY_EXISTS) on a duplicate email.
        """
        email = email.strip().lower()
        if self.store.get_user_by_email(email) is not None:
            raise AuthError(422, "USER_ALREADY_EXISTS", "A user with that email already exists.")
        try:
            user = self.store.create_user(
                User(id=new_id(), name=name.strip(), email=email, role=role),
                hash_password(password),
            )
        except IntegrityError as exc:
            # Two sign-ups for the same email raced past the check above.
            raise AuthError(422, "USER_ALREADY_EXISTS", "A user with that email already exists.") from exc
        logger.info("User created", extra={"user_id": user.id, "role": role})
        return user

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _read_body(self, request: Request, model: type[BodyT]) -> BodyT:
        if _is_form(request):
            data = dict(await request.form())
        else:
            try:
                data = await request.json()
            except ValueError as exc:
                raise AuthError(400, "INVALID_BODY", "Request body must be JSON or form data.") from exc
        if not isinstance(data, dict):
            raise AuthError(400, "INVALID_BODY", "Request body must be an object.")
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            message = f"{field}: {first['msg']}" if field else first["msg"]
            raise AuthError(400, "VALIDATION_ERROR", message) from exc

    async def _require_session(self, request: Request) -> AuthSession:
        auth_session = await self.get_session(request.headers)
        if auth_session is None:
            raise unauthorized()
        return auth_session

    async def _require_admin(self, request: Request) -> AuthSession:
        auth_session = await self._require_session(request)
        if auth_session.user.role != "admin":
            raise forbidden()
        return auth_session

    def _start_session(self, user: User, request: Request) -> tuple[str, AuthSession]:
        token = generate_session_token()
        expires_at = _now() + timedelta(seconds=self.settings.session_expire_seconds)
        session = self.store.create_session(
            Session(
                id=new_id(),
                user_id=user.id,
                token_hash=hash_session_token(token, self.settings.secret_key),
                expires_at=expires_at.isoformat(),
                ip_address=request.client.host if request.client else None,
                user_agent=request.headers.get("user-agent"),
            )
        )
        return token, AuthSession(session=session, user=user)

    def _signed_in_response(
        self,
        request: Request,
        token: str,
        auth_session: AuthSession,
        callback_url: Optional[str],
        remember_me: bool = True,
    ) -> Response:
        if callback_url and _is_form(request):
            response: Response = RedirectResponse(_safe_callback(callback_url), status_code=302)
        else:
            response = JSONResponse(content={"token": token, "user": asdict(auth_session.user)})
        set_session_cookies(
            response,
            token,
            self._cache_value(auth_session),
            # rememberMe=false: a browser-session cookie, gone when the browser closes.
            max_age=self.settings.session_expire_seconds if remember_me else None,
            cache_max_age=self.settings.session_cache_max_age,
            secure=self.settings.secure_cookies,
        )
        response.headers["Cache-Control"] = "no-store"
        return response

    def _cache_value(self, auth_session: AuthSession) -> str:
        return encode_session_cache(auth_session, self.settings.secret_key, self.settings.session_cache_max_age)

    # ------------------------------------------------------------------
    # Endpoints: sign-up / sign-in / sign-out
    # ------------------------------------------------------------------

    async def _sign_up(self, request: Request) -> Response:
        body = await self._read_body(request, SignUpRequest)
        user = await run_in_threadpool(self.create_user, body.name, body.email, body.password)
        token, auth_session = await run_in_threadpool(self._start_session, user, request)
        return self._signed_in_response(request, token, auth_session, body.callback_url)

    async def _sign_in(self, request: Request) -> Response:
        body = await self._read_body(request, SignInRequest)
        user = await run_in_threadpool(self._check_credentials, body.email, body.password)
        token, auth_session = await run_in_threadpool(self._start_session, user, request)
        logger.info("User signed in", extra={"user_id": user.id})
        return self._signed_in_response(request, token, auth_session, body.callback_url, body.remember_me)

    def _check_credentials(self, email: str, password: str) -> User:
        """Verify email + password with timing equalization.

        bcrypt always runs, against DUMMY_HASH when the email is unknown, so
        response time does not reveal which emails have accounts. Unknown
        email and wrong password produce the same error.
        """
        invalid = AuthError(401, "INVALID_EMAIL_OR_PASSWORD", "Invalid email or password.")
        user = self.store.get_user_by_email(email)
        hashed = self.store.get_password_hash(user.id) if user is not None else None
        if user is None or hashed is None:
            verify_password(password, DUMMY_HASH)
            logger.warning("Sign-in failed: unknown account")
            raise invalid
        if not verify_password(password, hashed):
            logger.warning("Sign-in failed: wrong password", extra={"user_id": user.id})
            raise invalid

        now = _now()
        if _ban_active(user, now):
            raise AuthError(403, "BANNED_USER", "This account has been banned.")
        if user.banned:
            # Ban ran out; lift it so the rest of the system sees a clean user.
            user = self.store.update_user(user.id, banned=False, ban_reason=None, ban_expires=None) or user
        return user

    async def _sign_out(self, request: Request) -> Response:
        token = cookie_parser(request.headers.get("cookie", "")).get(SESSION_COOKIE)
        if token:
            token_hash = hash_session_token(token, self.settings.secret_key)
            auth_session = await run_in_threadpool(self.store.get_session_by_token_hash, token_hash)
            if auth_session is not None:
                await run_in_threadpool(self.store.delete_session, auth_session.session.id)
                logger.info("User signed out", extra={"user_id": auth_session.user.id})
        if _is_form(request):
            response: Response = RedirectResponse(SIGN_IN_PATH, status_code=302)
        else:
            response = JSONResponse(content={"success": True})
        clear_session_cookies(response)
        return response

    # ------------------------------------------------------------------
    # Endpoints: sessions
    # ------------------------------------------------------------------

    async def _get_session_endpoint(self, request: Request) -> Response:
        use_cache = request.query_params.get("disableCookieCache", "").lower() != "true"
        auth_session, extended = await self._resolve_session(request.headers, use_cache)
        if auth_session is None:
            response = JSONResponse(content=None)
            if SESSION_COOKIE in request.cookies:
                clear_session_cookies(response)
            return response
        response = JSONResponse(content=auth_session.public_dict())
        token = request.cookies.get(SESSION_COOKIE)
        if extended and token:
            # The browser cookie has to follow the new expiry.
            set_session_cookies(
                response,
                token,
                self._cache_value(auth_session),
                max_age=self.settings.session_expire_seconds,
                cache_max_age=self.settings.session_cache_max_age,
                secure=self.settings.secure_cookies,
            )
            return response
        set_cache_cookie(
            response,
            self._cache_value(auth_session),
            max_age=self.settings.session_cache_max_age,
            secure=self.settings.secure_cookies,
        )
        return response

    async def _list_sessions(self, request: Request) -> Response:
        auth_session = await self._require_session(request)
        sessions = await run_in_threadpool(self.store.list_sessions, auth_session.user.id)
        return JSONResponse(content=[_public_session(s, auth_session.session.id) for s in sessions])

    async def _revoke_session(self, request: Request) -> Response:
        auth_session = await self._require_session(request)
        body = await self._read_body(request, RevokeSessionRequest)
        revoked = await run_in_threadpool(self.store.delete_session, body.session_id, auth_session.user.id)
        if not revoked:
            raise AuthError(404, "SESSION_NOT_FOUND", "Session not found.")
        return JSONResponse(content={"success": True})

    async def _ok(self, request: Request) -> Response:
        return JSONResponse(content={"ok": True})

    # ------------------------------------------------------------------
    # Endpoints: admin
    # ------------------------------------------------------------------

    async def _admin_list_users(self, request: Request) -> Response:
        await self._require_admin(request)
        users = await run_in_threadpool(self.store.list_users)
        return JSONResponse(content={"users": [asdict(u) for u in users], "total": len(users)})

    async def _admin_set_role(self, request: Request) -> Response:
        await self._require_admin(request)
        body = await self._read_body(request, SetRoleRequest)
        user = await run_in_threadpool(self.store.update_user, body.user_id, role=body.role)
        if user is None:
            raise AuthError(404, "USER_NOT_FOUND", "User not found.")
        logger.info("Role changed", extra={"user_id": user.id, "role": body.role})
        return JSONResponse(content={"user": asdict(user)})

    async def _admin_ban_user(self, request: Request) -> Response:
        admin = await self._require_admin(request)
        body = await self._read_body(request, BanUserRequest)
        if body.user_id == admin.user.id:
            raise AuthError(400, "CANNOT_BAN_YOURSELF", "You cannot ban yourself.")
        ban_expires = None
        if body.ban_expires_in is not None:
            ban_expires = (_now() + timedelta(seconds=body.ban_expires_in)).isoformat()
        user = await run_in_threadpool(
            self.store.update_user,
            body.user_id,
            banned=True,
            ban_reason=body.ban_reason,
            ban_expires=ban_expires,
        )
        if user is None:
            raise AuthError(404, "USER_NOT_FOUND", "User not found.")
        revoked = await run_in_threadpool(self.store.delete_user_sessions, user.id)
        logger.info("User banned", extra={"user_id": user.id, "sessions_revoked": revoked})
        return JSONResponse(content={"user": asdict(user)})

    async def _admin_unban_user(self, request: Request) -> Response:
        await self._require_admin(request)
        body = await self._read_body(request, UserIdRequest)
        user = await run_in_threadpool(
            self.store.update_user, body.user_id, banned=False, ban_reason=None, ban_expires=None
        )
        if user is None:
            raise AuthError(404, "USER_NOT_FOUND", "User not found.")
        logger.info("User unbanned", extra={"user_id": user.id})
        return JSONResponse(content={"user": asdict(user)})

    async def _admin_revoke_user_sessions(self, request: Request) -> Response:
        await self._require_admin(request)
        body = await self._read_body(request, UserIdRequest)
        revoked = await run_in_threadpool(self.store.delete_user_sessions, body.user_id)
        return JSONResponse(content={"success": True, "revoked": revoked})
