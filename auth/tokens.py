"""
auth/tokens.py -- Password hashing, session tokens, and the session cache cookie.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). The DUMMY_HASH
       constant lets the service run a full bcrypt check even when the email
       is unknown, so response time does not reveal which emails exist.

  Session tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. The
       raw token goes to the client in the session_token cookie; the database
       stores HMAC-SHA256(SECRET_KEY, token) so lookup is O(1) and a database
       leak does not yield usable cookies.

  Session cache: a python-jose HS256 JWT in the session_data cookie, carrying
       the serialized session + user and an exp of SESSION_CACHE_MAX_AGE
       seconds. While it is valid, get_session() trusts it without a database
       round trip. The JWT is bound to the session token's hash, so a cache
       cookie cannot be replayed alongside a different token.

Every function that needs SECRET_KEY takes it as an argument; the service
passes settings.secret_key. Nothing here reads configuration at import time.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import AuthSession

logger = logging.getLogger("homebase.auth")

_ALGORITHM = "HS256"

SESSION_COOKIE = "session_token"
CACHE_COOKIE = "session_data"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes; the request schema caps
    passwords at 128 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database, or a password bcrypt refuses.
        return False


# Computed once at import so the first failed sign-in is not measurably
# slower than later ones.
DUMMY_HASH: str = hash_password("homebase_timing_dummy")


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def hash_session_token(token: str, secret_key: str) -> str:
    """Return HMAC-SHA256(secret_key, token) as hex. Deterministic, for lookup."""
    return hmac.new(secret_key.encode(), token.encode(), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Session cache (signed cookie)
# ---------------------------------------------------------------------------


def encode_session_cache(auth_session: AuthSession, secret_key: str, max_age: int) -> str:
    payload = {
        "data": auth_session.to_dict(),
        "tok": auth_session.session.token_hash,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=max_age),
    }
    return jwt.encode(payload, secret_key, algorithm=_ALGORITHM)


def decode_session_cache(value: str, token_hash: str, secret_key: str) -> AuthSession | None:
    """Return the cached AuthSession, or None if expired, tampered, or foreign.

    Returning None (rather than raising) keeps the caller simple: any unusable
    cache cookie just means "ask the database".
    """
    try:
        payload = jwt.decode(value, secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not hmac.compare_digest(str(payload.get("tok", "")), token_hash):
        return None
    try:
        return AuthSession.from_dict(payload["data"])
    except (KeyError, TypeError):
        logger.warning("Discarding session cache cookie with an unexpected shape")
        return None


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookies(
    response,
    token: str,
    cache_value: str,
    *,
    max_age: int | None,
    cache_max_age: int,
    secure: bool,
) -> None:
    """Write the session token and the session cache cookie on a response.

    httponly=True: JS cannot read either cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POSTs (CSRF mitigation).
    secure: only sent over HTTPS in production.
    max_age None makes session_token a browser-session cookie.
    """
    response.set_cookie(SESSION_COOKIE, value=token, httponly=True, samesite="lax", secure=secure, max_age=max_age)
    set_cache_cookie(response, cache_value, max_age=cache_max_age, secure=secure)


def set_cache_cookie(response, cache_value: str, *, max_age: int, secure: bool) -> None:
    response.set_cookie(CACHE_COOKIE, value=cache_value, httponly=True, samesite="lax", secure=secure, max_age=max_age)


def clear_session_cookies(response) -> None:
    response.delete_cookie(SESSION_COOKIE)
    response.delete_cookie(CACHE_COOKIE)
