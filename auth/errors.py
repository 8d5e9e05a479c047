"""
auth/errors.py -- The one exception type the auth protocol raises.

AuthService methods raise AuthError for every expected failure (bad
credentials, missing session, forbidden admin action). AuthService.handle()
is the only place that turns it into an HTTP response, always using the
{"error": {"code", "message"}} envelope.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """An expected authentication-protocol failure with an HTTP status."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


def unauthorized() -> AuthError:
    return AuthError(401, "UNAUTHORIZED", "Authentication required.")


def forbidden() -> AuthError:
    return AuthError(403, "FORBIDDEN", "Admin access required.")
