"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; auth/store.py maps rows to them and auth/service.py does the work.

Timestamps are ISO 8601 UTC strings, matching what the store persists.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass
class User:
    """An account that can hold sessions.

    role is "user" or "admin". banned/ban_reason/ban_expires are managed by the
    admin endpoints; ban_expires None with banned True means a permanent ban.
    """

    id: str
    name: str
    email: str
    role: str = "user"
    email_verified: bool = False
    image: str | None = None
    banned: bool = False
    ban_reason: str | None = None
    ban_expires: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Session:
    """A signed-in browser or API client.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token lives only
    in the client's session_token cookie.
    """

    id: str
    user_id: str
    token_hash: str
    expires_at: str
    ip_address: str | None = None
    user_agent: str | None = None
    impersonated_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class AuthSession:
    """What get_session() resolves a request to: the session and its user."""

    session: Session
    user: User

    def to_dict(self) -> dict:
        return {"session": asdict(self.session), "user": asdict(self.user)}

    @classmethod
    def from_dict(cls, data: dict) -> AuthSession:
        return cls(session=Session(**data["session"]), user=User(**data["user"]))

    def public_dict(self) -> dict:
        """Wire form for /api/auth/get-session: never exposes the token hash."""
        session = asdict(self.session)
        session.pop("token_hash")
        return {"session": session, "user": asdict(self.user)}
