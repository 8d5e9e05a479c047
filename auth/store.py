"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AuthStore is the repository; _row_to_user / _row_to_session are the mappers.
Service and route code never touches SQL directly.

Security:
  All queries use bound parameters through SQLAlchemy Core. No f-strings in SQL.

  Session tokens are stored as HMAC hashes (sessions.token_hash). A leaked
  database does not yield usable cookies without SECRET_KEY.

  Passwords live in accounts.password (provider_id="credential"), not on the
  users row, so list/select queries on users never carry hashes around.

Schema:
  users     -- identity, role, ban state
  accounts  -- one row per sign-in method; only "credential" exists today
  sessions  -- one row per signed-in client

Layer rule: may import core.database (the shared pool). No imports from
api/ or web/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, ForeignKey, MetaData, String, Table, Text, func, select

from auth.models import AuthSession, Session, User
from core.database import Database

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-cased
    Column("email_verified", Boolean, nullable=False, default=False),
    Column("image", Text),
    Column("role", String(30), nullable=False, default="user"),
    Column("banned", Boolean, nullable=False, default=False),
    Column("ban_reason", Text),
    Column("ban_expires", String(32)),  # NULL with banned=True is a permanent ban
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("provider_id", String(30), nullable=False),  # "credential"
    Column("account_id", String(255), nullable=False),  # user id for credential accounts
    Column("password", Text),  # bcrypt hash
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("impersonated_by", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_CREDENTIAL = "credential"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User, credential Account and Session records.

    Usage:
        store = AuthStore(database)
        user = store.create_user(User(id=new_id(), name="Ada", email="ada@example.com"), hash_password("..."))
        store.get_user_by_email("ada@example.com")

    Every method is synchronous. Async callers go through run_in_threadpool.
    """

    def __init__(self, database: Database) -> None:
        self.engine = database.engine
        database.create_all(_metadata)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, password_hash: str | None = None) -> User:
        """Insert a user (and its credential account) in one transaction.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Returns the stored user with timestamps filled in.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user.id,
                    name=user.name,
                    email=user.email.lower(),
                    email_verified=user.email_verified,
                    image=user.image,
                    role=user.role,
                    banned=user.banned,
                    ban_reason=user.ban_reason,
                    ban_expires=user.ban_expires,
                    created_at=now,
                    updated_at=now,
                )
            )
            if password_hash is not None:
                conn.execute(
                    _accounts.insert().values(
                        id=new_id(),
                        user_id=user.id,
                        provider_id=_CREDENTIAL,
                        account_id=user.id,
                        password=password_hash,
                        created_at=now,
                        updated_at=now,
                    )
                )
            row = conn.execute(_users.select().where(_users.c.id == user.id)).one()
        return _row_to_user(row)

    def get_user_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup (emails are stored lower-cased)."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_password_hash(self, user_id: str) -> str | None:
        """Return the bcrypt hash of the user's credential account, if any."""
        with self.engine.connect() as conn:
            return conn.execute(
                select(_accounts.c.password).where(
                    (_accounts.c.user_id == user_id) & (_accounts.c.provider_id == _CREDENTIAL)
                )
            ).scalar_one_or_none()

    def list_users(self) -> list[User]:
        """All users, oldest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at, _users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar_one()

    def update_user(self, user_id: str, **fields) -> User | None:
        """Update mutable columns (role, banned, ban_reason, ban_expires, name, image).

        Returns the updated user, or None if user_id was not found.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields)
            )
            if result.rowcount == 0:
                return None
            row = conn.execute(_users.select().where(_users.c.id == user_id)).one()
        return _row_to_user(row)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> Session:
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    token_hash=session.token_hash,
                    expires_at=session.expires_at,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    impersonated_by=session.impersonated_by,
                    created_at=now,
                    updated_at=now,
                )
            )
        session.created_at = now
        session.updated_at = now
        return session

    def get_session_by_token_hash(self, token_hash: str) -> AuthSession | None:
        """Return the session and its user. Expiry is the caller's decision."""
        with self.engine.connect() as conn:
            session_row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
            if session_row is None:
                return None
            user_row = conn.execute(_users.select().where(_users.c.id == session_row.user_id)).fetchone()
        if user_row is None:
            return None
        return AuthSession(session=_row_to_session(session_row), user=_row_to_user(user_row))

    def list_sessions(self, user_id: str) -> list[Session]:
        """All sessions of a user, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def extend_session(self, session_id: str, expires_at: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.update()
                .where(_sessions.c.id == session_id)
                .values(expires_at=expires_at, updated_at=_now_iso())
            )

    def delete_session(self, session_id: str, user_id: str | None = None) -> bool:
        """Delete one session. When user_id is given, it must own the session.

        The ownership condition is part of the WHERE clause so a user cannot
        revoke another user's session by guessing its id.
        """
        condition = _sessions.c.id == session_id
        if user_id is not None:
            condition = condition & (_sessions.c.user_id == user_id)
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(condition))
        return result.rowcount > 0

    def delete_user_sessions(self, user_id: str) -> int:
        """Revoke every session of a user. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        role=row.role,
        email_verified=bool(row.email_verified),
        image=row.image,
        banned=bool(row.banned),
        ban_reason=row.ban_reason,
        ban_expires=row.ban_expires,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        impersonated_by=row.impersonated_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
