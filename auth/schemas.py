"""
auth/schemas.py -- Request bodies of the /api/auth/* protocol.

These Pydantic v2 models define the wire contract AuthService.handle() accepts.
Field names on the wire are camelCase (callbackURL, userId, ...); Python code
uses snake_case attributes via aliases.

Bodies arrive either as JSON (API clients) or form-encoded (the sign-in page).
Both are validated through the same models.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    callback_url: Optional[str] = Field(default=None, alias="callbackURL", max_length=2048)


class _Credentials(_Body):
    email: str = Field(min_length=3, max_length=255)
    # Never stripped: leading/trailing spaces are part of a password.
    password: str = Field(min_length=8, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        value = value.strip()
        if "@" not in value:
            raise ValueError("Invalid email address.")
        return value.lower()


class SignUpRequest(_Credentials):
    """POST /api/auth/sign-up/email"""

    name: str = Field(min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name is required.")
        return value


class SignInRequest(_Credentials):
    """POST /api/auth/sign-in/email"""

    remember_me: bool = Field(default=True, alias="rememberMe")


class RevokeSessionRequest(_Body):
    """POST /api/auth/revoke-session"""

    session_id: str = Field(alias="sessionId", min_length=1, max_length=64)


class UserIdRequest(_Body):
    """POST /api/auth/admin/unban-user and /api/auth/admin/revoke-user-sessions"""

    user_id: str = Field(alias="userId", min_length=1, max_length=64)


class SetRoleRequest(UserIdRequest):
    """POST /api/auth/admin/set-role"""

    role: Literal["user", "admin"]


class BanUserRequest(UserIdRequest):
    """POST /api/auth/admin/ban-user

    ban_expires_in is in seconds; omitted means a permanent ban.
    """

    ban_reason: Optional[str] = Field(default=None, alias="banReason", max_length=500)
    ban_expires_in: Optional[int] = Field(default=None, alias="banExpiresIn", gt=0)
