"""Request/response schemas for account endpoints.

Wire names are camelCase to match the web client; Python attributes stay
snake_case.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _normalize_email(v: str) -> str:
    return v.lower().strip()


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class RegisterRequest(CamelModel):
    """Email registration request."""

    email: EmailStr
    username: str = Field(..., min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    password: str = Field(..., min_length=1, max_length=128)
    avatar: str | None = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return _normalize_email(v)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class LoginRequest(CamelModel):
    """Login with email + password."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return _normalize_email(v)


class UpdateProfileRequest(CamelModel):
    """Profile update. Unknown keys (including email and password) are dropped."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    username: str | None = Field(None, min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    avatar: str | None = None
    preferences: dict[str, Any] | None = None

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class ChangePasswordRequest(CamelModel):
    """Change password (requires current password)."""

    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=1, max_length=128)

    @model_validator(mode="after")
    def new_differs_from_current(self) -> ChangePasswordRequest:
        if self.new_password == self.current_password:
            msg = "New password must be different from current password"
            raise ValueError(msg)
        return self


class ForgotPasswordRequest(CamelModel):
    """Request a password reset email."""

    email: EmailStr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return _normalize_email(v)


class ResetPasswordRequest(CamelModel):
    """Reset password with a mailed token."""

    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1, max_length=128)


class VerifyEmailRequest(CamelModel):
    """Verify email address with a mailed token."""

    token: str = Field(..., min_length=1)


class DeleteAccountRequest(CamelModel):
    """Account deletion requires the password again."""

    password: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class UserResponse(CamelModel):
    """Private user projection. There is deliberately no password field."""

    id: int
    email: str
    username: str
    avatar: str
    preferences: dict[str, Any]
    is_verified: bool
    auth_provider: str
    created_at: datetime
    updated_at: datetime


class StatusResponse(CamelModel):
    success: bool = True
    message: str


class AuthResponse(StatusResponse):
    """Register / login result."""

    user: UserResponse
    token: str


class ProfileResponse(CamelModel):
    success: bool = True
    message: str | None = None
    user: UserResponse


class SessionResponse(CamelModel):
    """What the caller's own bearer token says about itself."""

    user_id: int
    issued_at: datetime | None
    expires_at: datetime | None
