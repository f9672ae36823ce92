"""Account router: all /api/auth/* account endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from otazumi.auth.dependencies import (
    get_account_service,
    get_app_settings,
    get_bearer_token,
    get_current_user,
)
from otazumi.auth.jwt import BearerTokenCodec
from otazumi.auth.password import PasswordStrengthError, validate_password_strength
from otazumi.auth.schemas import (
    AuthResponse,
    ChangePasswordRequest,
    DeleteAccountRequest,
    ForgotPasswordRequest,
    LoginRequest,
    ProfileResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SessionResponse,
    StatusResponse,
    UpdateProfileRequest,
    UserResponse,
    VerifyEmailRequest,
)
from otazumi.auth.service import AccountService
from otazumi.config import Settings
from otazumi.database import get_session
from otazumi.db.models import User
from otazumi.email.service import EmailService, MailKind, get_email_service

logger = structlog.get_logger()

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


def user_response(user: User) -> UserResponse:
    """Build a UserResponse from a User model."""
    return UserResponse(
        id=user.id,
        email=user.email,
        username=user.username,
        avatar=user.avatar,
        preferences=user.preferences or {},
        is_verified=user.is_verified,
        auth_provider=user.auth_provider,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _check_password(password: str, settings: Settings) -> None:
    try:
        validate_password_strength(password, settings)
    except PasswordStrengthError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


async def _dispatch_mail(
    email_service: EmailService,
    kind: MailKind,
    to: str,
    username: str,
    token: str | None = None,
) -> None:
    """Send a mail without ever failing the calling operation."""
    try:
        sent = await email_service.send(kind, to, username, token)
    except Exception:
        logger.exception("email_dispatch_failed", kind=kind.value, to=to)
        return
    if not sent:
        logger.warning("email_not_delivered", kind=kind.value, to=to)


def _timestamp(claims: dict[str, Any], key: str) -> datetime | None:
    value = claims.get(key)
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


# ---------------------------------------------------------------------------
# Registration + login
# ---------------------------------------------------------------------------


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: RegisterRequest,
    service: AccountService = Depends(get_account_service),
    db: AsyncSession = Depends(get_session),
    email_service: EmailService = Depends(get_email_service),
    settings: Settings = Depends(get_app_settings),
) -> AuthResponse:
    """Register with email + username + password."""
    _check_password(body.password, settings)

    result = await service.register(
        email=body.email,
        username=body.username,
        password=body.password,
        avatar=body.avatar,
    )
    await db.commit()

    await _dispatch_mail(
        email_service,
        MailKind.VERIFICATION,
        result.user.email,
        result.user.username,
        result.verification_token,
    )

    return AuthResponse(
        message="Registration successful. Please check your email to verify your account.",
        user=user_response(result.user),
        token=result.bearer_token,
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    service: AccountService = Depends(get_account_service),
    db: AsyncSession = Depends(get_session),
) -> AuthResponse:
    """Login with email + password."""
    result = await service.login(body.email, body.password)
    await db.commit()
    return AuthResponse(message="Login successful", user=user_response(result.user), token=result.bearer_token)


@router.post("/logout", response_model=StatusResponse)
async def logout(user: User = Depends(get_current_user)) -> StatusResponse:
    """Acknowledge logout. Tokens are stateless; the client discards its copy."""
    logger.info("user_logged_out", user_id=user.id)
    return StatusResponse(message="Logout successful")


@router.get("/session", response_model=SessionResponse)
async def session_info(
    token: str = Depends(get_bearer_token),
    user: User = Depends(get_current_user),
) -> SessionResponse:
    """Describe the caller's (already verified) bearer token."""
    claims = BearerTokenCodec.decode_unsafe(token) or {}
    return SessionResponse(
        user_id=user.id,
        issued_at=_timestamp(claims, "iat"),
        expires_at=_timestamp(claims, "exp"),
    )


# ---------------------------------------------------------------------------
# Profile + password
# ---------------------------------------------------------------------------


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(
    user: User = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
) -> ProfileResponse:
    """Get own profile."""
    current = await service.get_by_id(user.id)
    return ProfileResponse(user=user_response(current))


@router.put("/profile", response_model=ProfileResponse)
async def update_profile(
    body: UpdateProfileRequest,
    user: User = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
    db: AsyncSession = Depends(get_session),
) -> ProfileResponse:
    """Update username, avatar and preferences."""
    updated = await service.update_profile(user.id, body.model_dump(exclude_unset=True))
    await db.commit()
    return ProfileResponse(message="Profile updated successfully", user=user_response(updated))


@router.put("/password", response_model=StatusResponse)
async def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
) -> StatusResponse:
    """Change password (requires the current one)."""
    _check_password(body.new_password, settings)
    await service.change_password(user.id, body.current_password, body.new_password)
    await db.commit()
    return StatusResponse(message="Password changed successfully")


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/forgot-password", response_model=StatusResponse)
async def forgot_password(
    body: ForgotPasswordRequest,
    service: AccountService = Depends(get_account_service),
    db: AsyncSession = Depends(get_session),
    email_service: EmailService = Depends(get_email_service),
) -> StatusResponse:
    """Request a password reset email. The answer never reveals whether the email exists."""
    result = await service.request_password_reset(body.email)
    await db.commit()

    if result.reset_token is not None and result.user is not None:
        await _dispatch_mail(
            email_service,
            MailKind.PASSWORD_RESET,
            result.user.email,
            result.user.username,
            result.reset_token,
        )

    return StatusResponse(message="If an account exists, a reset link will be sent.")


@router.post("/reset-password", response_model=StatusResponse)
async def reset_password(
    body: ResetPasswordRequest,
    service: AccountService = Depends(get_account_service),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
) -> StatusResponse:
    """Reset password with a mailed token."""
    _check_password(body.new_password, settings)
    await service.reset_password(body.token, body.new_password)
    await db.commit()
    return StatusResponse(message="Password reset successful")


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.post("/verify-email", response_model=StatusResponse)
async def verify_email(
    body: VerifyEmailRequest,
    service: AccountService = Depends(get_account_service),
    db: AsyncSession = Depends(get_session),
    email_service: EmailService = Depends(get_email_service),
) -> StatusResponse:
    """Verify email address with a mailed token."""
    user = await service.verify_email(body.token)
    await db.commit()
    await _dispatch_mail(email_service, MailKind.WELCOME, user.email, user.username)
    return StatusResponse(message="Email verified successfully")


@router.post("/resend-verification", response_model=StatusResponse)
async def resend_verification(
    user: User = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
    db: AsyncSession = Depends(get_session),
    email_service: EmailService = Depends(get_email_service),
) -> StatusResponse:
    """Issue a fresh verification link."""
    user, verification_token = await service.resend_verification(user.id)
    await db.commit()
    await _dispatch_mail(email_service, MailKind.VERIFICATION, user.email, user.username, verification_token)
    return StatusResponse(message="Verification email sent")


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


@router.delete("/account", response_model=StatusResponse)
async def delete_account(
    body: DeleteAccountRequest,
    user: User = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
    db: AsyncSession = Depends(get_session),
    email_service: EmailService = Depends(get_email_service),
) -> StatusResponse:
    """Delete the account and all synced data."""
    email, username = user.email, user.username
    await service.delete_account(user.id, body.password)
    await db.commit()
    await _dispatch_mail(email_service, MailKind.ACCOUNT_DELETED, email, username)
    return StatusResponse(message="Account deleted successfully")
