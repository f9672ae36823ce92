"""FastAPI authentication and service dependencies."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from otazumi.auth.jwt import BearerTokenCodec, TokenVerificationError
from otazumi.auth.password import PasswordHasher
from otazumi.auth.service import AccountService
from otazumi.config import Settings
from otazumi.database import get_session
from otazumi.db.models import User
from otazumi.sync.service import SyncReconciler

_bearer = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def get_token_codec(request: Request) -> BearerTokenCodec:
    codec: BearerTokenCodec = request.app.state.token_codec
    return codec


def get_password_hasher(request: Request) -> PasswordHasher:
    hasher: PasswordHasher = request.app.state.password_hasher
    return hasher


def get_account_service(
    db: AsyncSession = Depends(get_session),
    hasher: PasswordHasher = Depends(get_password_hasher),
    codec: BearerTokenCodec = Depends(get_token_codec),
    settings: Settings = Depends(get_app_settings),
) -> AccountService:
    """Account service bound to this request's session."""
    return AccountService(db, hasher=hasher, codec=codec, settings=settings)


def get_sync_reconciler(db: AsyncSession = Depends(get_session)) -> SyncReconciler:
    return SyncReconciler(db)


def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> str:
    """Raw bearer token from the Authorization header."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return credentials.credentials


async def get_current_user(
    token: str = Depends(get_bearer_token),
    codec: BearerTokenCodec = Depends(get_token_codec),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Verify the bearer token and load its user.

    Raises 401 on a missing, invalid or expired token, or a deleted user.
    """
    try:
        claims = codec.verify(token)
    except TokenVerificationError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    user = await db.get(User, claims.user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user
