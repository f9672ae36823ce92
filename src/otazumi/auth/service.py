"""
Account lifecycle business logic.

Handles registration under the daily quota, login, profile and password
changes, the verification/reset token flows and account deletion. Mail is
never sent from here: tokens that need delivering are handed back to the
caller.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from otazumi.auth.errors import AccountError, FailureKind
from otazumi.auth.jwt import BearerTokenCodec
from otazumi.auth.password import PasswordHasher
from otazumi.auth.throttle import SignupThrottle
from otazumi.auth.tokens import EphemeralTokenRegistry, TokenConsumeError, TokenPurpose
from otazumi.config import Settings, get_settings
from otazumi.db.models import User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

# Fields update_profile may touch; email and password have their own flows.
PROFILE_FIELDS = frozenset({"username", "avatar", "preferences"})


@dataclass(frozen=True)
class Registration:
    user: User
    bearer_token: str
    verification_token: str


@dataclass(frozen=True)
class LoginResult:
    user: User
    bearer_token: str


@dataclass(frozen=True)
class PasswordResetRequest:
    """Always ``dispatched=True``; token and user are set only for a known email."""

    dispatched: bool = True
    reset_token: str | None = None
    user: User | None = None


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountService:
    """Account operations over one database session."""

    def __init__(
        self,
        db: AsyncSession,
        hasher: PasswordHasher,
        codec: BearerTokenCodec,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.hasher = hasher
        self.codec = codec
        self.settings = settings or get_settings()
        self.tokens = EphemeralTokenRegistry(db)
        self.throttle = SignupThrottle(db, self.settings.daily_signup_limit)

    @property
    def _verification_ttl(self) -> timedelta:
        return timedelta(hours=self.settings.email_verification_token_ttl_hours)

    @property
    def _reset_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.password_reset_token_ttl_minutes)

    # -----------------------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------------------

    async def _find_by_id(self, user_id: int) -> User | None:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def _find_by_email(self, email: str) -> User | None:
        """Fetch a user by email (case-insensitive)."""
        result = await self.db.execute(select(User).where(func.lower(User.email) == normalize_email(email)))
        return result.scalar_one_or_none()

    async def _find_by_username(self, username: str) -> User | None:
        """Fetch a user by username (case-insensitive)."""
        result = await self.db.execute(select(User).where(func.lower(User.username) == username.strip().lower()))
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: int) -> User:
        """
        Fetch a user.

        Raises:
            AccountError: NOT_FOUND.
        """
        user = await self._find_by_id(user_id)
        if user is None:
            raise AccountError(FailureKind.NOT_FOUND, "User not found")
        return user

    # -----------------------------------------------------------------------
    # Registration + login
    # -----------------------------------------------------------------------

    async def register(
        self,
        email: str,
        username: str,
        password: str,
        avatar: str | None = None,
    ) -> Registration:
        """
        Create an account, a verification token and a bearer token.

        Checks run in order: signup limit, email, username.

        Raises:
            AccountError: SIGNUP_LIMIT_REACHED, EMAIL_TAKEN or USERNAME_TAKEN.
        """
        decision = await self.throttle.check_and_reserve()
        if not decision.allowed:
            raise AccountError(
                FailureKind.SIGNUP_LIMIT_REACHED,
                "Daily signup limit reached. Please try again tomorrow.",
            )

        email = normalize_email(email)
        username = username.strip()
        if await self._find_by_email(email) is not None:
            raise AccountError(FailureKind.EMAIL_TAKEN, "User already exists with this email")
        if await self._find_by_username(username) is not None:
            raise AccountError(FailureKind.USERNAME_TAKEN, "Username already taken")

        password_hash = self.hasher.hash(password)

        now = datetime.now(timezone.utc)
        user = User(
            email=email,
            username=username,
            password_hash=password_hash,
            avatar=avatar or self.settings.default_avatar,
            preferences={},
            is_verified=False,
            auth_provider="local",
            created_at=now,
            updated_at=now,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(user)
                await self.db.flush()
        except IntegrityError as e:
            # A concurrent registration took the email or username after our lookups
            if "email" in str(e.orig).lower():
                raise AccountError(FailureKind.EMAIL_TAKEN, "User already exists with this email") from e
            raise AccountError(FailureKind.USERNAME_TAKEN, "Username already taken") from e

        verification_token = await self.tokens.issue(user.id, TokenPurpose.VERIFY_EMAIL, self._verification_ttl)
        await self.throttle.increment()
        bearer_token = self.codec.issue(user.id)

        logger.info("user_registered", user_id=user.id, signups_today=decision.count + 1)
        return Registration(user=user, bearer_token=bearer_token, verification_token=verification_token)

    async def login(self, email: str, password: str) -> LoginResult:
        """
        Authenticate with email + password.

        Unknown email and wrong password fail identically.

        Raises:
            AccountError: INVALID_CREDENTIALS.
        """
        user = await self._find_by_email(email)
        if user is None or not self.hasher.verify(password, user.password_hash):
            raise AccountError(FailureKind.INVALID_CREDENTIALS, "Invalid credentials")

        if user.password_hash and self.hasher.needs_rehash(user.password_hash):
            user.password_hash = self.hasher.hash(password)
            await self.db.flush()
            logger.info("password_rehashed", user_id=user.id)

        return LoginResult(user=user, bearer_token=self.codec.issue(user.id))

    # -----------------------------------------------------------------------
    # Profile + password
    # -----------------------------------------------------------------------

    async def update_profile(self, user_id: int, patch: Mapping[str, Any]) -> User:
        """
        Update username, avatar and/or preferences.

        Email and password keys in ``patch`` are ignored.

        Raises:
            AccountError: NOT_FOUND or USERNAME_TAKEN.
        """
        user = await self.get_by_id(user_id)
        changes = {key: value for key, value in patch.items() if key in PROFILE_FIELDS and value is not None}

        username = changes.get("username")
        if username is not None:
            username = username.strip()
            existing = await self._find_by_username(username)
            if existing is not None and existing.id != user.id:
                raise AccountError(FailureKind.USERNAME_TAKEN, "Username already taken")
            user.username = username
        if "avatar" in changes:
            user.avatar = changes["avatar"]
        if "preferences" in changes:
            user.preferences = dict(changes["preferences"])

        user.updated_at = datetime.now(timezone.utc)
        await self.db.flush()
        return user

    async def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """
        Replace the password after checking the current one.

        Raises:
            AccountError: NOT_FOUND or WRONG_CURRENT_PASSWORD.
        """
        user = await self.get_by_id(user_id)
        if not self.hasher.verify(current_password, user.password_hash):
            raise AccountError(FailureKind.WRONG_CURRENT_PASSWORD, "Current password is incorrect")

        user.password_hash = self.hasher.hash(new_password)
        user.updated_at = datetime.now(timezone.utc)
        await self.db.flush()
        logger.info("password_changed", user_id=user.id)

    # -----------------------------------------------------------------------
    # Password reset
    # -----------------------------------------------------------------------

    async def request_password_reset(self, email: str) -> PasswordResetRequest:
        """Issue a reset token if the email belongs to an account.

        The caller gets the same ``dispatched=True`` answer either way.
        """
        user = await self._find_by_email(email)
        if user is None:
            logger.info("password_reset_unknown_email")
            return PasswordResetRequest()

        reset_token = await self.tokens.issue(user.id, TokenPurpose.RESET_PASSWORD, self._reset_ttl)
        return PasswordResetRequest(reset_token=reset_token, user=user)

    async def reset_password(self, token: str, new_password: str) -> None:
        """
        Consume a reset token and set the new password.

        Raises:
            AccountError: INVALID_OR_EXPIRED_TOKEN.
        """
        try:
            user_id = await self.tokens.consume(token, TokenPurpose.RESET_PASSWORD)
        except TokenConsumeError as e:
            logger.info("password_reset_rejected", reason=e.reason.value)
            raise AccountError(FailureKind.INVALID_OR_EXPIRED_TOKEN, "Invalid or expired reset token") from e

        user = await self._find_by_id(user_id)
        if user is None:
            raise AccountError(FailureKind.INVALID_OR_EXPIRED_TOKEN, "Invalid or expired reset token")

        user.password_hash = self.hasher.hash(new_password)
        user.updated_at = datetime.now(timezone.utc)
        await self.db.flush()
        logger.info("password_reset_complete", user_id=user.id)

    # -----------------------------------------------------------------------
    # Email verification
    # -----------------------------------------------------------------------

    async def verify_email(self, token: str) -> User:
        """
        Consume a verification token and mark the owner verified.

        Raises:
            AccountError: INVALID_OR_EXPIRED_TOKEN.
        """
        try:
            user_id = await self.tokens.consume(token, TokenPurpose.VERIFY_EMAIL)
        except TokenConsumeError as e:
            logger.info("email_verification_rejected", reason=e.reason.value)
            raise AccountError(
                FailureKind.INVALID_OR_EXPIRED_TOKEN, "Invalid or expired verification token"
            ) from e

        user = await self._find_by_id(user_id)
        if user is None:
            raise AccountError(FailureKind.INVALID_OR_EXPIRED_TOKEN, "Invalid or expired verification token")

        user.is_verified = True
        user.updated_at = datetime.now(timezone.utc)
        await self.db.flush()
        logger.info("email_verified", user_id=user.id)
        return user

    async def resend_verification(self, user_id: int) -> tuple[User, str]:
        """
        Issue a fresh verification token, superseding older ones.

        Raises:
            AccountError: NOT_FOUND or ALREADY_VERIFIED.
        """
        user = await self.get_by_id(user_id)
        if user.is_verified:
            raise AccountError(FailureKind.ALREADY_VERIFIED, "Email already verified")

        verification_token = await self.tokens.issue(user.id, TokenPurpose.VERIFY_EMAIL, self._verification_ttl)
        return user, verification_token

    # -----------------------------------------------------------------------
    # Deletion
    # -----------------------------------------------------------------------

    async def delete_account(self, user_id: int, password: str) -> None:
        """
        Delete the account and, by cascade, every row it owns.

        Raises:
            AccountError: NOT_FOUND or WRONG_PASSWORD.
        """
        user = await self.get_by_id(user_id)
        if not self.hasher.verify(password, user.password_hash):
            raise AccountError(FailureKind.WRONG_PASSWORD, "Invalid password")

        await self.db.delete(user)
        await self.db.flush()
        logger.info("account_deleted", user_id=user_id)
