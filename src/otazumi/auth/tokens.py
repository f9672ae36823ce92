"""
Single-use, time-boxed tokens for email verification and password reset.

A token is Valid until it is consumed or its expiry passes. Expiry is derived
from ``expires_at`` at read time, never stored.
"""

from __future__ import annotations

import enum
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select, update

from otazumi.db.models import EphemeralToken

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

# 32 random bytes -> 43 URL-safe characters, 256 bits of entropy
TOKEN_BYTES = 32


class TokenPurpose(enum.StrEnum):
    VERIFY_EMAIL = "verify-email"
    RESET_PASSWORD = "reset-password"


class ConsumeFailure(enum.StrEnum):
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    EXPIRED = "expired"


class TokenConsumeError(Exception):
    """The token could not be consumed. ``reason`` says why."""

    def __init__(self, reason: ConsumeFailure) -> None:
        super().__init__(reason.value)
        self.reason = reason


class EphemeralTokenRegistry:
    """Creates and consumes ephemeral tokens in the caller's session."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def issue(self, user_id: int, purpose: TokenPurpose, ttl: timedelta) -> str:
        """
        Create a token for ``user_id`` valid for ``ttl``.

        A new verify-email token supersedes every unused one the user already
        holds. Reset tokens are left alone.
        """
        now = datetime.now(timezone.utc)
        if purpose is TokenPurpose.VERIFY_EMAIL:
            await self.db.execute(
                update(EphemeralToken)
                .where(EphemeralToken.user_id == user_id)
                .where(EphemeralToken.purpose == purpose.value)
                .where(EphemeralToken.used == False)  # noqa: E712
                .values(used=True)
            )

        raw_token = secrets.token_urlsafe(TOKEN_BYTES)
        self.db.add(
            EphemeralToken(
                user_id=user_id,
                token=raw_token,
                purpose=purpose.value,
                expires_at=now + ttl,
                used=False,
                created_at=now,
            )
        )
        await self.db.flush()
        logger.info("ephemeral_token_issued", user_id=user_id, purpose=purpose.value)
        return raw_token

    async def consume(self, raw_token: str, purpose: TokenPurpose) -> int:
        """
        Mark the token used and return its owner's user id.

        The conditional write runs first, so it is the only step that decides
        the winner: concurrent consumers of the same token see exactly one
        success. The row is read back only to explain a failure.

        Raises:
            TokenConsumeError: NOT_FOUND, ALREADY_USED or EXPIRED.
        """
        now = datetime.now(timezone.utc)
        claimed = await self.db.execute(
            update(EphemeralToken)
            .where(EphemeralToken.token == raw_token)
            .where(EphemeralToken.purpose == purpose.value)
            .where(EphemeralToken.used == False)  # noqa: E712
            .where(EphemeralToken.expires_at > now)
            .values(used=True)
            .returning(EphemeralToken.user_id)
        )
        user_id = claimed.scalar_one_or_none()
        if user_id is not None:
            logger.info("ephemeral_token_consumed", user_id=user_id, purpose=purpose.value)
            return user_id

        result = await self.db.execute(
            select(EphemeralToken)
            .where(EphemeralToken.token == raw_token)
            .where(EphemeralToken.purpose == purpose.value)
            .execution_options(populate_existing=True)
        )
        token = result.scalar_one_or_none()
        if token is None:
            raise TokenConsumeError(ConsumeFailure.NOT_FOUND)
        if not token.used and token.expires_at <= now:
            raise TokenConsumeError(ConsumeFailure.EXPIRED)
        raise TokenConsumeError(ConsumeFailure.ALREADY_USED)
