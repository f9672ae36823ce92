"""Tests for single-use verification and reset tokens."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from otazumi.auth.tokens import ConsumeFailure, EphemeralTokenRegistry, TokenConsumeError, TokenPurpose
from otazumi.database import Database
from otazumi.db.models import EphemeralToken, User

DAY = timedelta(hours=24)


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    now = datetime.now(timezone.utc)
    user = User(
        email="tokens@example.com",
        username="tokens",
        password_hash=None,
        avatar="avatar_1",
        preferences={},
        created_at=now,
        updated_at=now,
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
def registry(db_session: AsyncSession) -> EphemeralTokenRegistry:
    return EphemeralTokenRegistry(db_session)


class TestIssue:
    async def test_token_is_url_safe_and_long(self, registry: EphemeralTokenRegistry, user: User):
        token = await registry.issue(user.id, TokenPurpose.VERIFY_EMAIL, DAY)
        assert len(token) >= 43
        assert all(c.isalnum() or c in "-_" for c in token)

    async def test_tokens_are_unique(self, registry: EphemeralTokenRegistry, user: User):
        tokens = {await registry.issue(user.id, TokenPurpose.RESET_PASSWORD, DAY) for _ in range(5)}
        assert len(tokens) == 5

    async def test_new_verification_token_supersedes_old(self, registry: EphemeralTokenRegistry, user: User):
        old = await registry.issue(user.id, TokenPurpose.VERIFY_EMAIL, DAY)
        new = await registry.issue(user.id, TokenPurpose.VERIFY_EMAIL, DAY)

        with pytest.raises(TokenConsumeError) as exc_info:
            await registry.consume(old, TokenPurpose.VERIFY_EMAIL)
        assert exc_info.value.reason is ConsumeFailure.ALREADY_USED
        assert await registry.consume(new, TokenPurpose.VERIFY_EMAIL) == user.id

    async def test_reset_tokens_are_not_superseded(self, registry: EphemeralTokenRegistry, user: User):
        first = await registry.issue(user.id, TokenPurpose.RESET_PASSWORD, DAY)
        second = await registry.issue(user.id, TokenPurpose.RESET_PASSWORD, DAY)
        assert await registry.consume(first, TokenPurpose.RESET_PASSWORD) == user.id
        assert await registry.consume(second, TokenPurpose.RESET_PASSWORD) == user.id


class TestConsume:
    async def test_consume_returns_owner(self, registry: EphemeralTokenRegistry, user: User):
        token = await registry.issue(user.id, TokenPurpose.VERIFY_EMAIL, DAY)
        assert await registry.consume(token, TokenPurpose.VERIFY_EMAIL) == user.id

    async def test_second_consume_fails(self, registry: EphemeralTokenRegistry, user: User):
        token = await registry.issue(user.id, TokenPurpose.RESET_PASSWORD, DAY)
        await registry.consume(token, TokenPurpose.RESET_PASSWORD)
        with pytest.raises(TokenConsumeError) as exc_info:
            await registry.consume(token, TokenPurpose.RESET_PASSWORD)
        assert exc_info.value.reason is ConsumeFailure.ALREADY_USED

    async def test_unknown_token(self, registry: EphemeralTokenRegistry, user: User):
        with pytest.raises(TokenConsumeError) as exc_info:
            await registry.consume("does-not-exist", TokenPurpose.VERIFY_EMAIL)
        assert exc_info.value.reason is ConsumeFailure.NOT_FOUND

    async def test_purpose_must_match(self, registry: EphemeralTokenRegistry, user: User):
        token = await registry.issue(user.id, TokenPurpose.RESET_PASSWORD, DAY)
        with pytest.raises(TokenConsumeError) as exc_info:
            await registry.consume(token, TokenPurpose.VERIFY_EMAIL)
        assert exc_info.value.reason is ConsumeFailure.NOT_FOUND

    async def test_expired_token(self, registry: EphemeralTokenRegistry, user: User, db_session: AsyncSession):
        token = await registry.issue(user.id, TokenPurpose.RESET_PASSWORD, timedelta(minutes=60))
        row = (await db_session.execute(select(EphemeralToken).where(EphemeralToken.token == token))).scalar_one()
        row.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        await db_session.flush()

        with pytest.raises(TokenConsumeError) as exc_info:
            await registry.consume(token, TokenPurpose.RESET_PASSWORD)
        assert exc_info.value.reason is ConsumeFailure.EXPIRED

    async def test_consume_marks_row_used(self, registry: EphemeralTokenRegistry, user: User, db_session: AsyncSession):
        token = await registry.issue(user.id, TokenPurpose.VERIFY_EMAIL, DAY)
        await registry.consume(token, TokenPurpose.VERIFY_EMAIL)
        await db_session.commit()

        row = (await db_session.execute(select(EphemeralToken).where(EphemeralToken.token == token))).scalar_one()
        assert row.used is True


class TestConcurrentConsume:
    async def test_exactly_one_concurrent_consumer_wins(
        self, database: Database, registry: EphemeralTokenRegistry, user: User, db_session: AsyncSession
    ):
        token = await registry.issue(user.id, TokenPurpose.RESET_PASSWORD, DAY)
        await db_session.commit()

        async def attempt() -> int | ConsumeFailure:
            async with database.session() as session:
                try:
                    user_id = await EphemeralTokenRegistry(session).consume(token, TokenPurpose.RESET_PASSWORD)
                except TokenConsumeError as e:
                    return e.reason
                await session.commit()
                return user_id

        results = await asyncio.gather(attempt(), attempt(), attempt())

        assert results.count(user.id) == 1
        assert [r for r in results if r != user.id] == [ConsumeFailure.ALREADY_USED] * 2

    async def test_consume_from_a_session_holding_a_stale_row(
        self, database: Database, registry: EphemeralTokenRegistry, user: User, db_session: AsyncSession
    ):
        token = await registry.issue(user.id, TokenPurpose.VERIFY_EMAIL, DAY)
        await db_session.commit()

        async with database.session() as other:
            assert await EphemeralTokenRegistry(other).consume(token, TokenPurpose.VERIFY_EMAIL) == user.id
            await other.commit()

        # db_session still has the row cached as unused
        with pytest.raises(TokenConsumeError) as exc_info:
            await registry.consume(token, TokenPurpose.VERIFY_EMAIL)
        assert exc_info.value.reason is ConsumeFailure.ALREADY_USED
