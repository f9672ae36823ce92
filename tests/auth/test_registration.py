"""Tests for account registration."""

from datetime import datetime, timezone
from typing import Any

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from otazumi.auth.errors import AccountError, FailureKind
from otazumi.auth.service import AccountService
from otazumi.auth.throttle import day_key
from otazumi.db.models import EphemeralToken, SignupCounter, User


class TestRegister:
    async def test_register_success(self, client: AsyncClient, mail_provider):
        response = await client.post("/api/auth/register", json={
            "email": "new@example.com",
            "username": "newbie",
            "password": "secret123",
        })
        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["message"].startswith("Registration successful")
        assert data["token"]
        user = data["user"]
        assert user["email"] == "new@example.com"
        assert user["username"] == "newbie"
        assert user["avatar"] == "avatar_1"
        assert user["isVerified"] is False
        assert user["authProvider"] == "local"
        assert user["preferences"] == {}
        assert "password" not in user
        assert "passwordHash" not in user

    async def test_register_sends_verification_mail(self, registered_user: dict[str, Any], mail_provider):
        assert len(mail_provider.sent) == 1
        mail = mail_provider.sent[0]
        assert mail.to == "testuser@example.com"
        assert mail.subject == "Verify your email - Otazumi"
        assert "https://otazumi.test/verify-email?token=" in mail.text

    async def test_register_token_authenticates(self, client: AsyncClient, registered_user: dict[str, Any]):
        response = await client.get(
            "/api/auth/profile", headers={"Authorization": f"Bearer {registered_user['token']}"}
        )
        assert response.status_code == 200
        assert response.json()["user"]["id"] == registered_user["user"]["id"]

    async def test_register_custom_avatar(self, client: AsyncClient):
        response = await client.post("/api/auth/register", json={
            "email": "ava@example.com",
            "username": "ava",
            "password": "secret123",
            "avatar": "avatar_7",
        })
        assert response.status_code == 201
        assert response.json()["user"]["avatar"] == "avatar_7"

    async def test_email_is_normalized(self, client: AsyncClient):
        response = await client.post("/api/auth/register", json={
            "email": "MiXeD@Example.COM",
            "username": "mixed",
            "password": "secret123",
        })
        assert response.status_code == 201
        assert response.json()["user"]["email"] == "mixed@example.com"

    async def test_duplicate_email_409(self, client: AsyncClient, registered_user: dict[str, Any]):
        response = await client.post("/api/auth/register", json={
            "email": "TESTUSER@example.com",
            "username": "someoneelse",
            "password": "secret123",
        })
        assert response.status_code == 409
        assert response.json()["detail"] == "User already exists with this email"

    async def test_duplicate_username_409(self, client: AsyncClient, registered_user: dict[str, Any]):
        response = await client.post("/api/auth/register", json={
            "email": "other@example.com",
            "username": "TestUser",
            "password": "secret123",
        })
        assert response.status_code == 409
        assert response.json()["detail"] == "Username already taken"

    async def test_email_checked_before_username(self, client: AsyncClient, registered_user: dict[str, Any]):
        response = await client.post("/api/auth/register", json={
            "email": "testuser@example.com",
            "username": "testuser",
            "password": "secret123",
        })
        assert response.json()["detail"] == "User already exists with this email"

    async def test_short_password_400(self, client: AsyncClient):
        response = await client.post("/api/auth/register", json={
            "email": "short@example.com",
            "username": "shorty",
            "password": "abc",
        })
        assert response.status_code == 400
        assert "password" in response.json()["detail"].lower()

    async def test_invalid_email_422(self, client: AsyncClient):
        response = await client.post("/api/auth/register", json={
            "email": "not-an-email",
            "username": "valid_name",
            "password": "secret123",
        })
        assert response.status_code == 422

    async def test_invalid_username_422(self, client: AsyncClient):
        for username in ["ab", "has space", "dash-name", "x" * 31]:
            response = await client.post("/api/auth/register", json={
                "email": "u@example.com",
                "username": username,
                "password": "secret123",
            })
            assert response.status_code == 422, username

    async def test_failed_mail_does_not_fail_registration(self, client: AsyncClient, mail_provider):
        mail_provider.fail = True
        response = await client.post("/api/auth/register", json={
            "email": "nomail@example.com",
            "username": "nomail",
            "password": "secret123",
        })
        assert response.status_code == 201


class TestRegistrationSideEffects:
    async def test_stores_hash_not_password(self, registered_user: dict[str, Any], db_session: AsyncSession):
        user = (await db_session.execute(select(User))).scalar_one()
        assert user.password_hash is not None
        assert user.password_hash != "secret123"
        assert user.password_hash.startswith("$argon2id$")

    async def test_issues_verification_token(self, registered_user: dict[str, Any], db_session: AsyncSession):
        tokens = (await db_session.execute(select(EphemeralToken))).scalars().all()
        assert len(tokens) == 1
        assert tokens[0].purpose == "verify-email"
        assert tokens[0].used is False

    async def test_counts_signup(self, registered_user: dict[str, Any], db_session: AsyncSession):
        result = await db_session.execute(select(SignupCounter.count).where(SignupCounter.date == day_key()))
        assert result.scalar_one() == 1

    async def test_rejected_registration_not_counted(
        self, client: AsyncClient, registered_user: dict[str, Any], db_session: AsyncSession
    ):
        await client.post("/api/auth/register", json={
            "email": "testuser@example.com",
            "username": "dupe",
            "password": "secret123",
        })
        result = await db_session.execute(select(SignupCounter.count).where(SignupCounter.date == day_key()))
        assert result.scalar_one() == 1


class TestSignupLimit:
    async def test_limit_reached_429(self, client: AsyncClient, db_session: AsyncSession, settings):
        db_session.add(SignupCounter(
            date=day_key(), count=settings.daily_signup_limit, created_at=datetime.now(timezone.utc)
        ))
        await db_session.commit()

        response = await client.post("/api/auth/register", json={
            "email": "late@example.com",
            "username": "late",
            "password": "secret123",
        })
        assert response.status_code == 429
        assert response.json()["detail"] == "Daily signup limit reached. Please try again tomorrow."

        users = await db_session.execute(select(func.count()).select_from(User))
        assert users.scalar_one() == 0

    async def test_limit_checked_before_duplicates(
        self, client: AsyncClient, registered_user: dict[str, Any], db_session: AsyncSession, settings
    ):
        counter = (await db_session.execute(select(SignupCounter))).scalar_one()
        counter.count = settings.daily_signup_limit
        await db_session.commit()

        response = await client.post("/api/auth/register", json={
            "email": "testuser@example.com",
            "username": "testuser",
            "password": "secret123",
        })
        assert response.status_code == 429


class TestRegistrationRace:
    """Lookups pass but the insert collides, as when two signups race."""

    async def _register_past_lookups(self, account_service: AccountService, email: str, username: str) -> None:
        async def no_match(_value: str) -> None:
            return None

        account_service._find_by_email = no_match  # type: ignore[method-assign]
        account_service._find_by_username = no_match  # type: ignore[method-assign]
        await account_service.register(email=email, username=username, password="secret123")

    async def test_duplicate_email_insert_is_email_taken(
        self, account_service: AccountService, db_session: AsyncSession
    ):
        await account_service.register(email="race@example.com", username="first", password="secret123")
        await db_session.commit()

        with pytest.raises(AccountError) as exc_info:
            await self._register_past_lookups(account_service, "race@example.com", "second")
        assert exc_info.value.kind is FailureKind.EMAIL_TAKEN

    async def test_duplicate_username_insert_is_username_taken(
        self, account_service: AccountService, db_session: AsyncSession
    ):
        await account_service.register(email="one@example.com", username="racer", password="secret123")
        await db_session.commit()

        with pytest.raises(AccountError) as exc_info:
            await self._register_past_lookups(account_service, "two@example.com", "racer")
        assert exc_info.value.kind is FailureKind.USERNAME_TAKEN

    async def test_session_usable_after_collision(self, account_service: AccountService, db_session: AsyncSession):
        await account_service.register(email="one@example.com", username="racer", password="secret123")
        await db_session.commit()
        with pytest.raises(AccountError):
            await self._register_past_lookups(account_service, "two@example.com", "racer")

        users = await db_session.execute(select(func.count()).select_from(User))
        assert users.scalar_one() == 1
