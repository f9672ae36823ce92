"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from otazumi.auth.jwt import BearerTokenCodec
from otazumi.auth.password import PasswordHasher
from otazumi.auth.service import AccountService
from otazumi.config import Settings
from otazumi.database import Database
from otazumi.db import models  # noqa: F401
from otazumi.db.base import Base
from otazumi.email.service import BaseEmailProvider, EmailService
from otazumi.main import create_app

TEST_PASSWORD = "secret123"


@dataclass
class SentMail:
    to: str
    subject: str
    html: str
    text: str


class RecordingProvider(BaseEmailProvider):
    """Mail provider that keeps every message in memory."""

    name = "recording"

    def __init__(self) -> None:
        self.sent: list[SentMail] = []
        self.fail = False

    async def send(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        if self.fail:
            msg = "provider down"
            raise ConnectionError(msg)
        self.sent.append(SentMail(to_email, subject, html_body, text_body))
        return True

    def last_token(self, marker: str) -> str:
        """Pull the token out of the newest mail whose link contains ``marker``."""
        for mail in reversed(self.sent):
            if marker in mail.text:
                return mail.text.split(f"{marker}?token=", 1)[1].split()[0]
        msg = f"No mail containing {marker}"
        raise AssertionError(msg)


class FakeRedis:
    """In-memory stand-in for the handful of Redis calls the app makes."""

    def __init__(self) -> None:
        self.counters: dict[str, int] = {}

    async def incr(self, key: str) -> int:
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def expire(self, key: str, seconds: int) -> bool:
        return True

    async def ping(self) -> bool:
        return True

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self.redis = redis
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    def incr(self, key: str) -> FakePipeline:
        self.calls.append(("incr", (key,)))
        return self

    def expire(self, key: str, seconds: int) -> FakePipeline:
        self.calls.append(("expire", (key, seconds)))
        return self

    async def execute(self) -> list[Any]:
        results = [await getattr(self.redis, name)(*args) for name, args in self.calls]
        self.calls.clear()
        return results


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings for a throwaway SQLite file with cheap password hashing."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'otazumi-test.db'}",
        redis_url=None,
        jwt_secret="test-secret-key-that-is-long-enough-for-hs256",
        password_hash_time_cost=1,
        password_hash_memory_cost=1024,
        email_provider="console",
        frontend_base_url="https://otazumi.test",
        log_format="console",
    )


@pytest_asyncio.fixture
async def database(settings: Settings) -> AsyncGenerator[Database, None]:
    """Connected database with all tables created."""
    db = Database(settings.database_url)
    await db.connect()
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    async with database.session() as session:
        yield session


@pytest.fixture
def hasher(settings: Settings) -> PasswordHasher:
    return PasswordHasher.from_settings(settings)


@pytest.fixture
def codec(settings: Settings) -> BearerTokenCodec:
    return BearerTokenCodec(settings)


@pytest.fixture
def account_service(
    db_session: AsyncSession, hasher: PasswordHasher, codec: BearerTokenCodec, settings: Settings
) -> AccountService:
    return AccountService(db_session, hasher=hasher, codec=codec, settings=settings)


@pytest.fixture
def mail_provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


def _build_client(app: Any) -> AsyncClient:
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    return AsyncClient(transport=transport, base_url="http://test")


@pytest_asyncio.fixture
async def client(
    settings: Settings, database: Database, mail_provider: RecordingProvider
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client without Redis (no rate limiting)."""
    email_service = EmailService(provider=mail_provider, settings=settings)
    app = create_app(settings=settings, database=database, email_service=email_service)
    async with _build_client(app) as ac:
        yield ac


@pytest_asyncio.fixture
async def limited_client(
    settings: Settings, database: Database, mail_provider: RecordingProvider, fake_redis: FakeRedis
) -> AsyncGenerator[AsyncClient, None]:
    """Client whose app has a Redis handle, so rate limits apply."""
    email_service = EmailService(provider=mail_provider, redis=fake_redis, settings=settings)  # type: ignore[arg-type]
    app = create_app(settings=settings, database=database, email_service=email_service, redis=fake_redis)  # type: ignore[arg-type]
    async with _build_client(app) as ac:
        yield ac


RegisterFn = Callable[..., Awaitable[dict[str, Any]]]


@pytest.fixture
def register(client: AsyncClient) -> RegisterFn:
    """Register via the API and return the response body."""

    async def _register(
        email: str = "testuser@example.com",
        username: str = "testuser",
        password: str = TEST_PASSWORD,
    ) -> dict[str, Any]:
        response = await client.post(
            "/api/auth/register",
            json={"email": email, "username": username, "password": password},
        )
        assert response.status_code == 201, response.text
        body: dict[str, Any] = response.json()
        return body

    return _register


@pytest_asyncio.fixture
async def registered_user(register: RegisterFn) -> dict[str, Any]:
    """Register a user. Returns the register response plus the password."""
    body = await register()
    return {**body, "password": TEST_PASSWORD}


@pytest_asyncio.fixture
async def authed_client(client: AsyncClient, registered_user: dict[str, Any]) -> AsyncClient:
    """Client carrying the registered user's bearer token."""
    client.headers["Authorization"] = f"Bearer {registered_user['token']}"
    return client
