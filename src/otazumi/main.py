"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from redis.asyncio import Redis

from otazumi.auth.jwt import BearerTokenCodec
from otazumi.auth.password import PasswordHasher
from otazumi.auth.router import router as auth_router
from otazumi.config import Settings, get_settings
from otazumi.database import Database
from otazumi.email.service import EmailService
from otazumi.health.router import router as health_router
from otazumi.middleware import setup_middleware
from otazumi.redis_client import close_redis, create_redis
from otazumi.sync.router import router as sync_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings: Settings = app.state.settings
    database: Database = app.state.database
    await database.connect()

    owns_redis = app.state.redis is None and settings.redis_url is not None
    if owns_redis:
        app.state.redis = create_redis(settings.redis_url)
        app.state.email_service.redis = app.state.redis

    logger.info("app_started", environment=settings.environment, version=settings.app_version)
    yield

    if owns_redis:
        await close_redis(app.state.redis)
        app.state.redis = None
    await database.dispose()


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    email_service: EmailService | None = None,
    redis: Redis | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators can be injected (tests pass a SQLite database and a fake
    mail provider); anything omitted is built from settings.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Otazumi API",
        description="Account and library sync backend for the Otazumi anime client",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.database = database or Database(settings.database_url)
    app.state.redis = redis
    app.state.token_codec = BearerTokenCodec(settings)
    app.state.password_hasher = PasswordHasher.from_settings(settings)
    app.state.email_service = email_service or EmailService(redis=redis, settings=settings)

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router)
    app.include_router(sync_router)

    return app


app = create_app()
