"""Middleware registration."""

from fastapi import FastAPI

from otazumi.config import Settings
from otazumi.middleware.cors import setup_cors
from otazumi.middleware.error_handler import setup_error_handlers
from otazumi.middleware.logging import setup_logging
from otazumi.middleware.rate_limit import RateLimitMiddleware
from otazumi.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    FastAPI/Starlette executes middleware in reverse-add order (last added = outermost).
    CORS must be outermost so it wraps error responses from inner middleware (e.g. 429).
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RateLimitMiddleware, settings=settings)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)  # added last → outermost → wraps 429 responses
