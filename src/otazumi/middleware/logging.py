"""Structured logging configuration with structlog."""

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

from otazumi.config import Settings

SERVICE_NAME = "otazumi-api"


def service_context(settings: Settings) -> structlog.types.Processor:
    """Processor stamping every event with the service, environment and version."""
    context = {
        "service": SERVICE_NAME,
        "environment": settings.environment,
        "version": settings.app_version,
    }

    def add_service_context(
        _logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]  # noqa: ANN401
    ) -> MutableMapping[str, Any]:
        for key, value in context.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_context


def setup_logging(settings: Settings) -> None:
    """Configure structlog for JSON or console output.

    JSON output carries the service context on each line so logs from several
    deployments can share one sink; console output stays terse for local work.
    """
    renderer: structlog.types.Processor
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if settings.log_format == "json":
        processors.append(service_context(settings))
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=settings.debug)
    processors += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
