"""Redis-backed fixed window rate limiting middleware."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from otazumi.config import Settings

logger = structlog.get_logger()

# Paths exempt from rate limiting
_EXEMPT_PATHS = frozenset({"/health", "/ready", "/version"})


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    limit: int
    window_seconds: int
    message: str


def build_route_rules(settings: Settings) -> dict[str, RateLimitRule]:
    """Stricter per-route limits, keyed by exact path."""
    auth = RateLimitRule(
        "auth",
        settings.rate_limit_auth,
        settings.rate_limit_auth_window_seconds,
        "Too many authentication attempts, please try again later.",
    )
    reset = RateLimitRule(
        "password_reset",
        settings.rate_limit_password_reset,
        settings.rate_limit_hourly_window_seconds,
        "Too many password reset requests, please try again later.",
    )
    verification = RateLimitRule(
        "email_verification",
        settings.rate_limit_email_verification,
        settings.rate_limit_hourly_window_seconds,
        "Too many verification requests, please try again later.",
    )
    return {
        "/api/auth/register": auth,
        "/api/auth/login": auth,
        "/api/auth/forgot-password": reset,
        "/api/auth/resend-verification": verification,
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limit requests per IP using Redis counters.

    Every request counts against the global window; the auth, password-reset
    and verification routes also count against their own stricter window.
    Requests pass through untouched when Redis is absent or failing.
    """

    def __init__(self, app: Any, settings: Settings) -> None:  # noqa: ANN401
        super().__init__(app)
        self.global_rule = RateLimitRule(
            "global",
            settings.rate_limit_requests,
            settings.rate_limit_window_seconds,
            "Too many requests from this IP, please try again later.",
        )
        self.route_rules = build_route_rules(settings)

    async def _hit(self, redis: Any, rule: RateLimitRule, client_ip: str) -> int:  # noqa: ANN401
        window = int(time.time()) // rule.window_seconds
        rate_key = f"ratelimit:{rule.name}:{client_ip}:{window}"
        pipe = redis.pipeline()
        pipe.incr(rate_key)
        pipe.expire(rate_key, rule.window_seconds + 1)
        results: list[Any] = await pipe.execute()
        current_count: int = results[0]
        return current_count

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Check rate limits, return 429 if any is exceeded."""
        redis = getattr(request.app.state, "redis", None)
        if redis is None or request.url.path in _EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        rules = [self.global_rule]
        route_rule = self.route_rules.get(request.url.path)
        if route_rule is not None:
            rules.append(route_rule)

        remaining: list[tuple[RateLimitRule, int]] = []
        try:
            for rule in rules:
                count = await self._hit(redis, rule, client_ip)
                if count > rule.limit:
                    logger.warning("rate_limit_exceeded", rule=rule.name, client_ip=client_ip)
                    return JSONResponse(
                        status_code=429,
                        content={"detail": rule.message},
                        headers={
                            "Retry-After": str(rule.window_seconds),
                            "X-RateLimit-Remaining": "0",
                            "X-RateLimit-Limit": str(rule.limit),
                        },
                    )
                remaining.append((rule, max(0, rule.limit - count)))
        except (RedisError, OSError) as e:
            logger.warning("rate_limit_store_unavailable", error=str(e))
            return await call_next(request)

        response = await call_next(request)
        # Report the tightest window
        rule, left = min(remaining, key=lambda item: item[1])
        response.headers["X-RateLimit-Remaining"] = str(left)
        response.headers["X-RateLimit-Limit"] = str(rule.limit)
        return response
