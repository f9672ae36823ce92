"""Redis connection pool."""

from __future__ import annotations

import redis.asyncio as redis


def create_redis(url: str | None) -> redis.Redis | None:
    """Create a Redis client, or None when Redis is not configured."""
    if not url:
        return None
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )


async def close_redis(client: redis.Redis | None) -> None:
    """Close the Redis connection pool."""
    if client is not None:
        await client.aclose()
