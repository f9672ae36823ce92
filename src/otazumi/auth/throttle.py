"""
Daily signup quota.

The check and the increment are two separate steps: concurrent registrations
can both pass the check and both increment, so the day's count may overshoot
the limit by up to (concurrent requests - 1). This is a soft guard, not a
security boundary, and any store failure is treated as "allow".
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from otazumi.db.models import SignupCounter

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


@dataclass(frozen=True)
class ThrottleDecision:
    allowed: bool
    count: int
    limit: int


def day_key(day: date | None = None) -> str:
    """UTC calendar day as ``YYYY-MM-DD``."""
    return (day or datetime.now(timezone.utc).date()).isoformat()


class SignupThrottle:
    """Per-day signup counter stored alongside the accounts."""

    def __init__(self, db: AsyncSession, daily_limit: int) -> None:
        self.db = db
        self.daily_limit = daily_limit

    async def check_and_reserve(self, day: date | None = None) -> ThrottleDecision:
        """Read (or lazily create) today's counter and compare it to the limit."""
        key = day_key(day)
        try:
            async with self.db.begin_nested():
                result = await self.db.execute(select(SignupCounter).where(SignupCounter.date == key))
                counter = result.scalar_one_or_none()
                if counter is None:
                    self.db.add(SignupCounter(date=key, count=0, created_at=datetime.now(timezone.utc)))
                    count = 0
                else:
                    count = counter.count
        except SQLAlchemyError:
            logger.exception("signup_throttle_store_failed", step="check", date=key)
            return ThrottleDecision(allowed=True, count=0, limit=self.daily_limit)

        if count >= self.daily_limit:
            logger.warning("signup_limit_reached", date=key, count=count, limit=self.daily_limit)
            return ThrottleDecision(allowed=False, count=count, limit=self.daily_limit)
        return ThrottleDecision(allowed=True, count=count, limit=self.daily_limit)

    async def increment(self, day: date | None = None) -> None:
        """Add one signup to the day's counter, creating the row if needed."""
        key = day_key(day)
        try:
            async with self.db.begin_nested():
                result = await self.db.execute(select(SignupCounter.id).where(SignupCounter.date == key))
                counter_id = result.scalar_one_or_none()
                if counter_id is None:
                    self.db.add(SignupCounter(date=key, count=1, created_at=datetime.now(timezone.utc)))
                else:
                    await self.db.execute(
                        update(SignupCounter)
                        .where(SignupCounter.id == counter_id)
                        .values(count=SignupCounter.count + 1)
                    )
        except SQLAlchemyError:
            logger.exception("signup_throttle_store_failed", step="increment", date=key)
