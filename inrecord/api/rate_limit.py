"""
inrecord.api.rate_limit — Admin Mutation Throttle
==================================================

Admin write endpoints are limited to 30 mutations per 60-second sliding
window per admin (JWT ``sub``).  State lives in ``admin_rate_limit_events``
so it survives restarts and is shared between workers.  Exceeding the
limit returns HTTP 429 with ``Retry-After``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from inrecord.api.deps import get_current_admin
from inrecord.database.models import AdminRateLimitEvent

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 30
DEFAULT_WINDOW_SECONDS = 60

_MUTATION_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int
    limit: int


class AdminRateLimiter:
    """DB-backed sliding window keyed by admin id."""

    def __init__(
        self,
        *,
        engine: Engine,
        max_requests: int = DEFAULT_RATE_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
    ) -> None:
        self.engine = engine
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def consume(self, admin_id: str, now: datetime | None = None) -> RateLimitDecision:
        """Prune expired events, then record this one if there is room.

        A rejected request is not recorded.
        """
        now = now or datetime.now(UTC)
        window = timedelta(seconds=self.window_seconds)

        with Session(self.engine) as session:
            session.execute(
                delete(AdminRateLimitEvent).where(
                    AdminRateLimitEvent.admin_id == admin_id,
                    AdminRateLimitEvent.timestamp < now - window,
                )
            )
            recent = session.scalars(
                select(AdminRateLimitEvent.timestamp)
                .where(AdminRateLimitEvent.admin_id == admin_id)
                .order_by(AdminRateLimitEvent.timestamp.asc())
            ).all()

            if len(recent) >= self.max_requests:
                session.commit()
                oldest = recent[0] if recent[0].tzinfo else recent[0].replace(tzinfo=UTC)
                wait = (oldest + window - now).total_seconds()
                return RateLimitDecision(False, 0, max(1, int(wait) + 1), self.max_requests)

            session.add(AdminRateLimitEvent(admin_id=admin_id, timestamp=now))
            session.commit()

        return RateLimitDecision(
            True, self.max_requests - len(recent) - 1, self.window_seconds, self.max_requests
        )

    def reset(self, admin_id: str | None = None) -> None:
        """Forget events for one admin, or for everyone."""
        stmt = delete(AdminRateLimitEvent)
        if admin_id is not None:
            stmt = stmt.where(AdminRateLimitEvent.admin_id == admin_id)
        with Session(self.engine) as session:
            session.execute(stmt)
            session.commit()


_limiter: AdminRateLimiter | None = None


def get_rate_limiter() -> AdminRateLimiter:
    if _limiter is None:
        raise RuntimeError("Rate limiter not configured; call configure_rate_limiter() first")
    return _limiter


def configure_rate_limiter(*, engine: Engine, max_requests: int = DEFAULT_RATE_LIMIT) -> AdminRateLimiter:
    global _limiter
    _limiter = AdminRateLimiter(engine=engine, max_requests=max_requests)
    return _limiter


async def rate_limited_admin(
    request: Request,
    admin: dict = Depends(get_current_admin),
) -> dict:
    """``get_current_admin`` plus the mutation throttle.

    Reads pass straight through; POST/PUT/PATCH/DELETE count against the
    window.
    """
    if request.method not in _MUTATION_METHODS:
        return admin

    limiter = get_rate_limiter()
    decision = await asyncio.to_thread(limiter.consume, admin["sub"])
    if not decision.allowed:
        logger.warning(
            "Rate limit exceeded for admin %s (%d per %ds)",
            admin["sub"], limiter.max_requests, limiter.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": f"Rate limit exceeded: {limiter.max_requests} mutations per minute.",
                "retry_after": decision.retry_after,
            },
            headers={"Retry-After": str(decision.retry_after)},
        )
    return admin
