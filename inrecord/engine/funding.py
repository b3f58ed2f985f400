"""
inrecord.engine.funding — Funding & Countdown Helpers
======================================================

Pure display math shared by routes, Discord embeds and emails.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

from inrecord.constants import PROPOSAL_TYPE_ICONS


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite drops tzinfo on round-trip)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _now(now: datetime | None) -> datetime:
    return as_utc(now) if now else datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Funding
# ---------------------------------------------------------------------------
def calculate_funding_percentage(current: float, goal: float | None) -> int:
    """Whole-number percent of *goal* reached, capped at 100."""
    if not goal:
        return 0
    return min(round(current / goal * 100), 100)


def _money(amount: float) -> str:
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_funding(amount: float, currency: str = "USD") -> str:
    """``$1,234.00`` for USD/SOL, ``$1,234.00 USDC`` for USDC."""
    if currency == "USDC":
        return f"{_money(amount)} USDC"
    return _money(amount)


def format_compact_currency(amount: float) -> str:
    if amount >= 1_000_000:
        return f"${amount / 1_000_000:.2f}M"
    if amount >= 1000:
        return f"${amount / 1000:.1f}K"
    return f"${amount:.2f}"


def calculate_percentage_change(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def format_proposal_type(proposal_type: str) -> tuple[str, str]:
    """Return ``(label, icon)`` for a proposal type."""
    return proposal_type, PROPOSAL_TYPE_ICONS.get(proposal_type, PROPOSAL_TYPE_ICONS["Other"])


# ---------------------------------------------------------------------------
# Voting window
# ---------------------------------------------------------------------------
def get_default_voting_end_date(days: int = 7, now: datetime | None = None) -> datetime:
    return _now(now) + timedelta(days=days)


def get_days_remaining(ends_at: datetime, now: datetime | None = None) -> int:
    seconds = (as_utc(ends_at) - _now(now)).total_seconds()
    return max(math.ceil(seconds / 86400), 0)


def get_hours_remaining(ends_at: datetime, now: datetime | None = None) -> int:
    seconds = (as_utc(ends_at) - _now(now)).total_seconds()
    return max(math.ceil(seconds / 3600), 0)


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'' if n == 1 else 's'} remaining"


def get_time_remaining(ends_at: datetime, now: datetime | None = None) -> str:
    seconds = (as_utc(ends_at) - _now(now)).total_seconds()
    if seconds <= 0:
        return "Voting ended"

    days = int(seconds // 86400)
    hours = int(seconds % 86400 // 3600)
    if days > 0:
        return _plural(days, "day")
    if hours > 0:
        return _plural(hours, "hour")
    return _plural(int(seconds % 3600 // 60), "minute")
