"""
inrecord.engine.availability — Studio Slot Generation
======================================================

Hourly slots from ``STUDIO_OPEN_HOUR`` to ``STUDIO_CLOSE_HOUR`` inclusive.
A booking starting at hour *h* for *d* hours blocks slots ``h <= slot < h + d``.
Only ``pending`` and ``confirmed`` sessions block a room.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from inrecord.constants import ACADEMY_DISCOUNT, STUDIO_CLOSE_HOUR, STUDIO_OPEN_HOUR
from inrecord.database.models import SessionStatus

BLOCKING_STATUSES = frozenset({SessionStatus.PENDING, SessionStatus.CONFIRMED})

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")


@dataclass
class AvailabilitySlot:
    time: str
    available: bool
    session_id: str | None = None

    def to_dict(self) -> dict:
        data = {"time": self.time, "available": self.available}
        if self.session_id is not None:
            data["session_id"] = self.session_id
        return data


def normalize_session_time(value: str) -> str:
    """``"14:00"`` → ``"14:00:00"``.  Raises ``ValueError`` on anything else."""
    match = _TIME_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time format: {value!r} (use HH:MM)")
    hh, mm, ss = match.groups()
    return f"{hh}:{mm}:{ss or '00'}"


def _start_hour(session_time: str) -> int:
    return int(session_time.split(":")[0])


def _blocks(booking, hour: int) -> bool:
    start = _start_hour(booking.session_time)
    return start <= hour < start + booking.duration_hours


def _blocking(bookings: Iterable) -> list:
    return [
        b for b in bookings
        if getattr(b, "status", SessionStatus.PENDING) in BLOCKING_STATUSES
    ]


def generate_slots(bookings: Iterable) -> list[AvailabilitySlot]:
    """Build the day's slot list.  Each blocked slot names the blocking session."""
    active = _blocking(bookings)
    slots = []
    for hour in range(STUDIO_OPEN_HOUR, STUDIO_CLOSE_HOUR + 1):
        blocker = next((b for b in active if _blocks(b, hour)), None)
        slots.append(AvailabilitySlot(
            time=f"{hour:02d}:00:00",
            available=blocker is None,
            session_id=blocker.id if blocker is not None else None,
        ))
    return slots


def has_conflict(bookings: Iterable, start_time: str, duration_hours: int) -> bool:
    """True if ``[start, start + duration)`` overlaps any blocking booking."""
    start = _start_hour(normalize_session_time(start_time))
    end = start + duration_hours
    for b in _blocking(bookings):
        b_start = _start_hour(b.session_time)
        if start < b_start + b.duration_hours and b_start < end:
            return True
    return False


def calculate_session_cost(
    hourly_rate: float,
    hours: int,
    academy_member: bool = False,
    discount: float = ACADEMY_DISCOUNT,
) -> float:
    cost = hourly_rate * hours
    if academy_member:
        cost *= 1 - discount
    return round(cost, 2)
