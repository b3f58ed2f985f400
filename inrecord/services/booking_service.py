"""
inrecord.services.booking_service — Studio Bookings
====================================================

Room pricing, availability and the booking lifecycle::

    pending ──► confirmed ──► completed
       │            │
       └────────────┴──► cancelled

Slot math lives in :mod:`inrecord.engine.availability`.  Emails are sent
by the route layer after the booking is committed.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from inrecord.constants import ACADEMY_DISCOUNT, MAX_SESSION_HOURS, STUDIO_CLOSE_HOUR, STUDIO_OPEN_HOUR
from inrecord.database.models import AdminActionType, RoomPricing, RoomType, SessionStatus, StudioSession
from inrecord.database.seed import get_setting
from inrecord.engine.availability import (
    AvailabilitySlot,
    calculate_session_cost,
    generate_slots,
    has_conflict,
    normalize_session_time,
)
from inrecord.errors import BookingConflictError, InvalidTransitionError
from inrecord.services.admin_service import (
    _audited_delete,
    _audited_update,
    _log_admin_action,
    _row_to_dict,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[str, frozenset[str]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.CONFIRMED, SessionStatus.CANCELLED}),
    SessionStatus.CONFIRMED: frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
}


def _today(today: date | None) -> date:
    return today or datetime.now(timezone.utc).date()


def _check_room(room_type: str) -> None:
    if room_type not in set(RoomType):
        raise ValueError(f"Unknown room type: {room_type}")


def _check_schedule(session_time: str, duration_hours: int) -> str:
    """Validate studio hours for a slot and return the normalized ``HH:MM`` start."""
    if not 1 <= duration_hours <= MAX_SESSION_HOURS:
        raise ValueError(f"Duration must be between 1 and {MAX_SESSION_HOURS} hours")
    session_time = normalize_session_time(session_time)
    start = int(session_time[:2])
    if not STUDIO_OPEN_HOUR <= start <= STUDIO_CLOSE_HOUR:
        raise ValueError(
            f"Sessions start between {STUDIO_OPEN_HOUR:02d}:00 and {STUDIO_CLOSE_HOUR:02d}:00"
        )
    if start + duration_hours > 24:
        raise ValueError("Session must end by midnight")
    return session_time


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------
def get_room_pricing(engine: Engine) -> list[RoomPricing]:
    with Session(engine) as session:
        return list(session.scalars(select(RoomPricing).order_by(RoomPricing.hourly_rate)).all())


def get_room_price(engine: Engine, room_type: str) -> RoomPricing | None:
    with Session(engine) as session:
        return session.scalar(select(RoomPricing).where(RoomPricing.room_type == room_type))


def _cost(session: Session, room_type: str, hours: int, academy_member: bool) -> float:
    pricing = session.scalar(select(RoomPricing).where(RoomPricing.room_type == room_type))
    if pricing is None:
        raise LookupError(f"No pricing for room type {room_type}")
    discount = float(get_setting(session, "studio.academy_discount", ACADEMY_DISCOUNT))
    return calculate_session_cost(pricing.hourly_rate, hours, academy_member, discount)


def calculate_booking_cost(
    engine: Engine, room_type: str, hours: int, academy_member: bool = False
) -> float:
    _check_room(room_type)
    if not 1 <= hours <= MAX_SESSION_HOURS:
        raise ValueError(f"Duration must be between 1 and {MAX_SESSION_HOURS} hours")
    with Session(engine) as session:
        return _cost(session, room_type, hours, academy_member)


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------
def _day_bookings(session: Session, session_date: date, room_type: str) -> list[StudioSession]:
    return list(session.scalars(
        select(StudioSession).where(
            StudioSession.session_date == session_date,
            StudioSession.room_type == room_type,
        )
    ).all())


def check_availability(
    engine: Engine, session_date: date, room_type: str, today: date | None = None
) -> list[AvailabilitySlot]:
    """Hourly slots for one room on one day."""
    _check_room(room_type)
    if session_date < _today(today):
        raise ValueError("Cannot check availability for past dates")
    with Session(engine) as session:
        return generate_slots(_day_bookings(session, session_date, room_type))


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------
def create_booking(
    engine: Engine,
    *,
    user_email: str,
    room_type: str,
    session_date: date,
    session_time: str,
    duration_hours: int,
    user_name: str | None = None,
    user_phone: str | None = None,
    user_wallet: str | None = None,
    notes: str | None = None,
    academy_member: bool = False,
    today: date | None = None,
) -> StudioSession:
    """Insert a ``pending`` booking after checking the date, hours and slot.

    Raises ``ValueError`` for a past date or out-of-hours slot and
    :class:`BookingConflictError` when the slot overlaps an active booking.
    """
    _check_room(room_type)
    if session_date < _today(today):
        raise ValueError("Cannot book sessions in the past")
    session_time = _check_schedule(session_time, duration_hours)

    with Session(engine, expire_on_commit=False) as session:
        if has_conflict(_day_bookings(session, session_date, room_type), session_time, duration_hours):
            raise BookingConflictError("Time slot is not available")

        booking = StudioSession(
            user_email=user_email.strip().lower(),
            user_name=user_name,
            user_phone=user_phone,
            user_wallet=user_wallet,
            room_type=room_type,
            session_date=session_date,
            session_time=session_time,
            duration_hours=duration_hours,
            notes=notes,
            status=SessionStatus.PENDING,
            total_cost=_cost(session, room_type, duration_hours, academy_member),
        )
        session.add(booking)
        session.commit()
        session.refresh(booking)
        session.expunge(booking)

    logger.info(
        "Booking %s: %s on %s at %s for %dh",
        booking.id[:8], room_type, session_date, session_time, duration_hours,
    )
    return booking


def get_booking(engine: Engine, booking_id: str) -> StudioSession | None:
    with Session(engine) as session:
        return session.get(StudioSession, booking_id)


def get_bookings_by_email(engine: Engine, email: str) -> list[StudioSession]:
    with Session(engine) as session:
        return list(session.scalars(
            select(StudioSession)
            .where(StudioSession.user_email == email.strip().lower())
            .order_by(StudioSession.session_date.desc(), StudioSession.session_time.desc())
        ).all())


def _change_status(
    engine: Engine,
    booking_id: str,
    target: str,
    *,
    actor_id: str | None = None,
    user_email: str | None = None,
) -> StudioSession:
    with Session(engine, expire_on_commit=False) as session:
        booking = session.get(StudioSession, booking_id)
        if booking is None:
            raise LookupError(f"Booking {booking_id} not found")
        if user_email and booking.user_email != user_email.strip().lower():
            raise LookupError(f"Booking {booking_id} not found")
        if target not in _TRANSITIONS.get(booking.status, frozenset()):
            raise InvalidTransitionError(f"Cannot move booking from {booking.status} to {target}")

        before = _row_to_dict(booking)
        booking.status = target
        if target == SessionStatus.CANCELLED:
            booking.cancelled_at = datetime.now(timezone.utc)
        session.flush()
        if actor_id:
            _log_admin_action(
                session,
                actor_id=actor_id,
                action_type=AdminActionType.STATUS_CHANGE,
                target_table="studio_sessions",
                target_id=booking.id,
                before=before,
                after=_row_to_dict(booking),
            )
        session.commit()
        session.refresh(booking)
        session.expunge(booking)

    logger.info("Booking %s is now %s", booking_id[:8], target)
    return booking


def cancel_booking(
    engine: Engine,
    booking_id: str,
    *,
    actor_id: str | None = None,
    user_email: str | None = None,
) -> StudioSession:
    """Cancel as an admin (*actor_id*) or as the booker (*user_email* must match)."""
    return _change_status(
        engine, booking_id, SessionStatus.CANCELLED, actor_id=actor_id, user_email=user_email
    )


def confirm_booking(engine: Engine, booking_id: str, *, actor_id: str) -> StudioSession:
    return _change_status(engine, booking_id, SessionStatus.CONFIRMED, actor_id=actor_id)


def complete_booking(engine: Engine, booking_id: str, *, actor_id: str) -> StudioSession:
    return _change_status(engine, booking_id, SessionStatus.COMPLETED, actor_id=actor_id)


def update_dao_funding_status(
    engine: Engine, booking_id: str, dao_funded: bool, *, actor_id: str
) -> StudioSession:
    booking = _audited_update(
        engine,
        StudioSession,
        booking_id,
        table_name="studio_sessions",
        actor_id=actor_id,
        dao_funded=dao_funded,
    )
    if booking is None:
        raise LookupError(f"Booking {booking_id} not found")
    return booking


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------
def get_all_bookings(
    engine: Engine,
    *,
    status: str | None = None,
    room_type: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[StudioSession]:
    query = select(StudioSession)
    if status:
        query = query.where(StudioSession.status == status)
    if room_type:
        query = query.where(StudioSession.room_type == room_type)
    if start_date:
        query = query.where(StudioSession.session_date >= start_date)
    if end_date:
        query = query.where(StudioSession.session_date <= end_date)
    with Session(engine) as session:
        return list(session.scalars(
            query.order_by(StudioSession.session_date.desc(), StudioSession.session_time.desc())
        ).all())


_ADMIN_EDITABLE = frozenset({
    "user_name", "user_phone", "user_wallet", "notes", "admin_notes",
    "total_cost", "dao_funded", "session_date", "session_time", "duration_hours", "room_type",
})


def update_booking(
    engine: Engine,
    booking_id: str,
    *,
    actor_id: str,
    ip_address: str | None = None,
    **fields: Any,
) -> StudioSession:
    """Audited edit.  Rescheduling is re-checked for conflicts; status goes through the lifecycle helpers."""
    unknown = set(fields) - _ADMIN_EDITABLE
    if unknown:
        raise ValueError(f"Cannot edit booking fields: {', '.join(sorted(unknown))}")
    if "room_type" in fields:
        _check_room(fields["room_type"])

    if {"session_date", "session_time", "duration_hours", "room_type"} & set(fields):
        current = get_booking(engine, booking_id)
        if current is None:
            raise LookupError(f"Booking {booking_id} not found")
        day = fields.get("session_date", current.session_date)
        room = fields.get("room_type", current.room_type)
        duration = fields.get("duration_hours", current.duration_hours)
        start = _check_schedule(fields.get("session_time", current.session_time), duration)
        if "session_time" in fields:
            fields["session_time"] = start
        with Session(engine) as session:
            others = [b for b in _day_bookings(session, day, room) if b.id != booking_id]
        if has_conflict(others, start, duration):
            raise BookingConflictError("Time slot is not available")

    booking = _audited_update(
        engine,
        StudioSession,
        booking_id,
        table_name="studio_sessions",
        actor_id=actor_id,
        ip_address=ip_address,
        **fields,
    )
    if booking is None:
        raise LookupError(f"Booking {booking_id} not found")
    return booking


def delete_booking(
    engine: Engine, booking_id: str, *, actor_id: str, ip_address: str | None = None
) -> bool:
    return _audited_delete(
        engine,
        StudioSession,
        booking_id,
        table_name="studio_sessions",
        actor_id=actor_id,
        ip_address=ip_address,
    )


def get_booking_stats(engine: Engine) -> dict:
    """Counts per status plus revenue summed over every booking's ``total_cost``."""
    with Session(engine) as session:
        by_status = {s: 0 for s in SessionStatus}
        by_status.update(dict(session.execute(
            select(StudioSession.status, func.count()).group_by(StudioSession.status)
        ).all()))
        return {
            "total": sum(by_status.values()),
            "pending": by_status[SessionStatus.PENDING],
            "confirmed": by_status[SessionStatus.CONFIRMED],
            "completed": by_status[SessionStatus.COMPLETED],
            "cancelled": by_status[SessionStatus.CANCELLED],
            "dao_funded": session.scalar(
                select(func.count()).select_from(StudioSession)
                .where(StudioSession.dao_funded.is_(True))
            ) or 0,
            "total_revenue": float(session.scalar(
                select(func.coalesce(func.sum(StudioSession.total_cost), 0))
            ) or 0),
        }


def booking_to_dict(booking: StudioSession) -> dict:
    return {
        "id": booking.id,
        "user_email": booking.user_email,
        "user_name": booking.user_name,
        "user_phone": booking.user_phone,
        "user_wallet": booking.user_wallet,
        "room_type": booking.room_type,
        "session_date": booking.session_date.isoformat(),
        "session_time": booking.session_time,
        "duration_hours": booking.duration_hours,
        "status": booking.status,
        "total_cost": booking.total_cost,
        "dao_funded": booking.dao_funded,
        "notes": booking.notes,
        "admin_notes": booking.admin_notes,
        "cancelled_at": booking.cancelled_at.isoformat() if booking.cancelled_at else None,
        "created_at": booking.created_at.isoformat() if booking.created_at else None,
    }
