"""
inrecord.api.routes.bookings — Studio booking endpoints (public)
=================================================================
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, Field

from inrecord.api.deps import get_config, get_engine, http_error
from inrecord.config import LabelConfig
from inrecord.services import booking_service, email_service
from inrecord.services.booking_service import booking_to_dict

router = APIRouter(prefix="/bookings", tags=["bookings"])

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class BookingCreate(BaseModel):
    user_email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    user_name: str | None = Field(default=None, max_length=100)
    user_phone: str | None = Field(default=None, max_length=30)
    user_wallet: str | None = None
    room_type: str
    session_date: date
    session_time: str
    duration_hours: int = Field(ge=1, le=12)
    notes: str | None = None
    academy_member: bool = False


class BookingCancel(BaseModel):
    user_email: str = Field(pattern=EMAIL_PATTERN, max_length=255)


@router.get("/pricing")
def pricing(engine=Depends(get_engine)):
    return {
        "rooms": [
            {
                "room_type": p.room_type,
                "hourly_rate": p.hourly_rate,
                "description": p.description,
                "features": p.features or [],
            }
            for p in booking_service.get_room_pricing(engine)
        ],
    }


@router.get("/quote")
def quote(
    room_type: str = Query(...),
    hours: int = Query(..., ge=1),
    academy_member: bool = Query(False),
    engine=Depends(get_engine),
):
    try:
        cost = booking_service.calculate_booking_cost(engine, room_type, hours, academy_member)
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    return {"room_type": room_type, "hours": hours, "academy_member": academy_member, "total_cost": cost}


@router.get("/availability")
def availability(
    session_date: date = Query(..., alias="date"),
    room_type: str = Query(...),
    engine=Depends(get_engine),
):
    try:
        slots = booking_service.check_availability(engine, session_date, room_type)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "date": session_date.isoformat(),
        "room_type": room_type,
        "slots": [
            {"time": s.time, "available": s.available, "session_id": s.session_id} for s in slots
        ],
    }


@router.post("", status_code=201)
def create_booking(
    body: BookingCreate,
    background: BackgroundTasks,
    engine=Depends(get_engine),
    cfg: LabelConfig = Depends(get_config),
):
    try:
        booking = booking_service.create_booking(engine, **body.model_dump())
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    background.add_task(email_service.notify_booking_created, booking, cfg)
    return booking_to_dict(booking)


@router.get("")
def list_my_bookings(email: str = Query(..., pattern=EMAIL_PATTERN), engine=Depends(get_engine)):
    rows = booking_service.get_bookings_by_email(engine, email)
    return {"bookings": [booking_to_dict(b) for b in rows], "total": len(rows)}


@router.post("/{booking_id}/cancel")
def cancel_booking(
    booking_id: str,
    body: BookingCancel,
    background: BackgroundTasks,
    engine=Depends(get_engine),
    cfg: LabelConfig = Depends(get_config),
):
    """Customer cancellation; the email must match the booking's."""
    try:
        booking = booking_service.cancel_booking(engine, booking_id, user_email=body.user_email)
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    background.add_task(email_service.notify_booking_status, booking, cfg)
    return booking_to_dict(booking)
