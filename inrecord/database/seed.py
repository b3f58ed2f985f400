"""
inrecord.database.seed — Default Settings & Room Pricing Seeder
================================================================

Baseline rows inserted on first startup so governance and bookings work
against an empty database.

Idempotent — only inserts keys / room types that don't already exist.
Values edited later by an admin are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from inrecord.constants import ACADEMY_DISCOUNT, DEFAULT_ROOM_PRICING, VOTE_MILESTONES
from inrecord.database.models import RoomPricing, Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "governance.default_quorum": (
        10, "governance", "Percent of active members that must vote (1-100)",
    ),
    "governance.default_approval_threshold": (
        51, "governance", "Percent of weighted for-votes needed to pass (1-100)",
    ),
    "governance.voting_period_days": (
        7, "governance", "Default length of the voting window in days",
    ),
    "governance.vote_milestones": (
        list(VOTE_MILESTONES), "notifications", "Vote counts that trigger a Discord milestone post",
    ),
    "studio.academy_discount": (
        ACADEMY_DISCOUNT, "studio", "Discount applied to academy members' session cost",
    ),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


# ---------------------------------------------------------------------------
# Seeders
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> None:
    """Insert default settings that don't yet exist."""
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            existing = session.get(Setting, key)
            if existing is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)


def seed_room_pricing(engine: Engine) -> None:
    """Insert a ``room_pricing`` row for every room type that lacks one."""
    session = Session(engine)
    inserted = 0
    try:
        existing = set(session.scalars(select(RoomPricing.room_type)).all())
        for room_type, (rate, desc, features) in DEFAULT_ROOM_PRICING.items():
            if room_type in existing:
                continue
            session.add(RoomPricing(
                room_type=room_type,
                hourly_rate=rate,
                description=desc,
                features=list(features),
            ))
            inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded pricing for %d studio rooms.", inserted)


def get_setting(session: Session, key: str, default: object = None) -> object:
    """Decoded value of setting *key* read through *session*, or *default* when missing."""
    row = session.get(Setting, key)
    if row is None:
        return default
    try:
        return json.loads(row.value_json)
    except (json.JSONDecodeError, TypeError):
        return row.value_json
