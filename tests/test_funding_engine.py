"""
tests/test_funding_engine.py — Funding, Countdown & Availability Helpers
=========================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from inrecord.engine.availability import (
    calculate_session_cost,
    generate_slots,
    has_conflict,
    normalize_session_time,
)
from inrecord.engine.funding import (
    calculate_funding_percentage,
    calculate_percentage_change,
    format_compact_currency,
    format_funding,
    format_proposal_type,
    get_days_remaining,
    get_hours_remaining,
    get_time_remaining,
)

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


class TestFunding:
    @pytest.mark.parametrize("current,goal,pct", [
        (0, 1000, 0), (250, 1000, 25), (1000, 1000, 100), (1500, 1000, 100), (10, None, 0), (10, 0, 0),
    ])
    def test_percentage_capped(self, current, goal, pct):
        assert calculate_funding_percentage(current, goal) == pct

    def test_format_funding(self):
        assert format_funding(1234) == "$1,234.00"
        assert format_funding(50, "USDC") == "$50.00 USDC"

    def test_compact_currency(self):
        assert format_compact_currency(2_500_000) == "$2.50M"
        assert format_compact_currency(1500) == "$1.5K"
        assert format_compact_currency(12.5) == "$12.50"

    def test_percentage_change_from_zero(self):
        assert calculate_percentage_change(5, 0) == 100.0
        assert calculate_percentage_change(0, 0) == 0.0
        assert calculate_percentage_change(150, 100) == 50.0

    def test_unknown_type_gets_other_icon(self):
        label, icon = format_proposal_type("Mystery")
        assert label == "Mystery"
        assert icon == format_proposal_type("Other")[1]


class TestCountdown:
    def test_days(self):
        assert get_time_remaining(NOW + timedelta(days=2, hours=3), NOW) == "2 days remaining"

    def test_singular_hour(self):
        assert get_time_remaining(NOW + timedelta(hours=1, minutes=5), NOW) == "1 hour remaining"

    def test_minutes(self):
        assert get_time_remaining(NOW + timedelta(minutes=30), NOW) == "30 minutes remaining"

    def test_ended(self):
        assert get_time_remaining(NOW - timedelta(minutes=1), NOW) == "Voting ended"

    def test_days_remaining_rounds_up(self):
        assert get_days_remaining(NOW + timedelta(hours=25), NOW) == 2
        assert get_days_remaining(NOW - timedelta(days=1), NOW) == 0

    def test_hours_remaining(self):
        assert get_hours_remaining(NOW + timedelta(hours=5, minutes=1), NOW) == 6
        assert get_hours_remaining(NOW - timedelta(hours=2), NOW) == 0


def _booking(time: str, hours: int, status: str = "confirmed", id: str = "s1"):
    return SimpleNamespace(id=id, session_time=time, duration_hours=hours, status=status)


class TestAvailability:
    def test_normalize(self):
        assert normalize_session_time("14:00") == "14:00:00"
        assert normalize_session_time("09:30:15") == "09:30:15"

    @pytest.mark.parametrize("bad", ["25:00", "2pm", "14", ""])
    def test_normalize_rejects(self, bad):
        with pytest.raises(ValueError):
            normalize_session_time(bad)

    def test_slots_cover_opening_hours(self):
        slots = generate_slots([])
        assert slots[0].time == "09:00:00"
        assert slots[-1].time == "21:00:00"
        assert all(s.available for s in slots)

    def test_booking_blocks_its_hours_only(self):
        slots = {s.time: s for s in generate_slots([_booking("10:00:00", 3)])}
        assert slots["09:00:00"].available
        assert not slots["10:00:00"].available
        assert slots["12:00:00"].session_id == "s1"
        assert slots["13:00:00"].available

    def test_cancelled_bookings_do_not_block(self):
        slots = generate_slots([_booking("10:00:00", 3, status="cancelled")])
        assert all(s.available for s in slots)

    def test_conflict_detection(self):
        existing = [_booking("14:00:00", 2)]
        assert has_conflict(existing, "15:00", 1)
        assert has_conflict(existing, "13:00", 2)
        assert not has_conflict(existing, "16:00", 2)
        assert not has_conflict(existing, "12:00", 2)

    def test_completed_booking_is_not_a_conflict(self):
        assert not has_conflict([_booking("14:00:00", 2, status="completed")], "14:00", 1)

    def test_cost_with_academy_discount(self):
        assert calculate_session_cost(150, 2) == 300
        assert calculate_session_cost(150, 2, academy_member=True) == 210
