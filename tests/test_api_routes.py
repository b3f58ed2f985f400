"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Integration tests for the public and admin API routes using the FastAPI
TestClient against the in-memory SQLite engine.

These tests verify:
- Auth guards on admin and cron endpoints
- Domain errors mapped to 400/403/404/409
- Basic response structure of public endpoints
"""

from __future__ import annotations

import tomllib
from datetime import date, timedelta
from pathlib import Path
from unittest.mock import AsyncMock

import jwt
import pytest
from conftest import WALLET_A, WALLET_B, WALLET_C, add_digest, auth

import inrecord
from inrecord.api.deps import JWT_ALGORITHM, JWT_SECRET
from inrecord.services import digest_service


@pytest.fixture
def non_admin_token():
    return jwt.encode(
        {"sub": "67890", "username": "RegularUser", "is_admin": False},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def _proposal_body(**overrides) -> dict:
    body = {
        "title": "Tape machine restoration",
        "description": "Restore the 1970s tape machine for analog tracking sessions.",
        "proposal_type": "Equipment Purchase",
        "created_by": WALLET_A,
        "funding_goal": 2500,
        "quorum_required": 1,
        "submit": True,
    }
    body.update(overrides)
    return body


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, api):
        resp = api.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_version_matches_package_metadata(self, api):
        with open(Path(__file__).resolve().parents[1] / "pyproject.toml", "rb") as fh:
            declared = tomllib.load(fh)["project"]["version"]
        assert inrecord.__version__ == declared
        assert api.app.version == declared


# ===========================================================================
# Auth guards
# ===========================================================================
class TestAdminAuthGuards:
    """Admin endpoints return 401/403 for missing, invalid or non-admin tokens."""

    ADMIN_GET_ENDPOINTS = [
        "/api/admin/proposals",
        "/api/admin/bookings",
        "/api/admin/bookings/stats",
        "/api/admin/settings",
        "/api/admin/audit",
        "/api/admin/logs",
    ]

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_no_token_returns_401(self, api, endpoint):
        assert api.get(endpoint).status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_invalid_token_returns_401(self, api, endpoint):
        assert api.get(endpoint, headers=auth("invalid.jwt.token")).status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_non_admin_returns_403(self, api, non_admin_token, endpoint):
        assert api.get(endpoint, headers=auth(non_admin_token)).status_code == 403

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_admin_allowed(self, api, admin_token, endpoint):
        assert api.get(endpoint, headers=auth(admin_token)).status_code == 200

    def test_me(self, api, admin_token):
        resp = api.get("/api/auth/me", headers=auth(admin_token))
        assert resp.json() == {"id": "99999", "username": "FixtureAdmin", "is_admin": True}


class TestTokenExchange:
    def test_not_configured(self, api, monkeypatch):
        monkeypatch.delenv("ADMIN_API_KEY", raising=False)
        assert api.post("/api/auth/token", json={"api_key": "x"}).status_code == 500

    def test_wrong_key(self, api, monkeypatch):
        monkeypatch.setenv("ADMIN_API_KEY", "label-admin-key")
        assert api.post("/api/auth/token", json={"api_key": "nope"}).status_code == 401

    def test_issued_token_works(self, api, monkeypatch):
        monkeypatch.setenv("ADMIN_API_KEY", "label-admin-key")
        resp = api.post("/api/auth/token", json={"api_key": "label-admin-key", "username": "ops"})
        assert resp.status_code == 200
        token = resp.json()["access_token"]
        assert api.get("/api/auth/me", headers=auth(token)).json()["username"] == "ops"


# ===========================================================================
# Governance
# ===========================================================================
class TestGovernanceFlow:
    @pytest.fixture
    def members(self, api):
        for wallet, tier in ((WALLET_A, "Silver"), (WALLET_B, "Gold")):
            resp = api.post("/api/dao/members", json={"wallet_address": wallet, "membership_tier": tier})
            assert resp.status_code == 201
        return api

    def test_duplicate_member(self, members):
        resp = members.post("/api/dao/members", json={"wallet_address": WALLET_A})
        assert resp.status_code == 400

    def test_proposal_vote_and_close(self, members, admin_token):
        api = members
        resp = api.post("/api/dao/proposals", json=_proposal_body())
        assert resp.status_code == 201
        proposal = resp.json()
        assert proposal["status"] == "submitted"

        resp = api.post(
            f"/api/admin/proposals/{proposal['id']}/start-voting", json={}, headers=auth(admin_token)
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "active_voting"

        vote = {"voter_wallet": WALLET_B, "vote_type": "for"}
        resp = api.post(f"/api/dao/proposals/{proposal['id']}/vote", json=vote)
        assert resp.status_code == 201
        assert resp.json()["proposal"]["votes_for"] == 1
        assert resp.json()["proposal"]["total_vote_weight"] == 3

        again = api.post(f"/api/dao/proposals/{proposal['id']}/vote", json=vote)
        assert again.status_code == 409

        has_voted = api.get(f"/api/dao/proposals/{proposal['id']}/has-voted", params={"wallet": WALLET_B})
        assert has_voted.status_code == 200

        resp = api.post(f"/api/admin/proposals/{proposal['id']}/close", headers=auth(admin_token))
        assert resp.status_code == 200
        assert resp.json()["result"]["result"] == "passed"
        assert resp.json()["proposal"]["status"] == "approved"

        again = api.post(f"/api/admin/proposals/{proposal['id']}/close", headers=auth(admin_token))
        assert again.status_code == 409

        audit = api.get(
            "/api/admin/audit", params={"target_table": "dao_proposals"}, headers=auth(admin_token)
        ).json()
        assert audit["total"] == 2

    def test_non_member_cannot_vote(self, members, admin_token):
        proposal = members.post("/api/dao/proposals", json=_proposal_body()).json()
        members.post(f"/api/admin/proposals/{proposal['id']}/start-voting", json={}, headers=auth(admin_token))
        resp = members.post(
            f"/api/dao/proposals/{proposal['id']}/vote",
            json={"voter_wallet": WALLET_C, "vote_type": "for"},
        )
        assert resp.status_code in (403, 404)

    def test_unknown_creator(self, api):
        assert api.post("/api/dao/proposals", json=_proposal_body()).status_code == 404

    def test_validation_error(self, members):
        resp = members.post("/api/dao/proposals", json=_proposal_body(proposal_type="Yacht"))
        assert resp.status_code == 400

    @pytest.mark.parametrize("overrides", [
        {"title": "x" * 9},
        {"description": "x" * 49},
        {"funding_goal": 1_000_001},
        {"attachment_urls": [f"https://files.test/{i}" for i in range(6)]},
    ])
    def test_field_limits(self, members, overrides):
        assert members.post("/api/dao/proposals", json=_proposal_body(**overrides)).status_code == 422

    def test_limits_accepted_at_boundary(self, members):
        body = _proposal_body(title="x" * 10, description="x" * 50)
        assert members.post("/api/dao/proposals", json=body).status_code == 201

    def test_missing_proposal(self, api):
        assert api.get("/api/dao/proposals/nope").status_code == 404

    def test_list(self, members):
        members.post("/api/dao/proposals", json=_proposal_body())
        body = members.get("/api/dao/proposals", params={"status": "submitted"}).json()
        assert body["total"] == 1
        assert body["proposals"][0]["proposal_type"] == "Equipment Purchase"


# ===========================================================================
# Bookings
# ===========================================================================
class TestBookings:
    def _body(self, **overrides) -> dict:
        body = {
            "user_email": "artist@example.com",
            "room_type": "recording",
            "session_date": (date.today() + timedelta(days=7)).isoformat(),
            "session_time": "14:00",
            "duration_hours": 2,
        }
        body.update(overrides)
        return body

    def test_pricing(self, api):
        rooms = api.get("/api/bookings/pricing").json()["rooms"]
        assert {r["room_type"] for r in rooms} >= {"recording", "mixing", "podcast"}

    def test_create_and_conflict(self, api):
        resp = api.post("/api/bookings", json=self._body())
        assert resp.status_code == 201
        assert resp.json()["total_cost"] == 300
        assert resp.json()["status"] == "pending"

        clash = api.post("/api/bookings", json=self._body(session_time="15:00", duration_hours=1))
        assert clash.status_code == 409

    def test_bad_email_rejected(self, api):
        assert api.post("/api/bookings", json=self._body(user_email="nope")).status_code == 422

    def test_customer_cancel(self, api):
        booking = api.post("/api/bookings", json=self._body()).json()
        wrong = api.post(f"/api/bookings/{booking['id']}/cancel", json={"user_email": "x@example.com"})
        assert wrong.status_code == 404
        resp = api.post(f"/api/bookings/{booking['id']}/cancel", json={"user_email": "artist@example.com"})
        assert resp.json()["status"] == "cancelled"


# ===========================================================================
# Treasury and exports
# ===========================================================================
class TestTreasuryAndExports:
    def test_balance_after_deposit(self, api, admin_token):
        resp = api.post(
            "/api/admin/treasury/transactions",
            json={"transaction_type": "deposit", "amount": 500, "contributor_wallet": WALLET_A},
            headers=auth(admin_token),
        )
        assert resp.status_code == 201
        assert api.get("/api/treasury/balance").json() == {"balances": {"ETH": 500.0}}

    def test_series_filter_by_currency(self, api, admin_token):
        for amount, currency in ((500, "ETH"), (80, "USDC")):
            api.post(
                "/api/admin/treasury/transactions",
                json={
                    "transaction_type": "deposit",
                    "amount": amount,
                    "currency": currency,
                    "contributor_wallet": WALLET_A,
                },
                headers=auth(admin_token),
            )
        history = api.get("/api/treasury/history", params={"days": 1}).json()
        assert history["currency"] == "ETH"
        assert history["history"][-1]["balance"] == 500
        usdc = api.get("/api/treasury/volume", params={"days": 1, "currency": "USDC"}).json()
        assert usdc["volume"][0]["inflow"] == 80
        summary = api.get("/api/treasury/summary", params={"currency": "USDC"}).json()
        assert summary["currency"] == "USDC"
        assert summary["current_balance"] == 80

    def test_csv_download(self, api, admin_token):
        api.post(
            "/api/admin/treasury/transactions",
            json={"transaction_type": "deposit", "amount": 500, "contributor_wallet": WALLET_A},
            headers=auth(admin_token),
        )
        resp = api.get("/api/exports/treasury-transactions.csv")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert 'filename="treasury_transactions_' in resp.headers["content-disposition"]
        lines = resp.text.splitlines()
        assert lines[0].startswith("Transaction ID")
        assert len(lines) == 2


# ===========================================================================
# Digests and cron
# ===========================================================================
class TestDigests:
    def test_latest_and_rss(self, api, db_engine):
        assert api.get("/api/digests/latest").status_code == 404
        add_digest(db_engine)

        assert api.get("/api/digests/latest").json()["week_start"] == "2025-01-06"
        rss = api.get("/api/digests/rss")
        assert rss.headers["content-type"].startswith("application/rss+xml")
        assert "Weekly DAO Digest - Week of Jan 6, 2025" in rss.text

    def test_unpublished_hidden(self, api, db_engine):
        add_digest(db_engine, published=False)
        assert api.get("/api/digests/week/2025-01-06").status_code == 404

    def test_subscribe_cycle(self, api):
        resp = api.post("/api/digests/subscribe", json={"email": "Fan@Example.com"})
        assert resp.status_code == 201
        assert resp.json() == {"email": "fan@example.com", "active": True}
        assert api.post("/api/digests/unsubscribe", json={"email": "fan@example.com"}).status_code == 200
        assert api.post("/api/digests/unsubscribe", json={"email": "ghost@example.com"}).status_code == 404


class TestCron:
    def test_requires_secret(self, api, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "cron-secret")
        assert api.post("/api/cron/digest").status_code == 401
        assert api.post("/api/cron/digest", headers=auth("wrong")).status_code == 401

    def test_unset_secret_rejects_everything(self, api, monkeypatch):
        monkeypatch.delenv("CRON_SECRET", raising=False)
        assert api.post("/api/cron/digest", headers=auth("")).status_code == 401

    def test_existing_week_is_skipped(self, api, db_engine, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "cron-secret")
        add_digest(db_engine, date(2025, 1, 6))
        resp = api.post(
            "/api/cron/digest",
            json={"week_start": "2025-01-06", "week_end": "2025-01-12"},
            headers=auth("cron-secret"),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "skipped"

    def test_auto_distribute_passed_through(self, api, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "cron-secret")
        job = AsyncMock(return_value={"status": "success"})
        monkeypatch.setattr(digest_service, "run_weekly_digest_job", job)
        resp = api.post(
            "/api/cron/digest",
            json={"force": True, "auto_distribute": False},
            headers=auth("cron-secret"),
        )
        assert resp.status_code == 200
        assert job.await_args.kwargs["force"] is True
        assert job.await_args.kwargs["auto_distribute"] is False

        api.post("/api/cron/digest", headers=auth("cron-secret"))
        assert job.await_args.kwargs["auto_distribute"] is True

    def test_half_range_rejected(self, api, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "cron-secret")
        resp = api.post("/api/cron/digest", json={"week_start": "2025-01-06"}, headers=auth("cron-secret"))
        assert resp.status_code == 422
