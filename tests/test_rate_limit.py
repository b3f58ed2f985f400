"""
tests/test_rate_limit.py — Admin API Rate Limiting Tests
==========================================================
Admin mutation endpoints are rate-limited per admin user, returning 429
with a consistent error payload and ``Retry-After``.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from conftest import auth, make_admin_token

from inrecord.api.rate_limit import AdminRateLimiter

T0 = datetime(2025, 1, 13, 9, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Unit tests for the AdminRateLimiter core (DB-backed)
# ---------------------------------------------------------------------------
class TestAdminRateLimiter:
    """Test the sliding-window rate limiter in isolation (DB-backed)."""

    @pytest.fixture(autouse=True)
    def _limiter(self, db_engine):
        self.engine = db_engine

    def _make(self, max_requests: int = 3, window_seconds: int = 60) -> AdminRateLimiter:
        return AdminRateLimiter(engine=self.engine, max_requests=max_requests, window_seconds=window_seconds)

    def test_allows_requests_within_limit(self):
        limiter = self._make(max_requests=5)
        remaining = [limiter.consume("user1", T0).remaining for _ in range(5)]
        assert remaining == [4, 3, 2, 1, 0]

    def test_blocks_after_limit_exceeded(self):
        limiter = self._make()
        for _ in range(3):
            assert limiter.consume("user1", T0).allowed

        decision = limiter.consume("user1", T0 + timedelta(seconds=10))
        assert not decision.allowed
        assert decision.remaining == 0
        assert decision.retry_after == 51
        assert decision.limit == 3

    def test_rejected_requests_are_not_recorded(self):
        limiter = self._make(max_requests=1)
        limiter.consume("user1", T0)
        for _ in range(5):
            assert not limiter.consume("user1", T0 + timedelta(seconds=30)).allowed
        assert limiter.consume("user1", T0 + timedelta(seconds=61)).allowed

    def test_separate_users_have_separate_limits(self):
        limiter = self._make(max_requests=2)
        limiter.consume("user1", T0)
        limiter.consume("user1", T0)

        assert not limiter.consume("user1", T0).allowed
        assert limiter.consume("user2", T0).allowed

    def test_window_expiry_frees_slots(self):
        limiter = self._make(max_requests=2, window_seconds=60)
        limiter.consume("user1", T0)
        limiter.consume("user1", T0 + timedelta(seconds=30))

        assert not limiter.consume("user1", T0 + timedelta(seconds=45)).allowed
        decision = limiter.consume("user1", T0 + timedelta(seconds=61))
        assert decision.allowed
        assert decision.remaining == 0

    def test_reset_clears_specific_user(self):
        limiter = self._make(max_requests=2)
        limiter.consume("user1", T0)
        limiter.consume("user1", T0)
        limiter.consume("user2", T0)

        limiter.reset("user1")

        assert limiter.consume("user1", T0).remaining == 1
        assert limiter.consume("user2", T0).remaining == 0

    def test_reset_all(self):
        limiter = self._make(max_requests=1)
        limiter.consume("user1", T0)
        limiter.consume("user2", T0)

        limiter.reset()

        assert limiter.consume("user1", T0).allowed
        assert limiter.consume("user2", T0).allowed


# ---------------------------------------------------------------------------
# Integration tests with FastAPI TestClient
# ---------------------------------------------------------------------------
SETTING = [{"key": "governance.vote_milestones", "value": [10, 25, 50]}]


class TestRateLimitDependency:
    """Test the rate limiter dependency end-to-end via TestClient."""

    @pytest.fixture
    def client(self, api, db_engine):
        """The shared API client with a limiter of 3 mutations per window."""
        import inrecord.api.rate_limit as rl_mod

        original_limiter = rl_mod._limiter
        test_limiter = AdminRateLimiter(engine=db_engine, max_requests=3, window_seconds=60)
        rl_mod._limiter = test_limiter
        yield api, test_limiter
        rl_mod._limiter = original_limiter

    @pytest.fixture
    def admin_token(self):
        return make_admin_token(sub="admin-123", username="TestAdmin")

    @pytest.fixture
    def admin_token_2(self):
        return make_admin_token(sub="admin-456", username="TestAdmin2")

    def _fill(self, limiter: AdminRateLimiter, admin_id: str) -> None:
        for _ in range(limiter.max_requests):
            limiter.consume(admin_id)

    def test_get_requests_not_rate_limited(self, client, admin_token):
        test_client, limiter = client
        self._fill(limiter, "admin-123")
        for _ in range(5):
            resp = test_client.get("/api/admin/settings", headers=auth(admin_token))
            assert resp.status_code == 200

    def test_mutations_count_against_the_window(self, client, admin_token):
        test_client, _ = client
        codes = [
            test_client.put("/api/admin/settings", headers=auth(admin_token), json=SETTING).status_code
            for _ in range(4)
        ]
        assert codes == [200, 200, 200, 429]

    def test_returns_429_payload(self, client, admin_token):
        test_client, limiter = client
        self._fill(limiter, "admin-123")

        resp = test_client.put("/api/admin/settings", headers=auth(admin_token), json=SETTING)
        assert resp.status_code == 429

        body = resp.json()
        assert body["detail"]["error"] == "rate_limit_exceeded"
        assert body["detail"]["retry_after"] >= 1
        assert resp.headers["Retry-After"] == str(body["detail"]["retry_after"])

    def test_different_admins_have_separate_limits(self, client, admin_token, admin_token_2):
        test_client, limiter = client
        self._fill(limiter, "admin-123")

        resp1 = test_client.put("/api/admin/settings", headers=auth(admin_token), json=SETTING)
        assert resp1.status_code == 429

        resp2 = test_client.put("/api/admin/settings", headers=auth(admin_token_2), json=SETTING)
        assert resp2.status_code == 200

    def test_unauthenticated_mutation_rejected_before_counting(self, client):
        test_client, limiter = client
        resp = test_client.put("/api/admin/settings", json=SETTING)
        assert resp.status_code == 401
        assert limiter.consume("admin-123").remaining == 2
