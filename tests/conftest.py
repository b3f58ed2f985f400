"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of inrecord.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import asyncio  # noqa: E402
from datetime import UTC, date, datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite renders JSONB as TEXT; SQLAlchemy's JSON serializer still applies.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from inrecord.config import LabelConfig  # noqa: E402
from inrecord.database.models import AiDigest, DaoMember, Proposal, ProposalStatus  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()

WALLET_A = "0x" + "a" * 40
WALLET_B = "0x" + "b" * 40
WALLET_C = "0x" + "c" * 40


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a fresh event loop."""
    return asyncio.run(coro)


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with every inRECORD table, settings and room pricing seeded.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in the rate limiter and ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    from inrecord.database.engine import init_db

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def label_config(tmp_path) -> LabelConfig:
    return LabelConfig(
        label_name="inRECORD",
        base_url="https://inrecord.test",
        audio_storage_dir=str(tmp_path / "audio"),
    )


@pytest.fixture(autouse=True)
def _no_outbound_credentials(monkeypatch):
    """Integrations see no API keys, so nothing ever leaves the test process."""
    for var in (
        "DISCORD_WEBHOOK_URL",
        "DISCORD_DIGEST_WEBHOOK_URL",
        "RESEND_API_KEY",
        "PLAYHT_API_KEY",
        "PLAYHT_USER_ID",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(var, raising=False)


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------
def add_member(engine: Engine, wallet: str, tier: str = "Bronze", *, is_active: bool = True) -> DaoMember:
    with Session(engine, expire_on_commit=False) as session:
        member = DaoMember(
            wallet_address=wallet,
            membership_tier=tier,
            token_balance=100.0,
            is_active=is_active,
        )
        session.add(member)
        session.commit()
        session.expunge(member)
        return member


def add_proposal(
    engine: Engine,
    created_by: str,
    *,
    status: str = ProposalStatus.ACTIVE_VOTING,
    ends_in: timedelta = timedelta(days=3),
    funding_goal: float | None = 1000.0,
    quorum_required: int = 10,
    approval_threshold: int = 51,
    title: str = "New vocal booth",
    proposal_type: str = "Equipment Purchase",
) -> Proposal:
    with Session(engine, expire_on_commit=False) as session:
        proposal = Proposal(
            title=title,
            description="Replace the vocal booth with a treated isolation room.",
            proposal_type=proposal_type,
            created_by=created_by,
            status=status,
            voting_ends_at=datetime.now(UTC) + ends_in,
            funding_goal=funding_goal,
            quorum_required=quorum_required,
            approval_threshold=approval_threshold,
        )
        session.add(proposal)
        session.commit()
        session.refresh(proposal)
        session.expunge(proposal)
        return proposal


SUMMARY_EN = (
    "## This week at inRECORD\n\n"
    "The community submitted **three** new proposals and cast 42 votes. "
    "The treasury grew steadily and two artist grants were funded."
)


def add_digest(
    engine: Engine,
    week_start: date = date(2025, 1, 6),
    *,
    published: bool = True,
    audio_url_en: str | None = "/api/audio/digests/2025-01-06-en.mp3",
    sentiment: str = "optimistic",
) -> AiDigest:
    with Session(engine, expire_on_commit=False) as session:
        digest = AiDigest(
            week_start=week_start,
            week_end=week_start + timedelta(days=6),
            summary_en=SUMMARY_EN,
            summary_fr="Résumé",
            summary_pt="Resumo",
            sentiment=sentiment,
            key_metrics={
                "proposals": {"new": 3, "funded": 2},
                "voting": {"votes_cast": 42, "participation_rate": 0.35},
                "treasury": {"net_change": 1250.5},
                "members": {"new_members": 4},
            },
            highlights=["Two grants funded"],
            audio_url_en=audio_url_en,
            published=published,
            published_at=datetime(2025, 1, 13, 9, tzinfo=UTC) if published else None,
        )
        session.add(digest)
        session.commit()
        session.refresh(digest)
        session.expunge(digest)
        return digest


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin") -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from inrecord.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": True},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api(db_engine, label_config):
    """TestClient bound to the SQLite engine and test config.

    The lifespan is not entered, so no ``config.yaml`` or Postgres is needed.
    """
    from fastapi.testclient import TestClient

    from inrecord.api.deps import get_config, get_engine
    from inrecord.api.main import app
    from inrecord.api.rate_limit import configure_rate_limiter

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: label_config
    configure_rate_limiter(engine=db_engine)
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
