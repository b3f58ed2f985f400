"""
inrecord.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- dao_members           — Wallet-keyed members with tier + activity counters
- dao_proposals         — Governance proposals with denormalized vote counters
- dao_votes             — One weighted vote per wallet per proposal
- proposal_comments     — Threaded discussion, soft-deleted
- dao_treasury          — Append-only ledger of inflows/outflows
- studio_sessions       — Studio bookings
- room_pricing          — Hourly rate per room type
- ai_digests            — Weekly AI digests (one per week)
- digest_distributions  — Per-channel delivery tracking for digests
- newsletter_subscribers — Digest email recipients
- admin_log             — Append-only audit trail
- settings              — Admin-tunable key/value store
- admin_rate_limit_events — Durable admin throttle state
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all inRECORD ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ProposalType(enum.StrEnum):
    STUDIO_FUNDING = "Studio Funding"
    EQUIPMENT_PURCHASE = "Equipment Purchase"
    ARTIST_GRANT = "Artist Grant"
    COMMUNITY_EVENT = "Community Event"
    PLATFORM_FEATURE = "Platform Feature"
    TREASURY_ALLOCATION = "Treasury Allocation"
    GOVERNANCE_CHANGE = "Governance Change"
    OTHER = "Other"


class ProposalStatus(enum.StrEnum):
    """Linear lifecycle: draft → submitted → active_voting → approved/rejected → funded/completed."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    ACTIVE_VOTING = "active_voting"
    APPROVED = "approved"
    REJECTED = "rejected"
    FUNDED = "funded"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class VotingResult(enum.StrEnum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    QUORUM_NOT_MET = "quorum_not_met"


class VoteType(enum.StrEnum):
    FOR = "for"
    AGAINST = "against"
    ABSTAIN = "abstain"


class TransactionType(enum.StrEnum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    PROPOSAL_FUNDING = "proposal_funding"
    GRANT = "grant"
    REVENUE = "revenue"
    EXPENSE = "expense"


class RoomType(enum.StrEnum):
    RECORDING = "recording"
    MIXING = "mixing"
    MASTERING = "mastering"
    PODCAST = "podcast"
    REHEARSAL = "rehearsal"


class SessionStatus(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Sentiment(enum.StrEnum):
    OPTIMISTIC = "optimistic"
    STABLE = "stable"
    CRITICAL = "critical"
    MIXED = "mixed"


class DistributionChannel(enum.StrEnum):
    DISCORD = "discord"
    EMAIL = "email"
    RSS = "rss"
    TWITTER = "twitter"


class DistributionStatus(enum.StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STATUS_CHANGE = "STATUS_CHANGE"
    FUND = "FUND"
    PUBLISH = "PUBLISH"


# ---------------------------------------------------------------------------
# DAO members: one row per wallet
# ---------------------------------------------------------------------------
class DaoMember(Base):
    __tablename__ = "dao_members"

    wallet_address: Mapped[str] = mapped_column(String(128), primary_key=True)
    membership_tier: Mapped[str] = mapped_column(String(20), nullable=False)
    tier_display_name: Mapped[str | None] = mapped_column(String(20), default=None)
    token_balance: Mapped[float] = mapped_column(Float, default=0.0)

    votes_cast: Mapped[int] = mapped_column(Integer, default=0)
    proposals_created: Mapped[int] = mapped_column(Integer, default=0)
    total_funding_received: Mapped[float] = mapped_column(Float, default=0.0)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_active_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    display_name: Mapped[str | None] = mapped_column(String(100), default=None)
    bio: Mapped[str | None] = mapped_column(String(500), default=None)
    avatar_url: Mapped[str | None] = mapped_column(String(500), default=None)
    email: Mapped[str | None] = mapped_column(String(255), default=None)
    discord_handle: Mapped[str | None] = mapped_column(String(100), default=None)

    votes: Mapped[list[Vote]] = relationship(back_populates="voter")

    __table_args__ = (
        Index("ix_dao_members_tier", "membership_tier"),
        Index("ix_dao_members_active", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<DaoMember wallet={self.wallet_address[:10]!r} tier={self.membership_tier}>"


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------
class Proposal(Base):
    __tablename__ = "dao_proposals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    proposal_type: Mapped[str] = mapped_column(String(40), nullable=False)

    funding_goal: Mapped[float | None] = mapped_column(Float, default=None)
    current_funding: Mapped[float] = mapped_column(Float, default=0.0)
    funding_currency: Mapped[str] = mapped_column(String(8), default="USD")

    created_by: Mapped[str] = mapped_column(
        String(128), ForeignKey("dao_members.wallet_address"), nullable=False
    )

    status: Mapped[str] = mapped_column(String(20), default=ProposalStatus.DRAFT)
    voting_ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    quorum_required: Mapped[int] = mapped_column(Integer, default=10)
    approval_threshold: Mapped[int] = mapped_column(Integer, default=51)

    # Denormalized counters, maintained by dao_service.cast_vote
    votes_for: Mapped[int] = mapped_column(Integer, default=0)
    votes_against: Mapped[int] = mapped_column(Integer, default=0)
    votes_abstain: Mapped[int] = mapped_column(Integer, default=0)
    total_vote_weight: Mapped[float] = mapped_column(Float, default=0.0)
    unique_voters: Mapped[int] = mapped_column(Integer, default=0)

    voting_result: Mapped[str | None] = mapped_column(String(20), default=None)
    voting_closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    linked_session_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("studio_sessions.id", ondelete="SET NULL"), default=None
    )
    tags: Mapped[list] = mapped_column(JSONB, default=list)
    attachment_urls: Mapped[list] = mapped_column(JSONB, default=list)
    admin_notes: Mapped[str | None] = mapped_column(Text, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    votes: Mapped[list[Vote]] = relationship(
        back_populates="proposal", cascade="all, delete-orphan"
    )
    comments: Mapped[list[ProposalComment]] = relationship(
        back_populates="proposal", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_dao_proposals_status", "status"),
        Index("ix_dao_proposals_created_by", "created_by"),
        Index("ix_dao_proposals_voting_ends", "voting_ends_at"),
    )

    def __repr__(self) -> str:
        return f"<Proposal id={self.id[:8]} status={self.status} title={self.title[:30]!r}>"


# ---------------------------------------------------------------------------
# Votes: one per wallet per proposal
# ---------------------------------------------------------------------------
class Vote(Base):
    __tablename__ = "dao_votes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    proposal_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("dao_proposals.id", ondelete="CASCADE"), nullable=False
    )
    voter_wallet: Mapped[str] = mapped_column(
        String(128), ForeignKey("dao_members.wallet_address"), nullable=False
    )
    vote_type: Mapped[str] = mapped_column(String(10), nullable=False)
    vote_weight: Mapped[float] = mapped_column(Float, nullable=False)
    membership_tier_at_vote: Mapped[str] = mapped_column(String(20), nullable=False)
    signature: Mapped[str | None] = mapped_column(Text, default=None)
    signature_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    comment: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    proposal: Mapped[Proposal] = relationship(back_populates="votes")
    voter: Mapped[DaoMember] = relationship(back_populates="votes")

    __table_args__ = (
        UniqueConstraint("proposal_id", "voter_wallet", name="uq_dao_votes_proposal_voter"),
        Index("ix_dao_votes_voter", "voter_wallet"),
        Index("ix_dao_votes_created", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Vote proposal={self.proposal_id[:8]} voter={self.voter_wallet[:10]!r} {self.vote_type}>"


# ---------------------------------------------------------------------------
# ProposalComment: threaded, soft-deleted
# ---------------------------------------------------------------------------
class ProposalComment(Base):
    __tablename__ = "proposal_comments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    proposal_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("dao_proposals.id", ondelete="CASCADE"), nullable=False
    )
    commenter_wallet: Mapped[str] = mapped_column(
        String(128), ForeignKey("dao_members.wallet_address"), nullable=False
    )
    comment_text: Mapped[str] = mapped_column(Text, nullable=False)
    parent_comment_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("proposal_comments.id", ondelete="CASCADE"), default=None
    )
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    proposal: Mapped[Proposal] = relationship(back_populates="comments")

    __table_args__ = (
        Index("ix_proposal_comments_proposal", "proposal_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ProposalComment id={self.id[:8]} proposal={self.proposal_id[:8]}>"


# ---------------------------------------------------------------------------
# Treasury: append-only ledger
# ---------------------------------------------------------------------------
class TreasuryTransaction(Base):
    """Inflows (deposit, revenue) and outflows (everything else).

    Balance is always derived from the ledger, never stored.
    """
    __tablename__ = "dao_treasury"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="ETH")
    proposal_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("dao_proposals.id", ondelete="SET NULL"), default=None
    )
    contributor_wallet: Mapped[str | None] = mapped_column(String(128), default=None)
    recipient_wallet: Mapped[str | None] = mapped_column(String(128), default=None)
    transaction_hash: Mapped[str | None] = mapped_column(String(128), default=None)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    proposal: Mapped[Proposal | None] = relationship()

    __table_args__ = (
        Index("ix_dao_treasury_type_time", "transaction_type", "created_at"),
        Index("ix_dao_treasury_proposal", "proposal_id"),
        Index("ix_dao_treasury_contributor", "contributor_wallet"),
    )

    def __repr__(self) -> str:
        return f"<TreasuryTransaction {self.transaction_type} {self.amount} {self.currency}>"


# ---------------------------------------------------------------------------
# Studio
# ---------------------------------------------------------------------------
class StudioSession(Base):
    __tablename__ = "studio_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    user_name: Mapped[str | None] = mapped_column(String(100), default=None)
    user_phone: Mapped[str | None] = mapped_column(String(30), default=None)
    user_wallet: Mapped[str | None] = mapped_column(String(128), default=None)

    room_type: Mapped[str] = mapped_column(String(20), nullable=False)
    session_date: Mapped[date] = mapped_column(Date, nullable=False)
    session_time: Mapped[str] = mapped_column(String(8), nullable=False)  # HH:MM:SS
    duration_hours: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=SessionStatus.PENDING)
    total_cost: Mapped[float | None] = mapped_column(Float, default=None)
    dao_funded: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    admin_notes: Mapped[str | None] = mapped_column(Text, default=None)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_studio_sessions_room_date", "room_type", "session_date"),
        Index("ix_studio_sessions_status", "status"),
        Index("ix_studio_sessions_email", "user_email"),
    )

    def __repr__(self) -> str:
        return (
            f"<StudioSession id={self.id[:8]} room={self.room_type} "
            f"{self.session_date} {self.session_time} status={self.status}>"
        )


class RoomPricing(Base):
    __tablename__ = "room_pricing"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    room_type: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    hourly_rate: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    features: Mapped[list] = mapped_column(JSONB, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<RoomPricing room={self.room_type} rate={self.hourly_rate}>"


# ---------------------------------------------------------------------------
# AI digests
# ---------------------------------------------------------------------------
class AiDigest(Base):
    __tablename__ = "ai_digests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    week_start: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    week_end: Mapped[date] = mapped_column(Date, nullable=False)

    summary_en: Mapped[str] = mapped_column(Text, nullable=False)
    summary_fr: Mapped[str | None] = mapped_column(Text, default=None)
    summary_pt: Mapped[str | None] = mapped_column(Text, default=None)

    sentiment: Mapped[str | None] = mapped_column(String(20), default=None)
    key_metrics: Mapped[dict] = mapped_column(JSONB, default=dict)
    highlights: Mapped[list] = mapped_column(JSONB, default=list)

    audio_url_en: Mapped[str | None] = mapped_column(String(500), default=None)
    audio_url_fr: Mapped[str | None] = mapped_column(String(500), default=None)
    audio_url_pt: Mapped[str | None] = mapped_column(String(500), default=None)
    audio_duration_seconds: Mapped[int | None] = mapped_column(Integer, default=None)

    published: Mapped[bool] = mapped_column(Boolean, default=False)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    discord_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    email_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    generated_by: Mapped[str] = mapped_column(String(50), default="gpt-4")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    distributions: Mapped[list[DigestDistribution]] = relationship(
        back_populates="digest", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_ai_digests_published", "published", "published_at"),
    )

    def __repr__(self) -> str:
        return f"<AiDigest week={self.week_start} published={self.published}>"


class DigestDistribution(Base):
    __tablename__ = "digest_distributions"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    digest_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ai_digests.id", ondelete="CASCADE"), nullable=False
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=DistributionStatus.PENDING)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    recipient_count: Mapped[int] = mapped_column(Integer, default=0)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    digest: Mapped[AiDigest] = relationship(back_populates="distributions")

    __table_args__ = (
        UniqueConstraint("digest_id", "channel", name="uq_digest_distributions_digest_channel"),
    )

    def __repr__(self) -> str:
        return f"<DigestDistribution digest={self.digest_id[:8]} {self.channel}={self.status}>"


class NewsletterSubscriber(Base):
    __tablename__ = "newsletter_subscribers"

    email: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(100), default=None)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    subscribed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<NewsletterSubscriber email={self.email!r} active={self.active}>"


# ---------------------------------------------------------------------------
# AdminLog: append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"


# ---------------------------------------------------------------------------
# Setting: admin-configurable key-value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Governance tunables (default quorum, approval threshold, voting period,
    vote milestones, academy discount) live here so admins can adjust them
    without redeploying.  Values are stored as JSON strings.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"


# ---------------------------------------------------------------------------
# AdminRateLimitEvent: durable mutation events for admin throttling
# ---------------------------------------------------------------------------
class AdminRateLimitEvent(Base):
    __tablename__ = "admin_rate_limit_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    admin_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_admin_rate_limit_admin_ts", "admin_id", timestamp.desc()),
        Index("ix_admin_rate_limit_ts", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminRateLimitEvent admin={self.admin_id!r} ts={self.timestamp}>"
