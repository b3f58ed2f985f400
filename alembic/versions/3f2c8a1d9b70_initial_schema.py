"""Initial inRECORD schema: governance, treasury, studio, digests, admin

Revision ID: 3f2c8a1d9b70
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f2c8a1d9b70"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _ts(name: str, **kw) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), **kw)


def _zero(name: str, type_=sa.Integer) -> sa.Column:
    return sa.Column(name, type_(), nullable=False, server_default="0")


def _flag(name: str, default: bool = False) -> sa.Column:
    return sa.Column(
        name, sa.Boolean(), nullable=False, server_default=sa.true() if default else sa.false()
    )


def upgrade() -> None:
    """Create every table for a fresh database."""
    op.create_table(
        "dao_members",
        sa.Column("wallet_address", sa.String(128), primary_key=True),
        sa.Column("membership_tier", sa.String(20), nullable=False),
        sa.Column("tier_display_name", sa.String(20)),
        _zero("token_balance", sa.Float),
        _zero("votes_cast"),
        _zero("proposals_created"),
        _zero("total_funding_received", sa.Float),
        _flag("is_active", True),
        _ts("joined_at"),
        _ts("last_active_at"),
        sa.Column("display_name", sa.String(100)),
        sa.Column("bio", sa.String(500)),
        sa.Column("avatar_url", sa.String(500)),
        sa.Column("email", sa.String(255)),
        sa.Column("discord_handle", sa.String(100)),
    )
    op.create_index("ix_dao_members_tier", "dao_members", ["membership_tier"])
    op.create_index("ix_dao_members_active", "dao_members", ["is_active"])

    op.create_table(
        "studio_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_email", sa.String(255), nullable=False),
        sa.Column("user_name", sa.String(100)),
        sa.Column("user_phone", sa.String(30)),
        sa.Column("user_wallet", sa.String(128)),
        sa.Column("room_type", sa.String(20), nullable=False),
        sa.Column("session_date", sa.Date(), nullable=False),
        sa.Column("session_time", sa.String(8), nullable=False),
        sa.Column("duration_hours", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("total_cost", sa.Float()),
        _flag("dao_funded"),
        sa.Column("notes", sa.Text()),
        sa.Column("admin_notes", sa.Text()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_studio_sessions_room_date", "studio_sessions", ["room_type", "session_date"])
    op.create_index("ix_studio_sessions_status", "studio_sessions", ["status"])
    op.create_index("ix_studio_sessions_email", "studio_sessions", ["user_email"])

    op.create_table(
        "room_pricing",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("room_type", sa.String(20), nullable=False, unique=True),
        sa.Column("hourly_rate", sa.Float(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("features", postgresql.JSONB(), server_default=sa.text("'[]'::jsonb")),
        _ts("created_at"),
    )

    op.create_table(
        "dao_proposals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("proposal_type", sa.String(40), nullable=False),
        sa.Column("funding_goal", sa.Float()),
        _zero("current_funding", sa.Float),
        sa.Column("funding_currency", sa.String(8), nullable=False, server_default="USD"),
        sa.Column(
            "created_by", sa.String(128),
            sa.ForeignKey("dao_members.wallet_address"), nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("voting_ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("quorum_required", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("approval_threshold", sa.Integer(), nullable=False, server_default="51"),
        _zero("votes_for"),
        _zero("votes_against"),
        _zero("votes_abstain"),
        _zero("total_vote_weight", sa.Float),
        _zero("unique_voters"),
        sa.Column("voting_result", sa.String(20)),
        sa.Column("voting_closed_at", sa.DateTime(timezone=True)),
        sa.Column(
            "linked_session_id", sa.String(36),
            sa.ForeignKey("studio_sessions.id", ondelete="SET NULL"),
        ),
        sa.Column("tags", postgresql.JSONB(), server_default=sa.text("'[]'::jsonb")),
        sa.Column("attachment_urls", postgresql.JSONB(), server_default=sa.text("'[]'::jsonb")),
        sa.Column("admin_notes", sa.Text()),
        _ts("created_at"),
        _ts("updated_at"),
        sa.Column("submitted_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_dao_proposals_status", "dao_proposals", ["status"])
    op.create_index("ix_dao_proposals_created_by", "dao_proposals", ["created_by"])
    op.create_index("ix_dao_proposals_voting_ends", "dao_proposals", ["voting_ends_at"])

    op.create_table(
        "dao_votes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "proposal_id", sa.String(36),
            sa.ForeignKey("dao_proposals.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "voter_wallet", sa.String(128),
            sa.ForeignKey("dao_members.wallet_address"), nullable=False,
        ),
        sa.Column("vote_type", sa.String(10), nullable=False),
        sa.Column("vote_weight", sa.Float(), nullable=False),
        sa.Column("membership_tier_at_vote", sa.String(20), nullable=False),
        sa.Column("signature", sa.Text()),
        _flag("signature_verified"),
        sa.Column("comment", sa.Text()),
        _ts("created_at"),
        sa.UniqueConstraint("proposal_id", "voter_wallet", name="uq_dao_votes_proposal_voter"),
    )
    op.create_index("ix_dao_votes_voter", "dao_votes", ["voter_wallet"])
    op.create_index("ix_dao_votes_created", "dao_votes", ["created_at"])

    op.create_table(
        "proposal_comments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "proposal_id", sa.String(36),
            sa.ForeignKey("dao_proposals.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "commenter_wallet", sa.String(128),
            sa.ForeignKey("dao_members.wallet_address"), nullable=False,
        ),
        sa.Column("comment_text", sa.Text(), nullable=False),
        sa.Column(
            "parent_comment_id", sa.String(36),
            sa.ForeignKey("proposal_comments.id", ondelete="CASCADE"),
        ),
        _flag("is_edited"),
        _flag("is_deleted"),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index(
        "ix_proposal_comments_proposal", "proposal_comments", ["proposal_id", "created_at"]
    )

    op.create_table(
        "dao_treasury",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("transaction_type", sa.String(20), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False, server_default="ETH"),
        sa.Column(
            "proposal_id", sa.String(36),
            sa.ForeignKey("dao_proposals.id", ondelete="SET NULL"),
        ),
        sa.Column("contributor_wallet", sa.String(128)),
        sa.Column("recipient_wallet", sa.String(128)),
        sa.Column("transaction_hash", sa.String(128)),
        sa.Column("description", sa.Text()),
        sa.Column("created_by", sa.String(128), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_dao_treasury_type_time", "dao_treasury", ["transaction_type", "created_at"])
    op.create_index("ix_dao_treasury_proposal", "dao_treasury", ["proposal_id"])
    op.create_index("ix_dao_treasury_contributor", "dao_treasury", ["contributor_wallet"])

    op.create_table(
        "ai_digests",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("week_start", sa.Date(), nullable=False, unique=True),
        sa.Column("week_end", sa.Date(), nullable=False),
        sa.Column("summary_en", sa.Text(), nullable=False),
        sa.Column("summary_fr", sa.Text()),
        sa.Column("summary_pt", sa.Text()),
        sa.Column("sentiment", sa.String(20)),
        sa.Column("key_metrics", postgresql.JSONB(), server_default=sa.text("'{}'::jsonb")),
        sa.Column("highlights", postgresql.JSONB(), server_default=sa.text("'[]'::jsonb")),
        sa.Column("audio_url_en", sa.String(500)),
        sa.Column("audio_url_fr", sa.String(500)),
        sa.Column("audio_url_pt", sa.String(500)),
        sa.Column("audio_duration_seconds", sa.Integer()),
        _flag("published"),
        sa.Column("published_at", sa.DateTime(timezone=True)),
        _flag("discord_sent"),
        _flag("email_sent"),
        sa.Column("generated_by", sa.String(50), nullable=False, server_default="gpt-4"),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_ai_digests_published", "ai_digests", ["published", "published_at"])

    op.create_table(
        "digest_distributions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "digest_id", sa.String(36),
            sa.ForeignKey("ai_digests.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text()),
        _zero("recipient_count"),
        _zero("retry_count"),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        _ts("created_at"),
        sa.UniqueConstraint("digest_id", "channel", name="uq_digest_distributions_digest_channel"),
    )

    op.create_table(
        "newsletter_subscribers",
        sa.Column("email", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(100)),
        _flag("active", True),
        _ts("subscribed_at"),
    )

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100)),
        sa.Column("before_snapshot", postgresql.JSONB()),
        sa.Column("after_snapshot", postgresql.JSONB()),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("reason", sa.Text()),
        _ts("timestamp"),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index("ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"])

    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text()),
        _ts("updated_at"),
    )
    op.create_index("ix_settings_category", "settings", ["category"])

    op.create_table(
        "admin_rate_limit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("admin_id", sa.String(64), nullable=False),
        _ts("timestamp", nullable=False),
    )
    op.create_index(
        "ix_admin_rate_limit_admin_ts",
        "admin_rate_limit_events",
        ["admin_id", sa.text("timestamp DESC")],
    )
    op.create_index("ix_admin_rate_limit_ts", "admin_rate_limit_events", ["timestamp"])


def downgrade() -> None:
    """Drop everything, children first."""
    for table in (
        "admin_rate_limit_events",
        "settings",
        "admin_log",
        "newsletter_subscribers",
        "digest_distributions",
        "ai_digests",
        "dao_treasury",
        "proposal_comments",
        "dao_votes",
        "dao_proposals",
        "room_pricing",
        "studio_sessions",
        "dao_members",
    ):
        op.drop_table(table)
