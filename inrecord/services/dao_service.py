"""
inrecord.services.dao_service — Governance Persistence
=======================================================

Members, proposals, votes and comments.  All voting math is delegated to
:mod:`inrecord.engine.voting`; this module only loads rows, applies the
engine's answers and commits.

Vote atomicity: :func:`cast_vote` runs in one transaction and relies on
``uq_dao_votes_proposal_voter`` to reject a concurrent second vote from
the same wallet.

Functions that change something worth announcing return an outcome object
(:class:`VoteOutcome`, :class:`ClosedProposal`).  The API schedules the
Discord post from it after the commit, so a slow webhook never holds a
transaction open.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import String, cast, distinct, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inrecord.constants import (
    DESCRIPTION_MAX_LENGTH,
    DESCRIPTION_MIN_LENGTH,
    FUNDING_CURRENCIES,
    MAX_ATTACHMENTS,
    MAX_FUNDING_GOAL,
    MAX_TAGS,
    SORT_OPTIONS,
    TAG_MAX_LENGTH,
    TAG_MIN_LENGTH,
    TIER_WEIGHTS,
    TITLE_MAX_LENGTH,
    TITLE_MIN_LENGTH,
    VOTE_MILESTONES,
)
from inrecord.database.models import (
    AdminActionType,
    DaoMember,
    Proposal,
    ProposalComment,
    ProposalStatus,
    ProposalType,
    Vote,
    VoteType,
)
from inrecord.database.seed import get_setting
from inrecord.engine.funding import (
    as_utc,
    calculate_funding_percentage,
    format_proposal_type,
    get_default_voting_end_date,
    get_time_remaining,
)
from inrecord.engine.voting import (
    ProposalResult,
    can_member_vote,
    can_transition,
    calculate_approval_percentage,
    determine_result,
    get_tier_display_name,
    get_vote_weight,
    is_valid_signature,
    is_voting_active,
    result_to_status,
    tally_votes,
    tier_from_tokens,
)
from inrecord.errors import (
    DuplicateVoteError,
    ForbiddenError,
    InvalidTransitionError,
    VoteNotAllowedError,
)
from inrecord.services.admin_service import _audited_update, _log_admin_action, _row_to_dict

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

MIN_WALLET_LENGTH = 32
MAX_COMMENT_LENGTH = 2000


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------
@dataclass
class VoteOutcome:
    vote: Vote
    proposal: Proposal
    milestone: int | None = None


@dataclass
class ClosedProposal:
    proposal: Proposal
    result: ProposalResult


def _now(now: datetime | None) -> datetime:
    return as_utc(now) if now else datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------
def _resolve_tier(tier: str | None, token_balance: float) -> str:
    if tier:
        name = str(tier).strip().capitalize()
        if name not in TIER_WEIGHTS:
            raise ValueError(f"Unknown membership tier: {tier}")
        return name
    name = tier_from_tokens(token_balance)
    if name is None:
        raise ValueError("Token balance is below the Bronze threshold")
    return name


def count_active_members(session: Session) -> int:
    return session.scalar(
        select(func.count()).select_from(DaoMember).where(DaoMember.is_active.is_(True))
    ) or 0


def get_member(engine: Engine, wallet_address: str) -> DaoMember | None:
    with Session(engine) as session:
        return session.get(DaoMember, wallet_address)


def register_member(
    engine: Engine,
    *,
    wallet_address: str,
    token_balance: float = 0.0,
    membership_tier: str | None = None,
    **profile: Any,
) -> DaoMember:
    """Insert a new member.  The tier comes from *membership_tier* or the token balance."""
    if not wallet_address or len(wallet_address) < MIN_WALLET_LENGTH:
        raise ValueError("Invalid wallet address")
    tier = _resolve_tier(membership_tier, token_balance)

    with Session(engine, expire_on_commit=False) as session:
        if session.get(DaoMember, wallet_address) is not None:
            raise ValueError("Member already registered")
        member = DaoMember(
            wallet_address=wallet_address,
            membership_tier=tier,
            tier_display_name=get_tier_display_name(tier),
            token_balance=token_balance,
            **{k: v for k, v in profile.items() if hasattr(DaoMember, k)},
        )
        session.add(member)
        session.commit()
        session.refresh(member)
        session.expunge(member)

    logger.info("Registered member %s as %s", wallet_address[:10], tier)
    return member


def get_or_create_member(engine: Engine, wallet_address: str, **defaults: Any) -> DaoMember:
    member = get_member(engine, wallet_address)
    if member is not None:
        return member
    defaults.setdefault("membership_tier", "Bronze")
    return register_member(engine, wallet_address=wallet_address, **defaults)


_MEMBER_EDITABLE = frozenset({
    "display_name", "bio", "avatar_url", "email", "discord_handle",
    "token_balance", "membership_tier", "is_active",
})


def update_member(engine: Engine, wallet_address: str, **fields: Any) -> DaoMember:
    """Update profile fields.  A new token balance re-derives the tier unless one is given."""
    unknown = set(fields) - _MEMBER_EDITABLE
    if unknown:
        raise ValueError(f"Cannot update member fields: {', '.join(sorted(unknown))}")

    with Session(engine, expire_on_commit=False) as session:
        member = session.get(DaoMember, wallet_address)
        if member is None:
            raise LookupError(f"Member {wallet_address} not found")

        tier = fields.pop("membership_tier", None)
        for key, value in fields.items():
            setattr(member, key, value)

        if tier:
            member.membership_tier = _resolve_tier(tier, member.token_balance)
        elif "token_balance" in fields:
            member.membership_tier = tier_from_tokens(member.token_balance) or member.membership_tier
        member.tier_display_name = get_tier_display_name(member.membership_tier)

        session.commit()
        session.expunge(member)
        return member


def get_member_counts(engine: Engine) -> dict:
    """Totals plus a per-tier breakdown of active members."""
    with Session(engine) as session:
        rows = session.execute(
            select(DaoMember.membership_tier, func.count())
            .where(DaoMember.is_active.is_(True))
            .group_by(DaoMember.membership_tier)
        ).all()
        total = session.scalar(select(func.count()).select_from(DaoMember)) or 0
        by_tier = {tier: 0 for tier in TIER_WEIGHTS}
        by_tier.update({tier: count for tier, count in rows})
        return {
            "total": total,
            "active": sum(by_tier.values()),
            "by_tier": by_tier,
        }


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------
def _validate_text_fields(
    *,
    title: str | None = None,
    description: str | None = None,
    tags: list[str] | None = None,
    attachment_urls: list[str] | None = None,
) -> None:
    if title is not None and not TITLE_MIN_LENGTH <= len(title.strip()) <= TITLE_MAX_LENGTH:
        raise ValueError(
            f"Title must be between {TITLE_MIN_LENGTH} and {TITLE_MAX_LENGTH} characters"
        )
    if description is not None and not (
        DESCRIPTION_MIN_LENGTH <= len(description.strip()) <= DESCRIPTION_MAX_LENGTH
    ):
        raise ValueError(
            f"Description must be between {DESCRIPTION_MIN_LENGTH} and "
            f"{DESCRIPTION_MAX_LENGTH} characters"
        )
    if tags is not None:
        if len(tags) > MAX_TAGS:
            raise ValueError(f"At most {MAX_TAGS} tags are allowed")
        for tag in tags:
            if not TAG_MIN_LENGTH <= len(tag) <= TAG_MAX_LENGTH:
                raise ValueError(
                    f"Tags must be between {TAG_MIN_LENGTH} and {TAG_MAX_LENGTH} characters"
                )
    if attachment_urls is not None and len(attachment_urls) > MAX_ATTACHMENTS:
        raise ValueError(f"At most {MAX_ATTACHMENTS} attachments are allowed")


def _validate_funding_goal(funding_goal: float | None) -> None:
    if funding_goal is None:
        return
    if funding_goal <= 0:
        raise ValueError("Funding goal must be greater than 0")
    if funding_goal > MAX_FUNDING_GOAL:
        raise ValueError(f"Funding goal cannot exceed {MAX_FUNDING_GOAL:,}")


def _validate_proposal_fields(
    *,
    proposal_type: str,
    funding_goal: float | None,
    funding_currency: str,
    quorum_required: int,
    approval_threshold: int,
) -> None:
    if proposal_type not in set(ProposalType):
        raise ValueError(f"Unknown proposal type: {proposal_type}")
    if funding_currency not in FUNDING_CURRENCIES:
        raise ValueError(f"Unsupported funding currency: {funding_currency}")
    _validate_funding_goal(funding_goal)
    if not 1 <= quorum_required <= 100:
        raise ValueError("Quorum must be between 1 and 100")
    if not 1 <= approval_threshold <= 100:
        raise ValueError("Approval threshold must be between 1 and 100")


def _transition(proposal: Proposal, target: str) -> None:
    if not can_transition(proposal.status, target):
        raise InvalidTransitionError(
            f"Cannot move proposal from {proposal.status} to {target}"
        )
    proposal.status = target


def _mark_submitted(session: Session, proposal: Proposal, now: datetime) -> None:
    _transition(proposal, ProposalStatus.SUBMITTED)
    proposal.submitted_at = now
    creator = session.get(DaoMember, proposal.created_by)
    if creator is not None:
        creator.proposals_created = (creator.proposals_created or 0) + 1
        creator.last_active_at = now


def create_proposal(
    engine: Engine,
    *,
    title: str,
    description: str,
    proposal_type: str,
    created_by: str,
    funding_goal: float | None = None,
    funding_currency: str = "USD",
    voting_ends_at: datetime | None = None,
    quorum_required: int | None = None,
    approval_threshold: int | None = None,
    tags: list[str] | None = None,
    attachment_urls: list[str] | None = None,
    linked_session_id: str | None = None,
    submit: bool = False,
    now: datetime | None = None,
) -> Proposal:
    """Create a draft (or, with *submit*, a submitted) proposal.

    Quorum, approval threshold and voting period default to the
    ``governance.*`` settings.
    """
    now = _now(now)
    with Session(engine, expire_on_commit=False) as session:
        creator = session.get(DaoMember, created_by)
        if creator is None:
            raise LookupError(f"Member {created_by} not found")
        if not creator.is_active:
            raise ForbiddenError("Inactive members cannot create proposals")

        if quorum_required is None:
            quorum_required = int(get_setting(session, "governance.default_quorum", 10))
        if approval_threshold is None:
            approval_threshold = int(
                get_setting(session, "governance.default_approval_threshold", 51)
            )
        if voting_ends_at is None:
            days = int(get_setting(session, "governance.voting_period_days", 7))
            voting_ends_at = get_default_voting_end_date(days, now=now)
        elif as_utc(voting_ends_at) <= now:
            raise ValueError("Voting end date must be in the future")

        _validate_text_fields(
            title=title,
            description=description,
            tags=tags,
            attachment_urls=attachment_urls,
        )
        _validate_proposal_fields(
            proposal_type=proposal_type,
            funding_goal=funding_goal,
            funding_currency=funding_currency,
            quorum_required=quorum_required,
            approval_threshold=approval_threshold,
        )

        proposal = Proposal(
            title=title.strip(),
            description=description.strip(),
            proposal_type=proposal_type,
            created_by=created_by,
            funding_goal=funding_goal,
            funding_currency=funding_currency,
            voting_ends_at=voting_ends_at,
            quorum_required=quorum_required,
            approval_threshold=approval_threshold,
            tags=list(tags or []),
            attachment_urls=list(attachment_urls or []),
            linked_session_id=linked_session_id,
            status=ProposalStatus.DRAFT,
        )
        session.add(proposal)
        session.flush()
        if submit:
            _mark_submitted(session, proposal, now)

        session.commit()
        session.refresh(proposal)
        session.expunge(proposal)

    logger.info("Proposal %s created by %s (%s)", proposal.id[:8], created_by[:10], proposal.status)
    return proposal


def get_proposal(engine: Engine, proposal_id: str) -> Proposal | None:
    with Session(engine) as session:
        return session.get(Proposal, proposal_id)


def submit_proposal(
    engine: Engine,
    proposal_id: str,
    *,
    wallet_address: str | None = None,
    now: datetime | None = None,
) -> Proposal:
    """draft → submitted.  When *wallet_address* is given it must be the creator's."""
    now = _now(now)
    with Session(engine, expire_on_commit=False) as session:
        proposal = session.get(Proposal, proposal_id)
        if proposal is None:
            raise LookupError(f"Proposal {proposal_id} not found")
        if wallet_address and wallet_address != proposal.created_by:
            raise ForbiddenError("Only the proposer can submit this proposal")
        _mark_submitted(session, proposal, now)
        session.commit()
        session.refresh(proposal)
        session.expunge(proposal)
        return proposal


def _admin_status_change(
    engine: Engine,
    proposal_id: str,
    target: str,
    *,
    actor_id: str,
    reason: str | None = None,
    **changes: Any,
) -> Proposal:
    with Session(engine, expire_on_commit=False) as session:
        proposal = session.get(Proposal, proposal_id)
        if proposal is None:
            raise LookupError(f"Proposal {proposal_id} not found")
        before = _row_to_dict(proposal)
        _transition(proposal, target)
        for key, value in changes.items():
            setattr(proposal, key, value)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.STATUS_CHANGE,
            target_table="dao_proposals",
            target_id=proposal.id,
            before=before,
            after=_row_to_dict(proposal),
            reason=reason,
        )
        session.commit()
        session.refresh(proposal)
        session.expunge(proposal)

    logger.info("Admin %s moved proposal %s to %s", actor_id, proposal_id[:8], target)
    return proposal


def start_voting(
    engine: Engine,
    proposal_id: str,
    *,
    actor_id: str,
    voting_ends_at: datetime | None = None,
    now: datetime | None = None,
) -> Proposal:
    """submitted → active_voting, optionally resetting the end date."""
    changes: dict[str, Any] = {}
    if voting_ends_at is not None:
        if as_utc(voting_ends_at) <= _now(now):
            raise ValueError("Voting end date must be in the future")
        changes["voting_ends_at"] = voting_ends_at
    return _admin_status_change(
        engine, proposal_id, ProposalStatus.ACTIVE_VOTING, actor_id=actor_id, **changes
    )


def cancel_proposal(
    engine: Engine,
    proposal_id: str,
    *,
    actor_id: str,
    reason: str | None = None,
) -> Proposal:
    return _admin_status_change(
        engine, proposal_id, ProposalStatus.CANCELLED, actor_id=actor_id, reason=reason
    )


def complete_proposal(engine: Engine, proposal_id: str, *, actor_id: str) -> Proposal:
    """approved/funded → completed once the funded work is delivered."""
    return _admin_status_change(engine, proposal_id, ProposalStatus.COMPLETED, actor_id=actor_id)


_ADMIN_EDITABLE = frozenset({
    "title", "description", "admin_notes", "tags", "attachment_urls",
    "voting_ends_at", "quorum_required", "approval_threshold",
    "linked_session_id", "funding_goal",
})


def update_proposal_admin(
    engine: Engine,
    proposal_id: str,
    *,
    actor_id: str,
    ip_address: str | None = None,
    **fields: Any,
) -> Proposal:
    """Audited edit of non-lifecycle fields.  Status changes go through the helpers above."""
    unknown = set(fields) - _ADMIN_EDITABLE
    if unknown:
        raise ValueError(f"Cannot edit proposal fields: {', '.join(sorted(unknown))}")
    _validate_text_fields(
        title=fields.get("title"),
        description=fields.get("description"),
        tags=fields.get("tags"),
        attachment_urls=fields.get("attachment_urls"),
    )
    if "funding_goal" in fields:
        _validate_funding_goal(fields["funding_goal"])
    for key in ("quorum_required", "approval_threshold"):
        if key in fields and not 1 <= fields[key] <= 100:
            raise ValueError(f"{key} must be between 1 and 100")

    proposal = _audited_update(
        engine,
        Proposal,
        proposal_id,
        table_name="dao_proposals",
        actor_id=actor_id,
        ip_address=ip_address,
        **fields,
    )
    if proposal is None:
        raise LookupError(f"Proposal {proposal_id} not found")
    return proposal


def list_proposals(
    engine: Engine,
    *,
    status: str | None = None,
    proposal_type: str | None = None,
    created_by: str | None = None,
    tag: str | None = None,
    search: str | None = None,
    sort_by: str = "newest",
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Proposal], int]:
    """Filtered, sorted page of proposals plus the unpaged total."""
    if sort_by not in SORT_OPTIONS:
        raise ValueError(f"Unknown sort option: {sort_by}")
    limit = max(1, min(limit, 100))

    filters = []
    if status:
        filters.append(Proposal.status == status)
    if proposal_type:
        filters.append(Proposal.proposal_type == proposal_type)
    if created_by:
        filters.append(Proposal.created_by == created_by)
    if tag:
        # JSON text match works on both JSONB (Postgres) and TEXT (SQLite)
        filters.append(cast(Proposal.tags, String).like(f'%"{tag}"%'))
    if search:
        pattern = f"%{search}%"
        filters.append(or_(Proposal.title.ilike(pattern), Proposal.description.ilike(pattern)))

    order = {
        "newest": (Proposal.created_at.desc(),),
        "oldest": (Proposal.created_at.asc(),),
        "most_funded": (Proposal.current_funding.desc(),),
        "ending_soon": (Proposal.voting_ends_at.asc(),),
        "most_votes": (
            (Proposal.votes_for + Proposal.votes_against + Proposal.votes_abstain).desc(),
        ),
    }[sort_by]

    with Session(engine) as session:
        total = session.scalar(select(func.count()).select_from(Proposal).where(*filters)) or 0
        rows = session.scalars(
            select(Proposal)
            .where(*filters)
            .order_by(*order, Proposal.id)
            .offset(offset)
            .limit(limit)
        ).all()
        return list(rows), total


def get_all_proposals(engine: Engine) -> list[Proposal]:
    """Every proposal, newest first, for exports."""
    with Session(engine) as session:
        return list(session.scalars(select(Proposal).order_by(Proposal.created_at.desc())).all())


# ---------------------------------------------------------------------------
# Voting
# ---------------------------------------------------------------------------
def _vote_milestones(session: Session) -> set[int]:
    raw = get_setting(session, "governance.vote_milestones", list(VOTE_MILESTONES))
    return {int(m) for m in raw or ()}


def cast_vote(
    engine: Engine,
    *,
    proposal_id: str,
    voter_wallet: str,
    vote_type: str,
    signature: str | None = None,
    comment: str | None = None,
    now: datetime | None = None,
) -> VoteOutcome:
    """Record one weighted vote and bump every counter, atomically.

    Raises
    ------
    LookupError
        Proposal or member doesn't exist.
    DuplicateVoteError
        The wallet already voted on this proposal.
    VoteNotAllowedError
        Member inactive, tier without voting power, or voting closed.
    ValueError
        Unknown vote type or malformed signature.
    """
    if vote_type not in set(VoteType):
        raise ValueError(f"Invalid vote type: {vote_type}")
    if signature and not is_valid_signature(signature):
        raise ValueError("Invalid signature format")
    now = _now(now)

    with Session(engine, expire_on_commit=False) as session:
        proposal = session.get(Proposal, proposal_id, with_for_update=True)
        if proposal is None:
            raise LookupError(f"Proposal {proposal_id} not found")
        member = session.get(DaoMember, voter_wallet)
        if member is None:
            raise LookupError(f"Member {voter_wallet} not found")

        already = session.scalar(
            select(Vote.id).where(Vote.proposal_id == proposal_id, Vote.voter_wallet == voter_wallet)
        )
        allowed, reason = can_member_vote(
            tier=member.membership_tier,
            is_active=member.is_active,
            already_voted=already is not None,
            proposal_status=proposal.status,
            voting_ends_at=proposal.voting_ends_at,
            now=now,
        )
        if already is not None:
            raise DuplicateVoteError(reason)
        if not allowed:
            raise VoteNotAllowedError(reason)

        weight = get_vote_weight(member.membership_tier)
        vote = Vote(
            proposal_id=proposal_id,
            voter_wallet=voter_wallet,
            vote_type=vote_type,
            vote_weight=weight,
            membership_tier_at_vote=member.membership_tier,
            signature=signature,
            comment=comment,
        )
        session.add(vote)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise DuplicateVoteError("Member has already voted on this proposal")

        if vote_type == VoteType.FOR:
            proposal.votes_for += 1
        elif vote_type == VoteType.AGAINST:
            proposal.votes_against += 1
        else:
            proposal.votes_abstain += 1
        proposal.total_vote_weight = (proposal.total_vote_weight or 0) + weight
        proposal.unique_voters = (proposal.unique_voters or 0) + 1

        member.votes_cast = (member.votes_cast or 0) + 1
        member.last_active_at = now

        total = proposal.votes_for + proposal.votes_against + proposal.votes_abstain
        milestone = total if total in _vote_milestones(session) else None

        session.commit()
        session.refresh(vote)
        session.refresh(proposal)
        session.expunge(vote)
        session.expunge(proposal)

    logger.info(
        "Vote %s on %s by %s (weight %s)", vote_type, proposal_id[:8], voter_wallet[:10], weight
    )
    return VoteOutcome(vote=vote, proposal=proposal, milestone=milestone)


def _result_for(session: Session, proposal: Proposal) -> ProposalResult:
    votes = session.scalars(select(Vote).where(Vote.proposal_id == proposal.id)).all()
    return determine_result(
        tally_votes(votes),
        count_active_members(session),
        proposal.quorum_required,
        proposal.approval_threshold,
    )


def get_proposal_results(engine: Engine, proposal_id: str) -> ProposalResult:
    """Current standing of a proposal against today's active member count."""
    with Session(engine) as session:
        proposal = session.get(Proposal, proposal_id)
        if proposal is None:
            raise LookupError(f"Proposal {proposal_id} not found")
        return _result_for(session, proposal)


def _close(session: Session, proposal: Proposal, now: datetime) -> ProposalResult:
    if proposal.status != ProposalStatus.ACTIVE_VOTING:
        raise InvalidTransitionError(
            f"Proposal is not in active voting (status: {proposal.status})"
        )
    result = _result_for(session, proposal)
    proposal.voting_result = result.result
    proposal.voting_closed_at = now
    _transition(proposal, result_to_status(result.result))
    return result


def close_proposal_voting(
    engine: Engine,
    proposal_id: str,
    *,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> ClosedProposal:
    """Finalize voting now: store the result and move to approved/rejected."""
    now = _now(now)
    with Session(engine, expire_on_commit=False) as session:
        proposal = session.get(Proposal, proposal_id, with_for_update=True)
        if proposal is None:
            raise LookupError(f"Proposal {proposal_id} not found")
        before = _row_to_dict(proposal)
        result = _close(session, proposal, now)
        if actor_id:
            session.flush()
            _log_admin_action(
                session,
                actor_id=actor_id,
                action_type=AdminActionType.STATUS_CHANGE,
                target_table="dao_proposals",
                target_id=proposal.id,
                before=before,
                after=_row_to_dict(proposal),
                reason=f"Voting closed: {result.result}",
            )
        session.commit()
        session.refresh(proposal)
        session.expunge(proposal)

    logger.info("Proposal %s closed: %s", proposal_id[:8], result.result)
    return ClosedProposal(proposal=proposal, result=result)


def close_expired_proposals(engine: Engine, now: datetime | None = None) -> list[ClosedProposal]:
    """Close every active proposal whose voting window has ended."""
    now = _now(now)
    closed: list[ClosedProposal] = []
    with Session(engine, expire_on_commit=False) as session:
        expired = session.scalars(
            select(Proposal).where(
                Proposal.status == ProposalStatus.ACTIVE_VOTING,
                Proposal.voting_ends_at <= now,
            )
        ).all()
        for proposal in expired:
            closed.append(ClosedProposal(proposal=proposal, result=_close(session, proposal, now)))
        session.commit()
        for item in closed:
            session.refresh(item.proposal)
            session.expunge(item.proposal)

    if closed:
        logger.info("Closed %d expired proposals", len(closed))
    return closed


def get_proposal_votes(engine: Engine, proposal_id: str) -> list[Vote]:
    with Session(engine) as session:
        return list(session.scalars(
            select(Vote).where(Vote.proposal_id == proposal_id).order_by(Vote.created_at.desc())
        ).all())


def has_voted(engine: Engine, proposal_id: str, wallet_address: str) -> Vote | None:
    """The wallet's vote on the proposal, or ``None``."""
    with Session(engine) as session:
        return session.scalar(
            select(Vote).where(Vote.proposal_id == proposal_id, Vote.voter_wallet == wallet_address)
        )


def get_voter_history(engine: Engine, wallet_address: str, limit: int = 50) -> list[dict]:
    """Votes cast by *wallet_address*, newest first, with proposal title and status."""
    with Session(engine) as session:
        rows = session.execute(
            select(Vote, Proposal.title, Proposal.status)
            .join(Proposal, Proposal.id == Vote.proposal_id)
            .where(Vote.voter_wallet == wallet_address)
            .order_by(Vote.created_at.desc())
            .limit(limit)
        ).all()
        return [
            {
                "proposal_id": vote.proposal_id,
                "proposal_title": title,
                "proposal_status": status,
                "vote_type": vote.vote_type,
                "vote_weight": vote.vote_weight,
                "comment": vote.comment,
                "created_at": vote.created_at.isoformat() if vote.created_at else None,
            }
            for vote, title, status in rows
        ]


def get_vote_summaries(engine: Engine, status: str | None = None) -> list[dict]:
    """One row per proposal with counters and approval percentage."""
    query = select(Proposal).order_by(Proposal.created_at.desc())
    if status:
        query = query.where(Proposal.status == status)
    with Session(engine) as session:
        return [
            {
                "proposal_id": p.id,
                "title": p.title,
                "status": p.status,
                "votes_for": p.votes_for,
                "votes_against": p.votes_against,
                "votes_abstain": p.votes_abstain,
                "total_votes": p.votes_for + p.votes_against + p.votes_abstain,
                "total_vote_weight": p.total_vote_weight,
                "unique_voters": p.unique_voters,
                "approval_percentage": calculate_approval_percentage(p.votes_for, p.votes_against),
                "voting_ends_at": p.voting_ends_at.isoformat() if p.voting_ends_at else None,
            }
            for p in session.scalars(query).all()
        ]


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------
def _check_comment_text(text: str) -> str:
    text = (text or "").strip()
    if not text:
        raise ValueError("Comment cannot be empty")
    if len(text) > MAX_COMMENT_LENGTH:
        raise ValueError(f"Comment exceeds {MAX_COMMENT_LENGTH} characters")
    return text


def add_comment(
    engine: Engine,
    *,
    proposal_id: str,
    commenter_wallet: str,
    comment_text: str,
    parent_comment_id: str | None = None,
) -> ProposalComment:
    text = _check_comment_text(comment_text)
    with Session(engine, expire_on_commit=False) as session:
        if session.get(Proposal, proposal_id) is None:
            raise LookupError(f"Proposal {proposal_id} not found")
        member = session.get(DaoMember, commenter_wallet)
        if member is None:
            raise LookupError(f"Member {commenter_wallet} not found")
        if parent_comment_id:
            parent = session.get(ProposalComment, parent_comment_id)
            if parent is None or parent.proposal_id != proposal_id:
                raise ValueError("Parent comment does not belong to this proposal")

        comment = ProposalComment(
            proposal_id=proposal_id,
            commenter_wallet=commenter_wallet,
            comment_text=text,
            parent_comment_id=parent_comment_id,
        )
        session.add(comment)
        member.last_active_at = datetime.now(timezone.utc)
        session.commit()
        session.refresh(comment)
        session.expunge(comment)
        return comment


def list_comments(engine: Engine, proposal_id: str) -> list[ProposalComment]:
    """Visible comments, oldest first; clients thread them by ``parent_comment_id``."""
    with Session(engine) as session:
        return list(session.scalars(
            select(ProposalComment)
            .where(ProposalComment.proposal_id == proposal_id, ProposalComment.is_deleted.is_(False))
            .order_by(ProposalComment.created_at, ProposalComment.id)
        ).all())


def _own_comment(session: Session, comment_id: str, wallet_address: str) -> ProposalComment:
    comment = session.get(ProposalComment, comment_id)
    if comment is None or comment.is_deleted:
        raise LookupError(f"Comment {comment_id} not found")
    if comment.commenter_wallet != wallet_address:
        raise ForbiddenError("Only the author can change this comment")
    return comment


def edit_comment(
    engine: Engine, comment_id: str, *, wallet_address: str, comment_text: str
) -> ProposalComment:
    text = _check_comment_text(comment_text)
    with Session(engine, expire_on_commit=False) as session:
        comment = _own_comment(session, comment_id, wallet_address)
        comment.comment_text = text
        comment.is_edited = True
        session.commit()
        session.refresh(comment)
        session.expunge(comment)
        return comment


def delete_comment(engine: Engine, comment_id: str, *, wallet_address: str) -> None:
    """Soft delete: the row stays so replies keep their parent."""
    with Session(engine) as session:
        comment = _own_comment(session, comment_id, wallet_address)
        comment.is_deleted = True
        session.commit()


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------
def get_dao_analytics(engine: Engine) -> dict:
    """Headline governance numbers for the dashboard and CSV export."""
    with Session(engine) as session:
        by_status = {s: 0 for s in ProposalStatus}
        by_status.update(dict(session.execute(
            select(Proposal.status, func.count()).group_by(Proposal.status)
        ).all()))

        total_raised = session.scalar(select(func.coalesce(func.sum(Proposal.current_funding), 0)))
        funded_with_money = session.scalar(
            select(func.count()).select_from(Proposal).where(Proposal.current_funding > 0)
        ) or 0
        last_created = session.scalar(select(func.max(Proposal.created_at)))

        return {
            "total_proposals": sum(by_status.values()),
            "by_status": by_status,
            "active_count": by_status[ProposalStatus.ACTIVE_VOTING],
            "approved_count": by_status[ProposalStatus.APPROVED],
            "rejected_count": by_status[ProposalStatus.REJECTED],
            "funded_count": by_status[ProposalStatus.FUNDED],
            "total_raised": float(total_raised or 0),
            "avg_funding_per_proposal": (
                round(float(total_raised) / funded_with_money, 2) if funded_with_money else 0.0
            ),
            "unique_proposers": session.scalar(select(func.count(distinct(Proposal.created_by)))) or 0,
            "total_votes": session.scalar(select(func.count()).select_from(Vote)) or 0,
            "unique_voters": session.scalar(select(func.count(distinct(Vote.voter_wallet)))) or 0,
            "total_members": session.scalar(select(func.count()).select_from(DaoMember)) or 0,
            "active_members": count_active_members(session),
            "last_proposal_date": last_created.isoformat() if last_created else None,
        }


def get_trending_proposals(
    engine: Engine, limit: int = 5, days: int = 7, now: datetime | None = None
) -> list[dict]:
    """Active proposals ranked by votes received in the last *days* days."""
    since = _now(now) - timedelta(days=days)
    recent = func.count(Vote.id).label("recent_votes")
    with Session(engine) as session:
        rows = session.execute(
            select(Proposal, recent)
            .join(Vote, Vote.proposal_id == Proposal.id)
            .where(Proposal.status == ProposalStatus.ACTIVE_VOTING, Vote.created_at >= since)
            .group_by(Proposal.id)
            .order_by(recent.desc(), Proposal.created_at.desc())
            .limit(limit)
        ).all()
        return [{"proposal": p, "recent_votes": count} for p, count in rows]


def get_expiring_proposals(
    engine: Engine, within_hours: int = 24, now: datetime | None = None
) -> list[Proposal]:
    """Active proposals whose voting ends within the next *within_hours* hours."""
    now = _now(now)
    with Session(engine) as session:
        return list(session.scalars(
            select(Proposal)
            .where(
                Proposal.status == ProposalStatus.ACTIVE_VOTING,
                Proposal.voting_ends_at > now,
                Proposal.voting_ends_at <= now + timedelta(hours=within_hours),
            )
            .order_by(Proposal.voting_ends_at)
        ).all())


def get_weekly_summary(engine: Engine, now: datetime | None = None) -> dict:
    """Last seven days of governance activity, shaped for the Discord summary embed."""
    since = _now(now) - timedelta(days=7)
    with Session(engine) as session:
        closed = dict(session.execute(
            select(Proposal.status, func.count())
            .where(Proposal.voting_closed_at >= since)
            .group_by(Proposal.status)
        ).all())
        recent = func.count(Vote.id).label("recent_votes")
        top = session.scalars(
            select(Proposal.title)
            .join(Vote, Vote.proposal_id == Proposal.id)
            .where(Vote.created_at >= since)
            .group_by(Proposal.id, Proposal.title)
            .order_by(recent.desc())
            .limit(3)
        ).all()
        return {
            "new_proposals": session.scalar(
                select(func.count()).select_from(Proposal).where(Proposal.created_at >= since)
            ) or 0,
            "total_votes": session.scalar(
                select(func.count()).select_from(Vote).where(Vote.created_at >= since)
            ) or 0,
            "unique_voters": session.scalar(
                select(func.count(distinct(Vote.voter_wallet))).where(Vote.created_at >= since)
            ) or 0,
            "proposals_passed": closed.get(ProposalStatus.APPROVED, 0),
            "proposals_rejected": closed.get(ProposalStatus.REJECTED, 0),
            "top_proposals": list(top),
        }


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def proposal_to_dict(p: Proposal, now: datetime | None = None) -> dict:
    label, icon = format_proposal_type(p.proposal_type)
    return {
        "id": p.id,
        "title": p.title,
        "description": p.description,
        "proposal_type": label,
        "type_icon": icon,
        "created_by": p.created_by,
        "status": p.status,
        "funding_goal": p.funding_goal,
        "current_funding": p.current_funding,
        "funding_currency": p.funding_currency,
        "funding_percentage": calculate_funding_percentage(p.current_funding or 0, p.funding_goal),
        "voting_ends_at": _iso(p.voting_ends_at),
        "time_remaining": get_time_remaining(p.voting_ends_at, now),
        "is_voting_active": is_voting_active(p.voting_ends_at, p.status, now),
        "quorum_required": p.quorum_required,
        "approval_threshold": p.approval_threshold,
        "votes_for": p.votes_for,
        "votes_against": p.votes_against,
        "votes_abstain": p.votes_abstain,
        "total_vote_weight": p.total_vote_weight,
        "unique_voters": p.unique_voters,
        "approval_percentage": calculate_approval_percentage(p.votes_for, p.votes_against),
        "voting_result": p.voting_result,
        "voting_closed_at": _iso(p.voting_closed_at),
        "linked_session_id": p.linked_session_id,
        "tags": p.tags or [],
        "attachment_urls": p.attachment_urls or [],
        "admin_notes": p.admin_notes,
        "created_at": _iso(p.created_at),
        "submitted_at": _iso(p.submitted_at),
    }


def member_to_dict(m: DaoMember) -> dict:
    return {
        "wallet_address": m.wallet_address,
        "membership_tier": m.membership_tier,
        "tier_display_name": m.tier_display_name,
        "vote_weight": get_vote_weight(m.membership_tier),
        "token_balance": m.token_balance,
        "votes_cast": m.votes_cast,
        "proposals_created": m.proposals_created,
        "total_funding_received": m.total_funding_received,
        "is_active": m.is_active,
        "display_name": m.display_name,
        "bio": m.bio,
        "avatar_url": m.avatar_url,
        "discord_handle": m.discord_handle,
        "joined_at": _iso(m.joined_at),
        "last_active_at": _iso(m.last_active_at),
    }


def vote_to_dict(v: Vote) -> dict:
    return {
        "id": v.id,
        "proposal_id": v.proposal_id,
        "voter_wallet": v.voter_wallet,
        "vote_type": v.vote_type,
        "vote_weight": v.vote_weight,
        "membership_tier_at_vote": v.membership_tier_at_vote,
        "comment": v.comment,
        "created_at": _iso(v.created_at),
    }


def comment_to_dict(c: ProposalComment) -> dict:
    return {
        "id": c.id,
        "proposal_id": c.proposal_id,
        "commenter_wallet": c.commenter_wallet,
        "comment_text": c.comment_text,
        "parent_comment_id": c.parent_comment_id,
        "is_edited": c.is_edited,
        "created_at": _iso(c.created_at),
        "updated_at": _iso(c.updated_at),
    }
