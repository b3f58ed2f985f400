"""
inrecord.engine.voting — Tier Weights & Result Determination
=============================================================

Pure voting math.  No DB I/O, no HTTP.

Pipeline for closing a proposal:
  votes → tally_votes → determine_result(tally, active members, quorum, threshold)
        → ProposalResult → result_to_status → proposal.status

Quorum is checked first: a proposal that didn't attract enough voters is
``quorum_not_met`` no matter how lopsided the approval was.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from inrecord.constants import TIER_DISPLAY_NAMES, TIER_TOKEN_THRESHOLDS, TIER_WEIGHTS
from inrecord.database.models import ProposalStatus, VoteType, VotingResult
from inrecord.engine.funding import as_utc

_SIGNATURE_RE = re.compile(r"^(0x)?[a-fA-F0-9]{64,}$")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass
class VoteTally:
    """Counts and weight sums per vote type."""

    votes_for: int = 0
    votes_against: int = 0
    votes_abstain: int = 0
    weight_for: float = 0.0
    weight_against: float = 0.0
    weight_abstain: float = 0.0
    unique_voters: int = 0

    @property
    def total_votes(self) -> int:
        return self.votes_for + self.votes_against + self.votes_abstain

    @property
    def total_weight(self) -> float:
        return self.weight_for + self.weight_against + self.weight_abstain


@dataclass
class VoteBreakdown:
    votes_for: int
    votes_against: int
    votes_abstain: int
    total: int
    for_pct: int
    against_pct: int
    abstain_pct: int


@dataclass
class ProposalResult:
    """Output of :func:`determine_result`."""

    result: str
    approval_percentage: float
    quorum_percentage: float
    quorum_met: bool
    tally: VoteTally

    def to_dict(self) -> dict:
        return {
            "result": self.result,
            "approval_percentage": self.approval_percentage,
            "quorum_percentage": self.quorum_percentage,
            "quorum_met": self.quorum_met,
            "votes_for": self.tally.votes_for,
            "votes_against": self.tally.votes_against,
            "votes_abstain": self.tally.votes_abstain,
            "weight_for": self.tally.weight_for,
            "weight_against": self.tally.weight_against,
            "weight_abstain": self.tally.weight_abstain,
            "total_vote_weight": self.tally.total_weight,
            "unique_voters": self.tally.unique_voters,
        }


@dataclass
class TierProgress:
    current_tier: str | None
    next_tier: str | None
    tokens_needed: float


# ---------------------------------------------------------------------------
# Tier lookups
# ---------------------------------------------------------------------------
def _canonical_tier(tier: str | None) -> str | None:
    if not tier:
        return None
    name = str(tier).strip().capitalize()
    return name if name in TIER_WEIGHTS else None


def get_vote_weight(tier: str | None) -> int:
    """Vote multiplier for *tier* (case-insensitive).  Unknown tiers weigh 0."""
    name = _canonical_tier(tier)
    return TIER_WEIGHTS[name] if name else 0


def get_tier_display_name(tier: str | None) -> str:
    name = _canonical_tier(tier)
    return TIER_DISPLAY_NAMES[name] if name else ""


def tier_from_tokens(balance: float) -> str | None:
    """Highest tier whose threshold *balance* meets, or ``None`` below Bronze."""
    for tier, minimum in TIER_TOKEN_THRESHOLDS:
        if balance >= minimum:
            return tier
    return None


def tokens_to_next_tier(balance: float) -> TierProgress:
    current = tier_from_tokens(balance)
    # TIER_TOKEN_THRESHOLDS is highest first; walk it lowest first.
    for tier, minimum in reversed(TIER_TOKEN_THRESHOLDS):
        if balance < minimum:
            return TierProgress(current, tier, minimum - balance)
    return TierProgress(current, None, 0)


# ---------------------------------------------------------------------------
# Percentages
# ---------------------------------------------------------------------------
def calculate_approval_percentage(votes_for: float, votes_against: float) -> int:
    total = votes_for + votes_against
    if total == 0:
        return 0
    return round(votes_for / total * 100)


def calculate_vote_breakdown(
    votes_for: int, votes_against: int, votes_abstain: int
) -> VoteBreakdown:
    total = votes_for + votes_against + votes_abstain
    denom = total or 1
    return VoteBreakdown(
        votes_for=votes_for,
        votes_against=votes_against,
        votes_abstain=votes_abstain,
        total=total,
        for_pct=round(votes_for / denom * 100),
        against_pct=round(votes_against / denom * 100),
        abstain_pct=round(votes_abstain / denom * 100),
    )


# ---------------------------------------------------------------------------
# Tally & result
# ---------------------------------------------------------------------------
def tally_votes(votes: Iterable) -> VoteTally:
    """Aggregate vote rows (anything with ``vote_type``, ``vote_weight``, ``voter_wallet``)."""
    tally = VoteTally()
    voters: set[str] = set()
    for vote in votes:
        weight = float(vote.vote_weight or 0)
        if vote.vote_type == VoteType.FOR:
            tally.votes_for += 1
            tally.weight_for += weight
        elif vote.vote_type == VoteType.AGAINST:
            tally.votes_against += 1
            tally.weight_against += weight
        elif vote.vote_type == VoteType.ABSTAIN:
            tally.votes_abstain += 1
            tally.weight_abstain += weight
        voters.add(vote.voter_wallet)
    tally.unique_voters = len(voters)
    return tally


def determine_result(
    tally: VoteTally,
    active_members: int,
    quorum_required: float,
    approval_threshold: float,
) -> ProposalResult:
    """Apply quorum, then approval threshold, to a tally.

    Abstentions count toward quorum (the voter showed up) but not toward
    approval.
    """
    decisive = tally.weight_for + tally.weight_against
    approval_pct = tally.weight_for * 100 / decisive if decisive else 0.0
    quorum_pct = tally.unique_voters * 100 / active_members if active_members else 0.0

    # Thresholds compare the exact ratios; only the reported values are rounded.
    quorum_met = quorum_pct >= quorum_required
    if not quorum_met:
        result = VotingResult.QUORUM_NOT_MET
    elif approval_pct >= approval_threshold:
        result = VotingResult.PASSED
    else:
        result = VotingResult.FAILED

    return ProposalResult(
        result=str(result),
        approval_percentage=round(approval_pct, 2),
        quorum_percentage=round(quorum_pct, 2),
        quorum_met=quorum_met,
        tally=tally,
    )


def result_to_status(result: str) -> str:
    if result == VotingResult.PASSED:
        return ProposalStatus.APPROVED
    if result in (VotingResult.FAILED, VotingResult.QUORUM_NOT_MET):
        return ProposalStatus.REJECTED
    raise ValueError(f"Cannot map voting result {result!r} to a proposal status")


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------
def is_voting_active(
    voting_ends_at: datetime, status: str, now: datetime | None = None
) -> bool:
    now = now or datetime.now(timezone.utc)
    return status == ProposalStatus.ACTIVE_VOTING and as_utc(now) < as_utc(voting_ends_at)


def can_member_vote(
    *,
    tier: str | None,
    is_active: bool,
    already_voted: bool,
    proposal_status: str,
    voting_ends_at: datetime,
    now: datetime | None = None,
) -> tuple[bool, str]:
    """Return ``(allowed, reason)``.  *reason* is empty when allowed."""
    if already_voted:
        return False, "Member has already voted on this proposal"
    if not is_active:
        return False, "Member is not active"
    if get_vote_weight(tier) <= 0:
        return False, "Membership tier has no voting power"
    if proposal_status != ProposalStatus.ACTIVE_VOTING:
        return False, f"Proposal is not open for voting (status: {proposal_status})"
    if not is_voting_active(voting_ends_at, proposal_status, now):
        return False, "Voting period has ended"
    return True, ""


def is_valid_signature(signature: str | None) -> bool:
    """At least 64 hex characters, optional ``0x`` prefix."""
    return bool(signature) and bool(_SIGNATURE_RE.match(signature))


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    ProposalStatus.DRAFT: frozenset({ProposalStatus.SUBMITTED, ProposalStatus.CANCELLED}),
    ProposalStatus.SUBMITTED: frozenset({ProposalStatus.ACTIVE_VOTING, ProposalStatus.CANCELLED}),
    ProposalStatus.ACTIVE_VOTING: frozenset({
        ProposalStatus.APPROVED, ProposalStatus.REJECTED, ProposalStatus.CANCELLED,
    }),
    ProposalStatus.APPROVED: frozenset({ProposalStatus.FUNDED, ProposalStatus.COMPLETED}),
    ProposalStatus.FUNDED: frozenset({ProposalStatus.COMPLETED}),
    ProposalStatus.REJECTED: frozenset(),
    ProposalStatus.COMPLETED: frozenset(),
    ProposalStatus.CANCELLED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())
