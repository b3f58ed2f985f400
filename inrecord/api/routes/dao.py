"""
inrecord.api.routes.dao — Governance endpoints (public)
========================================================

Proposals, votes, comments and member profiles.  Callers identify
themselves by wallet address; Discord announcements go out as background
tasks once the write has committed.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from inrecord.api.deps import get_config, get_engine, http_error
from inrecord.config import LabelConfig
from inrecord.constants import (
    DESCRIPTION_MAX_LENGTH,
    DESCRIPTION_MIN_LENGTH,
    MAX_ATTACHMENTS,
    MAX_FUNDING_GOAL,
    MAX_TAGS,
    TITLE_MAX_LENGTH,
    TITLE_MIN_LENGTH,
)
from inrecord.services import dao_service
from inrecord.services.dao_service import (
    comment_to_dict,
    member_to_dict,
    proposal_to_dict,
    vote_to_dict,
)
from inrecord.services.discord_notifications import DiscordNotifier

router = APIRouter(prefix="/dao", tags=["dao"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ProposalCreate(BaseModel):
    title: str = Field(min_length=TITLE_MIN_LENGTH, max_length=TITLE_MAX_LENGTH)
    description: str = Field(min_length=DESCRIPTION_MIN_LENGTH, max_length=DESCRIPTION_MAX_LENGTH)
    proposal_type: str
    created_by: str
    funding_goal: float | None = Field(default=None, gt=0, le=MAX_FUNDING_GOAL)
    funding_currency: str = "USD"
    voting_ends_at: datetime | None = None
    quorum_required: int | None = None
    approval_threshold: int | None = None
    tags: list[str] = Field(default_factory=list, max_length=MAX_TAGS)
    attachment_urls: list[str] = Field(default_factory=list, max_length=MAX_ATTACHMENTS)
    linked_session_id: str | None = None
    submit: bool = False


class WalletBody(BaseModel):
    wallet_address: str


class VoteCreate(BaseModel):
    voter_wallet: str
    vote_type: str
    signature: str | None = None
    comment: str | None = Field(default=None, max_length=500)


class CommentCreate(BaseModel):
    commenter_wallet: str
    comment_text: str
    parent_comment_id: str | None = None


class CommentEdit(BaseModel):
    wallet_address: str
    comment_text: str


class MemberCreate(BaseModel):
    wallet_address: str
    membership_tier: str | None = None
    token_balance: float = 0.0
    display_name: str | None = None
    bio: str | None = None
    avatar_url: str | None = None
    email: str | None = None
    discord_handle: str | None = None


class MemberUpdate(BaseModel):
    display_name: str | None = None
    bio: str | None = None
    avatar_url: str | None = None
    email: str | None = None
    discord_handle: str | None = None
    token_balance: float | None = None


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------
@router.get("/proposals")
def list_proposals(
    status: str | None = Query(None),
    proposal_type: str | None = Query(None, alias="type"),
    created_by: str | None = Query(None),
    tag: str | None = Query(None),
    search: str | None = Query(None),
    sort_by: str = Query("newest"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    engine=Depends(get_engine),
):
    try:
        rows, total = dao_service.list_proposals(
            engine,
            status=status,
            proposal_type=proposal_type,
            created_by=created_by,
            tag=tag,
            search=search,
            sort_by=sort_by,
            limit=limit,
            offset=offset,
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "proposals": [proposal_to_dict(p) for p in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/proposals/{proposal_id}")
def get_proposal(proposal_id: str, engine=Depends(get_engine)):
    proposal = dao_service.get_proposal(engine, proposal_id)
    if proposal is None:
        raise HTTPException(404, "Proposal not found")
    return proposal_to_dict(proposal)


@router.post("/proposals", status_code=201)
def create_proposal(
    body: ProposalCreate,
    background: BackgroundTasks,
    engine=Depends(get_engine),
    cfg: LabelConfig = Depends(get_config),
):
    try:
        proposal = dao_service.create_proposal(engine, **body.model_dump())
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    if body.submit:
        background.add_task(DiscordNotifier.from_config(cfg).notify_proposal_created, proposal)
    return proposal_to_dict(proposal)


@router.post("/proposals/{proposal_id}/submit")
def submit_proposal(
    proposal_id: str,
    body: WalletBody,
    background: BackgroundTasks,
    engine=Depends(get_engine),
    cfg: LabelConfig = Depends(get_config),
):
    try:
        proposal = dao_service.submit_proposal(
            engine, proposal_id, wallet_address=body.wallet_address
        )
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    background.add_task(DiscordNotifier.from_config(cfg).notify_proposal_created, proposal)
    return proposal_to_dict(proposal)


# ---------------------------------------------------------------------------
# Voting
# ---------------------------------------------------------------------------
@router.post("/proposals/{proposal_id}/vote", status_code=201)
def cast_vote(
    proposal_id: str,
    body: VoteCreate,
    background: BackgroundTasks,
    engine=Depends(get_engine),
    cfg: LabelConfig = Depends(get_config),
):
    try:
        outcome = dao_service.cast_vote(engine, proposal_id=proposal_id, **body.model_dump())
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    if outcome.milestone:
        background.add_task(
            DiscordNotifier.from_config(cfg).notify_vote_milestone,
            outcome.proposal,
            outcome.milestone,
        )
    return {
        "vote": vote_to_dict(outcome.vote),
        "proposal": proposal_to_dict(outcome.proposal),
    }


@router.get("/proposals/{proposal_id}/results")
def get_results(proposal_id: str, engine=Depends(get_engine)):
    try:
        result = dao_service.get_proposal_results(engine, proposal_id)
    except LookupError as exc:
        raise http_error(exc) from exc
    return result.to_dict()


@router.get("/proposals/{proposal_id}/votes")
def list_votes(proposal_id: str, engine=Depends(get_engine)):
    votes = dao_service.get_proposal_votes(engine, proposal_id)
    return {"votes": [vote_to_dict(v) for v in votes], "total": len(votes)}


@router.get("/proposals/{proposal_id}/has-voted")
def has_voted(proposal_id: str, wallet: str = Query(...), engine=Depends(get_engine)):
    vote = dao_service.has_voted(engine, proposal_id, wallet)
    return {"has_voted": vote is not None, "vote": vote_to_dict(vote) if vote else None}


@router.get("/votes/summary")
def vote_summaries(status: str | None = Query(None), engine=Depends(get_engine)):
    return {"proposals": dao_service.get_vote_summaries(engine, status)}


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------
@router.get("/proposals/{proposal_id}/comments")
def list_comments(proposal_id: str, engine=Depends(get_engine)):
    return {"comments": [comment_to_dict(c) for c in dao_service.list_comments(engine, proposal_id)]}


@router.post("/proposals/{proposal_id}/comments", status_code=201)
def add_comment(proposal_id: str, body: CommentCreate, engine=Depends(get_engine)):
    try:
        comment = dao_service.add_comment(engine, proposal_id=proposal_id, **body.model_dump())
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    return comment_to_dict(comment)


@router.patch("/comments/{comment_id}")
def edit_comment(comment_id: str, body: CommentEdit, engine=Depends(get_engine)):
    try:
        comment = dao_service.edit_comment(engine, comment_id, **body.model_dump())
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    return comment_to_dict(comment)


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(comment_id: str, wallet: str = Query(...), engine=Depends(get_engine)):
    try:
        dao_service.delete_comment(engine, comment_id, wallet_address=wallet)
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------
@router.get("/members/stats")
def member_stats(engine=Depends(get_engine)):
    return dao_service.get_member_counts(engine)


@router.post("/members", status_code=201)
def register_member(body: MemberCreate, engine=Depends(get_engine)):
    try:
        member = dao_service.register_member(engine, **body.model_dump())
    except ValueError as exc:
        raise http_error(exc) from exc
    return member_to_dict(member)


@router.get("/members/{wallet_address}")
def get_member(wallet_address: str, engine=Depends(get_engine)):
    member = dao_service.get_member(engine, wallet_address)
    if member is None:
        raise HTTPException(404, "Member not found")
    return member_to_dict(member)


@router.patch("/members/{wallet_address}")
def update_member(wallet_address: str, body: MemberUpdate, engine=Depends(get_engine)):
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(400, "No fields to update")
    try:
        member = dao_service.update_member(engine, wallet_address, **fields)
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    return member_to_dict(member)


@router.get("/members/{wallet_address}/votes")
def member_votes(
    wallet_address: str,
    limit: int = Query(50, ge=1, le=200),
    engine=Depends(get_engine),
):
    return {"votes": dao_service.get_voter_history(engine, wallet_address, limit)}


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------
@router.get("/analytics")
def analytics(engine=Depends(get_engine)):
    return dao_service.get_dao_analytics(engine)


@router.get("/trending")
def trending(
    limit: int = Query(5, ge=1, le=20),
    days: int = Query(7, ge=1, le=90),
    engine=Depends(get_engine),
):
    rows = dao_service.get_trending_proposals(engine, limit=limit, days=days)
    return {
        "proposals": [
            {**proposal_to_dict(r["proposal"]), "recent_votes": r["recent_votes"]} for r in rows
        ],
    }
