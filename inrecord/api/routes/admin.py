"""
inrecord.api.routes.admin — Admin endpoints (JWT‑protected, rate-limited)
==========================================================================
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from inrecord.api.deps import get_config, get_engine, http_error
from inrecord.api.rate_limit import rate_limited_admin
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
from inrecord.database.engine import run_db
from inrecord.database.models import DistributionChannel
from inrecord.services import (
    admin_service,
    booking_service,
    dao_service,
    digest_service,
    distribution_service,
    email_service,
    treasury_service,
)
from inrecord.services.booking_service import booking_to_dict
from inrecord.services.dao_service import proposal_to_dict
from inrecord.services.digest_service import digest_to_dict
from inrecord.services.discord_notifications import DiscordNotifier
from inrecord.services.log_buffer import (
    VALID_LEVELS,
    get_current_level,
    get_logs,
    set_capture_level,
)
from inrecord.services.treasury_service import transaction_to_dict

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class StartVoting(BaseModel):
    voting_ends_at: datetime | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class ProposalAdminUpdate(BaseModel):
    title: str | None = Field(
        default=None, min_length=TITLE_MIN_LENGTH, max_length=TITLE_MAX_LENGTH
    )
    description: str | None = Field(
        default=None, min_length=DESCRIPTION_MIN_LENGTH, max_length=DESCRIPTION_MAX_LENGTH
    )
    admin_notes: str | None = None
    tags: list[str] | None = Field(default=None, max_length=MAX_TAGS)
    attachment_urls: list[str] | None = Field(default=None, max_length=MAX_ATTACHMENTS)
    voting_ends_at: datetime | None = None
    quorum_required: int | None = None
    approval_threshold: int | None = None
    linked_session_id: str | None = None
    funding_goal: float | None = Field(default=None, gt=0, le=MAX_FUNDING_GOAL)


class TransactionCreate(BaseModel):
    transaction_type: str
    amount: float
    currency: str = "ETH"
    proposal_id: str | None = None
    contributor_wallet: str | None = None
    recipient_wallet: str | None = None
    transaction_hash: str | None = None
    description: str | None = None


class FundRequest(BaseModel):
    amount: float = Field(gt=0)
    recipient_wallet: str | None = None
    currency: str | None = None
    transaction_hash: str | None = None
    description: str | None = None


class BookingUpdate(BaseModel):
    user_name: str | None = None
    user_phone: str | None = None
    user_wallet: str | None = None
    notes: str | None = None
    admin_notes: str | None = None
    total_cost: float | None = None
    dao_funded: bool | None = None
    session_date: date | None = None
    session_time: str | None = None
    duration_hours: int | None = Field(default=None, ge=1, le=12)
    room_type: str | None = None


class DaoFunded(BaseModel):
    dao_funded: bool


class DistributeRequest(BaseModel):
    channels: list[DistributionChannel] = Field(
        default_factory=lambda: list(distribution_service.DEFAULT_CHANNELS)
    )


class SettingUpdate(BaseModel):
    key: str
    value: Any
    category: str | None = None
    description: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _notifier(cfg: LabelConfig) -> DiscordNotifier:
    return DiscordNotifier.from_config(cfg)


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------
@router.get("/proposals")
def list_proposals(
    status: str | None = Query(None),
    search: str | None = Query(None),
    sort_by: str = Query("newest"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    try:
        rows, total = dao_service.list_proposals(
            engine, status=status, search=search, sort_by=sort_by, limit=limit, offset=offset
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"proposals": [proposal_to_dict(p) for p in rows], "total": total}


@router.patch("/proposals/{proposal_id}")
def update_proposal(
    proposal_id: str,
    body: ProposalAdminUpdate,
    request: Request,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(400, "No fields to update")
    try:
        proposal = dao_service.update_proposal_admin(
            engine, proposal_id, actor_id=admin["sub"], ip_address=_client_ip(request), **fields
        )
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    return proposal_to_dict(proposal)


@router.post("/proposals/close-expired")
def close_expired(
    background: BackgroundTasks,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
    cfg: LabelConfig = Depends(get_config),
):
    closed = dao_service.close_expired_proposals(engine)
    notifier = _notifier(cfg)
    for item in closed:
        background.add_task(notifier.notify_result, item.proposal)
    return {
        "closed": [
            {"proposal_id": item.proposal.id, "title": item.proposal.title, **item.result.to_dict()}
            for item in closed
        ],
        "count": len(closed),
    }


@router.post("/proposals/{proposal_id}/start-voting")
def start_voting(
    proposal_id: str,
    body: StartVoting,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    try:
        proposal = dao_service.start_voting(
            engine, proposal_id, actor_id=admin["sub"], voting_ends_at=body.voting_ends_at
        )
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    return proposal_to_dict(proposal)


@router.post("/proposals/{proposal_id}/close")
def close_voting(
    proposal_id: str,
    background: BackgroundTasks,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
    cfg: LabelConfig = Depends(get_config),
):
    try:
        closed = dao_service.close_proposal_voting(engine, proposal_id, actor_id=admin["sub"])
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    background.add_task(_notifier(cfg).notify_result, closed.proposal)
    return {"proposal": proposal_to_dict(closed.proposal), "result": closed.result.to_dict()}


@router.post("/proposals/{proposal_id}/cancel")
def cancel_proposal(
    proposal_id: str,
    body: CancelRequest,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    try:
        proposal = dao_service.cancel_proposal(
            engine, proposal_id, actor_id=admin["sub"], reason=body.reason
        )
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    return proposal_to_dict(proposal)


@router.post("/proposals/{proposal_id}/complete")
def complete_proposal(
    proposal_id: str,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    try:
        proposal = dao_service.complete_proposal(engine, proposal_id, actor_id=admin["sub"])
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    return proposal_to_dict(proposal)


@router.post("/proposals/{proposal_id}/fund")
def fund_proposal(
    proposal_id: str,
    body: FundRequest,
    background: BackgroundTasks,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
    cfg: LabelConfig = Depends(get_config),
):
    try:
        outcome = treasury_service.fund_proposal(
            engine, proposal_id, created_by=admin["sub"], **body.model_dump()
        )
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    if outcome.goal_reached:
        background.add_task(_notifier(cfg).notify_funding_goal_reached, outcome.proposal)
    return {
        "transaction": transaction_to_dict(outcome.transaction, outcome.proposal.title),
        "proposal": proposal_to_dict(outcome.proposal),
        "goal_reached": outcome.goal_reached,
    }


# ---------------------------------------------------------------------------
# Discord
# ---------------------------------------------------------------------------
@router.post("/notifications/expiring")
async def notify_expiring(
    within_hours: int = Query(24, ge=1, le=168),
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
    cfg: LabelConfig = Depends(get_config),
):
    """Post a reminder for each proposal whose voting closes soon."""
    proposals = await run_db(dao_service.get_expiring_proposals, engine, within_hours)
    notifier = _notifier(cfg)
    sent = 0
    for proposal in proposals:
        result = await notifier.notify_proposal_expiring(proposal)
        sent += result.success
    return {"proposals": len(proposals), "sent": sent}


@router.post("/notifications/weekly-summary")
async def notify_weekly_summary(
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
    cfg: LabelConfig = Depends(get_config),
):
    summary = await run_db(dao_service.get_weekly_summary, engine)
    result = await _notifier(cfg).notify_weekly_summary(summary)
    return {"summary": summary, "success": result.success, "error": result.error}


@router.post("/discord/test")
async def test_discord(
    digest: bool = Query(False),
    admin: dict = Depends(rate_limited_admin),
    cfg: LabelConfig = Depends(get_config),
):
    result = await DiscordNotifier.from_config(cfg, digest=digest).test_webhook()
    return {"success": result.success, "error": result.error}


# ---------------------------------------------------------------------------
# Treasury
# ---------------------------------------------------------------------------
@router.post("/treasury/transactions", status_code=201)
def record_transaction(
    body: TransactionCreate,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    try:
        tx = treasury_service.record_transaction(engine, created_by=admin["sub"], **body.model_dump())
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    return transaction_to_dict(tx)


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------
@router.get("/bookings")
def list_bookings(
    status: str | None = Query(None),
    room_type: str | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    rows = booking_service.get_all_bookings(
        engine, status=status, room_type=room_type, start_date=start_date, end_date=end_date
    )
    return {"bookings": [booking_to_dict(b) for b in rows], "total": len(rows)}


@router.get("/bookings/stats")
def booking_stats(
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    return booking_service.get_booking_stats(engine)


@router.patch("/bookings/{booking_id}")
def update_booking(
    booking_id: str,
    body: BookingUpdate,
    request: Request,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(400, "No fields to update")
    try:
        booking = booking_service.update_booking(
            engine, booking_id, actor_id=admin["sub"], ip_address=_client_ip(request), **fields
        )
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    return booking_to_dict(booking)


@router.delete("/bookings/{booking_id}", status_code=204)
def delete_booking(
    booking_id: str,
    request: Request,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    deleted = booking_service.delete_booking(
        engine, booking_id, actor_id=admin["sub"], ip_address=_client_ip(request)
    )
    if not deleted:
        raise HTTPException(404, "Booking not found")


_BOOKING_ACTIONS = {
    "confirm": booking_service.confirm_booking,
    "cancel": booking_service.cancel_booking,
    "complete": booking_service.complete_booking,
}


@router.post("/bookings/{booking_id}/{action}")
def change_booking_status(
    booking_id: str,
    action: str,
    background: BackgroundTasks,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
    cfg: LabelConfig = Depends(get_config),
):
    """confirm / cancel / complete, then email the customer."""
    change = _BOOKING_ACTIONS.get(action)
    if change is None:
        raise HTTPException(404, f"Unknown booking action: {action}")
    try:
        booking = change(engine, booking_id, actor_id=admin["sub"])
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    background.add_task(email_service.notify_booking_status, booking, cfg)
    return booking_to_dict(booking)


@router.put("/bookings/{booking_id}/dao-funded")
def set_dao_funded(
    booking_id: str,
    body: DaoFunded,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    try:
        booking = booking_service.update_dao_funding_status(
            engine, booking_id, body.dao_funded, actor_id=admin["sub"]
        )
    except LookupError as exc:
        raise http_error(exc) from exc
    return booking_to_dict(booking)


# ---------------------------------------------------------------------------
# Digests
# ---------------------------------------------------------------------------
@router.get("/digests/{digest_id}")
def get_digest(
    digest_id: str,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    digest = digest_service.get_digest(engine, digest_id)
    if digest is None:
        raise HTTPException(404, "Digest not found")
    return {
        **digest_to_dict(digest),
        "distribution": distribution_service.get_distribution_status(engine, digest_id),
    }


@router.post("/digests/{digest_id}/publish")
def publish_digest(
    digest_id: str,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    try:
        digest = digest_service.publish_digest(engine, digest_id, actor_id=admin["sub"])
    except LookupError as exc:
        raise http_error(exc) from exc
    return digest_to_dict(digest)


@router.post("/digests/{digest_id}/distribute")
async def distribute_digest(
    digest_id: str,
    body: DistributeRequest,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
    cfg: LabelConfig = Depends(get_config),
):
    try:
        result = await distribution_service.distribute_digest(
            engine, digest_id, cfg=cfg, channels=[str(c) for c in body.channels]
        )
    except LookupError as exc:
        raise http_error(exc) from exc
    return result


@router.get("/digests/{digest_id}/distribution")
def distribution_status(
    digest_id: str,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    return {"distribution": distribution_service.get_distribution_status(engine, digest_id)}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@router.get("/settings")
def get_all_settings(
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    rows = admin_service.get_all_settings(engine)
    return {
        "settings": [
            {
                "key": r.key,
                "value": json.loads(r.value_json) if r.value_json else None,
                "category": r.category,
                "description": r.description,
                "updated_at": r.updated_at.isoformat() if r.updated_at else None,
            }
            for r in rows
        ],
    }


@router.put("/settings")
def update_settings(
    body: list[SettingUpdate],
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    items = [
        {
            "key": s.key,
            "value": s.value,
            **({"category": s.category} if s.category else {}),
            **({"description": s.description} if s.description else {}),
        }
        for s in body
    ]
    count = admin_service.upsert_settings(engine, items, actor_id=admin["sub"])
    return {"updated": count}


# ---------------------------------------------------------------------------
# Audit Log
# ---------------------------------------------------------------------------
@router.get("/audit")
def get_audit_log(
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    target_table: str | None = Query(None),
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    """Paginated admin audit log."""
    rows, total = admin_service.get_audit_log(
        engine, page=page, page_size=page_size, target_table=target_table
    )
    return {
        "total": total,
        "page": page,
        "page_size": page_size,
        "entries": [
            {
                "id": r.id,
                "actor_id": r.actor_id,
                "action_type": r.action_type,
                "target_table": r.target_table,
                "target_id": r.target_id,
                "before_snapshot": r.before_snapshot,
                "after_snapshot": r.after_snapshot,
                "ip_address": r.ip_address,
                "reason": r.reason,
                "timestamp": r.timestamp.isoformat() if r.timestamp else None,
            }
            for r in rows
        ],
    }


# ---------------------------------------------------------------------------
# Live logs
# ---------------------------------------------------------------------------
@router.get("/logs")
def get_live_logs(
    tail: int = Query(200, ge=1, le=5000),
    level: str | None = Query(None),
    logger_filter: str | None = Query(None, alias="logger"),
    admin: dict = Depends(rate_limited_admin),
):
    """Return recent log entries from the in-memory ring buffer."""
    entries = get_logs(tail=tail, level=level, logger_filter=logger_filter)
    return {
        "entries": entries,
        "total": len(entries),
        "capture_level": get_current_level(),
        "valid_levels": list(VALID_LEVELS),
    }


@router.put("/logs/level")
def change_log_level(
    body: dict,
    admin: dict = Depends(rate_limited_admin),
):
    """Change the capture level of the ring-buffer handler on-the-fly."""
    level_name = str(body.get("level", "")).upper()
    if level_name not in VALID_LEVELS:
        raise HTTPException(400, detail=f"Invalid level. Must be one of: {', '.join(VALID_LEVELS)}")
    return {"level": set_capture_level(level_name)}
