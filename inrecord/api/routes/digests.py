"""
inrecord.api.routes.digests — Weekly digest endpoints (public)
===============================================================

Only published digests are visible here; drafts are reachable through
``/api/admin/digests``.
"""

from __future__ import annotations

from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field

from inrecord.api.deps import get_config, get_engine, http_error
from inrecord.config import LabelConfig
from inrecord.services import digest_service, distribution_service
from inrecord.services.digest_service import digest_to_dict

router = APIRouter(prefix="/digests", tags=["digests"])

RSS_ITEMS = 20


class SubscribeRequest(BaseModel):
    email: str = Field(max_length=255)
    name: str | None = Field(default=None, max_length=100)


class UnsubscribeRequest(BaseModel):
    email: str


@router.get("")
def archive(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    sentiment: str | None = Query(None),
    engine=Depends(get_engine),
):
    rows, total = digest_service.get_digest_archive(engine, limit, offset, sentiment)
    return {
        "digests": [digest_to_dict(d) for d in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/latest")
def latest(engine=Depends(get_engine)):
    digest = digest_service.get_latest_published_digest(engine)
    if digest is None:
        raise HTTPException(404, "No published digest yet")
    return digest_to_dict(digest)


@router.get("/rss")
def rss_feed(engine=Depends(get_engine), cfg: LabelConfig = Depends(get_config)):
    rows, _ = digest_service.get_digest_archive(engine, limit=RSS_ITEMS)
    return Response(
        content=distribution_service.render_rss_feed(rows, cfg),
        media_type="application/rss+xml",
        headers={"Cache-Control": "public, max-age=3600"},
    )


@router.get("/week/{week_start}")
def by_week(week_start: date, engine=Depends(get_engine)):
    digest = digest_service.get_digest_by_week(engine, week_start)
    if digest is None or not digest.published:
        raise HTTPException(404, "Digest not found")
    return digest_to_dict(digest)


@router.get("/week/{week_start}/comparison")
def week_comparison(week_start: date, engine=Depends(get_engine)):
    """This week's stats against the week before, computed live."""
    return digest_service.get_week_over_week_comparison(
        engine, week_start, week_start + timedelta(days=6)
    )


@router.post("/subscribe", status_code=201)
def subscribe(body: SubscribeRequest, engine=Depends(get_engine)):
    try:
        sub = distribution_service.subscribe(engine, body.email, body.name)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"email": sub.email, "active": sub.active}


@router.post("/unsubscribe")
def unsubscribe(body: UnsubscribeRequest, engine=Depends(get_engine)):
    if not distribution_service.unsubscribe(engine, body.email):
        raise HTTPException(404, "Subscriber not found")
    return {"email": body.email.strip().lower(), "active": False}
