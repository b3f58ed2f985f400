"""
inrecord.api.routes.treasury — Treasury read endpoints (public)
================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from inrecord.api.deps import get_engine
from inrecord.services import treasury_service

router = APIRouter(prefix="/treasury", tags=["treasury"])


@router.get("/balance")
def balance(engine=Depends(get_engine)):
    """Net balance per currency."""
    return {"balances": treasury_service.get_treasury_balance(engine)}


@router.get("/summary")
def summary(currency: str = Query("ETH", max_length=10), engine=Depends(get_engine)):
    return treasury_service.get_treasury_summary(engine, currency).to_dict()


@router.get("/transactions")
def transactions(
    transaction_type: str | None = Query(None, alias="type"),
    proposal_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    engine=Depends(get_engine),
):
    rows, total = treasury_service.get_treasury_history(
        engine,
        transaction_type=transaction_type,
        proposal_id=proposal_id,
        limit=limit,
        offset=offset,
    )
    return {"transactions": rows, "total": total, "limit": limit, "offset": offset}


@router.get("/distribution")
def distribution(engine=Depends(get_engine)):
    return {"distribution": treasury_service.get_funding_distribution(engine)}


@router.get("/contributors")
def contributors(limit: int = Query(10, ge=1, le=100), engine=Depends(get_engine)):
    return {"contributors": treasury_service.get_top_contributors(engine, limit)}


@router.get("/history")
def balance_history(
    days: int = Query(30, ge=1, le=365),
    currency: str = Query("ETH", max_length=10),
    engine=Depends(get_engine),
):
    history = treasury_service.get_treasury_balance_history(engine, days, currency=currency)
    return {"currency": currency, "history": history}


@router.get("/volume")
def volume(
    days: int = Query(30, ge=1, le=365),
    currency: str = Query("ETH", max_length=10),
    engine=Depends(get_engine),
):
    volume_rows = treasury_service.get_transaction_volume(engine, days, currency=currency)
    return {"currency": currency, "volume": volume_rows}


@router.get("/proposals/{proposal_id}/funding")
def proposal_funding(proposal_id: str, engine=Depends(get_engine)):
    rows = treasury_service.get_proposal_funding_history(engine, proposal_id)
    return {"transactions": [treasury_service.transaction_to_dict(tx) for tx in rows]}
