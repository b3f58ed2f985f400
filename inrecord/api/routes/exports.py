"""
inrecord.api.routes.exports — CSV downloads (public)
=====================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from inrecord.api.deps import get_engine
from inrecord.services import csv_export, dao_service, treasury_service

router = APIRouter(prefix="/exports", tags=["exports"])


def _csv(result: tuple[str, str]) -> Response:
    filename, text = result
    return Response(
        content=text,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/treasury-transactions.csv")
def treasury_transactions(engine=Depends(get_engine)):
    rows, _ = treasury_service.get_treasury_history(engine, limit=None)
    return _csv(csv_export.export_treasury_transactions(rows))


@router.get("/proposals.csv")
def proposal_history(engine=Depends(get_engine)):
    return _csv(csv_export.export_proposal_history(dao_service.get_all_proposals(engine)))


@router.get("/analytics.csv")
def analytics_summary(engine=Depends(get_engine)):
    return _csv(csv_export.export_analytics_summary(dao_service.get_dao_analytics(engine)))


@router.get("/treasury-summary.csv")
def treasury_summary(currency: str = Query("ETH", max_length=10), engine=Depends(get_engine)):
    summary = treasury_service.get_treasury_summary(engine, currency).to_dict()
    return _csv(csv_export.export_treasury_summary(summary))


@router.get("/top-contributors.csv")
def top_contributors(engine=Depends(get_engine)):
    return _csv(csv_export.export_top_contributors(treasury_service.get_top_contributors(engine, 100)))


@router.get("/funding-distribution.csv")
def funding_distribution(engine=Depends(get_engine)):
    return _csv(csv_export.export_funding_distribution(treasury_service.get_funding_distribution(engine)))
