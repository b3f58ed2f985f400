"""
inrecord.api.routes.cron — Scheduled job triggers
==================================================

An external scheduler (Vercel cron, systemd timer, GitHub Actions) calls
these with ``Authorization: Bearer $CRON_SECRET``.
"""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, model_validator

from inrecord.api.deps import get_config, get_engine, verify_cron_secret
from inrecord.config import LabelConfig
from inrecord.errors import DigestGenerationError
from inrecord.services import digest_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


class DigestJobRequest(BaseModel):
    week_start: date | None = None
    week_end: date | None = None
    force: bool = False
    auto_distribute: bool = True

    @model_validator(mode="after")
    def _check_range(self) -> DigestJobRequest:
        if (self.week_start is None) != (self.week_end is None):
            raise ValueError("week_start and week_end must be given together")
        if self.week_start and self.week_end and self.week_end < self.week_start:
            raise ValueError("week_end must not be before week_start")
        return self


@router.post("/digest")
async def weekly_digest(
    body: DigestJobRequest | None = None,
    engine=Depends(get_engine),
    cfg: LabelConfig = Depends(get_config),
):
    """Generate, narrate, distribute and publish the weekly digest."""
    body = body or DigestJobRequest()
    try:
        return await digest_service.run_weekly_digest_job(
            engine,
            cfg,
            week_start=body.week_start,
            week_end=body.week_end,
            force=body.force,
            auto_distribute=body.auto_distribute,
        )
    except DigestGenerationError as exc:
        logger.exception("Weekly digest job failed")
        raise HTTPException(502, f"Digest generation failed: {exc}") from exc
