"""
inrecord.services.distribution_service — Digest Fan-out
========================================================

Sends a saved digest to each requested channel and records the outcome in
``digest_distributions`` (one row per digest and channel, upserted):

- ``discord``: embed plus link buttons on the digest webhook
- ``email``: the newsletter to every active subscriber
- ``rss``: nothing to push; the feed is rendered on request
- ``twitter``: not implemented, always recorded as failed

A failing channel never stops the others.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from inrecord.config import LabelConfig
from inrecord.database.engine import run_db
from inrecord.database.models import (
    AiDigest,
    DigestDistribution,
    DistributionChannel,
    DistributionStatus,
    NewsletterSubscriber,
)
from inrecord.engine.digest_metrics import clean_text_for_tts
from inrecord.errors import IntegrationError
from inrecord.rendering import absolute_url, render
from inrecord.services.discord_notifications import DiscordNotifier, digest_page_url
from inrecord.services.email_service import ResendClient, send_digest_newsletter

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = (DistributionChannel.DISCORD, DistributionChannel.EMAIL)
RSS_DESCRIPTION_CHARS = 500


# ---------------------------------------------------------------------------
# Subscribers
# ---------------------------------------------------------------------------
def get_active_subscribers(engine: Engine) -> list[str]:
    with Session(engine) as session:
        return list(session.scalars(
            select(NewsletterSubscriber.email)
            .where(NewsletterSubscriber.active.is_(True))
            .order_by(NewsletterSubscriber.email)
        ).all())


def subscribe(engine: Engine, email: str, name: str | None = None) -> NewsletterSubscriber:
    """Add or re-activate a newsletter subscriber."""
    email = email.strip().lower()
    if "@" not in email:
        raise ValueError("Invalid email address")
    with Session(engine, expire_on_commit=False) as session:
        sub = session.get(NewsletterSubscriber, email)
        if sub is None:
            sub = NewsletterSubscriber(email=email, name=name)
            session.add(sub)
        else:
            sub.active = True
            if name:
                sub.name = name
        session.commit()
        session.refresh(sub)
        session.expunge(sub)
    logger.info("Newsletter subscriber %s active", email)
    return sub


def unsubscribe(engine: Engine, email: str) -> bool:
    """Deactivate a subscriber.  Returns False when the address is unknown."""
    with Session(engine) as session:
        sub = session.get(NewsletterSubscriber, email.strip().lower())
        if sub is None:
            return False
        sub.active = False
        session.commit()
    return True


# ---------------------------------------------------------------------------
# Tracking
# ---------------------------------------------------------------------------
def track_distribution(
    engine: Engine,
    digest_id: str,
    channel: str,
    status: str,
    *,
    error_message: str | None = None,
    recipient_count: int = 0,
) -> DigestDistribution:
    """Upsert the (digest, channel) row.  Re-sending after a failure bumps ``retry_count``."""
    with Session(engine, expire_on_commit=False) as session:
        row = session.scalar(
            select(DigestDistribution).where(
                DigestDistribution.digest_id == digest_id,
                DigestDistribution.channel == channel,
            )
        )
        if row is None:
            row = DigestDistribution(digest_id=digest_id, channel=channel, retry_count=0)
            session.add(row)
        elif row.status == DistributionStatus.FAILED:
            row.retry_count = (row.retry_count or 0) + 1

        row.status = status
        row.error_message = error_message
        row.recipient_count = recipient_count
        if status == DistributionStatus.SENT:
            row.sent_at = datetime.now(timezone.utc)

        if status == DistributionStatus.SENT and channel in (
            DistributionChannel.DISCORD, DistributionChannel.EMAIL
        ):
            digest = session.get(AiDigest, digest_id)
            if digest is not None:
                setattr(digest, f"{channel}_sent", True)

        session.commit()
        session.refresh(row)
        session.expunge(row)
        return row


def get_distribution_status(engine: Engine, digest_id: str) -> list[dict]:
    with Session(engine) as session:
        rows = session.scalars(
            select(DigestDistribution)
            .where(DigestDistribution.digest_id == digest_id)
            .order_by(DigestDistribution.channel)
        ).all()
        return [
            {
                "channel": r.channel,
                "status": r.status,
                "error_message": r.error_message,
                "recipient_count": r.recipient_count,
                "retry_count": r.retry_count,
                "sent_at": r.sent_at.isoformat() if r.sent_at else None,
            }
            for r in rows
        ]


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------
def _load_digest(engine: Engine, digest_id: str) -> AiDigest | None:
    with Session(engine) as session:
        return session.get(AiDigest, digest_id)


async def distribute_digest(
    engine: Engine,
    digest_id: str,
    *,
    cfg: LabelConfig,
    channels: Iterable[str] = DEFAULT_CHANNELS,
    notifier: DiscordNotifier | None = None,
    email_client: ResendClient | None = None,
) -> dict:
    """Send *digest_id* to *channels* and return ``{"success", "results"}``."""
    digest = await run_db(_load_digest, engine, digest_id)
    if digest is None:
        raise LookupError(f"Digest {digest_id} not found")

    channels = list(channels)
    logger.info("Distributing digest %s to %s", digest_id[:8], ", ".join(channels))
    results: dict[str, dict] = {}

    for channel in channels:
        error: str | None = None
        recipients = 0
        try:
            if channel == DistributionChannel.DISCORD:
                notifier = notifier or DiscordNotifier.from_config(cfg, digest=True)
                result = await notifier.send_digest(digest)
                if not result.success:
                    error = result.error
            elif channel == DistributionChannel.EMAIL:
                emails = await run_db(get_active_subscribers, engine)
                recipients = await send_digest_newsletter(digest, emails, cfg, email_client)
            elif channel == DistributionChannel.RSS:
                logger.info("Digest %s will be included in the RSS feed", digest_id[:8])
            elif channel == DistributionChannel.TWITTER:
                error = "Not implemented"
            else:
                error = "Unknown channel"
        except IntegrationError as exc:
            logger.exception("Error distributing digest %s to %s", digest_id[:8], channel)
            error = str(exc)

        status = DistributionStatus.FAILED if error else DistributionStatus.SENT
        await run_db(
            track_distribution, engine, digest_id, channel, status,
            error_message=error, recipient_count=recipients,
        )
        results[channel] = {"success": error is None, "error": error}

    return {"success": all(r["success"] for r in results.values()), "results": results}


# ---------------------------------------------------------------------------
# RSS
# ---------------------------------------------------------------------------
def _rss_item(digest: AiDigest, cfg: LabelConfig) -> dict:
    published = digest.published_at or digest.created_at or datetime.now(timezone.utc)
    if published.tzinfo is None:
        published = published.replace(tzinfo=timezone.utc)
    text = clean_text_for_tts(digest.summary_en)
    if len(text) > RSS_DESCRIPTION_CHARS:
        text = text[:RSS_DESCRIPTION_CHARS].rstrip() + "..."
    start = digest.week_start
    return {
        "title": f"Weekly DAO Digest - Week of {start:%b} {start.day}, {start.year}",
        "link": digest_page_url(digest, cfg.base_url),
        "guid": digest.id,
        "pub_date": format_datetime(published),
        "description": text,
        "audio_url": absolute_url(digest.audio_url_en, cfg.base_url),
    }


def render_rss_feed(digests: Iterable[AiDigest], cfg: LabelConfig) -> str:
    """RSS 2.0 document for the given (published) digests, newest first."""
    items = [_rss_item(d, cfg) for d in digests]
    return render(
        "rss/digests.xml",
        label_name=cfg.label_name,
        base_url=cfg.base_url,
        last_build=items[0]["pub_date"] if items else None,
        items=items,
    )
