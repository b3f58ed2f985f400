"""
inrecord.services.digest_service — Weekly AI Digests
=====================================================

Pipeline run by ``POST /api/cron/digest`` once a week:

1. :func:`calculate_weekly_stats` aggregates the week's governance,
   treasury and membership activity straight from the tables.
2. :class:`DigestGenerator` asks OpenAI for an English write-up, a
   sentiment label with highlights, and French / Portuguese translations.
3. The digest is saved, narrated (:mod:`inrecord.services.tts_service`),
   distributed (:mod:`inrecord.services.distribution_service`) and
   published.

Only the English summary is mandatory.  Sentiment and translations fall
back to safe defaults when the model misbehaves, and audio or distribution
failures are recorded in the job report without aborting the run.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from openai import OpenAI
from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from inrecord.config import LabelConfig
from inrecord.constants import LANGUAGE_NAMES, SENTIMENTS
from inrecord.database.models import (
    AdminActionType,
    AiDigest,
    DaoMember,
    Proposal,
    ProposalStatus,
    TransactionType,
    TreasuryTransaction,
    Vote,
)
from inrecord.engine.digest_metrics import (
    MemberMetrics,
    ProposalMetrics,
    TreasuryMetrics,
    VotingMetrics,
    WeeklyStats,
    compare_weeks,
    format_stats_for_prompt,
    generate_highlights,
    participation_rate,
    previous_week_range,
    week_before,
)
from inrecord.errors import DigestGenerationError
from inrecord.services.admin_service import _audited_update

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 1.0
MIN_SUMMARY_LENGTH = 100

FALLBACK_SENTIMENT = "stable"
FALLBACK_HIGHLIGHTS = [
    "Weekly digest generated",
    "Community activity tracked",
    "Governance ongoing",
]

DIGEST_SYSTEM_PROMPT = """\
You are a transparency reporter for {label}, a decentralized music label DAO.
Your job is to create a clear, engaging weekly summary of DAO activity for the community.

Style: Professional yet approachable, transparent, data-driven
Tone: Optimistic but realistic, community-focused
Length: 250-350 words
Format: Markdown with headers

Include:
- Overview of proposals (new, approved, funded)
- Voting participation metrics
- Treasury changes (deposits, spending)
- Notable events or milestones
- Community growth stats
- Call to action for next week

Be honest about challenges while celebrating wins. Use the provided statistics to tell a compelling story about the DAO's week.

IMPORTANT: Return ONLY the markdown summary. Do not include any JSON formatting or additional fields."""

SENTIMENT_SYSTEM_PROMPT = """\
You are a sentiment analyst for a DAO transparency system.
Analyze the provided weekly summary and classify the overall sentiment into ONE of these categories:

- "optimistic": Strong positive momentum, major wins, high community engagement
- "stable": Steady progress, normal operations, no major changes
- "critical": Significant challenges, low participation, concerning trends
- "mixed": Combination of positive and negative elements

Also extract 3-5 key highlights (brief bullet points) from the summary.

Return a JSON object with:
{
  "sentiment": "optimistic" | "stable" | "critical" | "mixed",
  "highlights": ["highlight 1", "highlight 2", "highlight 3"]
}"""

TRANSLATION_SYSTEM_PROMPT = """\
You are a professional translator specializing in blockchain and DAO terminology.
Translate the provided text accurately while maintaining the tone, style, and technical accuracy.

Preserve:
- Markdown formatting
- Technical terms (DAO, proposal, treasury, etc.)
- Numbers and percentages
- URLs if present

Return a JSON object with:
{
  "translated_text": "the translated content"
}"""


# ---------------------------------------------------------------------------
# Weekly stats
# ---------------------------------------------------------------------------
def _bounds(week_start: date, week_end: date) -> tuple[datetime, datetime]:
    """Half-open UTC range covering every instant of the given dates."""
    start = datetime.combine(week_start, datetime.min.time(), timezone.utc)
    end = datetime.combine(week_end + timedelta(days=1), datetime.min.time(), timezone.utc)
    return start, end


def calculate_weekly_stats(engine: Engine, week_start: date, week_end: date) -> WeeklyStats:
    """Aggregate one week of activity.

    New proposals are counted by ``created_at``; approved, rejected and
    funded by their current status and ``updated_at``.  Treasury deposits
    and withdrawals only count those two transaction types.
    """
    start, end = _bounds(week_start, week_end)

    def created_in(col):
        return (col >= start) & (col < end)

    def moved_to(status):
        return func.count().filter(
            (Proposal.status == status) & created_in(Proposal.updated_at)
        )

    with Session(engine) as session:
        new, approved, rejected, funded, total_funding = session.execute(
            select(
                func.count().filter(created_in(Proposal.created_at)),
                moved_to(ProposalStatus.APPROVED),
                moved_to(ProposalStatus.REJECTED),
                moved_to(ProposalStatus.FUNDED),
                func.coalesce(func.sum(Proposal.current_funding).filter(
                    (Proposal.status == ProposalStatus.FUNDED) & created_in(Proposal.updated_at)
                ), 0),
            ).select_from(Proposal)
        ).one()

        votes_cast, unique_voters = session.execute(
            select(func.count(), func.count(distinct(Vote.voter_wallet)))
            .where(created_in(Vote.created_at))
        ).one()

        deposits, withdrawals = session.execute(
            select(
                func.coalesce(func.sum(TreasuryTransaction.amount).filter(
                    TreasuryTransaction.transaction_type == TransactionType.DEPOSIT
                ), 0),
                func.coalesce(func.sum(TreasuryTransaction.amount).filter(
                    TreasuryTransaction.transaction_type == TransactionType.WITHDRAWAL
                ), 0),
            ).where(created_in(TreasuryTransaction.created_at))
        ).one()

        new_members, total_members, active_members = session.execute(
            select(
                func.count().filter(created_in(DaoMember.joined_at)),
                func.count(),
                func.count().filter(created_in(DaoMember.last_active_at)),
            ).select_from(DaoMember)
        ).one()

    deposits, withdrawals = float(deposits), float(withdrawals)
    return WeeklyStats(
        week_start=week_start,
        week_end=week_end,
        proposals=ProposalMetrics(
            new=new,
            approved=approved,
            rejected=rejected,
            funded=funded,
            total_funding=float(total_funding),
        ),
        voting=VotingMetrics(
            votes_cast=votes_cast,
            unique_voters=unique_voters,
            participation_rate=participation_rate(unique_voters, total_members),
        ),
        treasury=TreasuryMetrics(
            deposits=deposits,
            withdrawals=withdrawals,
            net_change=deposits - withdrawals,
        ),
        members=MemberMetrics(
            new_members=new_members,
            total_members=total_members,
            active_members=active_members,
        ),
    )


def get_funded_titles(engine: Engine, week_start: date, week_end: date) -> list[str]:
    start, end = _bounds(week_start, week_end)
    with Session(engine) as session:
        return list(session.scalars(
            select(Proposal.title)
            .where(
                Proposal.status == ProposalStatus.FUNDED,
                Proposal.created_at >= start,
                Proposal.created_at < end,
            )
            .order_by(Proposal.created_at.desc())
        ).all())


def get_week_over_week_comparison(engine: Engine, week_start: date, week_end: date) -> dict:
    current = calculate_weekly_stats(engine, week_start, week_end)
    prev_start, prev_end = week_before(week_start)
    previous = calculate_weekly_stats(engine, prev_start, prev_end)
    return compare_weeks(current, previous).to_dict()


# ---------------------------------------------------------------------------
# OpenAI generation
# ---------------------------------------------------------------------------
class DigestGenerator:
    """Wraps the OpenAI chat API with the digest prompts and retry policy."""

    def __init__(
        self,
        client: OpenAI | None = None,
        *,
        model: str = "gpt-4",
        label_name: str = "inRECORD",
        retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client or OpenAI(
            api_key=os.getenv("OPENAI_API_KEY"),
            organization=os.getenv("OPENAI_ORG_ID") or None,
        )
        self.model = model
        self.label_name = label_name
        self.retries = retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    @classmethod
    def from_config(cls, cfg: LabelConfig, client: OpenAI | None = None) -> DigestGenerator:
        return cls(client, model=cfg.digest_model, label_name=cfg.label_name)

    def _complete(self, system: str, user: str, *, temperature: float, max_tokens: int, json_mode: bool) -> str:
        kwargs: dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        completion = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )
        return completion.choices[0].message.content or ""

    def _with_retries(self, what: str, attempt: Callable[[], Any]) -> Any:
        """Call *attempt* once plus ``self.retries`` more times; re-raise the last error."""
        for remaining in range(self.retries, -1, -1):
            try:
                return attempt()
            except Exception as exc:
                if not remaining:
                    raise
                logger.warning("%s failed (%s); retrying, %d attempts remaining", what, exc, remaining)
                self._sleep(self.retry_delay)

    def generate_english_summary(self, stats: WeeklyStats) -> str:
        def attempt() -> str:
            summary = self._complete(
                DIGEST_SYSTEM_PROMPT.format(label=self.label_name),
                f"Create a weekly digest for {self.label_name} DAO based on these statistics:\n\n"
                + format_stats_for_prompt(stats),
                temperature=0.7,
                max_tokens=1000,
                json_mode=False,
            ).strip()
            if len(summary) < MIN_SUMMARY_LENGTH:
                raise ValueError("Generated summary is too short or empty")
            return summary

        try:
            return self._with_retries("English summary", attempt)
        except Exception as exc:
            raise DigestGenerationError(f"Failed to generate English summary: {exc}") from exc

    def analyze_sentiment_and_highlights(
        self, summary: str, fallback_highlights: list[str] | None = None
    ) -> tuple[str, list[str]]:
        """Sentiment label and 3-5 highlights.  Falls back to ``stable`` with
        *fallback_highlights* (or generic ones) when the model keeps failing."""
        def attempt() -> tuple[str, list[str]]:
            parsed = json.loads(self._complete(
                SENTIMENT_SYSTEM_PROMPT,
                f"Analyze this weekly digest and extract sentiment + highlights:\n\n{summary}",
                temperature=0.3,
                max_tokens=500,
                json_mode=True,
            ) or "{}")
            sentiment = parsed.get("sentiment")
            highlights = parsed.get("highlights")
            if sentiment not in SENTIMENTS:
                raise ValueError(f"Invalid sentiment: {sentiment!r}")
            if not isinstance(highlights, list) or not 3 <= len(highlights) <= 5:
                raise ValueError("Expected 3-5 highlights")
            return sentiment, [str(h) for h in highlights]

        try:
            return self._with_retries("Sentiment analysis", attempt)
        except Exception:
            logger.warning("Using fallback sentiment and highlights")
            return FALLBACK_SENTIMENT, list(fallback_highlights or FALLBACK_HIGHLIGHTS)

    def translate(self, text: str, language: str) -> str:
        """Translate *text* into ``fr`` or ``pt``; the original is returned on failure."""
        target = LANGUAGE_NAMES.get(language)
        if target is None:
            raise ValueError(f"Unsupported language: {language}")

        def attempt() -> str:
            parsed = json.loads(self._complete(
                TRANSLATION_SYSTEM_PROMPT,
                f"Translate this text to {target}:\n\n{text}",
                temperature=0.3,
                max_tokens=1500,
                json_mode=True,
            ) or "{}")
            translated = parsed.get("translated_text")
            if not isinstance(translated, str) or not translated.strip():
                raise ValueError("Missing translated_text")
            return translated

        try:
            return self._with_retries(f"{target} translation", attempt)
        except Exception:
            logger.warning("%s translation failed, returning original text", target)
            return text


def generate_weekly_digest(
    engine: Engine,
    week_start: date,
    week_end: date,
    generator: DigestGenerator,
) -> dict:
    """Stats plus AI text for one week, as column values for :class:`AiDigest`."""
    logger.info("Generating digest for %s to %s", week_start, week_end)
    stats = calculate_weekly_stats(engine, week_start, week_end)
    summary = generator.generate_english_summary(stats)
    rule_based = generate_highlights(stats, get_funded_titles(engine, week_start, week_end))
    sentiment, highlights = generator.analyze_sentiment_and_highlights(summary, rule_based)
    return {
        "week_start": week_start,
        "week_end": week_end,
        "summary_en": summary,
        "summary_fr": generator.translate(summary, "fr"),
        "summary_pt": generator.translate(summary, "pt"),
        "sentiment": sentiment,
        "key_metrics": stats.key_metrics(),
        "highlights": highlights,
        "published": False,
        "discord_sent": False,
        "email_sent": False,
        "generated_by": generator.model,
    }


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
def save_digest(engine: Engine, data: dict) -> AiDigest:
    """Insert a digest, replacing any existing row for the same week."""
    with Session(engine, expire_on_commit=False) as session:
        existing = session.scalar(select(AiDigest).where(AiDigest.week_start == data["week_start"]))
        if existing is not None:
            session.delete(existing)
            session.flush()
        digest = AiDigest(**data)
        session.add(digest)
        session.commit()
        session.refresh(digest)
        session.expunge(digest)
    logger.info("Digest %s saved for week %s", digest.id[:8], digest.week_start)
    return digest


def update_digest(engine: Engine, digest_id: str, **fields: Any) -> AiDigest:
    with Session(engine, expire_on_commit=False) as session:
        digest = session.get(AiDigest, digest_id)
        if digest is None:
            raise LookupError(f"Digest {digest_id} not found")
        for key, value in fields.items():
            if key in ("id", "created_at") or not hasattr(digest, key):
                raise ValueError(f"Field {key!r} cannot be updated")
            setattr(digest, key, value)
        session.commit()
        session.refresh(digest)
        session.expunge(digest)
        return digest


def get_digest(engine: Engine, digest_id: str) -> AiDigest | None:
    with Session(engine) as session:
        return session.get(AiDigest, digest_id)


def get_digest_by_week(engine: Engine, week_start: date) -> AiDigest | None:
    with Session(engine) as session:
        return session.scalar(select(AiDigest).where(AiDigest.week_start == week_start))


def get_latest_published_digest(engine: Engine) -> AiDigest | None:
    with Session(engine) as session:
        return session.scalar(
            select(AiDigest)
            .where(AiDigest.published.is_(True))
            .order_by(AiDigest.week_start.desc())
            .limit(1)
        )


def get_digest_archive(
    engine: Engine,
    limit: int = 10,
    offset: int = 0,
    sentiment: str | None = None,
) -> tuple[list[AiDigest], int]:
    """Published digests, newest week first, plus the total count."""
    filters = [AiDigest.published.is_(True)]
    if sentiment:
        filters.append(AiDigest.sentiment == sentiment)
    with Session(engine) as session:
        total = session.scalar(select(func.count()).select_from(AiDigest).where(*filters)) or 0
        rows = session.scalars(
            select(AiDigest)
            .where(*filters)
            .order_by(AiDigest.week_start.desc())
            .offset(offset)
            .limit(max(1, min(limit, 100)))
        ).all()
        return list(rows), total


def publish_digest(
    engine: Engine,
    digest_id: str,
    *,
    actor_id: str,
    now: datetime | None = None,
) -> AiDigest:
    """Mark a digest published (audited)."""
    digest = _audited_update(
        engine,
        AiDigest,
        digest_id,
        table_name="ai_digests",
        actor_id=actor_id,
        action_type=AdminActionType.PUBLISH,
        published=True,
        published_at=now or datetime.now(timezone.utc),
    )
    if digest is None:
        raise LookupError(f"Digest {digest_id} not found")
    return digest


def digest_to_dict(digest: AiDigest) -> dict:
    return {
        "id": digest.id,
        "week_start": digest.week_start.isoformat(),
        "week_end": digest.week_end.isoformat(),
        "summary_en": digest.summary_en,
        "summary_fr": digest.summary_fr,
        "summary_pt": digest.summary_pt,
        "sentiment": digest.sentiment,
        "key_metrics": digest.key_metrics or {},
        "highlights": digest.highlights or [],
        "audio_url_en": digest.audio_url_en,
        "audio_url_fr": digest.audio_url_fr,
        "audio_url_pt": digest.audio_url_pt,
        "audio_duration_seconds": digest.audio_duration_seconds,
        "published": digest.published,
        "published_at": digest.published_at.isoformat() if digest.published_at else None,
        "discord_sent": digest.discord_sent,
        "email_sent": digest.email_sent,
        "generated_by": digest.generated_by,
        "created_at": digest.created_at.isoformat() if digest.created_at else None,
    }


# ---------------------------------------------------------------------------
# Weekly job
# ---------------------------------------------------------------------------
async def run_weekly_digest_job(
    engine: Engine,
    cfg: LabelConfig,
    *,
    week_start: date | None = None,
    week_end: date | None = None,
    force: bool = False,
    auto_distribute: bool = True,
    generator: DigestGenerator | None = None,
    audio: Callable[..., Any] | None = None,
    distribute: Callable[..., Any] | None = None,
    today: date | None = None,
) -> dict:
    """Generate, save, narrate, distribute and publish one week's digest.

    Defaults to the previous Monday..Sunday.  An existing digest for the
    week is left alone unless *force* is set, in which case it is replaced.
    *audio* and *distribute* default to the Play.ht and distribution
    services.  Audio and distribution are best effort: a failure in either
    is logged and the digest is still published.  With *auto_distribute*
    off the distribution step is skipped.
    """
    from inrecord.services import distribution_service, tts_service

    started = time.monotonic()
    if week_start is None or week_end is None:
        week_start, week_end = previous_week_range(today or datetime.now(timezone.utc).date())

    report: dict[str, Any] = {
        "week_start": week_start.isoformat(),
        "week_end": week_end.isoformat(),
    }

    if not force and get_digest_by_week(engine, week_start) is not None:
        logger.info("Digest for week %s already exists, skipping generation", week_start)
        report.update(
            status="skipped",
            message=f"Digest for week {week_start} already exists. Use force to regenerate.",
        )
        return report

    generator = generator or DigestGenerator.from_config(cfg)
    audio = audio or tts_service.generate_all_audio_versions
    distribute = distribute or distribution_service.distribute_digest

    logger.info("[1/4] Generating digest content for %s to %s", week_start, week_end)
    data = await asyncio.to_thread(generate_weekly_digest, engine, week_start, week_end, generator)

    logger.info("[2/4] Saving digest")
    digest = await asyncio.to_thread(save_digest, engine, data)

    logger.info("[3/4] Generating audio narration")
    audio_generated = False
    try:
        audio_urls = await audio(
            digest.summary_en,
            digest.summary_fr or "",
            digest.summary_pt or "",
            cfg,
            week_start=week_start.isoformat(),
        )
        digest = await asyncio.to_thread(update_digest, engine, digest.id, **audio_urls)
        audio_generated = bool(audio_urls.get("audio_url_en"))
    except Exception:
        logger.exception("Audio generation failed (continuing without audio)")

    if auto_distribute:
        logger.info("[4/4] Distributing digest")
        try:
            distribution = await distribute(engine, digest.id, cfg=cfg, channels=cfg.digest_channels)
        except Exception:
            logger.exception("Distribution failed (digest still saved)")
            distribution = {"success": False, "error": "Distribution failed"}
    else:
        logger.info("[4/4] Distribution skipped")
        distribution = {"success": True, "skipped": True}

    await asyncio.to_thread(
        update_digest, engine, digest.id,
        published=True, published_at=datetime.now(timezone.utc),
    )

    minutes = round((time.monotonic() - started) / 60, 2)
    logger.info("Digest job for week %s completed in %.2f minutes", week_start, minutes)
    report.update(
        status="success",
        message=(
            "Weekly digest generated and distributed successfully"
            if auto_distribute
            else "Weekly digest generated (distribution skipped)"
        ),
        digest_id=digest.id,
        audio_generated=audio_generated,
        distribution=distribution,
        execution_time_minutes=minutes,
        digest_url=f"{cfg.base_url}/digests/week-{week_start.isoformat()}",
    )
    return report
