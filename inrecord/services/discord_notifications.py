"""
inrecord.services.discord_notifications — Discord Webhook Notifications
========================================================================

Embed construction uses ``discord.Embed`` (so field limits and colour
handling match what Discord expects) and is serialized with
``Embed.to_dict()``.  Delivery is a plain webhook POST via ``httpx``; no
bot connection is needed.

Every ``notify_*`` coroutine returns a :class:`NotificationResult`.
Delivery problems are logged and reported in the result, never raised.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import UTC, date, datetime

import discord
import httpx

from inrecord.config import LabelConfig
from inrecord.constants import (
    COLOR_ERROR,
    COLOR_INFO,
    COLOR_SUCCESS,
    COLOR_WARNING,
    SENTIMENT_COLORS,
)
from inrecord.engine.funding import format_funding, format_proposal_type, get_time_remaining
from inrecord.engine.voting import calculate_approval_percentage
from inrecord.rendering import absolute_url

logger = logging.getLogger(__name__)


@dataclass
class NotificationResult:
    success: bool
    error: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _type_value(proposal_type: str) -> str:
    label, icon = format_proposal_type(proposal_type)
    return f"{icon} {label}"


def _total_votes(proposal) -> int:
    return (proposal.votes_for or 0) + (proposal.votes_against or 0) + (proposal.votes_abstain or 0)


def _share(part: int, total: int) -> str:
    return f"{round(part / total * 100) if total else 0}%"


def _short_date(d: date, with_year: bool = True) -> str:
    text = f"{d:%b} {d.day}"
    return f"{text}, {d.year}" if with_year else text


def _signed_money(amount: float) -> str:
    return f"${'+' if amount >= 0 else ''}{amount:,.2f}"


def _proposal_embed(proposal, *, title: str, color: int, base_url: str) -> discord.Embed:
    return discord.Embed(
        title=title,
        description=proposal.description or "No description provided",
        color=color,
        url=f"{base_url}/dao/proposals/{proposal.id}",
        timestamp=datetime.now(UTC),
    )


def _add_tally_fields(embed: discord.Embed, proposal) -> int:
    total = _total_votes(proposal)
    embed.add_field(name="Votes For", value=str(proposal.votes_for or 0), inline=True)
    embed.add_field(name="Votes Against", value=str(proposal.votes_against or 0), inline=True)
    embed.add_field(name="Total Votes", value=str(total), inline=True)
    return total


# ---------------------------------------------------------------------------
# Embed builders
# ---------------------------------------------------------------------------
def build_proposal_created_embed(proposal, base_url: str) -> discord.Embed:
    embed = _proposal_embed(
        proposal,
        title=f"\U0001f195 New Proposal: {proposal.title}",
        color=COLOR_INFO,
        base_url=base_url,
    )
    embed.add_field(name="Type", value=_type_value(proposal.proposal_type), inline=True)
    embed.add_field(name="Proposed By", value=proposal.created_by or "Anonymous", inline=True)
    embed.add_field(
        name="Time Remaining",
        value=get_time_remaining(proposal.voting_ends_at) if proposal.voting_ends_at else "No deadline",
        inline=True,
    )
    if proposal.funding_goal:
        embed.add_field(
            name="Funding Goal",
            value=format_funding(proposal.funding_goal, proposal.funding_currency or "USD"),
            inline=True,
        )
    return embed


def build_proposal_passed_embed(proposal, base_url: str) -> discord.Embed:
    embed = _proposal_embed(
        proposal,
        title=f"\u2705 Proposal Passed: {proposal.title}",
        color=COLOR_SUCCESS,
        base_url=base_url,
    )
    embed.add_field(name="Type", value=_type_value(proposal.proposal_type), inline=True)
    total = _add_tally_fields(embed, proposal)
    embed.add_field(name="Approval Rate", value=_share(proposal.votes_for or 0, total), inline=True)
    embed.add_field(name="Unique Voters", value=str(proposal.unique_voters or 0), inline=True)
    return embed


def build_proposal_rejected_embed(proposal, base_url: str) -> discord.Embed:
    embed = _proposal_embed(
        proposal,
        title=f"\u274c Proposal Rejected: {proposal.title}",
        color=COLOR_ERROR,
        base_url=base_url,
    )
    embed.add_field(name="Type", value=_type_value(proposal.proposal_type), inline=True)
    total = _add_tally_fields(embed, proposal)
    embed.add_field(name="Rejection Rate", value=_share(proposal.votes_against or 0, total), inline=True)
    embed.add_field(name="Unique Voters", value=str(proposal.unique_voters or 0), inline=True)
    return embed


def build_proposal_expiring_embed(proposal, base_url: str) -> discord.Embed:
    embed = _proposal_embed(
        proposal,
        title=f"\u23f0 Voting Ends Soon: {proposal.title}",
        color=COLOR_WARNING,
        base_url=base_url,
    )
    embed.add_field(name="Type", value=_type_value(proposal.proposal_type), inline=True)
    embed.add_field(name="Time Remaining", value=get_time_remaining(proposal.voting_ends_at), inline=True)
    embed.add_field(name="Proposed By", value=proposal.created_by or "Anonymous", inline=True)
    return embed


def build_vote_milestone_embed(proposal, milestone: int, base_url: str) -> discord.Embed:
    embed = discord.Embed(
        title=f"\U0001f3af Milestone Reached: {milestone} Votes!",
        description=f"**{proposal.title}** has reached {milestone} total votes!",
        color=COLOR_INFO,
        url=f"{base_url}/dao/proposals/{proposal.id}",
        timestamp=datetime.now(UTC),
    )
    total = _total_votes(proposal)
    embed.add_field(name="Proposal", value=proposal.title, inline=False)
    embed.add_field(name="Type", value=_type_value(proposal.proposal_type), inline=True)
    embed.add_field(name="Total Votes", value=str(total), inline=True)
    embed.add_field(
        name="Approval Rate",
        value=f"{calculate_approval_percentage(proposal.votes_for or 0, proposal.votes_against or 0)}%",
        inline=True,
    )
    embed.add_field(name="Votes For", value=str(proposal.votes_for or 0), inline=True)
    embed.add_field(name="Votes Against", value=str(proposal.votes_against or 0), inline=True)
    embed.add_field(name="Unique Voters", value=str(proposal.unique_voters or 0), inline=True)
    return embed


def build_funding_goal_embed(proposal, base_url: str) -> discord.Embed:
    currency = proposal.funding_currency or "USD"
    embed = _proposal_embed(
        proposal,
        title=f"\U0001f4b0 Funding Goal Reached: {proposal.title}",
        color=COLOR_SUCCESS,
        base_url=base_url,
    )
    embed.add_field(name="Funding Goal", value=format_funding(proposal.funding_goal, currency), inline=True)
    embed.add_field(name="Current Funding", value=format_funding(proposal.current_funding or 0, currency), inline=True)
    embed.add_field(name="Proposed By", value=proposal.created_by or "Anonymous", inline=True)
    return embed


def build_weekly_summary_embed(summary: dict) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f4ca Weekly DAO Summary",
        description="Here's what happened in the inRECORD DAO this week:",
        color=COLOR_INFO,
        timestamp=datetime.now(UTC),
    )
    embed.add_field(name="New Proposals", value=str(summary.get("new_proposals", 0)), inline=True)
    embed.add_field(name="Total Votes Cast", value=str(summary.get("total_votes", 0)), inline=True)
    embed.add_field(name="Active Voters", value=str(summary.get("unique_voters", 0)), inline=True)
    embed.add_field(name="Proposals Passed", value=str(summary.get("proposals_passed", 0)), inline=True)
    embed.add_field(name="Proposals Rejected", value=str(summary.get("proposals_rejected", 0)), inline=True)

    top = summary.get("top_proposals") or []
    if top:
        embed.add_field(
            name="Top Proposals",
            value="\n".join(f"{i}. {title}" for i, title in enumerate(top[:3], start=1)),
            inline=False,
        )
    return embed


def build_digest_embed(digest, base_url: str) -> discord.Embed:
    """Weekly AI digest card: summary teaser plus the headline metrics."""
    metrics = digest.key_metrics or {}
    proposals = metrics.get("proposals", {})
    voting = metrics.get("voting", {})
    treasury = metrics.get("treasury", {})
    members = metrics.get("members", {})
    sentiment = digest.sentiment or "stable"

    embed = discord.Embed(
        title=(
            f"\U0001f4ca Weekly DAO Digest - Week of "
            f"{_short_date(digest.week_start)} - {_short_date(digest.week_end, with_year=False)}"
        ),
        description=digest.summary_en[:200] + "...",
        color=SENTIMENT_COLORS.get(sentiment, SENTIMENT_COLORS["stable"]),
        url=digest_page_url(digest, base_url),
        timestamp=datetime.now(UTC),
    )
    embed.add_field(name="\U0001f4b0 Treasury", value=_signed_money(treasury.get("net_change", 0)), inline=True)
    embed.add_field(
        name="\U0001f4cb Proposals",
        value=f"{proposals.get('new', 0)} new, {proposals.get('funded', 0)} funded",
        inline=True,
    )
    embed.add_field(name="\U0001f5f3\ufe0f Votes Cast", value=str(voting.get("votes_cast", 0)), inline=True)
    embed.add_field(name="\U0001f60a Sentiment", value=sentiment.capitalize(), inline=True)
    embed.add_field(
        name="\U0001f465 Participation",
        value=f"{voting.get('participation_rate', 0) * 100:.1f}%",
        inline=True,
    )
    embed.add_field(name="\U0001f195 New Members", value=str(members.get("new_members", 0)), inline=True)
    embed.set_footer(text="Read full digest and listen to audio narration \u2192")
    return embed


def digest_page_url(digest, base_url: str) -> str:
    return f"{base_url}/digests/week-{digest.week_start.isoformat()}"


def build_digest_components(digest, base_url: str) -> list[dict]:
    """Link buttons for the digest post; empty when there is no audio yet."""
    if not digest.audio_url_en:
        return []
    return [{
        "type": 1,
        "components": [
            {
                "type": 2,
                "style": 5,
                "label": "\U0001f3a7 Listen to Audio",
                "url": absolute_url(digest.audio_url_en, base_url),
            },
            {"type": 2, "style": 5, "label": "\U0001f4d6 Read Full Digest", "url": digest_page_url(digest, base_url)},
        ],
    }]


# ---------------------------------------------------------------------------
# Notifier
# ---------------------------------------------------------------------------
class DiscordNotifier:
    """Posts embeds to one Discord webhook under a fixed bot identity."""

    def __init__(
        self,
        webhook_url: str | None,
        *,
        base_url: str,
        username: str = "inRECORD DAO",
        avatar_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.avatar_url = avatar_url or f"{self.base_url}/logo.png"
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        cfg: LabelConfig,
        *,
        digest: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> DiscordNotifier:
        """Build the governance notifier, or the digest notifier when *digest* is set."""
        if digest:
            url = os.getenv("DISCORD_DIGEST_WEBHOOK_URL") or os.getenv("DISCORD_WEBHOOK_URL")
            username = cfg.digest_bot_username
        else:
            url = os.getenv("DISCORD_WEBHOOK_URL")
            username = cfg.discord_username
        return cls(
            url,
            base_url=cfg.base_url,
            username=username,
            avatar_url=cfg.logo_url,
            transport=transport,
        )

    async def send(
        self,
        *,
        content: str | None = None,
        embeds: list[discord.Embed] | None = None,
        components: list[dict] | None = None,
    ) -> NotificationResult:
        if not self.webhook_url:
            logger.warning("Discord webhook URL not configured; skipping notification")
            return NotificationResult(False, "Webhook URL not configured")

        payload: dict = {"username": self.username, "avatar_url": self.avatar_url}
        if content:
            payload["content"] = content
        if embeds:
            payload["embeds"] = [e.to_dict() for e in embeds]
        if components:
            payload["components"] = components

        transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
        try:
            async with httpx.AsyncClient(timeout=10, transport=transport) as client:
                resp = await client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Discord webhook request failed: %s", exc)
            return NotificationResult(False, str(exc))

        if resp.status_code >= 300:
            logger.error("Discord webhook error %d: %s", resp.status_code, resp.text)
            return NotificationResult(False, f"Discord webhook failed: {resp.status_code} - {resp.text}")
        return NotificationResult(True)

    # -- Governance ---------------------------------------------------------
    async def notify_proposal_created(self, proposal) -> NotificationResult:
        return await self.send(
            content="@here A new proposal has been submitted to the DAO!",
            embeds=[build_proposal_created_embed(proposal, self.base_url)],
        )

    async def notify_proposal_passed(self, proposal) -> NotificationResult:
        return await self.send(
            content="\U0001f389 @everyone A proposal has passed! The community has spoken.",
            embeds=[build_proposal_passed_embed(proposal, self.base_url)],
        )

    async def notify_proposal_rejected(self, proposal) -> NotificationResult:
        return await self.send(
            content="A proposal has been rejected by the community.",
            embeds=[build_proposal_rejected_embed(proposal, self.base_url)],
        )

    async def notify_proposal_expiring(self, proposal) -> NotificationResult:
        return await self.send(
            content="@here \u23f0 Last call for votes! This proposal expires in less than 24 hours.",
            embeds=[build_proposal_expiring_embed(proposal, self.base_url)],
        )

    async def notify_vote_milestone(self, proposal, milestone: int) -> NotificationResult:
        return await self.send(
            content=f"\U0001f3af **{milestone} votes reached!** The community is engaged!",
            embeds=[build_vote_milestone_embed(proposal, milestone, self.base_url)],
        )

    async def notify_funding_goal_reached(self, proposal) -> NotificationResult:
        if not proposal.funding_goal:
            return NotificationResult(False, "Proposal has no funding goal")
        return await self.send(
            content="\U0001f389 @everyone Funding goal reached! This proposal is now fully funded.",
            embeds=[build_funding_goal_embed(proposal, self.base_url)],
        )

    async def notify_weekly_summary(self, summary: dict) -> NotificationResult:
        return await self.send(
            content="\U0001f4ca Your weekly DAO activity summary is here!",
            embeds=[build_weekly_summary_embed(summary)],
        )

    async def notify_result(self, proposal) -> NotificationResult:
        """Dispatch on the proposal's final status after voting closes."""
        if proposal.status == "approved":
            return await self.notify_proposal_passed(proposal)
        return await self.notify_proposal_rejected(proposal)

    # -- Digest -------------------------------------------------------------
    async def send_digest(self, digest) -> NotificationResult:
        return await self.send(
            embeds=[build_digest_embed(digest, self.base_url)],
            components=build_digest_components(digest, self.base_url),
        )

    async def test_webhook(self) -> NotificationResult:
        return await self.send(
            content="\u2705 Discord webhook test successful! inRECORD DAO notifications are working.",
        )
