"""
inrecord.engine.digest_metrics — Weekly Digest Math
====================================================

Everything the weekly digest needs that doesn't touch the database or an
API: week boundaries, the stats container, rule-based highlights,
week-over-week deltas, and text shaping for TTS and email.
"""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta

from inrecord.engine.funding import format_compact_currency

PLAYHT_COST_PER_1K_CHARS = 0.016
AUDIO_BITRATE_BPS = 128_000


# ---------------------------------------------------------------------------
# Week boundaries
# ---------------------------------------------------------------------------
def previous_week_range(today: date) -> tuple[date, date]:
    """Monday..Sunday of the ISO week before the one containing *today*."""
    this_monday = today - timedelta(days=today.weekday())
    start = this_monday - timedelta(days=7)
    return start, start + timedelta(days=6)


def week_before(week_start: date) -> tuple[date, date]:
    start = week_start - timedelta(days=7)
    return start, start + timedelta(days=6)


# ---------------------------------------------------------------------------
# Stats container
# ---------------------------------------------------------------------------
@dataclass
class ProposalMetrics:
    new: int = 0
    approved: int = 0
    rejected: int = 0
    funded: int = 0
    total_funding: float = 0.0


@dataclass
class VotingMetrics:
    votes_cast: int = 0
    unique_voters: int = 0
    participation_rate: float = 0.0  # 0..1, 4 decimals


@dataclass
class TreasuryMetrics:
    deposits: float = 0.0
    withdrawals: float = 0.0
    net_change: float = 0.0


@dataclass
class MemberMetrics:
    new_members: int = 0
    total_members: int = 0
    active_members: int = 0


@dataclass
class WeeklyStats:
    week_start: date
    week_end: date
    proposals: ProposalMetrics = field(default_factory=ProposalMetrics)
    voting: VotingMetrics = field(default_factory=VotingMetrics)
    treasury: TreasuryMetrics = field(default_factory=TreasuryMetrics)
    members: MemberMetrics = field(default_factory=MemberMetrics)

    def key_metrics(self) -> dict:
        """The JSON stored in ``ai_digests.key_metrics``."""
        return {
            "proposals": asdict(self.proposals),
            "voting": asdict(self.voting),
            "treasury": asdict(self.treasury),
            "members": asdict(self.members),
        }

    def to_dict(self) -> dict:
        data = self.key_metrics()
        data["week_start"] = self.week_start.isoformat()
        data["week_end"] = self.week_end.isoformat()
        return data


def participation_rate(unique_voters: int, total_members: int) -> float:
    if not total_members:
        return 0.0
    return round(unique_voters / total_members, 4)


# ---------------------------------------------------------------------------
# Highlights
# ---------------------------------------------------------------------------
def generate_highlights(stats: WeeklyStats, funded_titles: list[str] | None = None) -> list[str]:
    """Rule-based highlights, most notable first, at most five."""
    highlights: list[str] = []

    rate = stats.voting.participation_rate
    if rate > 0.5:
        highlights.append(f"Record voter turnout at {round(rate * 100)}%")
    elif rate > 0.3:
        highlights.append(
            f"Strong community engagement with {stats.voting.unique_voters} unique voters"
        )

    funded = stats.proposals.funded
    if funded > 0:
        highlights.append(
            f"{funded} artist grant{'s' if funded > 1 else ''} approved totaling "
            f"{format_compact_currency(stats.proposals.total_funding)}"
        )

    net = stats.treasury.net_change
    if net > 0:
        highlights.append(f"Treasury grew by {format_compact_currency(net)} this week")
    elif net < 0:
        highlights.append(f"{format_compact_currency(abs(net))} deployed to fund community projects")

    if stats.members.new_members > 10:
        highlights.append(f"Welcomed {stats.members.new_members} new members to the community")

    for title in (funded_titles or [])[:2]:
        if title:
            highlights.append(f"{title} proposal funded")

    if len(highlights) < 3:
        if stats.proposals.new > 0:
            highlights.append(f"{stats.proposals.new} new proposals submitted for community review")
        if stats.voting.votes_cast > 50:
            highlights.append(f"Community cast {stats.voting.votes_cast} votes on active proposals")

    return highlights[:5]


# ---------------------------------------------------------------------------
# Week over week
# ---------------------------------------------------------------------------
@dataclass
class WeekOverWeek:
    current: WeeklyStats
    previous: WeeklyStats
    proposals: int
    votes: int
    participation: float
    treasury_change: float
    new_members: int

    def to_dict(self) -> dict:
        return {
            "current": self.current.to_dict(),
            "previous": self.previous.to_dict(),
            "changes": {
                "proposals": self.proposals,
                "votes": self.votes,
                "participation": self.participation,
                "treasury_change": self.treasury_change,
                "new_members": self.new_members,
            },
        }


def compare_weeks(current: WeeklyStats, previous: WeeklyStats) -> WeekOverWeek:
    return WeekOverWeek(
        current=current,
        previous=previous,
        proposals=current.proposals.new - previous.proposals.new,
        votes=current.voting.votes_cast - previous.voting.votes_cast,
        participation=round(
            current.voting.participation_rate - previous.voting.participation_rate, 4
        ),
        treasury_change=current.treasury.net_change - previous.treasury.net_change,
        new_members=current.members.new_members - previous.members.new_members,
    )


def format_percentage_change(value: float) -> str:
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.1f}%"


# ---------------------------------------------------------------------------
# Prompt text
# ---------------------------------------------------------------------------
def _num(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else str(value)


def format_stats_for_prompt(stats: WeeklyStats) -> str:
    """Plain-text stats block handed to the summary model."""
    p, v, t, m = stats.proposals, stats.voting, stats.treasury, stats.members
    net_sign = "+" if t.net_change >= 0 else ""
    return (
        f"Week: {stats.week_start.isoformat()} to {stats.week_end.isoformat()}\n"
        "\n"
        "PROPOSALS:\n"
        f"- New proposals submitted: {p.new}\n"
        f"- Proposals approved: {p.approved}\n"
        f"- Proposals rejected: {p.rejected}\n"
        f"- Proposals funded: {p.funded}\n"
        f"- Total funding allocated: ${_num(p.total_funding)}\n"
        "\n"
        "VOTING:\n"
        f"- Total votes cast: {v.votes_cast}\n"
        f"- Unique voters: {v.unique_voters}\n"
        f"- Participation rate: {v.participation_rate * 100:.1f}%\n"
        "\n"
        "TREASURY:\n"
        f"- Deposits: ${_num(t.deposits)}\n"
        f"- Withdrawals: ${_num(t.withdrawals)}\n"
        f"- Net change: {net_sign}${_num(t.net_change)}\n"
        "\n"
        "COMMUNITY:\n"
        f"- New members: {m.new_members}\n"
        f"- Total members: {m.total_members}\n"
        f"- Active members: {m.active_members}\n"
    )


# ---------------------------------------------------------------------------
# Text shaping
# ---------------------------------------------------------------------------
_TTS_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"^#{1,6}\s+", re.M), ""),
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),
    (re.compile(r"\*([^*]+)\*"), r"\1"),
    (re.compile(r"__([^_]+)__"), r"\1"),
    (re.compile(r"_([^_]+)_"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    (re.compile(r"```[^`]*```"), ""),
    (re.compile(r"`([^`]+)`"), r"\1"),
    (re.compile(r"^[*\-+]\s+", re.M), ""),
    (re.compile(r"^\d+\.\s+", re.M), ""),
    (re.compile(r"\n{3,}"), "\n\n"),
]


def clean_text_for_tts(text: str) -> str:
    """Strip markdown so the narrator doesn't read out asterisks."""
    for pattern, repl in _TTS_RULES:
        text = pattern.sub(repl, text)
    return text.strip()


_HTML_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"^### (.*)$", re.M), r"<h3>\1</h3>"),
    (re.compile(r"^## (.*)$", re.M), r"<h2>\1</h2>"),
    (re.compile(r"^# (.*)$", re.M), r"<h1>\1</h1>"),
    (re.compile(r"\*\*([^*]+)\*\*"), r"<strong>\1</strong>"),
    (re.compile(r"\*([^*]+)\*"), r"<em>\1</em>"),
    (re.compile(r"\[([^\]]+)\]\(([^)]+)\)"), r'<a href="\2">\1</a>'),
]


def markdown_to_html(text: str) -> str:
    """Just enough markdown for the newsletter body."""
    for pattern, repl in _HTML_RULES:
        text = pattern.sub(repl, text)
    return "<p>" + text.replace("\n\n", "</p><p>") + "</p>"


def estimate_audio_duration(text: str, wpm: int = 150) -> int:
    """Seconds of narration for *text* at *wpm* words per minute."""
    words = len(text.split())
    return math.ceil(words / wpm * 60)


def estimate_duration_from_bytes(size_bytes: int, default: int = 180) -> int:
    """Seconds of audio for an MP3 of *size_bytes* at 128 kbps."""
    if size_bytes <= 0:
        return default
    return round(size_bytes * 8 / AUDIO_BITRATE_BPS)


def format_duration(seconds: int) -> str:
    """``225`` → ``"3:45"``."""
    return f"{seconds // 60}:{seconds % 60:02d}"


def estimate_playht_cost(chars: int) -> float:
    return chars / 1000 * PLAYHT_COST_PER_1K_CHARS
