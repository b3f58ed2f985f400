"""
inrecord.constants — Shared Constants & Lookup Tables
======================================================

Single source of truth for membership tiers, proposal taxonomy, studio
rooms and notification colours.  Import from here instead of duplicating
in services, routes, and email/embed builders.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Membership tiers: THE vote-weight table
# ---------------------------------------------------------------------------
TIER_WEIGHTS: dict[str, int] = {
    "Bronze": 1,
    "Silver": 2,
    "Gold": 3,
    "Platinum": 5,
}

TIER_DISPLAY_NAMES: dict[str, str] = {
    "Bronze": "Listener",
    "Silver": "Supporter",
    "Gold": "Curator",
    "Platinum": "Producer",
}

# Minimum token balance for each tier, highest first.
TIER_TOKEN_THRESHOLDS: list[tuple[str, int]] = [
    ("Platinum", 5000),
    ("Gold", 1000),
    ("Silver", 500),
    ("Bronze", 100),
]


# ---------------------------------------------------------------------------
# Proposal taxonomy
# ---------------------------------------------------------------------------
PROPOSAL_TYPE_ICONS: dict[str, str] = {
    "Studio Funding": "\U0001f3a4",       # 🎤
    "Equipment Purchase": "\U0001f39b",   # 🎛
    "Artist Grant": "\U0001f4b0",         # 💰
    "Community Event": "\U0001f389",      # 🎉
    "Platform Feature": "\U0001f527",     # 🔧
    "Treasury Allocation": "\U0001f3e6",  # 🏦
    "Governance Change": "\u2696\ufe0f",  # ⚖️
    "Other": "\U0001f4cb",                # 📋
}

FUNDING_CURRENCIES: tuple[str, ...] = ("USD", "SOL", "USDC")

# Proposal field limits, mirrored by the API request models.
TITLE_MIN_LENGTH = 10
TITLE_MAX_LENGTH = 200
DESCRIPTION_MIN_LENGTH = 50
DESCRIPTION_MAX_LENGTH = 10_000
MAX_FUNDING_GOAL = 1_000_000
MAX_TAGS = 10
TAG_MIN_LENGTH = 2
TAG_MAX_LENGTH = 50
MAX_ATTACHMENTS = 5

SORT_OPTIONS: tuple[str, ...] = ("newest", "oldest", "most_funded", "ending_soon", "most_votes")

VOTE_MILESTONES: tuple[int, ...] = (10, 25, 50, 100, 250, 500, 1000)


# ---------------------------------------------------------------------------
# Discord embed colours
# ---------------------------------------------------------------------------
COLOR_SUCCESS = 0x00FF00
COLOR_INFO = 0x00D4FF
COLOR_WARNING = 0xFFAA00
COLOR_ERROR = 0xFF0000

SENTIMENT_COLORS: dict[str, int] = {
    "optimistic": 0x00FF00,
    "stable": 0x0099FF,
    "critical": 0xFF0000,
    "mixed": 0xFFAA00,
}


# ---------------------------------------------------------------------------
# Studio
# ---------------------------------------------------------------------------
STUDIO_OPEN_HOUR = 9
STUDIO_CLOSE_HOUR = 21  # last bookable slot starts at 21:00
MAX_SESSION_HOURS = 12
ACADEMY_DISCOUNT = 0.30

# Default rates seeded into ``room_pricing`` on first startup.
DEFAULT_ROOM_PRICING: dict[str, tuple[float, str, list[str]]] = {
    "recording": (150.0, "Live room + vocal booth with engineer", [
        "Neve console", "Vocal booth", "Engineer included",
    ]),
    "mixing": (100.0, "Treated control room for mixdowns", [
        "Nearfield + midfield monitors", "Outboard compression",
    ]),
    "mastering": (125.0, "Mastering suite with calibrated monitoring", [
        "Calibrated monitoring", "Analog mastering chain",
    ]),
    "podcast": (75.0, "Four-mic podcast room", [
        "4 broadcast mics", "Video capture",
    ]),
    "rehearsal": (60.0, "Backline-equipped rehearsal room", [
        "Drum kit", "Guitar and bass amps", "PA system",
    ]),
}


# ---------------------------------------------------------------------------
# Digests
# ---------------------------------------------------------------------------
SENTIMENTS: tuple[str, ...] = ("optimistic", "stable", "critical", "mixed")

LANGUAGE_NAMES: dict[str, str] = {
    "fr": "French (France)",
    "pt": "Portuguese (Brazilian)",
}
