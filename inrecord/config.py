"""
inrecord.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` into a frozen :class:`LabelConfig`: the label's
name and public URLs, email senders, the digest model and channels, and
where narrated audio is stored.  Secrets stay out of it: API keys and
``DATABASE_URL`` come from the environment (``.env``).  Governance
tunables (default quorum, approval threshold, voting period) live in the
``settings`` database table.

Usage::

    from inrecord.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.label_name)        # "inRECORD"
    print(cfg.base_url)          # "https://inrecord.xyz"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object: infrastructure/identity only.
# Governance tuning lives in the DB ``settings`` table.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LabelConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    label_name: str
    base_url: str  # Public site, used for links in embeds and emails

    # Email (Resend)
    booking_from_email: str = "bookings@inrecord.io"
    digest_from_email: str = "digest@inrecord.xyz"
    admin_email: str = "admin@inrecord.io"

    # Discord
    discord_username: str = "inRECORD DAO"
    digest_bot_username: str = "inRECORD Digest Bot"

    # Digests
    digest_model: str = "gpt-4"
    digest_languages: tuple[str, ...] = ("en", "fr", "pt")
    digest_channels: tuple[str, ...] = ("discord", "email")

    # Audio storage (Play.ht output is downloaded and served from here)
    audio_storage_dir: str = "data/audio"
    audio_base_url: str = "/api/audio"

    # Optional
    avatar_url: str | None = None
    extra: dict = field(default_factory=dict)

    @property
    def logo_url(self) -> str:
        return self.avatar_url or f"{self.base_url.rstrip('/')}/logo.png"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> LabelConfig:
    """Read *path* and return a :class:`LabelConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    email = raw.get("email") or {}
    discord_cfg = raw.get("discord") or {}
    digest = raw.get("digest") or {}
    audio = raw.get("audio") or {}

    return LabelConfig(
        label_name=raw["label_name"],
        base_url=raw["base_url"].rstrip("/"),
        booking_from_email=email.get("booking_from", "bookings@inrecord.io"),
        digest_from_email=email.get("digest_from", "digest@inrecord.xyz"),
        admin_email=email.get("admin", "admin@inrecord.io"),
        discord_username=discord_cfg.get("username", "inRECORD DAO"),
        digest_bot_username=discord_cfg.get("digest_username", "inRECORD Digest Bot"),
        digest_model=digest.get("model", "gpt-4"),
        digest_languages=tuple(digest.get("languages", ("en", "fr", "pt"))),
        digest_channels=tuple(digest.get("channels", ("discord", "email"))),
        audio_storage_dir=audio.get("storage_dir", "data/audio"),
        audio_base_url=audio.get("base_url", "/api/audio").rstrip("/"),
        avatar_url=discord_cfg.get("avatar_url") or None,
        extra={
            k: v for k, v in raw.items()
            if k not in {"label_name", "base_url", "email", "discord", "digest", "audio"}
        },
    )
