"""
inRECORD — Label Platform Backend
====================================
Powers the inRECORD label: DAO governance (proposals, tier-weighted voting,
treasury transparency), studio session booking, and AI-written weekly
digests narrated in three languages.

Package layout::

    inrecord/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Tiers, proposal types, colours, rooms
    ├── errors.py          # Domain exceptions mapped to HTTP statuses
    ├── rendering.py       # Jinja2 templates for emails + RSS
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default settings + room pricing seeder
    ├── engine/
    │   ├── voting.py      # Tier weights, tallies, result determination
    │   ├── funding.py     # Funding %, currency + countdown formatting
    │   ├── availability.py # Studio slot generation + cost
    │   ├── treasury.py    # Ledger validation, balances, running totals
    │   └── digest_metrics.py # Weekly stats, highlights, text shaping
    ├── services/
    │   ├── dao_service.py        # Members, proposals, votes, comments
    │   ├── treasury_service.py   # Ledger persistence + proposal funding
    │   ├── booking_service.py    # Studio sessions + room pricing
    │   ├── csv_export.py         # CSV rendering for exports
    │   ├── discord_notifications.py # Webhook embeds
    │   ├── email_service.py      # Resend emails
    │   ├── digest_service.py     # OpenAI digest generation + weekly job
    │   ├── tts_service.py        # Play.ht narration
    │   ├── distribution_service.py # Digest fan-out + tracking
    │   ├── admin_service.py      # Audit-logged admin mutations
    │   └── log_buffer.py         # In-memory log tail for the admin UI
    └── api/
        ├── main.py        # FastAPI app
        ├── auth.py        # Admin API key → JWT
        └── routes/        # Public, admin, export and cron endpoints
"""

__version__ = "1.0.0"
