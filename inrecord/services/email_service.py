"""
inrecord.services.email_service — Transactional Email via Resend
=================================================================

Booking emails (user confirmation, admin alert, status change) and the
weekly digest newsletter.  Bodies are rendered from the Jinja2 templates
in ``inrecord/templates/email`` and sent through the Resend REST API with
``httpx``.

The ``send_*`` coroutines raise :class:`~inrecord.errors.EmailError` when
Resend rejects the request.  Routes schedule the ``notify_*`` wrappers as
background tasks; those log the failure and return ``False`` instead.
"""

from __future__ import annotations

import html
import logging
import os
from datetime import date

import httpx

from inrecord.config import LabelConfig
from inrecord.engine.digest_metrics import markdown_to_html
from inrecord.errors import EmailError
from inrecord.rendering import absolute_url
from inrecord.rendering import render as render_template

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

# Statuses that trigger a customer email, with their headline and accent colour.
STATUS_EMAILS: dict[str, dict[str, str]] = {
    "confirmed": {
        "subject": "Booking Confirmed",
        "message": "Great news! Your studio booking has been confirmed.",
        "color": "#10b981",
    },
    "cancelled": {
        "subject": "Booking Cancelled",
        "message": "Your studio booking has been cancelled.",
        "color": "#ef4444",
    },
    "completed": {
        "subject": "Session Completed",
        "message": "Thank you for your session! We hope it was productive.",
        "color": "#8b5cf6",
    },
}


# ---------------------------------------------------------------------------
# Resend client
# ---------------------------------------------------------------------------
class ResendClient:
    """Thin wrapper over ``POST /emails``."""

    def __init__(
        self,
        api_key: str | None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self._transport = transport

    @classmethod
    def from_env(cls, transport: httpx.AsyncBaseTransport | None = None) -> ResendClient:
        return cls(os.getenv("RESEND_API_KEY"), transport=transport)

    async def send(
        self,
        *,
        sender: str,
        to: list[str],
        subject: str,
        html_body: str,
        text_body: str | None = None,
        tags: list[dict[str, str]] | None = None,
    ) -> str | None:
        """Send one message and return Resend's id for it."""
        if not self.api_key:
            raise EmailError("RESEND_API_KEY is not configured")

        payload: dict = {"from": sender, "to": to, "subject": subject, "html": html_body}
        if text_body:
            payload["text"] = text_body
        if tags:
            payload["tags"] = tags

        transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
        try:
            async with httpx.AsyncClient(timeout=10, transport=transport) as client:
                resp = await client.post(
                    RESEND_API_URL,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as exc:
            raise EmailError(f"Resend request failed: {exc}") from exc

        if resp.status_code >= 300:
            raise EmailError(f"Resend error {resp.status_code}: {resp.text}")
        return resp.json().get("id")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
def _long_date(value) -> str:
    if isinstance(value, str):
        value = date.fromisoformat(value)
    return f"{value:%B} {value.day}, {value.year}"


def _short_date(value: date) -> str:
    return f"{value:%b} {value.day}, {value.year}"


def _booking_context(booking, cfg: LabelConfig) -> dict:
    return {
        "booking": booking,
        "long_date": _long_date(booking.session_date),
        "label_name": cfg.label_name,
        "admin_email": cfg.admin_email,
        "base_url": cfg.base_url,
    }


def render(template: str, **context) -> str:
    return render_template(f"email/{template}", **context)


def render_digest_newsletter(digest, cfg: LabelConfig) -> str:
    metrics = digest.key_metrics or {}
    net = (metrics.get("treasury") or {}).get("net_change", 0)
    return render(
        "digest_newsletter.html",
        label_name=cfg.label_name,
        base_url=cfg.base_url,
        week_start=_short_date(digest.week_start),
        week_end=_short_date(digest.week_end),
        sentiment=digest.sentiment or "stable",
        metrics={
            "proposals": {"new": 0, **(metrics.get("proposals") or {})},
            "voting": {"votes_cast": 0, "participation_rate": 0, **(metrics.get("voting") or {})},
        },
        treasury_change=f"{'+' if net >= 0 else '-'}${abs(net):,.2f}",
        summary_html=markdown_to_html(html.escape(digest.summary_en, quote=False)),
        digest_url=f"{cfg.base_url}/digests/week-{digest.week_start.isoformat()}",
        audio_url=absolute_url(digest.audio_url_en, cfg.base_url),
    )


# ---------------------------------------------------------------------------
# Booking emails
# ---------------------------------------------------------------------------
async def send_booking_confirmation(
    booking, cfg: LabelConfig, client: ResendClient | None = None
) -> str | None:
    client = client or ResendClient.from_env()
    ctx = _booking_context(booking, cfg)
    return await client.send(
        sender=f"{cfg.label_name} Studio <{cfg.booking_from_email}>",
        to=[booking.user_email],
        subject=f"Studio Booking Confirmation - {cfg.label_name}",
        html_body=render("booking_confirmation.html", **ctx),
        text_body=render("booking_confirmation.txt", **ctx),
    )


async def send_admin_notification(
    booking, cfg: LabelConfig, client: ResendClient | None = None
) -> str | None:
    client = client or ResendClient.from_env()
    ctx = _booking_context(booking, cfg)
    return await client.send(
        sender=f"{cfg.label_name} Bookings <{cfg.booking_from_email}>",
        to=[cfg.admin_email],
        subject=f"New Studio Booking: {booking.room_type} - {booking.session_date}",
        html_body=render("booking_admin.html", **ctx),
        text_body=render("booking_admin.txt", **ctx),
    )


async def send_status_update_email(
    booking, cfg: LabelConfig, client: ResendClient | None = None
) -> str | None:
    """Email the customer about a status change.  Returns None (nothing sent) for pending."""
    status = STATUS_EMAILS.get(booking.status)
    if status is None:
        return None
    client = client or ResendClient.from_env()
    ctx = _booking_context(booking, cfg)
    ctx["status"] = status
    ctx["details"] = render("_booking_details.txt", **ctx)
    return await client.send(
        sender=f"{cfg.label_name} Studio <{cfg.booking_from_email}>",
        to=[booking.user_email],
        subject=f"{status['subject']} - {cfg.label_name}",
        html_body=render("booking_status.html", **ctx),
        text_body=render("booking_status.txt", **ctx),
    )


async def notify_booking_created(booking, cfg: LabelConfig, client: ResendClient | None = None) -> bool:
    """Background task: customer confirmation plus admin alert."""
    ok = True
    for send in (send_booking_confirmation, send_admin_notification):
        try:
            await send(booking, cfg, client)
        except EmailError:
            logger.exception("Booking email %s failed for %s", send.__name__, booking.id)
            ok = False
    return ok


async def notify_booking_status(booking, cfg: LabelConfig, client: ResendClient | None = None) -> bool:
    try:
        await send_status_update_email(booking, cfg, client)
    except EmailError:
        logger.exception("Status email failed for booking %s", booking.id)
        return False
    return True


# ---------------------------------------------------------------------------
# Digest newsletter
# ---------------------------------------------------------------------------
async def send_digest_newsletter(
    digest,
    recipients: list[str],
    cfg: LabelConfig,
    client: ResendClient | None = None,
) -> int:
    """Send the newsletter to *recipients* and return how many were addressed."""
    if not recipients:
        logger.info("No active subscribers; digest %s newsletter skipped", digest.id)
        return 0

    client = client or ResendClient.from_env()
    await client.send(
        sender=cfg.digest_from_email,
        to=recipients,
        subject=f"\U0001f4ca Weekly DAO Digest - Week of {_short_date(digest.week_start)}",
        html_body=render_digest_newsletter(digest, cfg),
        tags=[
            {"name": "digest", "value": str(digest.id)},
            {"name": "week", "value": digest.week_start.isoformat()},
        ],
    )
    logger.info("Digest %s newsletter sent to %d subscribers", digest.id, len(recipients))
    return len(recipients)
