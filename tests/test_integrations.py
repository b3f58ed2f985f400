"""
tests/test_integrations.py — Play.ht, Resend & Discord Webhook Clients
=======================================================================

Every client takes an ``httpx`` transport, so these tests drive them with
``httpx.MockTransport`` and never touch the network.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
import pytest
from conftest import SUMMARY_EN, run_async

from inrecord.constants import COLOR_ERROR, COLOR_SUCCESS, SENTIMENT_COLORS
from inrecord.errors import EmailError, TTSError
from inrecord.services import email_service, tts_service
from inrecord.services.discord_notifications import (
    DiscordNotifier,
    build_digest_components,
    build_digest_embed,
    build_proposal_created_embed,
    build_proposal_rejected_embed,
    build_vote_milestone_embed,
    build_weekly_summary_embed,
)


class Recorder:
    """MockTransport handler that records requests and answers from a script."""

    def __init__(self, responder):
        self.requests: list[httpx.Request] = []
        self._responder = responder

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def json(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


# ===========================================================================
# Play.ht
# ===========================================================================
def _playht(statuses: list[dict], audio: bytes = b"\xff" * 16_000) -> Recorder:
    polls = iter(statuses)

    def respond(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"id": "job-1"})
        if request.url.path.endswith("/tts/job-1"):
            return httpx.Response(200, json=next(polls))
        return httpx.Response(200, content=audio)

    return Recorder(respond)


def _client(recorder: Recorder, **kw) -> tts_service.PlayHTClient:
    return tts_service.PlayHTClient(
        "key", "user", transport=recorder.transport, poll_interval=0, **kw
    )


class TestPlayHT:
    def test_generate_audio_stores_file(self, label_config):
        recorder = _playht([
            {"status": "pending"},
            {"status": "completed", "output": {"url": "https://cdn.play.ht/job-1.mp3"}},
        ])
        result = run_async(tts_service.generate_audio(
            "# Hello\n\n**World**", "en", label_config, week_start="2025-01-06",
            client=_client(recorder),
        ))

        assert result.url == "/api/audio/digests/2025-01-06-en.mp3"
        assert result.file_size_bytes == 16_000
        assert result.duration_seconds == 1
        stored = tts_service.audio_dir(label_config) / "2025-01-06-en.mp3"
        assert stored.read_bytes() == b"\xff" * 16_000

        create = recorder.json(0)
        assert create["text"] == "Hello\n\nWorld"
        assert create["voice"] == tts_service.VOICES["en"].voice_id
        assert recorder.requests[0].headers["X-USER-ID"] == "user"

    def test_failed_job(self, label_config):
        recorder = _playht([{"status": "failed", "error": "bad voice"}])
        with pytest.raises(TTSError, match="bad voice"):
            run_async(tts_service.generate_audio("hi", "fr", label_config, client=_client(recorder)))

    def test_times_out(self, label_config):
        recorder = _playht([{"status": "pending"}] * 3)
        with pytest.raises(TTSError, match="timed out"):
            run_async(tts_service.generate_audio(
                "hi", "pt", label_config, client=_client(recorder, max_attempts=3)
            ))

    def test_create_rejected(self, label_config):
        recorder = Recorder(lambda request: httpx.Response(401, text="no"))
        with pytest.raises(TTSError, match="401"):
            run_async(tts_service.generate_audio("hi", "en", label_config, client=_client(recorder)))

    def test_missing_credentials(self, label_config):
        client = tts_service.PlayHTClient(None, None)
        with pytest.raises(TTSError, match="PLAYHT_API_KEY"):
            run_async(tts_service.generate_audio("hi", "en", label_config, client=client))

    def test_unsupported_language(self, label_config):
        with pytest.raises(ValueError):
            run_async(tts_service.generate_audio("hi", "de", label_config, client=tts_service.PlayHTClient("k", "u")))

    def test_all_versions_use_english_duration(self, label_config):
        recorder = _playht([{"status": "completed", "output": {"url": "https://cdn/x.mp3"}}] * 3)
        urls = run_async(tts_service.generate_all_audio_versions(
            "en text", "fr text", "pt text", label_config, week_start="2025-01-06",
            client=_client(recorder),
        ))
        assert urls["audio_url_fr"].endswith("2025-01-06-fr.mp3")
        assert urls["audio_duration_seconds"] == 1

    def test_delete_audio(self, label_config):
        url = run_async(tts_service.store_audio(b"abc", "en", label_config, "2025-02-03"))
        assert tts_service.delete_audio(url, label_config) is True
        assert tts_service.delete_audio(url, label_config) is False

    def test_retry_with_backoff(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise TTSError("boom")
            return "ok"

        assert run_async(tts_service.retry_with_backoff(flaky, max_retries=3, initial_delay=0)) == "ok"
        assert len(calls) == 3


# ===========================================================================
# Resend
# ===========================================================================
def _booking(**kw):
    data = dict(
        id="3f1c2a9e-0000-4000-8000-000000000001",
        user_email="artist@example.com",
        user_name="Ari",
        user_phone=None,
        user_wallet=None,
        room_type="recording",
        session_date=date(2025, 3, 14),
        session_time="14:00:00",
        duration_hours=3,
        total_cost=450.0,
        notes="Bring the Juno",
        status="pending",
    )
    data.update(kw)
    return SimpleNamespace(**data)


def _resend(status: int = 200) -> Recorder:
    return Recorder(lambda request: httpx.Response(status, json={"id": "email-1"}))


class TestResend:
    def test_booking_confirmation(self, label_config):
        recorder = _resend()
        client = email_service.ResendClient("re_key", transport=recorder.transport)
        email_id = run_async(email_service.send_booking_confirmation(_booking(), label_config, client))

        assert email_id == "email-1"
        payload = recorder.json()
        assert payload["to"] == ["artist@example.com"]
        assert payload["from"] == "inRECORD Studio <bookings@inrecord.io>"
        assert payload["subject"] == "Studio Booking Confirmation - inRECORD"
        assert "March 14, 2025" in payload["html"]
        assert "Bring the Juno" in payload["text"]
        assert recorder.requests[0].headers["Authorization"] == "Bearer re_key"

    def test_admin_alert_goes_to_admin(self, label_config):
        recorder = _resend()
        client = email_service.ResendClient("re_key", transport=recorder.transport)
        run_async(email_service.send_admin_notification(_booking(), label_config, client))
        payload = recorder.json()
        assert payload["to"] == [label_config.admin_email]
        assert payload["subject"] == "New Studio Booking: recording - 2025-03-14"

    def test_status_email_only_for_final_states(self, label_config):
        recorder = _resend()
        client = email_service.ResendClient("re_key", transport=recorder.transport)
        assert run_async(email_service.send_status_update_email(_booking(), label_config, client)) is None
        assert recorder.requests == []

        run_async(email_service.send_status_update_email(_booking(status="confirmed"), label_config, client))
        assert recorder.json()["subject"] == "Booking Confirmed - inRECORD"

    def test_html_is_escaped(self, label_config):
        recorder = _resend()
        client = email_service.ResendClient("re_key", transport=recorder.transport)
        run_async(email_service.send_booking_confirmation(
            _booking(notes="<script>x</script>"), label_config, client
        ))
        assert "<script>" not in recorder.json()["html"]

    def test_rejected_raises(self, label_config):
        client = email_service.ResendClient("re_key", transport=_resend(422).transport)
        with pytest.raises(EmailError, match="422"):
            run_async(email_service.send_booking_confirmation(_booking(), label_config, client))

    def test_notify_wrapper_swallows_failure(self, label_config):
        assert run_async(email_service.notify_booking_created(_booking(), label_config)) is False

    def test_newsletter(self, label_config):
        recorder = _resend()
        client = email_service.ResendClient("re_key", transport=recorder.transport)
        digest = SimpleNamespace(
            id="d1",
            week_start=date(2025, 1, 6),
            week_end=date(2025, 1, 12),
            summary_en=SUMMARY_EN,
            sentiment="optimistic",
            key_metrics={"voting": {"votes_cast": 42, "participation_rate": 0.35}, "treasury": {"net_change": -20}},
            audio_url_en=None,
        )
        sent = run_async(email_service.send_digest_newsletter(
            digest, ["a@x.io", "b@x.io"], label_config, client
        ))
        assert sent == 2
        payload = recorder.json()
        assert payload["subject"].endswith("Week of Jan 6, 2025")
        assert "<strong>three</strong>" in payload["html"]
        assert "-$20.00" in payload["html"]
        assert {"name": "week", "value": "2025-01-06"} in payload["tags"]

    def test_newsletter_audio_link_is_absolute(self, label_config):
        digest = SimpleNamespace(
            week_start=date(2025, 1, 6),
            week_end=date(2025, 1, 12),
            summary_en=SUMMARY_EN,
            sentiment="stable",
            key_metrics={},
            audio_url_en="/api/audio/digest-2025-01-06-en.mp3",
        )
        html_body = email_service.render_digest_newsletter(digest, label_config)
        assert 'href="https://inrecord.test/api/audio/digest-2025-01-06-en.mp3"' in html_body

    def test_newsletter_without_subscribers(self, label_config):
        digest = SimpleNamespace(id="d1")
        assert run_async(email_service.send_digest_newsletter(digest, [], label_config)) == 0


# ===========================================================================
# Discord
# ===========================================================================
BASE = "https://inrecord.test"


def _proposal(**kw):
    data = dict(
        id="p-1",
        title="Mixing desk",
        description="Buy a new desk",
        proposal_type="Equipment Purchase",
        created_by="0xabc",
        status="approved",
        voting_ends_at=datetime.now(timezone.utc) + timedelta(days=2, hours=1),
        funding_goal=5000.0,
        current_funding=5000.0,
        funding_currency="USD",
        votes_for=6,
        votes_against=2,
        votes_abstain=2,
        unique_voters=10,
    )
    data.update(kw)
    return SimpleNamespace(**data)


def _fields(embed) -> dict[str, str]:
    return {f.name: f.value for f in embed.fields}


class TestEmbeds:
    def test_created(self):
        embed = build_proposal_created_embed(_proposal(), BASE)
        fields = _fields(embed)
        assert embed.title == "\U0001f195 New Proposal: Mixing desk"
        assert embed.url == f"{BASE}/dao/proposals/p-1"
        assert fields["Funding Goal"] == "$5,000.00"
        assert fields["Time Remaining"] == "2 days remaining"

    def test_created_without_goal(self):
        assert "Funding Goal" not in _fields(build_proposal_created_embed(_proposal(funding_goal=None), BASE))

    def test_rejected_rate(self):
        embed = build_proposal_rejected_embed(_proposal(), BASE)
        assert embed.colour.value == COLOR_ERROR
        assert _fields(embed)["Rejection Rate"] == "20%"

    def test_milestone(self):
        fields = _fields(build_vote_milestone_embed(_proposal(), 10, BASE))
        assert fields["Total Votes"] == "10"
        assert fields["Approval Rate"] == "75%"

    def test_weekly_summary_top_list(self):
        embed = build_weekly_summary_embed({"new_proposals": 2, "top_proposals": ["A", "B"]})
        assert _fields(embed)["Top Proposals"] == "1. A\n2. B"

    def test_digest_embed(self):
        digest = SimpleNamespace(
            week_start=date(2025, 1, 6),
            week_end=date(2025, 1, 12),
            summary_en=SUMMARY_EN,
            sentiment="optimistic",
            key_metrics={
                "proposals": {"new": 3, "funded": 1},
                "voting": {"votes_cast": 42, "participation_rate": 0.35},
                "treasury": {"net_change": 1250.5},
                "members": {"new_members": 4},
            },
            audio_url_en="https://audio/x.mp3",
        )
        embed = build_digest_embed(digest, BASE)
        fields = _fields(embed)
        assert embed.title.endswith("Week of Jan 6, 2025 - Jan 12")
        assert embed.colour.value == SENTIMENT_COLORS["optimistic"]
        assert embed.description.endswith("...")
        assert fields["\U0001f4b0 Treasury"] == "$+1,250.50"
        assert fields["\U0001f4cb Proposals"] == "3 new, 1 funded"
        assert fields["\U0001f465 Participation"] == "35.0%"

        buttons = build_digest_components(digest, BASE)[0]["components"]
        assert buttons[0]["url"] == "https://audio/x.mp3"
        assert buttons[1]["url"] == f"{BASE}/digests/week-2025-01-06"

    def test_no_buttons_without_audio(self):
        digest = SimpleNamespace(audio_url_en=None)
        assert build_digest_components(digest, BASE) == []

    def test_local_audio_path_made_absolute(self):
        digest = SimpleNamespace(
            week_start=date(2025, 1, 6), audio_url_en="/api/audio/digest-2025-01-06-en.mp3"
        )
        buttons = build_digest_components(digest, BASE)[0]["components"]
        assert buttons[0]["url"] == f"{BASE}/api/audio/digest-2025-01-06-en.mp3"


class TestNotifier:
    def test_posts_embed_with_identity(self):
        recorder = Recorder(lambda request: httpx.Response(204))
        notifier = DiscordNotifier(
            "https://discord.test/hook", base_url=BASE, username="Bot", transport=recorder.transport
        )
        result = run_async(notifier.notify_proposal_passed(_proposal()))
        assert result.success
        payload = recorder.json()
        assert payload["username"] == "Bot"
        assert payload["avatar_url"] == f"{BASE}/logo.png"
        assert payload["embeds"][0]["color"] == COLOR_SUCCESS
        assert "@everyone" in payload["content"]

    def test_result_dispatch(self):
        recorder = Recorder(lambda request: httpx.Response(204))
        notifier = DiscordNotifier("https://discord.test/hook", base_url=BASE, transport=recorder.transport)
        run_async(notifier.notify_result(_proposal(status="rejected")))
        assert recorder.json()["embeds"][0]["title"].startswith("❌ Proposal Rejected")

    def test_missing_webhook(self):
        result = run_async(DiscordNotifier(None, base_url=BASE).test_webhook())
        assert result.success is False
        assert result.error == "Webhook URL not configured"

    def test_http_error_reported(self):
        recorder = Recorder(lambda request: httpx.Response(400, text="bad embed"))
        notifier = DiscordNotifier("https://discord.test/hook", base_url=BASE, transport=recorder.transport)
        result = run_async(notifier.test_webhook())
        assert result.success is False
        assert "400" in result.error

    def test_funding_goal_needs_goal(self):
        notifier = DiscordNotifier("https://discord.test/hook", base_url=BASE)
        result = run_async(notifier.notify_funding_goal_reached(_proposal(funding_goal=None)))
        assert result.error == "Proposal has no funding goal"

    def test_digest_webhook_falls_back_to_main(self, monkeypatch, label_config):
        monkeypatch.setenv("DISCORD_WEBHOOK_URL", "https://discord.test/main")
        notifier = DiscordNotifier.from_config(label_config, digest=True)
        assert notifier.webhook_url == "https://discord.test/main"
        assert notifier.username == label_config.digest_bot_username
