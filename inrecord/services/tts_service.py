"""
inrecord.services.tts_service — Play.ht Narration for Digests
==============================================================

Turns a digest summary into an MP3:

1. ``POST /api/v2/tts`` creates a job for the language's voice.
2. ``GET /api/v2/tts/{id}`` is polled until the job completes.
3. The finished file is downloaded and written under
   ``<audio_storage_dir>/digests/{week_start}-{lang}.mp3``, which the API
   serves as a static directory at ``<audio_base_url>``.

Duration is estimated from the file size assuming 128 kbps.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

import httpx

from inrecord.config import LabelConfig
from inrecord.engine.digest_metrics import (
    clean_text_for_tts,
    estimate_duration_from_bytes,
    estimate_playht_cost,
)
from inrecord.errors import TTSError

logger = logging.getLogger(__name__)

PLAYHT_API_URL = "https://api.play.ht/api/v2"
POLL_INTERVAL_SECONDS = 2.0
MAX_POLL_ATTEMPTS = 30

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Voice:
    voice_id: str
    name: str
    language: str


VOICES: dict[str, Voice] = {
    "en": Voice(
        "s3://voice-cloning-zero-shot/d9ff78ba-d016-47f6-b0ef-dd630f59414e/female-cs/manifest.json",
        "Charlotte",
        "english",
    ),
    "fr": Voice(
        "s3://voice-cloning-zero-shot/a0c3d2e5-9f8a-4b7c-8d1e-2f3a4b5c6d7e/french-female/manifest.json",
        "Amélie",
        "french",
    ),
    "pt": Voice(
        "s3://voice-cloning-zero-shot/b1d4e3f6-0a9b-5c8d-9e2f-3a4b5c6d7e8f/portuguese-br-female/manifest.json",
        "Isabella",
        "portuguese",
    ),
}


@dataclass
class AudioResult:
    url: str
    duration_seconds: int
    file_size_bytes: int


# ---------------------------------------------------------------------------
# Play.ht client
# ---------------------------------------------------------------------------
class PlayHTClient:
    """Creates TTS jobs and waits for them to finish."""

    def __init__(
        self,
        api_key: str | None,
        user_id: str | None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_attempts: int = MAX_POLL_ATTEMPTS,
    ) -> None:
        self.api_key = api_key
        self.user_id = user_id
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._transport = transport

    @classmethod
    def from_env(cls, **kwargs) -> PlayHTClient:
        return cls(os.getenv("PLAYHT_API_KEY"), os.getenv("PLAYHT_USER_ID"), **kwargs)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=30,
            transport=self._transport or httpx.AsyncHTTPTransport(retries=1),
            headers={"AUTHORIZATION": self.api_key or "", "X-USER-ID": self.user_id or ""},
        )

    async def synthesize(self, text: str, voice: Voice) -> bytes:
        """Run one job to completion and return the MP3 bytes."""
        if not self.api_key or not self.user_id:
            raise TTSError("PLAYHT_API_KEY and PLAYHT_USER_ID must be set")

        async with self._client() as client:
            job_id = await self._create_job(client, text, voice)
            logger.info("Play.ht job %s created (%s)", job_id, voice.name)
            audio_url = await self._poll(client, job_id)
            try:
                resp = await client.get(audio_url)
            except httpx.HTTPError as exc:
                raise TTSError(f"Failed to download audio: {exc}") from exc
            if resp.status_code >= 300:
                raise TTSError(f"Failed to download audio: {resp.status_code}")
            return resp.content

    async def _create_job(self, client: httpx.AsyncClient, text: str, voice: Voice) -> str:
        try:
            resp = await client.post(f"{PLAYHT_API_URL}/tts", json={
                "text": text,
                "voice": voice.voice_id,
                "output_format": "mp3",
                "voice_engine": "PlayHT2.0-turbo",
                "sample_rate": 24000,
                "quality": "high",
            })
        except httpx.HTTPError as exc:
            raise TTSError(f"Play.ht request failed: {exc}") from exc
        if resp.status_code >= 300:
            raise TTSError(f"Play.ht API error: {resp.status_code} - {resp.text}")
        return resp.json()["id"]

    async def _poll(self, client: httpx.AsyncClient, job_id: str) -> str:
        for attempt in range(self.max_attempts):
            try:
                resp = await client.get(f"{PLAYHT_API_URL}/tts/{job_id}")
            except httpx.HTTPError as exc:
                logger.warning("Play.ht poll %d for %s failed: %s", attempt + 1, job_id, exc)
            else:
                if resp.status_code >= 300:
                    logger.warning("Play.ht poll %d for %s: HTTP %d", attempt + 1, job_id, resp.status_code)
                else:
                    data = resp.json()
                    url = (data.get("output") or {}).get("url")
                    if data.get("status") == "completed" and url:
                        return url
                    if data.get("status") == "failed":
                        raise TTSError(f"Audio generation failed: {data.get('error') or 'Unknown error'}")
            await asyncio.sleep(self.poll_interval)
        raise TTSError("Audio generation timed out")


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
def audio_dir(cfg: LabelConfig) -> Path:
    return Path(cfg.audio_storage_dir) / "digests"


def ensure_audio_dir(cfg: LabelConfig) -> None:
    audio_dir(cfg).mkdir(parents=True, exist_ok=True)


async def store_audio(content: bytes, language: str, cfg: LabelConfig, week_start: str | None = None) -> str:
    """Write *content* to the audio directory and return its public URL."""
    stem = week_start or str(int(time.time() * 1000))
    filename = f"{stem}-{language}.mp3"
    ensure_audio_dir(cfg)
    await asyncio.to_thread((audio_dir(cfg) / filename).write_bytes, content)
    return f"{cfg.audio_base_url}/digests/{filename}"


def delete_audio(url: str, cfg: LabelConfig) -> bool:
    """Remove a stored file by its public URL.  Failures are logged, not raised."""
    filename = url.rsplit("/", 1)[-1]
    path = audio_dir(cfg) / filename
    try:
        if path.is_file():
            path.unlink()
            logger.info("Deleted audio %s", path)
            return True
    except OSError:
        logger.exception("Could not delete audio %s", path)
    return False


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
async def generate_audio(
    text: str,
    language: str,
    cfg: LabelConfig,
    *,
    week_start: str | None = None,
    client: PlayHTClient | None = None,
) -> AudioResult:
    voice = VOICES.get(language)
    if voice is None:
        raise ValueError(f"Unsupported language: {language}")

    client = client or PlayHTClient.from_env()
    content = await client.synthesize(clean_text_for_tts(text), voice)
    url = await store_audio(content, language, cfg, week_start)
    result = AudioResult(
        url=url,
        duration_seconds=estimate_duration_from_bytes(len(content)),
        file_size_bytes=len(content),
    )
    logger.info("%s audio stored at %s (%d bytes)", language, url, result.file_size_bytes)
    return result


async def generate_all_audio_versions(
    summary_en: str,
    summary_fr: str,
    summary_pt: str,
    cfg: LabelConfig,
    *,
    week_start: str | None = None,
    client: PlayHTClient | None = None,
) -> dict:
    """Narrate all three languages concurrently.  Duration is taken from English."""
    client = client or PlayHTClient.from_env()
    chars = sum(len(clean_text_for_tts(t)) for t in (summary_en, summary_fr, summary_pt))
    logger.info("Narrating 3 languages, %d characters (~$%.2f)", chars, estimate_playht_cost(chars))
    en, fr, pt = await asyncio.gather(
        generate_audio(summary_en, "en", cfg, week_start=week_start, client=client),
        generate_audio(summary_fr, "fr", cfg, week_start=week_start, client=client),
        generate_audio(summary_pt, "pt", cfg, week_start=week_start, client=client),
    )
    return {
        "audio_url_en": en.url,
        "audio_url_fr": fr.url,
        "audio_url_pt": pt.url,
        "audio_duration_seconds": en.duration_seconds,
    }


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
) -> T:
    """Await ``fn()`` up to *max_retries* times, doubling the delay between tries."""
    for attempt in range(max_retries):
        try:
            return await fn()
        except Exception:
            if attempt == max_retries - 1:
                raise
            delay = initial_delay * 2 ** attempt
            logger.info("Retry %d/%d after %.1fs", attempt + 1, max_retries, delay)
            await asyncio.sleep(delay)
    raise ValueError("max_retries must be at least 1")
