"""
inrecord.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn inrecord.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.staticfiles import StaticFiles

load_dotenv()

from inrecord import __version__  # noqa: E402
from inrecord.api.auth import router as auth_router  # noqa: E402
from inrecord.api.deps import get_config, get_engine  # noqa: E402
from inrecord.api.rate_limit import configure_rate_limiter  # noqa: E402
from inrecord.api.routes.admin import router as admin_router  # noqa: E402
from inrecord.api.routes.bookings import router as bookings_router  # noqa: E402
from inrecord.api.routes.cron import router as cron_router  # noqa: E402
from inrecord.api.routes.dao import router as dao_router  # noqa: E402
from inrecord.api.routes.digests import router as digests_router  # noqa: E402
from inrecord.api.routes.exports import router as exports_router  # noqa: E402
from inrecord.api.routes.treasury import router as treasury_router  # noqa: E402
from inrecord.database.engine import init_db  # noqa: E402
from inrecord.services.log_buffer import install_handler  # noqa: E402
from inrecord.services.tts_service import ensure_audio_dir  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle: create tables, seed defaults, warm the engine."""
    # Uvicorn reconfigures logging on start, so the ring buffer is attached here.
    install_handler()

    cfg = get_config()
    ensure_audio_dir(cfg)
    if not any(getattr(r, "name", None) == "audio" for r in app.routes):
        # Narrated digests; the store writes under <storage_dir>/digests.
        app.mount("/api/audio", StaticFiles(directory=cfg.audio_storage_dir), name="audio")

    engine = get_engine()
    init_db(engine)
    configure_rate_limiter(engine=engine)
    logger.info("%s API started, engine ready (%s)", cfg.label_name, engine.url.database)
    yield
    logger.info("%s API shutting down", cfg.label_name)


app = FastAPI(
    title="inRECORD Label API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(auth_router, prefix="/api")
app.include_router(dao_router, prefix="/api")
app.include_router(treasury_router, prefix="/api")
app.include_router(bookings_router, prefix="/api")
app.include_router(digests_router, prefix="/api")
app.include_router(exports_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(cron_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
