"""
inrecord.api.auth — Admin JWT issuance
=======================================

Admins exchange the shared ``ADMIN_API_KEY`` for a short-lived JWT carrying
``is_admin``.  Every ``/api/admin`` route validates that token.
"""

from __future__ import annotations

import logging
import os
import secrets
from datetime import UTC, datetime, timedelta

import jwt
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from inrecord.api.deps import JWT_ALGORITHM, JWT_SECRET, get_current_admin

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

TOKEN_TTL = timedelta(hours=12)


class TokenRequest(BaseModel):
    api_key: str
    username: str = Field(default="admin", min_length=1, max_length=64)


def issue_admin_token(sub: str, username: str) -> str:
    payload = {
        "sub": sub,
        "username": username,
        "is_admin": True,
        "exp": datetime.now(UTC) + TOKEN_TTL,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


@router.post("/token")
def token(body: TokenRequest):
    """Exchange ADMIN_API_KEY for an admin JWT."""
    expected = os.getenv("ADMIN_API_KEY", "").strip()
    if not expected:
        raise HTTPException(500, "Admin login is not configured: missing ADMIN_API_KEY")
    if not secrets.compare_digest(body.api_key, expected):
        logger.warning("Rejected admin token request for %r", body.username)
        raise HTTPException(401, "Invalid API key")

    logger.info("Issued admin token for %s", body.username)
    return {
        "access_token": issue_admin_token(body.username, body.username),
        "token_type": "bearer",
        "expires_in": int(TOKEN_TTL.total_seconds()),
    }


@router.get("/me")
async def me(admin: dict = Depends(get_current_admin)):
    """Return the current authenticated admin's info."""
    return {
        "id": admin["sub"],
        "username": admin.get("username", "Unknown"),
        "is_admin": True,
    }
