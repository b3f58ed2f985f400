"""
inrecord.api.deps — FastAPI dependency injection
=================================================
"""

from __future__ import annotations

import os
import secrets
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from inrecord.config import LabelConfig, load_config
from inrecord.database.engine import create_db_engine
from inrecord.errors import (
    BookingConflictError,
    DuplicateVoteError,
    ForbiddenError,
    InvalidTransitionError,
)

_WEAK_SECRETS = frozenset({
    "inrecord-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> LabelConfig:
    return load_config(os.getenv("INRECORD_CONFIG", "config.yaml"))


def _bearer(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.split(" ", 1)[1]


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    token = _bearer(authorization)
    if token is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload


def verify_cron_secret(
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Require ``Authorization: Bearer $CRON_SECRET``.  401 on mismatch or when unset."""
    expected = os.getenv("CRON_SECRET", "")
    token = _bearer(authorization)
    if not expected or token is None or not secrets.compare_digest(token, expected):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")


# ---------------------------------------------------------------------------
# Domain errors → HTTP
# ---------------------------------------------------------------------------
_CONFLICTS = (DuplicateVoteError, BookingConflictError, InvalidTransitionError)


def http_error(exc: Exception) -> HTTPException:
    """Map a service exception to the matching ``HTTPException``."""
    if isinstance(exc, ForbiddenError):
        return HTTPException(status.HTTP_403_FORBIDDEN, str(exc))
    if isinstance(exc, _CONFLICTS):
        return HTTPException(status.HTTP_409_CONFLICT, str(exc))
    if isinstance(exc, LookupError):
        return HTTPException(status.HTTP_404_NOT_FOUND, str(exc).strip("'\""))
    return HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
