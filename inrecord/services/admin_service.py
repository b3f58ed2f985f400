"""
inrecord.services.admin_service — Audited Admin Mutations
==========================================================

Shared audit plumbing for every admin write (proposal edits, booking
updates, treasury entries, digest publication, settings).  Each write
follows the same pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSONB
  5. Commit

Domain services import the ``_audited_*`` helpers; the admin routes call
the settings and audit-log readers below directly.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from inrecord.database.models import AdminActionType, AdminLog, Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------

def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, (datetime, date)):
            val = val.isoformat()
        result[col.name] = val
    return result


def _log_admin_action(
    session: Session,
    *,
    actor_id: str,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    ip_address: str | None = None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=str(actor_id),
        action_type=str(action_type),
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        ip_address=ip_address,
        reason=reason,
    ))


def _audited_update(
    engine,
    model_cls: type,
    pk: Any,
    *,
    table_name: str,
    actor_id: str,
    frozen_keys: tuple[str, ...] = ("id", "created_at"),
    action_type: str = AdminActionType.UPDATE,
    ip_address: str | None = None,
    reason: str | None = None,
    **kwargs: Any,
) -> Any | None:
    """Audited UPDATE: get -> before -> apply kwargs -> log -> commit.

    Returns the updated (expunged) object, or ``None`` if not found.
    """
    with Session(engine, expire_on_commit=False) as session:
        obj = session.get(model_cls, pk)
        if obj is None:
            return None
        before = _row_to_dict(obj)
        for key, value in kwargs.items():
            if hasattr(obj, key) and key not in frozen_keys:
                setattr(obj, key, value)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=action_type,
            target_table=table_name,
            target_id=str(pk),
            before=before,
            after=_row_to_dict(obj),
            ip_address=ip_address,
            reason=reason,
        )
        session.commit()
        session.refresh(obj)
        session.expunge(obj)
        return obj


def _audited_delete(
    engine,
    model_cls: type,
    pk: Any,
    *,
    table_name: str,
    actor_id: str,
    ip_address: str | None = None,
) -> bool:
    """Audited DELETE: get -> log -> delete -> commit.

    Returns ``True`` if the row existed and was deleted.
    """
    with Session(engine) as session:
        obj = session.get(model_cls, pk)
        if obj is None:
            return False
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.DELETE,
            target_table=table_name,
            target_id=str(pk),
            before=_row_to_dict(obj),
            after=None,
            ip_address=ip_address,
        )
        session.delete(obj)
        session.commit()
        return True


# ---------------------------------------------------------------------------
# Audit log reader
# ---------------------------------------------------------------------------

def get_audit_log(
    engine,
    *,
    page: int = 1,
    page_size: int = 25,
    target_table: str | None = None,
) -> tuple[list[AdminLog], int]:
    """Newest-first page of admin_log rows plus the total count."""
    with Session(engine) as session:
        query = select(AdminLog)
        count_query = select(func.count()).select_from(AdminLog)
        if target_table:
            query = query.where(AdminLog.target_table == target_table)
            count_query = count_query.where(AdminLog.target_table == target_table)

        total = session.scalar(count_query) or 0
        rows = session.scalars(
            query.order_by(AdminLog.timestamp.desc(), AdminLog.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return list(rows), total


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def get_all_settings(engine) -> list[Setting]:
    with Session(engine) as session:
        return list(session.scalars(select(Setting).order_by(Setting.category, Setting.key)).all())


def upsert_settings(engine, items: list[dict], *, actor_id: str) -> int:
    """Insert or update settings in one audited transaction.  Returns rows written."""
    count = 0
    with Session(engine) as session:
        for item in items:
            key = item["key"]
            row = session.get(Setting, key)
            before = _row_to_dict(row)
            if row is None:
                row = Setting(
                    key=key,
                    value_json=json.dumps(item["value"]),
                    category=item.get("category", "general"),
                    description=item.get("description"),
                )
                session.add(row)
                action = AdminActionType.CREATE
            else:
                row.value_json = json.dumps(item["value"])
                if "category" in item:
                    row.category = item["category"]
                if "description" in item:
                    row.description = item["description"]
                action = AdminActionType.UPDATE
            session.flush()
            _log_admin_action(
                session,
                actor_id=actor_id,
                action_type=action,
                target_table="settings",
                target_id=key,
                before=before,
                after=_row_to_dict(row),
            )
            count += 1
        session.commit()
    logger.info("Admin %s updated %d settings", actor_id, count)
    return count
