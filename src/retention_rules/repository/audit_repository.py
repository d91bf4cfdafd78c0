"""Audit log repository.

The audit log is append-only: the mutation engine writes one entry per state
change (and one `error` entry per failed mutation). Only the test-user reset
removes rows.
"""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from retention_rules.exceptions import ValidationError, require_owner
from retention_rules.models import AuditAction, AuditLogEntry


def log_audit(
    conn: Connection,
    *,
    owner_user_id: str,
    action_type: AuditAction,
    table_name: str,
    record_id: int | None = None,
    domain: str | None = None,
    details: dict[str, Any] | None = None,
) -> int:
    """Append an audit entry and return its id."""

    row = conn.execute(
        text(
            """
            INSERT INTO audit_log (
                owner_user_id,
                action_type,
                table_name,
                record_id,
                domain,
                details_json
            )
            VALUES (:owner, :action_type, :table_name, :record_id, :domain, :details_json)
            RETURNING id
            """
        ),
        {
            "owner": owner_user_id,
            "action_type": action_type.value,
            "table_name": table_name,
            "record_id": record_id,
            "domain": domain,
            "details_json": json.dumps(details or {}, sort_keys=True),
        },
    ).fetchone()
    return int(row[0])


def list_audit(conn: Connection, owner_user_id: str, *, limit: int = 100) -> list[AuditLogEntry]:
    """Most recent audit entries for an owner, newest first."""

    rows = conn.execute(
        text(
            """
            SELECT id, owner_user_id, action_type, table_name, record_id, domain,
                   details_json, created_at
            FROM audit_log
            WHERE owner_user_id = :owner
            ORDER BY id DESC
            LIMIT :limit
            """
        ),
        {"owner": owner_user_id, "limit": int(limit)},
    ).fetchall()

    return [
        AuditLogEntry(
            id=r[0],
            owner_user_id=r[1],
            action_type=r[2],
            table_name=r[3],
            record_id=r[4],
            domain=r[5],
            details=json.loads(r[6] or "{}"),
            created_at=r[7],
        )
        for r in rows
    ]


def count_audit(conn: Connection, owner_user_id: str) -> int:
    row = conn.execute(
        text("SELECT COUNT(*) FROM audit_log WHERE owner_user_id = :owner"),
        {"owner": owner_user_id},
    ).fetchone()
    return int(row[0])


def delete_audit(conn: Connection, owner_user_id: str) -> int:
    n = conn.execute(
        text("DELETE FROM audit_log WHERE owner_user_id = :owner"), {"owner": owner_user_id}
    ).rowcount
    return int(n or 0)


def recent_audit(*, engine, owner_user_id: str, limit: int = 50) -> list[AuditLogEntry]:
    """Read side of the audit trail for one owner, newest first."""

    owner = require_owner(owner_user_id)
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    with engine.connect() as conn:
        return list_audit(conn, owner, limit=limit)
