"""Owner-level operations: ownership migration, user registry, test-user reset."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import DateTime, text
from sqlalchemy.engine import Connection

from retention_rules.config import get_settings
from retention_rules.exceptions import ValidationError, require_owner
from retention_rules.models import UserDataCounts
from retention_rules.repository import audit_repository

logger = structlog.get_logger()


@dataclass(frozen=True)
class AppUser:
    email: str
    first_login: datetime
    last_login: datetime


@dataclass(frozen=True)
class MigrationResult:
    """Rows reassigned by an ownership migration."""

    from_owner: str
    to_owner: str
    criteria_migrated: int
    messages_migrated: int


def touch_user(conn: Connection, email: str) -> None:
    """Register a login: create the user row or bump last_login."""

    conn.execute(
        text(
            """
            INSERT INTO app_user (email)
            VALUES (:email)
            ON CONFLICT (email)
            DO UPDATE SET last_login = CURRENT_TIMESTAMP
            """
        ),
        {"email": email},
    )


def get_user(*, engine, email: str) -> AppUser | None:
    q = text(
        "SELECT email, first_login, last_login FROM app_user WHERE email = :email"
    ).columns(first_login=DateTime(timezone=True), last_login=DateTime(timezone=True))

    with engine.begin() as conn:
        row = conn.execute(q, {"email": email.strip().lower()}).fetchone()

    if not row:
        return None
    return AppUser(email=row[0], first_login=row[1], last_login=row[2])


def migrate_owner(*, engine, to_owner: str, from_owner: str | None = None) -> MigrationResult:
    """Reassign a placeholder owner's rules and pending messages to a real user.

    Top-level criteria whose key the target already owns stay with the
    placeholder, as do their subdomains. Pending messages the target already
    holds under the same message id stay as well. The target user row is
    created or its last_login refreshed.

    Args:
        engine: SQLAlchemy engine.
        to_owner: Authenticated user's email.
        from_owner: Placeholder owner; defaults to settings.default_owner.

    Returns:
        MigrationResult: counts of migrated rows.
    """

    target = require_owner(to_owner).lower()
    source = require_owner(from_owner or get_settings().default_owner).lower()
    if source == target:
        raise ValidationError("Source and target owner must differ")

    params = {"source": source, "target": target}

    with engine.begin() as conn:
        top_level = conn.execute(
            text(
                """
                UPDATE criterion
                SET owner_user_id = :target, updated_at = CURRENT_TIMESTAMP
                WHERE owner_user_id = :source
                  AND parent_id IS NULL
                  AND NOT EXISTS (
                      SELECT 1 FROM criterion t
                      WHERE t.owner_user_id = :target
                        AND t.key_kind = criterion.key_kind
                        AND t.key_value = criterion.key_value
                        AND t.parent_id IS NULL
                  )
                """
            ),
            params,
        ).rowcount
        children = conn.execute(
            text(
                """
                UPDATE criterion
                SET owner_user_id = :target, updated_at = CURRENT_TIMESTAMP
                WHERE owner_user_id = :source
                  AND parent_id IN (SELECT id FROM criterion WHERE owner_user_id = :target)
                """
            ),
            params,
        ).rowcount
        messages = conn.execute(
            text(
                """
                UPDATE pending_message
                SET owner_user_id = :target
                WHERE owner_user_id = :source
                  AND NOT EXISTS (
                      SELECT 1 FROM pending_message t
                      WHERE t.owner_user_id = :target
                        AND t.message_id = pending_message.message_id
                  )
                """
            ),
            params,
        ).rowcount

        touch_user(conn, target)

    result = MigrationResult(
        from_owner=source,
        to_owner=target,
        criteria_migrated=int(top_level or 0) + int(children or 0),
        messages_migrated=int(messages or 0),
    )
    logger.info(
        "owner_migrated",
        from_owner=source,
        to_owner=target,
        criteria=result.criteria_migrated,
        messages=result.messages_migrated,
    )
    return result


def count_user_rows(*, engine, owner_user_id: str) -> UserDataCounts:
    owner = require_owner(owner_user_id)
    with engine.begin() as conn:
        row = conn.execute(
            text(
                """
                SELECT
                    (SELECT COUNT(*) FROM criterion WHERE owner_user_id = :owner),
                    (
                        SELECT COUNT(*) FROM subject_pattern p
                        JOIN criterion c ON c.id = p.criterion_id
                        WHERE c.owner_user_id = :owner
                    ),
                    (
                        SELECT COUNT(*) FROM address_pattern a
                        JOIN criterion c ON c.id = a.criterion_id
                        WHERE c.owner_user_id = :owner
                    )
                """
            ),
            {"owner": owner},
        ).fetchone()
        audit = audit_repository.count_audit(conn, owner)

    return UserDataCounts(
        criteria=int(row[0]),
        subject_patterns=int(row[1]),
        address_patterns=int(row[2]),
        audit_log=audit,
    )


def clear_user_rules(*, engine, owner_user_id: str) -> UserDataCounts:
    """Delete every rule row and audit entry of one owner in one transaction.

    Returns:
        UserDataCounts: rows removed per table.
    """

    owner = require_owner(owner_user_id)
    params = {"owner": owner}

    with engine.begin() as conn:
        patterns = conn.execute(
            text(
                """
                DELETE FROM subject_pattern
                WHERE criterion_id IN (SELECT id FROM criterion WHERE owner_user_id = :owner)
                """
            ),
            params,
        ).rowcount
        addresses = conn.execute(
            text(
                """
                DELETE FROM address_pattern
                WHERE criterion_id IN (SELECT id FROM criterion WHERE owner_user_id = :owner)
                """
            ),
            params,
        ).rowcount
        subdomains = conn.execute(
            text("DELETE FROM criterion WHERE owner_user_id = :owner AND parent_id IS NOT NULL"),
            params,
        ).rowcount
        top_level = conn.execute(
            text("DELETE FROM criterion WHERE owner_user_id = :owner"), params
        ).rowcount
        audit = audit_repository.delete_audit(conn, owner)

    counts = UserDataCounts(
        criteria=int(subdomains or 0) + int(top_level or 0),
        subject_patterns=int(patterns or 0),
        address_patterns=int(addresses or 0),
        audit_log=audit,
    )
    logger.info("user_rules_cleared", owner_user_id=owner, **counts.model_dump())
    return counts
