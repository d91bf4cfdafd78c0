"""Pending message repository.

Messages are ingested by the mail provider integration, annotated by the
classification engine and read back by the deletion executor. Timestamps are
stored in UTC; naive datetimes are taken to already be UTC.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.engine import Connection

from retention_rules.domain import DomainParser, split_address
from retention_rules.exceptions import ValidationError, require_owner
from retention_rules.models import (
    DELETE_AGE_DAYS,
    UNDECIDED,
    Action,
    ActionSummary,
    ClassificationResult,
    DeletionPreview,
    ExecutionSummary,
    PendingMessage,
)

logger = structlog.get_logger()

_TS = DateTime(timezone=True)

_MESSAGE_COLUMNS = """
    id, message_id, owner_user_id, from_email, to_email, subject, primary_domain, subdomain,
    email_date, action, matched_rule, matched_pattern, evaluated_at
"""

# Display order of the execution summary.
_SUMMARY_ORDER = {
    Action.DELETE.value: 1,
    Action.DELETE_1D.value: 2,
    Action.DELETE_10D.value: 3,
    Action.KEEP.value: 4,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc)


def _select_messages(where: str, *binds):
    q = text(f"SELECT {_MESSAGE_COLUMNS} FROM pending_message WHERE {where}")
    if binds:
        q = q.bindparams(*binds)
    return q.columns(email_date=_TS, evaluated_at=_TS)


def upsert_pending_messages(
    *,
    engine,
    messages: Iterable[PendingMessage],
    parser: DomainParser | None = None,
) -> int:
    """Insert or refresh pending messages keyed by (message_id, owner).

    Addresses are lowercased. Primary domain and subdomain are derived from the
    sender when not supplied.

    Returns:
        Number of messages written.
    """

    rows: list[dict] = []
    for m in messages:
        owner = require_owner(m.owner_user_id)
        if not m.message_id.strip():
            raise ValidationError("message_id is required")

        from_email = m.from_email.strip().lower()
        primary, subdomain = split_address(from_email, parser) if from_email else (None, None)
        rows.append(
            {
                "message_id": m.message_id.strip(),
                "owner": owner,
                "from_email": from_email,
                "to_email": m.to_email.strip().lower(),
                "subject": m.subject,
                "primary_domain": (m.primary_domain or primary or "").lower() or None,
                "subdomain": (m.subdomain or subdomain or "").lower() or None,
                "email_date": _utc(m.email_date),
            }
        )

    if not rows:
        return 0

    q = text(
        """
        INSERT INTO pending_message (
            message_id,
            owner_user_id,
            from_email,
            to_email,
            subject,
            primary_domain,
            subdomain,
            email_date
        )
        VALUES (
            :message_id,
            :owner,
            :from_email,
            :to_email,
            :subject,
            :primary_domain,
            :subdomain,
            :email_date
        )
        ON CONFLICT (message_id, owner_user_id)
        DO UPDATE SET
            from_email = excluded.from_email,
            to_email = excluded.to_email,
            subject = excluded.subject,
            primary_domain = excluded.primary_domain,
            subdomain = excluded.subdomain,
            email_date = excluded.email_date
        """
    ).bindparams(bindparam("email_date", type_=_TS))

    with engine.begin() as conn:
        conn.execute(q, rows)

    logger.info("pending_messages_upserted", count=len(rows))
    return len(rows)


def list_pending_owners(conn: Connection) -> list[str]:
    rows = conn.execute(
        text("SELECT DISTINCT owner_user_id FROM pending_message ORDER BY owner_user_id")
    ).fetchall()
    return [r[0] for r in rows]


def load_pending(conn: Connection, owner_user_id: str) -> list[PendingMessage]:
    rows = conn.execute(
        _select_messages("owner_user_id = :owner ORDER BY id ASC"), {"owner": owner_user_id}
    ).fetchall()
    return [PendingMessage.model_validate(dict(r._mapping)) for r in rows]


def write_results(
    conn: Connection, results: list[tuple[int, ClassificationResult]]
) -> None:
    """Write resolved actions back onto pending message rows."""

    if not results:
        return

    now = _now()
    q = text(
        """
        UPDATE pending_message
        SET action = :action,
            matched_rule = :matched_rule,
            matched_pattern = :matched_pattern,
            evaluated_at = :evaluated_at
        WHERE id = :id
        """
    ).bindparams(bindparam("evaluated_at", type_=_TS))

    conn.execute(
        q,
        [
            {
                "id": row_id,
                "action": r.action_label,
                "matched_rule": r.matched_rule,
                "matched_pattern": r.matched_pattern,
                "evaluated_at": now,
            }
            for row_id, r in results
        ],
    )


def get_message(*, engine, owner_user_id: str, message_id: str) -> PendingMessage | None:
    owner = require_owner(owner_user_id)
    with engine.begin() as conn:
        row = conn.execute(
            _select_messages("owner_user_id = :owner AND message_id = :message_id"),
            {"owner": owner, "message_id": message_id},
        ).fetchone()
    return PendingMessage.model_validate(dict(row._mapping)) if row else None


def summarize_actions(*, engine, owner_user_id: str) -> ExecutionSummary:
    """Count an owner's pending messages by resolved action.

    Unevaluated messages are reported under 'undecided' together with messages
    no rule matched.
    """

    owner = require_owner(owner_user_id)
    q = text(
        """
        SELECT
            action,
            COUNT(*) AS count,
            MIN(email_date) AS oldest_date,
            MAX(email_date) AS newest_date
        FROM pending_message
        WHERE owner_user_id = :owner
        GROUP BY action
        """
    ).columns(oldest_date=_TS, newest_date=_TS)

    with engine.begin() as conn:
        rows = conn.execute(q, {"owner": owner}).fetchall()

    groups: dict[str, ActionSummary] = {}
    for r in rows:
        label = r[0] or UNDECIDED
        current = groups.get(label)
        if current is None:
            groups[label] = ActionSummary(
                action=label, count=int(r[1]), oldest_date=r[2], newest_date=r[3]
            )
            continue
        current.count += int(r[1])
        dates = [d for d in (current.oldest_date, current.newest_date, r[2], r[3]) if d]
        if dates:
            current.oldest_date = min(dates)
            current.newest_date = max(dates)

    by_action = sorted(
        groups.values(), key=lambda s: (_SUMMARY_ORDER.get(s.action, 5), s.action)
    )
    return ExecutionSummary(total=sum(s.count for s in by_action), by_action=by_action)


def list_due_for_deletion(
    *,
    engine,
    owner_user_id: str,
    action: Action | None = None,
    min_age_days: int | None = None,
    now: datetime | None = None,
) -> DeletionPreview:
    """Messages whose delete-type action has reached its age threshold.

    Args:
        engine: SQLAlchemy engine.
        owner_user_id: Owning user.
        action: Restrict to one delete-type action; all three when None.
        min_age_days: Override the per-action threshold.
        now: Reference time (defaults to the current UTC time).

    Returns:
        DeletionPreview: due messages (oldest first) and the count skipped as too recent.
    """

    owner = require_owner(owner_user_id)
    if action is not None and action not in DELETE_AGE_DAYS:
        raise ValidationError(f"Action '{action.value}' is not a delete action")
    if min_age_days is not None and min_age_days < 0:
        raise ValidationError("min_age_days must not be negative")

    reference = _utc(now) or _now()
    actions = [action] if action is not None else list(DELETE_AGE_DAYS)

    due_q = _select_messages(
        """
        owner_user_id = :owner
          AND action = :action
          AND email_date <= :cutoff
        ORDER BY email_date ASC, id ASC
        """,
        bindparam("cutoff", type_=_TS),
    )
    skipped_q = text(
        """
        SELECT COUNT(*)
        FROM pending_message
        WHERE owner_user_id = :owner
          AND action = :action
          AND (email_date IS NULL OR email_date > :cutoff)
        """
    ).bindparams(bindparam("cutoff", type_=_TS))

    preview = DeletionPreview()
    with engine.begin() as conn:
        for a in actions:
            days = DELETE_AGE_DAYS[a] if min_age_days is None else min_age_days
            params = {"owner": owner, "action": a.value, "cutoff": reference - timedelta(days=days)}
            preview.due.extend(
                PendingMessage.model_validate(dict(r._mapping))
                for r in conn.execute(due_q, params).fetchall()
            )
            preview.skipped += int(conn.execute(skipped_q, params).scalar_one())

    preview.due.sort(key=lambda m: (m.email_date or reference, m.id or 0))
    return preview


def remove_pending_messages(*, engine, owner_user_id: str, message_ids: list[str]) -> int:
    """Drop pending rows once the executor has acted on them."""

    owner = require_owner(owner_user_id)
    if not message_ids:
        return 0

    q = text(
        """
        DELETE FROM pending_message
        WHERE owner_user_id = :owner AND message_id IN :message_ids
        """
    ).bindparams(bindparam("message_ids", expanding=True))

    with engine.begin() as conn:
        n = conn.execute(q, {"owner": owner, "message_ids": list(message_ids)}).rowcount

    logger.info("pending_messages_removed", owner_user_id=owner, count=int(n or 0))
    return int(n or 0)
