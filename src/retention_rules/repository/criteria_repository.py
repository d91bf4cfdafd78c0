"""Criteria repository.

Rows of the rule hierarchy (criterion, subject_pattern, address_pattern).
Functions take an open connection so the mutation engine can compose several
of them into one transaction. Keys are expected to be trimmed and lowercased
by the caller.
"""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

from retention_rules.exceptions import StorageError, require_owner
from retention_rules.models import (
    Action,
    AddressPattern,
    Criterion,
    Direction,
    KeyKind,
    RuleStats,
    SubdomainSummary,
    SubjectPattern,
)

_CRITERION_COLUMNS = """
    id, owner_user_id, key_value, key_kind, default_action, parent_id, created_at, updated_at
"""


def _criterion(row) -> Criterion:
    return Criterion.model_validate(dict(row._mapping))


def find_criterion(
    conn: Connection,
    owner_user_id: str,
    kind: KeyKind,
    key_value: str,
    parent_id: int | None = None,
) -> Criterion | None:
    q = text(
        f"""
        SELECT {_CRITERION_COLUMNS}
        FROM criterion
        WHERE owner_user_id = :owner
          AND key_kind = :kind
          AND key_value = :key
          AND COALESCE(parent_id, 0) = :parent
        """
    )
    row = conn.execute(
        q,
        {"owner": owner_user_id, "kind": kind.value, "key": key_value, "parent": parent_id or 0},
    ).fetchone()
    return _criterion(row) if row else None


def get_criterion(conn: Connection, criterion_id: int) -> Criterion | None:
    row = conn.execute(
        text(f"SELECT {_CRITERION_COLUMNS} FROM criterion WHERE id = :id"),
        {"id": criterion_id},
    ).fetchone()
    return _criterion(row) if row else None


def insert_criterion(
    conn: Connection,
    owner_user_id: str,
    kind: KeyKind,
    key_value: str,
    *,
    default_action: Action | None = None,
    parent_id: int | None = None,
) -> tuple[Criterion, bool]:
    """Insert a criterion unless one already exists for the same scope.

    Returns:
        (criterion, created). An existing row is returned untouched.
    """

    q = text(
        """
        INSERT INTO criterion (owner_user_id, key_value, key_kind, default_action, parent_id)
        VALUES (:owner, :key, :kind, :action, :parent_id)
        ON CONFLICT DO NOTHING
        RETURNING id
        """
    )
    row = conn.execute(
        q,
        {
            "owner": owner_user_id,
            "key": key_value,
            "kind": kind.value,
            "action": default_action.value if default_action else None,
            "parent_id": parent_id,
        },
    ).fetchone()

    if row is not None:
        created = get_criterion(conn, int(row[0]))
        if created is None:
            raise StorageError(f"Criterion {row[0]} vanished right after insert")
        return created, True

    existing = find_criterion(conn, owner_user_id, kind, key_value, parent_id)
    if existing is None:
        raise StorageError(f"Criterion insert for {key_value!r} conflicted but no row was found")
    return existing, False


def set_default_action(conn: Connection, criterion_id: int, action: Action | None) -> None:
    conn.execute(
        text(
            """
            UPDATE criterion
            SET default_action = :action, updated_at = CURRENT_TIMESTAMP
            WHERE id = :id
            """
        ),
        {"id": criterion_id, "action": action.value if action else None},
    )


def delete_criterion(conn: Connection, criterion_id: int) -> tuple[int, int]:
    """Delete one leaf criterion (email or subdomain) with its patterns.

    Returns:
        (subject patterns removed, address patterns removed)
    """

    patterns = conn.execute(
        text("DELETE FROM subject_pattern WHERE criterion_id = :id"), {"id": criterion_id}
    ).rowcount
    addresses = conn.execute(
        text("DELETE FROM address_pattern WHERE criterion_id = :id"), {"id": criterion_id}
    ).rowcount
    conn.execute(text("DELETE FROM criterion WHERE id = :id"), {"id": criterion_id})
    return int(patterns or 0), int(addresses or 0)


def delete_domain_cascade(conn: Connection, criterion_id: int) -> tuple[int, int, int]:
    """Delete a domain criterion, its subdomains and every pattern below them.

    Children are deleted before their parents.

    Returns:
        (subdomains removed, subject patterns removed, address patterns removed)
    """

    params = {"id": criterion_id}
    child_patterns = conn.execute(
        text(
            """
            DELETE FROM subject_pattern
            WHERE criterion_id IN (SELECT id FROM criterion WHERE parent_id = :id)
            """
        ),
        params,
    ).rowcount
    child_addresses = conn.execute(
        text(
            """
            DELETE FROM address_pattern
            WHERE criterion_id IN (SELECT id FROM criterion WHERE parent_id = :id)
            """
        ),
        params,
    ).rowcount
    subdomains = conn.execute(
        text("DELETE FROM criterion WHERE parent_id = :id"), params
    ).rowcount

    own_patterns, own_addresses = delete_criterion(conn, criterion_id)

    return (
        int(subdomains or 0),
        int(child_patterns or 0) + own_patterns,
        int(child_addresses or 0) + own_addresses,
    )


def count_children(conn: Connection, criterion_id: int) -> tuple[int, int, int]:
    """Return (subdomains, subject patterns, address patterns) under a criterion."""

    row = conn.execute(
        text(
            """
            SELECT
                (SELECT COUNT(*) FROM criterion WHERE parent_id = :id),
                (SELECT COUNT(*) FROM subject_pattern WHERE criterion_id = :id),
                (SELECT COUNT(*) FROM address_pattern WHERE criterion_id = :id)
            """
        ),
        {"id": criterion_id},
    ).fetchone()
    return int(row[0]), int(row[1]), int(row[2])


def list_subdomains(conn: Connection, parent_id: int) -> list[SubdomainSummary]:
    rows = conn.execute(
        text(
            """
            SELECT c.id, c.key_value, c.default_action, COUNT(p.id) AS pattern_count
            FROM criterion c
            LEFT JOIN subject_pattern p ON p.criterion_id = c.id
            WHERE c.parent_id = :parent_id
            GROUP BY c.id, c.key_value, c.default_action
            ORDER BY c.key_value ASC
            """
        ),
        {"parent_id": parent_id},
    ).fetchall()

    return [
        SubdomainSummary(id=r[0], subdomain=r[1], action=r[2], pattern_count=int(r[3]))
        for r in rows
    ]


# --- subject patterns -------------------------------------------------------


def list_subject_patterns(conn: Connection, criterion_id: int) -> list[SubjectPattern]:
    rows = conn.execute(
        text(
            """
            SELECT id, criterion_id, action, pattern
            FROM subject_pattern
            WHERE criterion_id = :id
            ORDER BY id ASC
            """
        ),
        {"id": criterion_id},
    ).fetchall()
    return [SubjectPattern.model_validate(dict(r._mapping)) for r in rows]


def find_subject_pattern(
    conn: Connection, criterion_id: int, action: Action, pattern: str
) -> SubjectPattern | None:
    row = conn.execute(
        text(
            """
            SELECT id, criterion_id, action, pattern
            FROM subject_pattern
            WHERE criterion_id = :id AND action = :action AND pattern = :pattern
            """
        ),
        {"id": criterion_id, "action": action.value, "pattern": pattern},
    ).fetchone()
    return SubjectPattern.model_validate(dict(row._mapping)) if row else None


def insert_subject_pattern(
    conn: Connection, criterion_id: int, action: Action, pattern: str
) -> tuple[SubjectPattern, bool]:
    """Insert a subject pattern; an identical (criterion, action, pattern) is a no-op."""

    row = conn.execute(
        text(
            """
            INSERT INTO subject_pattern (criterion_id, action, pattern)
            VALUES (:id, :action, :pattern)
            ON CONFLICT DO NOTHING
            RETURNING id
            """
        ),
        {"id": criterion_id, "action": action.value, "pattern": pattern},
    ).fetchone()

    if row is not None:
        return (
            SubjectPattern(id=int(row[0]), criterion_id=criterion_id, action=action, pattern=pattern),
            True,
        )

    existing = find_subject_pattern(conn, criterion_id, action, pattern)
    if existing is None:
        raise StorageError(f"Subject pattern insert for {pattern!r} conflicted but no row was found")
    return existing, False


def move_subject_pattern(conn: Connection, pattern_id: int, action: Action) -> None:
    conn.execute(
        text("UPDATE subject_pattern SET action = :action WHERE id = :id"),
        {"id": pattern_id, "action": action.value},
    )


def delete_subject_pattern(conn: Connection, pattern_id: int) -> int:
    n = conn.execute(text("DELETE FROM subject_pattern WHERE id = :id"), {"id": pattern_id}).rowcount
    return int(n or 0)


def delete_subject_patterns(
    conn: Connection, criterion_id: int, pattern: str, action: Action | None = None
) -> int:
    """Delete a pattern under one action, or under every action when action is None."""

    if action is None:
        q = text("DELETE FROM subject_pattern WHERE criterion_id = :id AND pattern = :pattern")
        params = {"id": criterion_id, "pattern": pattern}
    else:
        q = text(
            """
            DELETE FROM subject_pattern
            WHERE criterion_id = :id AND pattern = :pattern AND action = :action
            """
        )
        params = {"id": criterion_id, "pattern": pattern, "action": action.value}
    return int(conn.execute(q, params).rowcount or 0)


# --- address patterns -------------------------------------------------------


def list_address_patterns(
    conn: Connection, criterion_id: int, direction: Direction
) -> list[AddressPattern]:
    rows = conn.execute(
        text(
            """
            SELECT id, criterion_id, direction, action, address
            FROM address_pattern
            WHERE criterion_id = :id AND direction = :direction
            ORDER BY address ASC
            """
        ),
        {"id": criterion_id, "direction": direction.value},
    ).fetchall()
    return [AddressPattern.model_validate(dict(r._mapping)) for r in rows]


def find_address_pattern(
    conn: Connection, criterion_id: int, direction: Direction, address: str
) -> AddressPattern | None:
    row = conn.execute(
        text(
            """
            SELECT id, criterion_id, direction, action, address
            FROM address_pattern
            WHERE criterion_id = :id AND direction = :direction AND address = :address
            """
        ),
        {"id": criterion_id, "direction": direction.value, "address": address},
    ).fetchone()
    return AddressPattern.model_validate(dict(row._mapping)) if row else None


def upsert_address_pattern(
    conn: Connection, criterion_id: int, direction: Direction, address: str, action: Action
) -> int:
    """Insert an address pattern or overwrite the action of the existing one."""

    row = conn.execute(
        text(
            """
            INSERT INTO address_pattern (criterion_id, direction, action, address)
            VALUES (:id, :direction, :action, :address)
            ON CONFLICT (criterion_id, direction, address)
            DO UPDATE SET action = excluded.action
            RETURNING id
            """
        ),
        {
            "id": criterion_id,
            "direction": direction.value,
            "action": action.value,
            "address": address,
        },
    ).fetchone()
    return int(row[0])


def delete_address_pattern(
    conn: Connection, criterion_id: int, direction: Direction, address: str
) -> int:
    n = conn.execute(
        text(
            """
            DELETE FROM address_pattern
            WHERE criterion_id = :id AND direction = :direction AND address = :address
            """
        ),
        {"id": criterion_id, "direction": direction.value, "address": address},
    ).rowcount
    return int(n or 0)


# --- whole-owner reads ------------------------------------------------------


def load_owner_rules(
    conn: Connection, owner_user_id: str
) -> tuple[list[Criterion], list[SubjectPattern], list[AddressPattern]]:
    """Load every rule row belonging to one owner."""

    criteria = [
        _criterion(r)
        for r in conn.execute(
            text(
                f"""
                SELECT {_CRITERION_COLUMNS}
                FROM criterion
                WHERE owner_user_id = :owner
                ORDER BY id ASC
                """
            ),
            {"owner": owner_user_id},
        ).fetchall()
    ]

    patterns = [
        SubjectPattern.model_validate(dict(r._mapping))
        for r in conn.execute(
            text(
                """
                SELECT p.id, p.criterion_id, p.action, p.pattern
                FROM subject_pattern p
                JOIN criterion c ON c.id = p.criterion_id
                WHERE c.owner_user_id = :owner
                ORDER BY p.id ASC
                """
            ),
            {"owner": owner_user_id},
        ).fetchall()
    ]

    addresses = [
        AddressPattern.model_validate(dict(r._mapping))
        for r in conn.execute(
            text(
                """
                SELECT a.id, a.criterion_id, a.direction, a.action, a.address
                FROM address_pattern a
                JOIN criterion c ON c.id = a.criterion_id
                WHERE c.owner_user_id = :owner
                ORDER BY a.id ASC
                """
            ),
            {"owner": owner_user_id},
        ).fetchall()
    ]

    return criteria, patterns, addresses


def rule_stats(conn: Connection, owner_user_id: str) -> RuleStats:
    row = conn.execute(
        text(
            """
            SELECT
                COUNT(*),
                COALESCE(SUM(CASE WHEN default_action = 'keep' THEN 1 ELSE 0 END), 0),
                COALESCE(SUM(CASE WHEN default_action = 'delete' THEN 1 ELSE 0 END), 0),
                COALESCE(SUM(CASE WHEN default_action = 'delete_1d' THEN 1 ELSE 0 END), 0),
                COALESCE(SUM(CASE WHEN default_action = 'delete_10d' THEN 1 ELSE 0 END), 0),
                (
                    SELECT COUNT(DISTINCT p.criterion_id)
                    FROM subject_pattern p
                    JOIN criterion pc ON pc.id = p.criterion_id
                    WHERE pc.owner_user_id = :owner
                ),
                COALESCE(SUM(CASE WHEN key_kind = 'subdomain' THEN 1 ELSE 0 END), 0),
                (
                    SELECT COUNT(DISTINCT a.criterion_id)
                    FROM address_pattern a
                    JOIN criterion ac ON ac.id = a.criterion_id
                    WHERE ac.owner_user_id = :owner
                )
            FROM criterion
            WHERE owner_user_id = :owner
            """
        ),
        {"owner": owner_user_id},
    ).fetchone()

    return RuleStats(
        total_criteria=int(row[0]),
        default_keep=int(row[1]),
        default_delete=int(row[2]),
        default_delete_1d=int(row[3]),
        default_delete_10d=int(row[4]),
        with_subject_patterns=int(row[5]),
        subdomains=int(row[6]),
        with_address_patterns=int(row[7]),
    )


def get_rule_stats(*, engine, owner_user_id: str) -> RuleStats:
    """Return rule counts for one owner."""

    owner = require_owner(owner_user_id)
    with engine.begin() as conn:
        return rule_stats(conn, owner)
