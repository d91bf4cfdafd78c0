"""Unit tests for the rule store schema."""

from __future__ import annotations

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError

from retention_rules.db import check_connection, ensure_schema


def test_ensure_schema_is_idempotent(engine) -> None:
    ensure_schema(engine)
    ensure_schema(engine)

    tables = set(inspect(engine).get_table_names())
    assert {
        "criterion",
        "subject_pattern",
        "address_pattern",
        "audit_log",
        "pending_message",
        "app_user",
    } <= tables


def test_sqlite_foreign_keys_enabled(engine) -> None:
    check_connection(engine)
    with engine.connect() as conn:
        assert conn.execute(text("PRAGMA foreign_keys")).scalar_one() == 1


def test_top_level_key_unique_per_owner(engine) -> None:
    insert = text(
        "INSERT INTO criterion (owner_user_id, key_value, key_kind) VALUES (:owner, 'a.com', 'domain')"
    )
    with engine.begin() as conn:
        conn.execute(insert, {"owner": "a@x.com"})
        conn.execute(insert, {"owner": "b@x.com"})

    with pytest.raises(IntegrityError):
        with engine.begin() as conn:
            conn.execute(insert, {"owner": "a@x.com"})


def test_subdomain_requires_parent(engine) -> None:
    with pytest.raises(IntegrityError):
        with engine.begin() as conn:
            conn.execute(
                text(
                    "INSERT INTO criterion (owner_user_id, key_value, key_kind) "
                    "VALUES ('a@x.com', 'x.a.com', 'subdomain')"
                )
            )


def test_address_pattern_rejects_short_retention(engine) -> None:
    with engine.begin() as conn:
        cid = conn.execute(
            text(
                "INSERT INTO criterion (owner_user_id, key_value, key_kind) "
                "VALUES ('a@x.com', 'a.com', 'domain') RETURNING id"
            )
        ).scalar_one()

    with pytest.raises(IntegrityError):
        with engine.begin() as conn:
            conn.execute(
                text(
                    "INSERT INTO address_pattern (criterion_id, direction, action, address) "
                    "VALUES (:cid, 'from', 'delete_1d', 'n@a.com')"
                ),
                {"cid": cid},
            )
