"""Rule store schema.

Tables are declared with SQLAlchemy Core so the same definitions work against
SQLite (local use, tests) and Postgres. `ensure_schema` is idempotent and safe
to call on every startup.

Tables:
- criterion (domain / subdomain / email keys, partitioned by owner)
- subject_pattern, address_pattern (rules attached to a criterion)
- audit_log (append-only mutation trail)
- pending_message (externally supplied messages annotated by the classifier)
- app_user (owners seen by the ownership migration)
"""

from __future__ import annotations

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)

metadata = MetaData()

_ACTIONS = "'keep', 'delete', 'delete_1d', 'delete_10d'"

criterion = Table(
    "criterion",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_user_id", String(255), nullable=False),
    Column("key_value", String(255), nullable=False),
    Column("key_kind", String(20), nullable=False),
    Column("default_action", String(20), nullable=True),
    Column("parent_id", Integer, ForeignKey("criterion.id", ondelete="CASCADE"), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint("key_kind IN ('domain', 'subdomain', 'email')", name="chk_criterion_key_kind"),
    CheckConstraint(
        f"default_action IS NULL OR default_action IN ({_ACTIONS})",
        name="chk_criterion_default_action",
    ),
    CheckConstraint(
        "(key_kind = 'subdomain') = (parent_id IS NOT NULL)",
        name="chk_criterion_parent",
    ),
)

# Top-level keys are unique per (owner, kind, key); subdomains per parent as well.
Index(
    "uq_criterion_scope",
    criterion.c.owner_user_id,
    criterion.c.key_kind,
    criterion.c.key_value,
    func.coalesce(criterion.c.parent_id, 0),
    unique=True,
)
Index("idx_criterion_owner", criterion.c.owner_user_id)
Index("idx_criterion_parent", criterion.c.parent_id)

subject_pattern = Table(
    "subject_pattern",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "criterion_id",
        Integer,
        ForeignKey("criterion.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("action", String(20), nullable=False),
    Column("pattern", String(500), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    UniqueConstraint("criterion_id", "action", "pattern", name="uq_subject_pattern"),
    CheckConstraint(f"action IN ({_ACTIONS})", name="chk_subject_pattern_action"),
)

address_pattern = Table(
    "address_pattern",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "criterion_id",
        Integer,
        ForeignKey("criterion.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("direction", String(4), nullable=False),
    Column("action", String(20), nullable=False),
    Column("address", String(255), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    UniqueConstraint("criterion_id", "direction", "address", name="uq_address_pattern"),
    CheckConstraint("direction IN ('from', 'to')", name="chk_address_pattern_direction"),
    CheckConstraint("action IN ('keep', 'delete')", name="chk_address_pattern_action"),
)

audit_log = Table(
    "audit_log",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_user_id", String(255), nullable=False),
    Column("action_type", String(10), nullable=False),
    Column("table_name", String(50), nullable=False),
    Column("record_id", Integer, nullable=True),
    Column("domain", String(255), nullable=True),
    Column("details_json", Text, nullable=False, server_default="{}"),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
Index("idx_audit_owner", audit_log.c.owner_user_id)
Index("idx_audit_created_at", audit_log.c.created_at)

pending_message = Table(
    "pending_message",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("message_id", String(100), nullable=False),
    Column("owner_user_id", String(255), nullable=False),
    Column("from_email", String(255), nullable=False, server_default=""),
    Column("to_email", String(255), nullable=False, server_default=""),
    Column("subject", String(500), nullable=False, server_default=""),
    Column("primary_domain", String(255), nullable=True),
    Column("subdomain", String(255), nullable=True),
    Column("email_date", DateTime(timezone=True), nullable=True),
    Column("received_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("action", String(20), nullable=True),
    Column("matched_rule", String(100), nullable=True),
    Column("matched_pattern", String(500), nullable=True),
    Column("evaluated_at", DateTime(timezone=True), nullable=True),
    UniqueConstraint("message_id", "owner_user_id", name="uq_pending_message_owner"),
)
Index("idx_pending_owner", pending_message.c.owner_user_id)
Index("idx_pending_action", pending_message.c.owner_user_id, pending_message.c.action)

app_user = Table(
    "app_user",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("first_login", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("last_login", DateTime(timezone=True), nullable=False, server_default=func.now()),
)


def ensure_schema(engine) -> None:
    """Ensure required tables and indexes exist (idempotent).

    Args:
        engine: SQLAlchemy engine bound to the rule store database.
    """

    metadata.create_all(engine, checkfirst=True)
