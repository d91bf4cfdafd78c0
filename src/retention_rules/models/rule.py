"""Rule store records and the closed vocabularies they are built from."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Action(str, Enum):
    """Retention action attached to a rule."""

    KEEP = "keep"
    DELETE = "delete"
    DELETE_1D = "delete_1d"
    DELETE_10D = "delete_10d"


# Subject patterns are checked in this order within one effective criterion.
SUBJECT_ACTION_PRIORITY: tuple[Action, ...] = (
    Action.KEEP,
    Action.DELETE,
    Action.DELETE_1D,
    Action.DELETE_10D,
)

# Address patterns only carry keep/delete.
ADDRESS_ACTIONS: frozenset[Action] = frozenset({Action.KEEP, Action.DELETE})

# Minimum message age before a resolved delete-type action is due.
DELETE_AGE_DAYS: dict[Action, int] = {
    Action.DELETE: 0,
    Action.DELETE_1D: 1,
    Action.DELETE_10D: 10,
}


class KeyKind(str, Enum):
    """Kind of key a criterion is indexed by."""

    DOMAIN = "domain"
    SUBDOMAIN = "subdomain"
    EMAIL = "email"


class Direction(str, Enum):
    """Which address of a message an address pattern applies to."""

    FROM = "from"
    TO = "to"


class AuditAction(str, Enum):
    """Audit log action types."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    ERROR = "error"


class Criterion(BaseModel):
    """A rule-bearing key (domain, subdomain or exact email) owned by one user."""

    id: int
    owner_user_id: str
    key_value: str
    key_kind: KeyKind
    default_action: Action | None = None
    parent_id: int | None = Field(
        default=None, description="Parent domain criterion id (subdomains only)"
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SubjectPattern(BaseModel):
    """Case-folded substring rule attached to a criterion."""

    id: int
    criterion_id: int
    action: Action
    pattern: str


class AddressPattern(BaseModel):
    """Exact-match sender/recipient rule attached to a criterion."""

    id: int
    criterion_id: int
    direction: Direction
    action: Action
    address: str


class AuditLogEntry(BaseModel):
    """Immutable record of one rule store mutation."""

    id: int
    owner_user_id: str
    action_type: AuditAction
    table_name: str
    record_id: int | None = None
    domain: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class RuleStats(BaseModel):
    """Per-owner counts over the rule store."""

    total_criteria: int = 0
    default_keep: int = 0
    default_delete: int = 0
    default_delete_1d: int = 0
    default_delete_10d: int = 0
    with_subject_patterns: int = 0
    subdomains: int = 0
    with_address_patterns: int = 0


class UserDataCounts(BaseModel):
    """Rows held (or removed) for one owner, per table."""

    criteria: int = 0
    subject_patterns: int = 0
    address_patterns: int = 0
    audit_log: int = 0
