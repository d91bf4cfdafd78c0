"""Request vocabulary and result models of the rule mutation engine."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from retention_rules.models.rule import Action, AddressPattern, Criterion, SubjectPattern


class Operation(str, Enum):
    """Mutation engine operations."""

    ADD = "ADD"
    REMOVE = "REMOVE"
    UPDATE = "UPDATE"
    CLEAR = "CLEAR"
    GET = "GET"


class Dimension(str, Enum):
    """Rule dimensions an operation can target."""

    DOMAIN = "domain"
    SUBDOMAIN = "subdomain"
    EMAIL = "email"
    SUBJECT = "subject"
    FROM_EMAIL = "from_email"
    TO_EMAIL = "to_email"


class RuleLevel(str, Enum):
    """Target level of a quick-add rule built from a concrete message."""

    DOMAIN = "domain"
    SUBDOMAIN = "subdomain"
    FROM_EMAIL = "from_email"
    TO_EMAIL = "to_email"


class CriterionDetail(BaseModel):
    """A criterion together with aggregate counts of what hangs off it."""

    criterion: Criterion
    subdomain_count: int = 0
    pattern_count: int = 0
    address_pattern_count: int = 0
    patterns: list[SubjectPattern] = Field(default_factory=list)


class SubdomainSummary(BaseModel):
    """One entry of a subdomain listing under a parent domain."""

    id: int
    subdomain: str
    action: Action | None = None
    pattern_count: int = 0


class ModifyResult(BaseModel):
    """Outcome of a single `modify` call."""

    success: bool
    message: str
    record_id: int | None = None
    audit_id: int | None = None

    # Only populated for GET.
    criterion: CriterionDetail | None = None
    subdomains: list[SubdomainSummary] | None = None
    subject_patterns: list[SubjectPattern] | None = None
    address_patterns: list[AddressPattern] | None = None


class QuickAddResult(BaseModel):
    """Outcome of a quick-add rule built from raw message fields."""

    success: bool
    message: str
    criterion_id: int | None = None
    level: RuleLevel | None = None
    action: Action | None = None
