"""Read-only per-owner snapshot of the rule hierarchy.

The classification engine matches messages against a `RuleSet` instead of
querying the store per message. Snapshots are immutable and safe to share
between threads through the rule set cache.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.engine import Connection

from retention_rules.exceptions import ValidationError
from retention_rules.models import (
    SUBJECT_ACTION_PRIORITY,
    Action,
    Direction,
    KeyKind,
)
from retention_rules.repository import criteria_repository


@dataclass(frozen=True)
class CriterionRules:
    """Rules attached to one criterion."""

    criterion_id: int
    key: str
    default_action: Action | None = None
    # action -> patterns in insertion (row id) order
    subject_patterns: dict[Action, tuple[str, ...]] = field(default_factory=dict)
    from_addresses: dict[str, Action] = field(default_factory=dict)
    to_addresses: dict[str, Action] = field(default_factory=dict)
    subdomains: dict[str, "CriterionRules"] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"default": self.default_action.value if self.default_action else None}
        for action in SUBJECT_ACTION_PRIORITY:
            patterns = self.subject_patterns.get(action)
            if patterns:
                out[action.value] = list(patterns)
        for name, addresses in (("from_emails", self.from_addresses), ("to_emails", self.to_addresses)):
            if addresses:
                grouped: dict[str, list[str]] = {}
                for address, action in sorted(addresses.items()):
                    grouped.setdefault(action.value, []).append(address)
                out[name] = grouped
        if self.subdomains:
            out["subdomains"] = {k: v.as_dict() for k, v in sorted(self.subdomains.items())}
        return out


@dataclass(frozen=True)
class RuleSet:
    """Every rule one owner has defined, keyed for lookup."""

    owner_user_id: str
    domains: dict[str, CriterionRules] = field(default_factory=dict)
    emails: dict[str, CriterionRules] = field(default_factory=dict)

    def effective(self, primary_domain: str | None, subdomain: str | None) -> CriterionRules | None:
        """Subdomain rules when defined under the primary domain, else the domain's."""

        domain = self.domains.get((primary_domain or "").lower())
        if domain is None:
            return None
        if subdomain:
            sub = domain.subdomains.get(subdomain.lower())
            if sub is not None:
                return sub
        return domain

    def as_nested_dict(self) -> dict[str, Any]:
        """Export the hierarchy as plain data (domain -> rules, email -> default)."""

        return {
            "owner_user_id": self.owner_user_id,
            "domains": {k: v.as_dict() for k, v in sorted(self.domains.items())},
            "emails": {
                k: v.default_action.value if v.default_action else None
                for k, v in sorted(self.emails.items())
            },
        }

    def search(self, query: str | None) -> list[dict[str, Any]]:
        """Domain and email keys containing `query`, each with its rules.

        Raises:
            ValidationError: If the query is empty.
        """

        q = (query or "").strip().lower()
        if not q:
            raise ValidationError("Query parameter q is required")

        matches = [
            {"key": k, "kind": "domain", "rules": v.as_dict()}
            for k, v in sorted(self.domains.items())
            if q in k
        ]
        matches.extend(
            {"key": k, "kind": "email", "rules": v.as_dict()}
            for k, v in sorted(self.emails.items())
            if q in k
        )
        return matches


def load_rule_set(conn: Connection, owner_user_id: str) -> RuleSet:
    """Build a snapshot of an owner's rules from the store."""

    criteria, patterns, addresses = criteria_repository.load_owner_rules(conn, owner_user_id)

    by_criterion_patterns: dict[int, dict[Action, list[str]]] = {}
    for p in patterns:
        by_criterion_patterns.setdefault(p.criterion_id, {}).setdefault(p.action, []).append(
            p.pattern
        )

    by_criterion_from: dict[int, dict[str, Action]] = {}
    by_criterion_to: dict[int, dict[str, Action]] = {}
    for a in addresses:
        target = by_criterion_from if a.direction == Direction.FROM else by_criterion_to
        target.setdefault(a.criterion_id, {})[a.address] = a.action

    def _rules(c, subdomains=None) -> CriterionRules:
        return CriterionRules(
            criterion_id=c.id,
            key=c.key_value,
            default_action=c.default_action,
            subject_patterns={
                k: tuple(v) for k, v in by_criterion_patterns.get(c.id, {}).items()
            },
            from_addresses=by_criterion_from.get(c.id, {}),
            to_addresses=by_criterion_to.get(c.id, {}),
            subdomains=subdomains or {},
        )

    children: dict[int, dict[str, CriterionRules]] = {}
    for c in criteria:
        if c.key_kind == KeyKind.SUBDOMAIN and c.parent_id is not None:
            children.setdefault(c.parent_id, {})[c.key_value] = _rules(c)

    domains: dict[str, CriterionRules] = {}
    emails: dict[str, CriterionRules] = {}
    for c in criteria:
        if c.key_kind == KeyKind.DOMAIN:
            domains[c.key_value] = _rules(c, children.get(c.id))
        elif c.key_kind == KeyKind.EMAIL:
            emails[c.key_value] = _rules(c)

    return RuleSet(owner_user_id=owner_user_id, domains=domains, emails=emails)
