"""Classification engine.

Resolves one action per pending message with a fixed priority cascade; the
first matching step wins:

1. sender address is an email criterion with a default action
2. sender in the effective criterion's from/keep addresses
3. sender in from/delete
4. recipient in to/keep
5. recipient in to/delete
6-9. subject contains a keep, delete, delete_1d, delete_10d pattern
10. effective criterion's default action
11. nothing matched: 'undecided'

The effective criterion is the subdomain criterion when the message's sender
host has one under its primary domain, else the primary domain criterion.
Addresses match exactly, subjects by substring, both case-insensitively.
"""

from __future__ import annotations

import structlog
from sqlalchemy.engine import Connection

from retention_rules.domain import DomainParser, DotCountDomainParser
from retention_rules.exceptions import require_owner
from retention_rules.models import (
    SUBJECT_ACTION_PRIORITY,
    Action,
    ClassificationResult,
    EvaluationSummary,
    PendingMessage,
)
from retention_rules.repository import message_repository
from retention_rules.rules.cache import RuleSetCache
from retention_rules.rules.snapshot import RuleSet, load_rule_set

logger = structlog.get_logger()


def classify(
    message: PendingMessage,
    rule_set: RuleSet,
    parser: DomainParser | None = None,
) -> ClassificationResult:
    """Resolve the action for a single message. Never touches the store."""

    sender = (message.from_email or "").strip().lower()
    recipient = (message.to_email or "").strip().lower()
    subject = (message.subject or "").lower()

    email_rules = rule_set.emails.get(sender) if sender else None
    if email_rules is not None and email_rules.default_action is not None:
        return ClassificationResult(
            action=email_rules.default_action,
            matched_rule="email_key.default",
            matched_pattern=sender,
        )

    primary = message.primary_domain
    subdomain = message.subdomain
    if not primary and sender:
        p = parser or DotCountDomainParser()
        host = p.domain_of(sender)
        primary = p.primary_domain(host)
        subdomain = host if p.has_subdomain(host) else None

    rules = rule_set.effective(primary, subdomain)
    if rules is None:
        return ClassificationResult()

    for address, addresses, label in (
        (sender, rules.from_addresses, "fromEmails"),
        (recipient, rules.to_addresses, "toEmails"),
    ):
        if not address:
            continue
        for action in (Action.KEEP, Action.DELETE):
            if addresses.get(address) == action:
                return ClassificationResult(
                    action=action, matched_rule=f"{label}.{action.value}", matched_pattern=address
                )

    if subject:
        for action in SUBJECT_ACTION_PRIORITY:
            # Patterns are in row id order; the earliest match wins.
            for pattern in rules.subject_patterns.get(action, ()):
                if pattern and pattern in subject:
                    return ClassificationResult(
                        action=action, matched_rule=f"pattern.{action.value}", matched_pattern=pattern
                    )

    if rules.default_action is not None:
        return ClassificationResult(
            action=rules.default_action, matched_rule="default", matched_pattern=primary
        )

    return ClassificationResult()


class ClassificationEngine:
    """Batch-evaluates pending messages against the rule store.

    Args:
        engine: SQLAlchemy engine bound to the rule store.
        cache: Optional rule snapshot cache shared with the mutation engine.
        parser: Domain parser for messages stored without derived domains.
    """

    def __init__(
        self,
        engine,
        *,
        cache: RuleSetCache | None = None,
        parser: DomainParser | None = None,
    ) -> None:
        self._engine = engine
        self._cache = cache
        self._parser = parser or DotCountDomainParser()

    def rule_set(self, owner_user_id: str) -> RuleSet:
        """Current rule snapshot for an owner (cached when a cache is configured)."""

        owner = require_owner(owner_user_id)
        with self._engine.connect() as conn:
            return self._rule_set(conn, owner)

    def _rule_set(self, conn: Connection, owner: str) -> RuleSet:
        if self._cache is None:
            return load_rule_set(conn, owner)
        return self._cache.get(owner, lambda: load_rule_set(conn, owner))

    def _evaluate_owner(self, conn: Connection, owner: str) -> EvaluationSummary:
        """Classify one owner's pending messages and write the results on `conn`."""

        rule_set = self._rule_set(conn, owner)
        summary = EvaluationSummary()
        results = []
        for m in message_repository.load_pending(conn, owner):
            result = classify(m, rule_set, self._parser)
            summary.record(result)
            results.append((m.id, result))
        message_repository.write_results(conn, results)
        return summary

    def preview(self, message: PendingMessage) -> ClassificationResult:
        """Classify one message against its owner's current rules without storing anything."""

        return classify(message, self.rule_set(message.owner_user_id), self._parser)

    def evaluate_pending(self, owner_user_id: str | None) -> EvaluationSummary:
        """Evaluate every pending message of one owner and write the results back.

        Raises:
            ValidationError: If the owner is missing or blank.
        """

        owner = require_owner(owner_user_id)
        with self._engine.begin() as conn:
            summary = self._evaluate_owner(conn, owner)

        logger.info("pending_messages_evaluated", owner_user_id=owner, **summary.model_dump())
        return summary

    def evaluate_all_pending(self) -> EvaluationSummary:
        """Evaluate every owner's pending messages, each under its own rules.

        The whole sweep is one transaction: a failure for any owner leaves
        every message as it was.
        """

        total = EvaluationSummary()
        with self._engine.begin() as conn:
            owners = message_repository.list_pending_owners(conn)
            for owner in owners:
                total.merge(self._evaluate_owner(conn, owner))

        logger.info("all_pending_messages_evaluated", owners=len(owners), **total.model_dump())
        return total
