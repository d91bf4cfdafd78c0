"""Rule mutation engine.

Single entry point for changing the rule store. Every call is validated before
any I/O, runs in one transaction, writes the audit log and invalidates the
owner's cached rule snapshot once committed.

`modify` covers the Operation x Dimension grid (ADD / REMOVE / UPDATE / CLEAR /
GET over domain, subdomain, email, subject, from_email, to_email).
`add_rule` builds a rule from a concrete message ("quick add").
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

import structlog
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from retention_rules.domain import DomainParser, DotCountDomainParser
from retention_rules.exceptions import ValidationError, require_owner
from retention_rules.models import (
    ADDRESS_ACTIONS,
    Action,
    AuditAction,
    Criterion,
    CriterionDetail,
    Dimension,
    Direction,
    KeyKind,
    ModifyResult,
    Operation,
    QuickAddResult,
    RuleLevel,
)
from retention_rules.repository import audit_repository, criteria_repository
from retention_rules.rules.cache import RuleSetCache

logger = structlog.get_logger()

_TABLES = {
    Dimension.DOMAIN: "criterion",
    Dimension.SUBDOMAIN: "criterion",
    Dimension.EMAIL: "criterion",
    Dimension.SUBJECT: "subject_pattern",
    Dimension.FROM_EMAIL: "address_pattern",
    Dimension.TO_EMAIL: "address_pattern",
}

_PARENT_DIMENSIONS = frozenset(
    {Dimension.SUBDOMAIN, Dimension.SUBJECT, Dimension.FROM_EMAIL, Dimension.TO_EMAIL}
)
_ADDRESS_DIMENSIONS = {Dimension.FROM_EMAIL: Direction.FROM, Dimension.TO_EMAIL: Direction.TO}

# GET on these lists what hangs off the parent; no key needed.
_KEYLESS_GET = frozenset(_PARENT_DIMENSIONS)


@dataclass(frozen=True)
class MutationRequest:
    """A validated, normalized `modify` call."""

    operation: Operation
    dimension: Dimension
    owner: str
    key: str | None = None
    action: Action | None = None
    parent_domain: str | None = None
    parent_subdomain: str | None = None
    old_action: Action | None = None

    @property
    def context_domain(self) -> str | None:
        return self.parent_domain or self.key


Handler = Callable[[Connection, MutationRequest], ModifyResult]


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = str(value).strip().lower()
    return value or None


def _parse_action(value: Action | str | None, field: str = "action") -> Action | None:
    if isinstance(value, Action):
        return value
    raw = _clean(value)
    if raw is None:
        return None
    try:
        return Action(raw)
    except ValueError as exc:
        raise ValidationError(
            f"Invalid {field}: {raw}. Must be one of: {', '.join(a.value for a in Action)}"
        ) from exc


def _expand_subdomain(label: str, parent_domain: str) -> str:
    """Full host for a subdomain key; a bare label is qualified with its parent."""

    if label == parent_domain:
        raise ValidationError(f"Subdomain {label} must differ from its parent domain")
    if label.endswith("." + parent_domain):
        return label
    return f"{label}.{parent_domain}"


def _action_text(action: Action | None) -> str:
    return action.value if action else "null"


def _failure(message: str, **kwargs: Any) -> ModifyResult:
    return ModifyResult(success=False, message=message, **kwargs)


class RuleMutationEngine:
    """Applies rule mutations for one store.

    Args:
        engine: SQLAlchemy engine bound to the rule store.
        parser: Domain parser used to derive keys for quick-add.
        cache: Rule snapshot cache to invalidate after committed mutations.
    """

    def __init__(
        self,
        engine,
        *,
        parser: DomainParser | None = None,
        cache: RuleSetCache | None = None,
    ) -> None:
        self._engine = engine
        self._parser = parser or DotCountDomainParser()
        self._cache = cache

        self._handlers: dict[tuple[Operation, Dimension], Handler] = {
            (Operation.ADD, Dimension.DOMAIN): self._add_top_level,
            (Operation.REMOVE, Dimension.DOMAIN): self._remove_top_level,
            (Operation.UPDATE, Dimension.DOMAIN): self._update_top_level,
            (Operation.CLEAR, Dimension.DOMAIN): self._clear_domain,
            (Operation.GET, Dimension.DOMAIN): self._get_top_level,
            (Operation.ADD, Dimension.EMAIL): self._add_top_level,
            (Operation.REMOVE, Dimension.EMAIL): self._remove_top_level,
            (Operation.UPDATE, Dimension.EMAIL): self._update_top_level,
            (Operation.GET, Dimension.EMAIL): self._get_top_level,
            (Operation.ADD, Dimension.SUBDOMAIN): self._add_subdomain,
            (Operation.REMOVE, Dimension.SUBDOMAIN): self._remove_subdomain,
            (Operation.UPDATE, Dimension.SUBDOMAIN): self._update_subdomain,
            (Operation.GET, Dimension.SUBDOMAIN): self._get_subdomain,
            (Operation.ADD, Dimension.SUBJECT): self._add_subject,
            (Operation.REMOVE, Dimension.SUBJECT): self._remove_subject,
            (Operation.UPDATE, Dimension.SUBJECT): self._update_subject,
            (Operation.GET, Dimension.SUBJECT): self._get_subject,
            (Operation.ADD, Dimension.FROM_EMAIL): self._add_address,
            (Operation.REMOVE, Dimension.FROM_EMAIL): self._remove_address,
            (Operation.UPDATE, Dimension.FROM_EMAIL): self._update_address,
            (Operation.GET, Dimension.FROM_EMAIL): self._get_address,
            (Operation.ADD, Dimension.TO_EMAIL): self._add_address,
            (Operation.REMOVE, Dimension.TO_EMAIL): self._remove_address,
            (Operation.UPDATE, Dimension.TO_EMAIL): self._update_address,
            (Operation.GET, Dimension.TO_EMAIL): self._get_address,
        }

    @property
    def supported(self) -> frozenset[tuple[Operation, Dimension]]:
        return frozenset(self._handlers)

    # ------------------------------------------------------------------ modify

    def modify(
        self,
        operation: Operation | str,
        dimension: Dimension | str,
        owner_user_id: str | None,
        key_value: str | None = None,
        action: Action | str | None = None,
        parent_domain: str | None = None,
        parent_subdomain: str | None = None,
        old_action: Action | str | None = None,
    ) -> ModifyResult:
        """Apply one rule mutation (or query) for an owner.

        Returns:
            ModifyResult: `success=False` for validation failures, UPDATE
            targets that do not exist and storage errors. REMOVE/CLEAR/GET of
            an absent target succeed with a "not found" message.
        """

        try:
            req = self._validate(
                operation,
                dimension,
                owner_user_id,
                key_value,
                action,
                parent_domain,
                parent_subdomain,
                old_action,
            )
        except ValidationError as exc:
            logger.warning(
                "criteria_modify_rejected",
                operation=str(operation),
                dimension=str(dimension),
                error=str(exc),
            )
            return _failure(str(exc))

        handler = self._handlers[(req.operation, req.dimension)]

        try:
            with self._engine.begin() as conn:
                result = handler(conn, req)
        except Exception as exc:  # noqa: BLE001
            return self._storage_failure(req, exc)

        if result.success and req.operation != Operation.GET:
            self._invalidate(req.owner)

        logger.info(
            "criteria_modified",
            operation=req.operation.value,
            dimension=req.dimension.value,
            owner_user_id=req.owner,
            key=req.key,
            success=result.success,
            record_id=result.record_id,
            audit_id=result.audit_id,
        )
        return result

    def _validate(
        self,
        operation,
        dimension,
        owner_user_id,
        key_value,
        action,
        parent_domain,
        parent_subdomain,
        old_action,
    ) -> MutationRequest:
        owner = require_owner(owner_user_id)

        try:
            op = operation if isinstance(operation, Operation) else Operation(str(operation).strip().upper())
        except ValueError as exc:
            raise ValidationError(f"Unknown operation: {operation}") from exc
        try:
            dim = dimension if isinstance(dimension, Dimension) else Dimension(str(dimension).strip().lower())
        except ValueError as exc:
            raise ValidationError(f"Unknown dimension: {dimension}") from exc

        if (op, dim) not in self._handlers:
            raise ValidationError(f"{op.value} is not supported for dimension {dim.value}")

        key = _clean(key_value)
        act = _parse_action(action)
        old = _parse_action(old_action, "old_action")
        parent = _clean(parent_domain)
        parent_sub = _clean(parent_subdomain)

        if key is None and not (op == Operation.GET and dim in _KEYLESS_GET):
            raise ValidationError("key_value is required")
        if op in (Operation.ADD, Operation.UPDATE) and act is None:
            raise ValidationError(f"action is required for {op.value}")
        if dim in _ADDRESS_DIMENSIONS and act is not None and act not in ADDRESS_ACTIONS:
            raise ValidationError(f"Action for {dim.value} must be keep or delete")
        if dim in _PARENT_DIMENSIONS and parent is None:
            raise ValidationError(f"parent_domain is required for {dim.value}")
        if op == Operation.UPDATE and dim == Dimension.SUBJECT and old is None:
            raise ValidationError("old_action is required for UPDATE subject")
        if dim in (Dimension.EMAIL, Dimension.FROM_EMAIL, Dimension.TO_EMAIL) and key and "@" not in key:
            raise ValidationError(f"{key} is not an email address")

        if dim == Dimension.SUBDOMAIN and key is not None:
            key = _expand_subdomain(key, parent)
        if dim not in (Dimension.SUBJECT, Dimension.FROM_EMAIL, Dimension.TO_EMAIL):
            parent_sub = None
        elif parent_sub is not None:
            parent_sub = _expand_subdomain(parent_sub, parent)

        return MutationRequest(
            operation=op,
            dimension=dim,
            owner=owner,
            key=key,
            action=act,
            parent_domain=parent,
            parent_subdomain=parent_sub,
            old_action=old,
        )

    # ------------------------------------------------------------ bookkeeping

    def _audit(
        self,
        conn: Connection,
        req: MutationRequest,
        action_type: AuditAction,
        *,
        table_name: str | None = None,
        record_id: int | None = None,
        domain: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> int:
        return audit_repository.log_audit(
            conn,
            owner_user_id=req.owner,
            action_type=action_type,
            table_name=table_name or _TABLES[req.dimension],
            record_id=record_id,
            domain=domain or req.context_domain,
            details=details,
        )

    def _storage_failure(self, req: MutationRequest, exc: Exception) -> ModifyResult:
        # The transaction has already rolled back; the error entry gets its own.
        message = str(getattr(exc, "orig", None) or exc) or type(exc).__name__
        logger.error(
            "criteria_modify_failed",
            operation=req.operation.value,
            dimension=req.dimension.value,
            owner_user_id=req.owner,
            key=req.key,
            error=message,
        )

        audit_id: int | None = None
        try:
            with self._engine.begin() as conn:
                audit_id = self._audit(
                    conn,
                    req,
                    AuditAction.ERROR,
                    details={
                        "operation": req.operation.value,
                        "dimension": req.dimension.value,
                        "key": req.key,
                        "error": message,
                    },
                )
        except SQLAlchemyError as audit_exc:
            logger.error("criteria_error_audit_failed", error=str(audit_exc))

        return _failure(message, audit_id=audit_id)

    def _invalidate(self, owner: str) -> None:
        if self._cache is not None:
            self._cache.invalidate(owner)

    def _ensure_domain(self, conn: Connection, req: MutationRequest, domain: str) -> Criterion:
        crit, created = criteria_repository.insert_criterion(conn, req.owner, KeyKind.DOMAIN, domain)
        if created:
            self._audit(
                conn,
                req,
                AuditAction.INSERT,
                table_name="criterion",
                record_id=crit.id,
                domain=domain,
                details={
                    "operation": "ADD",
                    "dimension": "domain",
                    "action": None,
                    "auto_created": True,
                },
            )
        return crit

    def _ensure_subdomain(
        self, conn: Connection, req: MutationRequest, parent: Criterion, subdomain: str
    ) -> Criterion:
        crit, created = criteria_repository.insert_criterion(
            conn, req.owner, KeyKind.SUBDOMAIN, subdomain, parent_id=parent.id
        )
        if created:
            self._audit(
                conn,
                req,
                AuditAction.INSERT,
                table_name="criterion",
                record_id=crit.id,
                domain=parent.key_value,
                details={
                    "operation": "ADD",
                    "dimension": "subdomain",
                    "action": None,
                    "auto_created": True,
                },
            )
        return crit

    def _find_domain(self, conn: Connection, owner: str, domain: str) -> Criterion | None:
        return criteria_repository.find_criterion(conn, owner, KeyKind.DOMAIN, domain)

    def _pattern_target(
        self, conn: Connection, req: MutationRequest, *, create: bool
    ) -> Criterion | None:
        """Criterion a subject or address pattern attaches to.

        The parent subdomain when one is named, else the parent domain. With
        `create`, missing parents are auto-created.
        """

        if req.parent_domain is None:
            raise ValidationError(f"parent_domain is required for {req.dimension.value}")
        if create:
            domain = self._ensure_domain(conn, req, req.parent_domain)
            if req.parent_subdomain:
                return self._ensure_subdomain(conn, req, domain, req.parent_subdomain)
            return domain

        domain = self._find_domain(conn, req.owner, req.parent_domain)
        if domain is None or not req.parent_subdomain:
            return domain
        return criteria_repository.find_criterion(
            conn, req.owner, KeyKind.SUBDOMAIN, req.parent_subdomain, domain.id
        )

    def _detail(self, conn: Connection, crit: Criterion, with_patterns: bool = False) -> CriterionDetail:
        subdomains, patterns, addresses = criteria_repository.count_children(conn, crit.id)
        return CriterionDetail(
            criterion=crit,
            subdomain_count=subdomains,
            pattern_count=patterns,
            address_pattern_count=addresses,
            patterns=criteria_repository.list_subject_patterns(conn, crit.id) if with_patterns else [],
        )

    # --------------------------------------------------- domain / email keys

    @staticmethod
    def _kind(req: MutationRequest) -> KeyKind:
        return KeyKind.EMAIL if req.dimension == Dimension.EMAIL else KeyKind.DOMAIN

    def _add_top_level(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        label = req.dimension.value
        crit, created = criteria_repository.insert_criterion(
            conn, req.owner, self._kind(req), req.key, default_action=req.action
        )
        details: dict[str, Any] = {"operation": "ADD", "dimension": label, "action": req.action.value}

        if created:
            message = f"Added {req.action.value} rule for {label} {req.key}"
            audit_type = AuditAction.INSERT
        else:
            criteria_repository.set_default_action(conn, crit.id, req.action)
            message = f"Updated {req.action.value} rule for {label} {req.key}"
            audit_type = AuditAction.UPDATE
            details["existed"] = True

        audit_id = self._audit(conn, req, audit_type, record_id=crit.id, domain=req.key, details=details)
        return ModifyResult(success=True, message=message, record_id=crit.id, audit_id=audit_id)

    def _remove_top_level(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        label = req.dimension.value
        crit = criteria_repository.find_criterion(conn, req.owner, self._kind(req), req.key)
        if crit is None:
            return ModifyResult(success=True, message=f"{label.capitalize()} {req.key} not found")

        if req.dimension == Dimension.DOMAIN:
            subdomains, patterns, addresses = criteria_repository.delete_domain_cascade(conn, crit.id)
            message = (
                f"Removed domain {req.key} and {subdomains} subdomains, {patterns} patterns, "
                f"{addresses} address patterns"
            )
        else:
            subdomains = 0
            patterns, addresses = criteria_repository.delete_criterion(conn, crit.id)
            message = f"Removed email {req.key}"

        audit_id = self._audit(
            conn,
            req,
            AuditAction.DELETE,
            record_id=crit.id,
            domain=req.key,
            details={
                "operation": "REMOVE",
                "dimension": label,
                "subdomains": subdomains,
                "patterns": patterns,
                "address_patterns": addresses,
            },
        )
        return ModifyResult(success=True, message=message, audit_id=audit_id)

    def _update_top_level(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        label = req.dimension.value
        crit = criteria_repository.find_criterion(conn, req.owner, self._kind(req), req.key)
        if crit is None:
            return _failure(f"{label.capitalize()} {req.key} not found")

        criteria_repository.set_default_action(conn, crit.id, req.action)
        audit_id = self._audit(
            conn,
            req,
            AuditAction.UPDATE,
            record_id=crit.id,
            domain=req.key,
            details={
                "operation": "UPDATE",
                "dimension": label,
                "old_action": _action_text(crit.default_action),
                "new_action": req.action.value,
            },
        )
        return ModifyResult(
            success=True,
            message=f"Updated {label} {req.key} from {_action_text(crit.default_action)} to {req.action.value}",
            record_id=crit.id,
            audit_id=audit_id,
        )

    def _clear_domain(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        crit = self._find_domain(conn, req.owner, req.key)
        if crit is None:
            return ModifyResult(success=True, message=f"Domain {req.key} not found")

        subdomains, patterns, addresses = criteria_repository.delete_domain_cascade(conn, crit.id)
        audit_id = self._audit(
            conn,
            req,
            AuditAction.DELETE,
            record_id=crit.id,
            domain=req.key,
            details={
                "operation": "CLEAR",
                "dimension": "domain",
                "subdomains": subdomains,
                "patterns": patterns,
                "address_patterns": addresses,
            },
        )
        return ModifyResult(
            success=True, message=f"Cleared all rules for domain {req.key}", audit_id=audit_id
        )

    def _get_top_level(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        crit = criteria_repository.find_criterion(conn, req.owner, self._kind(req), req.key)
        if crit is None:
            return ModifyResult(
                success=True, message=f"{req.dimension.value.capitalize()} {req.key} not found"
            )
        return ModifyResult(
            success=True,
            message="Query completed",
            record_id=crit.id,
            criterion=self._detail(conn, crit),
        )

    # -------------------------------------------------------------- subdomain

    def _add_subdomain(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        parent = self._ensure_domain(conn, req, req.parent_domain)
        crit, created = criteria_repository.insert_criterion(
            conn, req.owner, KeyKind.SUBDOMAIN, req.key, default_action=req.action, parent_id=parent.id
        )
        details: dict[str, Any] = {"operation": "ADD", "dimension": "subdomain", "action": req.action.value}

        if created:
            message = f"Added {req.action.value} rule for subdomain {req.key}"
            audit_type = AuditAction.INSERT
        else:
            criteria_repository.set_default_action(conn, crit.id, req.action)
            message = f"Updated {req.action.value} rule for subdomain {req.key}"
            audit_type = AuditAction.UPDATE
            details["existed"] = True

        audit_id = self._audit(conn, req, audit_type, record_id=crit.id, details=details)
        return ModifyResult(success=True, message=message, record_id=crit.id, audit_id=audit_id)

    def _find_subdomain(
        self, conn: Connection, req: MutationRequest
    ) -> tuple[Criterion | None, Criterion | None]:
        parent = self._find_domain(conn, req.owner, req.parent_domain)
        if parent is None or req.key is None:
            return parent, None
        return parent, criteria_repository.find_criterion(
            conn, req.owner, KeyKind.SUBDOMAIN, req.key, parent.id
        )

    def _remove_subdomain(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        parent, crit = self._find_subdomain(conn, req)
        if parent is None:
            return ModifyResult(success=True, message=f"Parent domain {req.parent_domain} not found")
        if crit is None:
            return ModifyResult(success=True, message=f"Subdomain {req.key} not found")

        patterns, addresses = criteria_repository.delete_criterion(conn, crit.id)
        audit_id = self._audit(
            conn,
            req,
            AuditAction.DELETE,
            record_id=crit.id,
            details={
                "operation": "REMOVE",
                "dimension": "subdomain",
                "subdomain": req.key,
                "patterns": patterns,
                "address_patterns": addresses,
            },
        )
        return ModifyResult(success=True, message=f"Removed subdomain {req.key}", audit_id=audit_id)

    def _update_subdomain(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        parent, crit = self._find_subdomain(conn, req)
        if parent is None:
            return _failure(f"Parent domain {req.parent_domain} not found")
        if crit is None:
            return _failure(f"Subdomain {req.key} not found")

        criteria_repository.set_default_action(conn, crit.id, req.action)
        audit_id = self._audit(
            conn,
            req,
            AuditAction.UPDATE,
            record_id=crit.id,
            details={
                "operation": "UPDATE",
                "dimension": "subdomain",
                "old_action": _action_text(crit.default_action),
                "new_action": req.action.value,
            },
        )
        return ModifyResult(
            success=True,
            message=(
                f"Updated subdomain {req.key} from {_action_text(crit.default_action)} "
                f"to {req.action.value}"
            ),
            record_id=crit.id,
            audit_id=audit_id,
        )

    def _get_subdomain(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        parent, crit = self._find_subdomain(conn, req)
        if parent is None:
            return ModifyResult(
                success=True, message=f"Parent domain {req.parent_domain} not found", subdomains=[]
            )
        if req.key is None:
            return ModifyResult(
                success=True,
                message="Query completed",
                record_id=parent.id,
                subdomains=criteria_repository.list_subdomains(conn, parent.id),
            )
        if crit is None:
            return ModifyResult(success=True, message=f"Subdomain {req.key} not found")

        detail = self._detail(conn, crit, with_patterns=True)
        return ModifyResult(
            success=True,
            message="Query completed",
            record_id=crit.id,
            criterion=detail,
            subject_patterns=detail.patterns,
        )

    # ---------------------------------------------------------------- subject

    def _add_subject(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        target = self._pattern_target(conn, req, create=True)
        pattern, created = criteria_repository.insert_subject_pattern(conn, target.id, req.action, req.key)
        if not created:
            return ModifyResult(
                success=True,
                message=f"Pattern '{req.key}' already exists for {req.action.value}",
                record_id=pattern.id,
            )

        audit_id = self._audit(
            conn,
            req,
            AuditAction.INSERT,
            record_id=pattern.id,
            details={
                "operation": "ADD",
                "dimension": "subject",
                "pattern": req.key,
                "action": req.action.value,
            },
        )
        return ModifyResult(
            success=True,
            message=f"Added {req.action.value} pattern '{req.key}' for {target.key_value}",
            record_id=pattern.id,
            audit_id=audit_id,
        )

    def _remove_subject(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        target = self._pattern_target(conn, req, create=False)
        if target is None:
            return ModifyResult(success=True, message="Parent domain/subdomain not found")

        removed = criteria_repository.delete_subject_patterns(conn, target.id, req.key, req.action)
        if not removed:
            return ModifyResult(success=True, message=f"Pattern '{req.key}' not found")

        audit_id = self._audit(
            conn,
            req,
            AuditAction.DELETE,
            details={
                "operation": "REMOVE",
                "dimension": "subject",
                "pattern": req.key,
                "action": req.action.value if req.action else None,
                "count": removed,
            },
        )
        return ModifyResult(
            success=True, message=f"Removed {removed} pattern(s) '{req.key}'", audit_id=audit_id
        )

    def _update_subject(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        target = self._pattern_target(conn, req, create=False)
        if target is None:
            return _failure("Parent domain/subdomain not found")

        current = criteria_repository.find_subject_pattern(conn, target.id, req.old_action, req.key)
        if current is None:
            return _failure(f"Pattern '{req.key}' with action {req.old_action.value} not found")

        details: dict[str, Any] = {
            "operation": "UPDATE",
            "dimension": "subject",
            "pattern": req.key,
            "old_action": req.old_action.value,
            "new_action": req.action.value,
        }
        record_id = current.id
        if req.action != req.old_action:
            duplicate = criteria_repository.find_subject_pattern(conn, target.id, req.action, req.key)
            if duplicate is None:
                criteria_repository.move_subject_pattern(conn, current.id, req.action)
            else:
                criteria_repository.delete_subject_pattern(conn, current.id)
                record_id = duplicate.id
                details["merged"] = True

        audit_id = self._audit(conn, req, AuditAction.UPDATE, record_id=record_id, details=details)
        return ModifyResult(
            success=True,
            message=f"Updated pattern '{req.key}' from {req.old_action.value} to {req.action.value}",
            record_id=record_id,
            audit_id=audit_id,
        )

    def _get_subject(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        target = self._pattern_target(conn, req, create=False)
        if target is None:
            return ModifyResult(
                success=True, message="Parent domain/subdomain not found", subject_patterns=[]
            )
        patterns = criteria_repository.list_subject_patterns(conn, target.id)
        if req.key is not None:
            patterns = [p for p in patterns if p.pattern == req.key]
        return ModifyResult(
            success=True, message="Query completed", record_id=target.id, subject_patterns=patterns
        )

    # ------------------------------------------------------ from / to address

    def _add_address(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        direction = _ADDRESS_DIMENSIONS[req.dimension]
        label = req.dimension.value
        target = self._pattern_target(conn, req, create=True)

        existing = criteria_repository.find_address_pattern(conn, target.id, direction, req.key)
        pattern_id = criteria_repository.upsert_address_pattern(
            conn, target.id, direction, req.key, req.action
        )
        details: dict[str, Any] = {
            "operation": "ADD",
            "dimension": label,
            "action": req.action.value,
            "email": req.key,
        }

        if existing is None:
            message = f"Added {req.action.value} rule for emails {direction.value} {req.key}"
            audit_type = AuditAction.INSERT
        else:
            message = f"Updated {label} rule for {req.key} to {req.action.value}"
            audit_type = AuditAction.UPDATE
            details["existed"] = True

        audit_id = self._audit(conn, req, audit_type, record_id=pattern_id, details=details)
        return ModifyResult(success=True, message=message, record_id=pattern_id, audit_id=audit_id)

    def _remove_address(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        direction = _ADDRESS_DIMENSIONS[req.dimension]
        label = req.dimension.value
        target = self._pattern_target(conn, req, create=False)
        if target is None:
            return ModifyResult(success=True, message=f"Parent domain {req.parent_domain} not found")

        existing = criteria_repository.find_address_pattern(conn, target.id, direction, req.key)
        if existing is None:
            return ModifyResult(success=True, message=f"{label.capitalize()} rule for {req.key} not found")

        criteria_repository.delete_address_pattern(conn, target.id, direction, req.key)
        audit_id = self._audit(
            conn,
            req,
            AuditAction.DELETE,
            record_id=existing.id,
            details={"operation": "REMOVE", "dimension": label, "email": req.key},
        )
        return ModifyResult(success=True, message=f"Removed {label} rule for {req.key}", audit_id=audit_id)

    def _update_address(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        direction = _ADDRESS_DIMENSIONS[req.dimension]
        label = req.dimension.value
        target = self._pattern_target(conn, req, create=False)
        existing = (
            criteria_repository.find_address_pattern(conn, target.id, direction, req.key)
            if target is not None
            else None
        )
        if existing is None:
            return _failure(f"{label.capitalize()} rule for {req.key} not found")

        criteria_repository.upsert_address_pattern(conn, target.id, direction, req.key, req.action)
        audit_id = self._audit(
            conn,
            req,
            AuditAction.UPDATE,
            record_id=existing.id,
            details={
                "operation": "UPDATE",
                "dimension": label,
                "email": req.key,
                "old_action": existing.action.value,
                "new_action": req.action.value,
            },
        )
        return ModifyResult(
            success=True,
            message=f"Updated {label} {req.key} from {existing.action.value} to {req.action.value}",
            record_id=existing.id,
            audit_id=audit_id,
        )

    def _get_address(self, conn: Connection, req: MutationRequest) -> ModifyResult:
        direction = _ADDRESS_DIMENSIONS[req.dimension]
        target = self._pattern_target(conn, req, create=False)
        if target is None:
            return ModifyResult(
                success=True,
                message=f"Parent domain {req.parent_domain} not found",
                address_patterns=[],
            )
        patterns = criteria_repository.list_address_patterns(conn, target.id, direction)
        if req.key is not None:
            patterns = [p for p in patterns if p.address == req.key]
        return ModifyResult(
            success=True, message="Query completed", record_id=target.id, address_patterns=patterns
        )

    # -------------------------------------------------------------- quick add

    def add_rule(
        self,
        owner_user_id: str | None,
        from_address: str | None,
        action: Action | str | None,
        level: RuleLevel | str | None,
        *,
        to_address: str | None = None,
        subject: str | None = None,
        subject_pattern: str | None = None,
    ) -> QuickAddResult:
        """Create a rule from a concrete message.

        Args:
            owner_user_id: Owning user.
            from_address: Sender of the message the rule is built from.
            action: Action to apply.
            level: Where the rule attaches (domain, subdomain, from_email, to_email).
            to_address: Recipient; required for the to_email level.
            subject: Message subject (informational).
            subject_pattern: Attach a subject pattern instead of a default action
                (domain and subdomain levels).

        Returns:
            QuickAddResult: step-by-step message of what was created or found.
        """

        try:
            owner = require_owner(owner_user_id)
            sender = _clean(from_address)
            if sender is None:
                raise ValidationError("from_address is required")
            act = _parse_action(action)
            if act is None:
                raise ValidationError("action is required")
            try:
                lvl = level if isinstance(level, RuleLevel) else RuleLevel(str(level).strip().lower())
            except ValueError as exc:
                raise ValidationError(
                    f"Invalid level: {level}. Must be one of: {', '.join(lv.value for lv in RuleLevel)}"
                ) from exc
            recipient = _clean(to_address)
            if lvl == RuleLevel.TO_EMAIL:
                if recipient is None or "@" not in recipient:
                    raise ValidationError("to_address is required for the to_email level")
                if act not in ADDRESS_ACTIONS:
                    raise ValidationError("Action for to_email must be keep or delete")
        except ValidationError as exc:
            logger.warning("criteria_quick_add_rejected", level=str(level), error=str(exc))
            return QuickAddResult(success=False, message=str(exc))

        pattern = _clean(subject_pattern)
        host = self._parser.domain_of(sender)
        primary = self._parser.primary_domain(host)

        # Audit context for the whole quick-add.
        req = MutationRequest(
            operation=Operation.ADD,
            dimension=Dimension.DOMAIN,
            owner=owner,
            key=primary,
            action=act,
        )

        try:
            with self._engine.begin() as conn:
                if lvl == RuleLevel.SUBDOMAIN and self._parser.has_subdomain(host):
                    crit_id, message = self._quick_subdomain(conn, req, primary, host, act, pattern)
                elif lvl in (RuleLevel.DOMAIN, RuleLevel.SUBDOMAIN):
                    crit_id, message = self._quick_domain(
                        conn, req, primary, act, pattern, fallback=lvl == RuleLevel.SUBDOMAIN
                    )
                elif lvl == RuleLevel.FROM_EMAIL:
                    crit_id, message = self._quick_from_email(conn, req, sender, act)
                else:
                    crit_id, message = self._quick_to_email(conn, req, recipient, act)
        except Exception as exc:  # noqa: BLE001
            failure = self._storage_failure(req, exc)
            return QuickAddResult(success=False, message=failure.message, level=lvl, action=act)

        self._invalidate(owner)
        logger.info(
            "criteria_quick_added",
            owner_user_id=owner,
            level=lvl.value,
            action=act.value,
            criterion_id=crit_id,
            subject=subject,
        )
        return QuickAddResult(success=True, message=message, criterion_id=crit_id, level=lvl, action=act)

    def _quick_apply(
        self,
        conn: Connection,
        req: MutationRequest,
        crit: Criterion,
        action: Action,
        pattern: str | None,
        steps: list[str],
    ) -> None:
        if pattern:
            sp, created = criteria_repository.insert_subject_pattern(conn, crit.id, action, pattern)
            if created:
                steps.append(f"Added pattern: {pattern}")
                self._audit(
                    conn,
                    replace(req, dimension=Dimension.SUBJECT),
                    AuditAction.INSERT,
                    record_id=sp.id,
                    details={
                        "operation": "ADD",
                        "dimension": "subject",
                        "pattern": pattern,
                        "action": action.value,
                        "source": "quick_add",
                    },
                )
            else:
                steps.append(f"Pattern already exists: {pattern}")
            return

        criteria_repository.set_default_action(conn, crit.id, action)
        steps.append(f"Set default action: {action.value}")
        self._audit(
            conn,
            req,
            AuditAction.UPDATE,
            table_name="criterion",
            record_id=crit.id,
            domain=crit.key_value,
            details={
                "operation": "ADD",
                "dimension": crit.key_kind.value,
                "old_action": _action_text(crit.default_action),
                "new_action": action.value,
                "source": "quick_add",
            },
        )

    def _quick_domain(
        self,
        conn: Connection,
        req: MutationRequest,
        primary: str,
        action: Action,
        pattern: str | None,
        *,
        fallback: bool,
    ) -> tuple[int, str]:
        existed = self._find_domain(conn, req.owner, primary) is not None
        crit = self._ensure_domain(conn, req, primary)
        if fallback:
            verb = "Found" if existed else "Created"
            steps = [f"{verb} domain (no subdomain in email): {primary}"]
        else:
            steps = [f"{'Found existing' if existed else 'Created'} domain entry: {primary}"]
        self._quick_apply(conn, req, crit, action, pattern, steps)
        return crit.id, "; ".join(steps)

    def _quick_subdomain(
        self,
        conn: Connection,
        req: MutationRequest,
        primary: str,
        host: str,
        action: Action,
        pattern: str | None,
    ) -> tuple[int, str]:
        parent_existed = self._find_domain(conn, req.owner, primary) is not None
        parent = self._ensure_domain(conn, req, primary)
        steps = [f"{'Found' if parent_existed else 'Created'} parent domain: {primary}"]

        sub_existed = (
            criteria_repository.find_criterion(conn, req.owner, KeyKind.SUBDOMAIN, host, parent.id)
            is not None
        )
        sub = self._ensure_subdomain(conn, req, parent, host)
        steps.append(f"{'Found' if sub_existed else 'Created'} subdomain: {host}")

        self._quick_apply(conn, req, sub, action, pattern, steps)
        return sub.id, "; ".join(steps)

    def _quick_from_email(
        self, conn: Connection, req: MutationRequest, sender: str, action: Action
    ) -> tuple[int, str]:
        crit, created = criteria_repository.insert_criterion(conn, req.owner, KeyKind.EMAIL, sender)
        steps = [f"{'Created' if created else 'Found existing'} email entry: {sender}"]
        if created:
            self._audit(
                conn,
                replace(req, dimension=Dimension.EMAIL),
                AuditAction.INSERT,
                record_id=crit.id,
                domain=sender,
                details={"operation": "ADD", "dimension": "email", "action": None, "auto_created": True},
            )
        self._quick_apply(conn, replace(req, dimension=Dimension.EMAIL), crit, action, None, steps)
        return crit.id, "; ".join(steps)

    def _quick_to_email(
        self, conn: Connection, req: MutationRequest, recipient: str, action: Action
    ) -> tuple[int, str]:
        to_host = self._parser.domain_of(recipient)
        existed = self._find_domain(conn, req.owner, to_host) is not None
        crit = self._ensure_domain(conn, req, to_host)
        steps = [f"{'Found' if existed else 'Created'} domain for to_email: {to_host}"]

        previous = criteria_repository.find_address_pattern(conn, crit.id, Direction.TO, recipient)
        pattern_id = criteria_repository.upsert_address_pattern(
            conn, crit.id, Direction.TO, recipient, action
        )
        steps.append(f"{'Updated' if previous else 'Added'} to_email pattern: {recipient}")
        self._audit(
            conn,
            replace(req, dimension=Dimension.TO_EMAIL),
            AuditAction.UPDATE if previous else AuditAction.INSERT,
            record_id=pattern_id,
            domain=to_host,
            details={
                "operation": "ADD",
                "dimension": "to_email",
                "action": action.value,
                "email": recipient,
                "source": "quick_add",
            },
        )
        return crit.id, "; ".join(steps)
