"""Rules, evaluation and execution-summary API.

The owning user comes from the `X-User-Email` header set by the auth layer in
front of this service.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel

from retention_rules.classify import ClassificationEngine
from retention_rules.models import (
    Action,
    AuditLogEntry,
    DeletionPreview,
    EvaluationSummary,
    ExecutionSummary,
    ModifyResult,
    QuickAddResult,
    RuleStats,
)
from retention_rules.repository import audit_repository, criteria_repository, message_repository
from retention_rules.rules import RuleMutationEngine, RuleSetCache

router = APIRouter(prefix="/api", tags=["rules"])


class ModifyRequest(BaseModel):
    # Plain strings: the mutation engine validates them and answers 400.
    operation: str
    dimension: str
    key_value: str | None = None
    action: str | None = None
    parent_domain: str | None = None
    parent_subdomain: str | None = None
    old_action: str | None = None


class QuickAddRequest(BaseModel):
    from_email: str
    to_email: str | None = None
    subject: str | None = None
    action: str
    level: str
    subject_pattern: str | None = None


def current_owner(x_user_email: str | None = Header(default=None)) -> str:
    owner = (x_user_email or "").strip().lower()
    if not owner:
        raise HTTPException(status_code=401, detail="X-User-Email header is required")
    return owner


def get_engine(request: Request):
    return request.app.state.engine


def get_mutations(request: Request) -> RuleMutationEngine:
    return request.app.state.mutations


def get_classifier(request: Request) -> ClassificationEngine:
    return request.app.state.classifier


def get_cache(request: Request) -> RuleSetCache:
    return request.app.state.cache


def _parse_action(value: str | None) -> Action | None:
    if value is None:
        return None
    try:
        return Action(value.strip().lower())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid action: {value}") from exc


@router.post("/criteria/modify", response_model=ModifyResult)
def api_modify_criteria(
    body: ModifyRequest,
    owner: str = Depends(current_owner),
    mutations: RuleMutationEngine = Depends(get_mutations),
) -> ModifyResult:
    result = mutations.modify(
        body.operation,
        body.dimension,
        owner,
        key_value=body.key_value,
        action=body.action,
        parent_domain=body.parent_domain,
        parent_subdomain=body.parent_subdomain,
        old_action=body.old_action,
    )
    if not result.success:
        raise HTTPException(status_code=400, detail=result.message)
    return result


@router.post("/criteria/rule", response_model=QuickAddResult)
def api_add_rule(
    body: QuickAddRequest,
    owner: str = Depends(current_owner),
    mutations: RuleMutationEngine = Depends(get_mutations),
) -> QuickAddResult:
    result = mutations.add_rule(
        owner,
        body.from_email,
        body.action,
        body.level,
        to_address=body.to_email,
        subject=body.subject,
        subject_pattern=body.subject_pattern,
    )
    if not result.success:
        raise HTTPException(status_code=400, detail=result.message)
    return result


@router.get("/criteria/stats", response_model=RuleStats)
def api_rule_stats(owner: str = Depends(current_owner), engine=Depends(get_engine)) -> RuleStats:
    return criteria_repository.get_rule_stats(engine=engine, owner_user_id=owner)


@router.get("/criteria/rules")
def api_rule_set(
    owner: str = Depends(current_owner),
    classifier: ClassificationEngine = Depends(get_classifier),
) -> dict[str, Any]:
    return classifier.rule_set(owner).as_nested_dict()


@router.get("/criteria/search")
def api_search_criteria(
    q: str | None = None,
    owner: str = Depends(current_owner),
    classifier: ClassificationEngine = Depends(get_classifier),
) -> dict[str, Any]:
    matches = classifier.rule_set(owner).search(q)
    return {"query": q.strip().lower(), "count": len(matches), "matches": matches}


@router.post("/criteria/refresh", dependencies=[Depends(current_owner)])
def api_refresh_cache(cache: RuleSetCache = Depends(get_cache)) -> dict[str, Any]:
    cache.invalidate()
    return {"success": True, "message": "Cache invalidated"}


@router.get("/criteria/audit", response_model=list[AuditLogEntry])
def api_audit_log(
    limit: int = 50,
    owner: str = Depends(current_owner),
    engine=Depends(get_engine),
) -> list[AuditLogEntry]:
    return audit_repository.recent_audit(engine=engine, owner_user_id=owner, limit=limit)


@router.post("/evaluate", response_model=EvaluationSummary)
def api_evaluate(
    owner: str = Depends(current_owner),
    classifier: ClassificationEngine = Depends(get_classifier),
) -> EvaluationSummary:
    return classifier.evaluate_pending(owner)


@router.post("/evaluate/all", response_model=EvaluationSummary, dependencies=[Depends(current_owner)])
def api_evaluate_all(classifier: ClassificationEngine = Depends(get_classifier)) -> EvaluationSummary:
    return classifier.evaluate_all_pending()


@router.get("/execute/summary", response_model=ExecutionSummary)
def api_execute_summary(
    owner: str = Depends(current_owner), engine=Depends(get_engine)
) -> ExecutionSummary:
    return message_repository.summarize_actions(engine=engine, owner_user_id=owner)


@router.get("/execute/due", response_model=DeletionPreview)
def api_execute_due(
    action: str | None = None,
    min_age_days: int | None = None,
    owner: str = Depends(current_owner),
    engine=Depends(get_engine),
) -> DeletionPreview:
    return message_repository.list_due_for_deletion(
        engine=engine,
        owner_user_id=owner,
        action=_parse_action(action),
        min_age_days=min_age_days,
    )
