"""Data models for Retention Rules.

This module contains Pydantic models for data validation and serialization.
"""

from .message import (
    UNDECIDED,
    ActionSummary,
    ClassificationResult,
    DeletionPreview,
    EvaluationSummary,
    ExecutionSummary,
    PendingMessage,
)
from .mutation import (
    CriterionDetail,
    Dimension,
    ModifyResult,
    Operation,
    QuickAddResult,
    RuleLevel,
    SubdomainSummary,
)
from .rule import (
    ADDRESS_ACTIONS,
    DELETE_AGE_DAYS,
    SUBJECT_ACTION_PRIORITY,
    Action,
    AddressPattern,
    AuditAction,
    AuditLogEntry,
    Criterion,
    Direction,
    KeyKind,
    RuleStats,
    SubjectPattern,
    UserDataCounts,
)

__all__ = [
    "ADDRESS_ACTIONS",
    "DELETE_AGE_DAYS",
    "SUBJECT_ACTION_PRIORITY",
    "UNDECIDED",
    "Action",
    "ActionSummary",
    "AddressPattern",
    "AuditAction",
    "AuditLogEntry",
    "ClassificationResult",
    "Criterion",
    "CriterionDetail",
    "DeletionPreview",
    "Dimension",
    "Direction",
    "EvaluationSummary",
    "ExecutionSummary",
    "KeyKind",
    "ModifyResult",
    "Operation",
    "PendingMessage",
    "QuickAddResult",
    "RuleLevel",
    "RuleStats",
    "SubdomainSummary",
    "SubjectPattern",
    "UserDataCounts",
]
