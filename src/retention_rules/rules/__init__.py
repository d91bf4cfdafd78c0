"""Rule store mutation, snapshots and caching."""

from .cache import RuleSetCache
from .mutations import MutationRequest, RuleMutationEngine
from .snapshot import CriterionRules, RuleSet, load_rule_set

__all__ = [
    "CriterionRules",
    "MutationRequest",
    "RuleMutationEngine",
    "RuleSet",
    "RuleSetCache",
    "load_rule_set",
]
