"""Policy model, filter evaluation and action planning.

This package provides:
- Policy records with versioning and provenance fields
- A filter expression tree (leaf, and/or/not, collection, relationship)
- Fail-open filter evaluation against resource snapshots
- Static impact classification for planned actions
"""

from __future__ import annotations

from custodiancore.policy.evaluator import FilterEvaluator, RelationshipResolver
from custodiancore.policy.filters import (
    AndFilter,
    CollectionFilter,
    Filter,
    LeafFilter,
    NotFilter,
    OrFilter,
    Quantifier,
    RelationshipFilter,
    from_spec,
    from_specs,
    to_spec,
    to_specs,
)
from custodiancore.policy.models import (
    ActionSpec,
    FilterSpec,
    ModeType,
    Policy,
    PolicyMode,
    PolicySource,
    PolicyStatus,
)
from custodiancore.policy.planner import ActionPlanner, PlannedAction, is_destructive
from custodiancore.policy.validator import PolicyValidator

__all__ = [
    "Policy",
    "PolicyMode",
    "PolicyStatus",
    "PolicySource",
    "ModeType",
    "FilterSpec",
    "ActionSpec",
    "Filter",
    "LeafFilter",
    "AndFilter",
    "OrFilter",
    "NotFilter",
    "CollectionFilter",
    "RelationshipFilter",
    "Quantifier",
    "from_spec",
    "from_specs",
    "to_spec",
    "to_specs",
    "FilterEvaluator",
    "RelationshipResolver",
    "ActionPlanner",
    "PlannedAction",
    "is_destructive",
    "PolicyValidator",
]
