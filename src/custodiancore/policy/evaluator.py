"""Filter evaluation against resource snapshots.

Evaluation never raises. Filter types and operators the evaluator does not
recognize match every resource (fail-open), so a policy written for a newer
filter vocabulary still selects resources instead of silently matching
nothing. Relationship filters are the exception and fail closed when the
related resource cannot be resolved.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from functools import singledispatchmethod
from types import MappingProxyType
from typing import Any

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
)
from custodiancore.policy.models import FilterSpec
from custodiancore.resources import ResourceSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeafRule:
    """How a named leaf filter type reads and compares its attribute.

    Attributes:
        source: Where the attribute lives: property, tag or state
        attribute: Property name; None means the filter's key names it
        op: Operator used when the filter sets none
        default: Literal used when the filter sets no value
    """

    source: str
    attribute: str | None = None
    op: str = "eq"
    default: Any = None


LEAF_RULES: MappingProxyType[str, LeafRule] = MappingProxyType({
    "cpu-utilization": LeafRule("property", "cpu_utilization", "lt", 5.0),
    "cpu-utilization-avg": LeafRule("property", "cpu_utilization", "lt", 5.0),
    "running-days": LeafRule("property", "running_days", "gte", 7),
    "backup-retention-period": LeafRule("property", "backup_retention_period", "lt", 7),
    "public-access": LeafRule("property", "public_read", "eq", True),
    "public-read": LeafRule("property", "public_read", "eq", True),
    "instance-type": LeafRule("property", "instance_type", "eq"),
    "instance-state": LeafRule("state", op="eq"),
    "state": LeafRule("state", op="eq"),
    "tag": LeafRule("tag", op="eq"),
    "tag-exists": LeafRule("tag", op="exists"),
    "tag-missing": LeafRule("tag", op="missing"),
    "value": LeafRule("property", op="eq"),
})

_OP_ALIASES = MappingProxyType({
    "equals": "eq",
    "==": "eq",
    "not-equals": "ne",
    "!=": "ne",
    "<": "lt",
    "<=": "lte",
    ">": "gt",
    ">=": "gte",
    "present": "exists",
    "not-exists": "missing",
    "absent": "missing",
    "matches": "regex",
})

_ABSENCE_OPS = frozenset({"exists", "missing"})

_MISSING = object()
_UNRESOLVED = object()


class RelationshipResolver(ABC):
    """Resolves a resource related to another one."""

    @abstractmethod
    def resolve(
        self,
        resource: ResourceSnapshot,
        relation: str,
        target_type: str | None = None,
    ) -> ResourceSnapshot | None:
        """Return the related resource, or None when it cannot be resolved."""
        pass


class FilterEvaluator:
    """Decides whether a resource snapshot satisfies a filter expression."""

    def __init__(self, resolver: RelationshipResolver | None = None) -> None:
        self.resolver = resolver

    def matches(
        self,
        filters: Iterable[Filter | FilterSpec | dict[str, Any]],
        resource: ResourceSnapshot,
    ) -> bool:
        """Evaluate a policy's top-level filter list (implicit AND)."""
        return all(self.evaluate(f, resource) for f in filters)

    def evaluate(self, filter: Filter | FilterSpec | dict[str, Any], resource: ResourceSnapshot) -> bool:
        """Evaluate one filter expression against one resource."""
        if isinstance(filter, (FilterSpec, dict)):
            filter = from_spec(filter)
        return self._evaluate(filter, resource)

    @singledispatchmethod
    def _evaluate(self, filter: Any, resource: ResourceSnapshot) -> bool:
        # Unknown variant: fail open
        return True

    @_evaluate.register
    def _(self, filter: AndFilter, resource: ResourceSnapshot) -> bool:
        return all(self._evaluate(f, resource) for f in filter.filters)

    @_evaluate.register
    def _(self, filter: OrFilter, resource: ResourceSnapshot) -> bool:
        return any(self._evaluate(f, resource) for f in filter.filters)

    @_evaluate.register
    def _(self, filter: NotFilter, resource: ResourceSnapshot) -> bool:
        return not self._evaluate(filter.filter, resource)

    @_evaluate.register
    def _(self, filter: CollectionFilter, resource: ResourceSnapshot) -> bool:
        if not isinstance(filter.attribute, str):
            return True
        items = resource.get_attribute(filter.attribute)
        if not isinstance(items, (list, tuple)):
            return filter.quantifier == Quantifier.NONE

        elements = [_element_snapshot(item, resource) for item in items]
        if filter.quantifier == Quantifier.ANY:
            return any(self._evaluate(filter.filter, e) for e in elements)
        if filter.quantifier == Quantifier.ALL:
            return all(self._evaluate(filter.filter, e) for e in elements)
        return not any(self._evaluate(filter.filter, e) for e in elements)

    @_evaluate.register
    def _(self, filter: RelationshipFilter, resource: ResourceSnapshot) -> bool:
        if self.resolver is None:
            return False
        try:
            related = self.resolver.resolve(resource, filter.relation, filter.target_type)
        except Exception as e:
            logger.debug("Relationship %s of %s not resolved: %s", filter.relation, resource.id, e)
            return False
        if related is None:
            return False
        return self._evaluate(filter.filter, related)

    @_evaluate.register
    def _(self, filter: LeafFilter, resource: ResourceSnapshot) -> bool:
        rule = LEAF_RULES.get(str(filter.type).lower())
        if rule is None:
            return True
        if filter.op and not isinstance(filter.op, str):
            return True

        op = (filter.op or rule.op).lower()
        op = _OP_ALIASES.get(op, op)
        compare = _OPERATORS.get(op)
        if compare is None and op not in _ABSENCE_OPS:
            return True

        actual = self._read_attribute(rule, filter, resource)
        if actual is _UNRESOLVED:
            return True

        if op == "exists":
            result = actual is not _MISSING
        elif op == "missing":
            result = actual is _MISSING
        elif actual is _MISSING:
            result = False
        else:
            expected = rule.default if filter.value is None else filter.value
            if expected is None and op in ("eq", "ne") and rule.source == "tag":
                # Bare tag filter: presence check
                result = op == "eq"
            else:
                try:
                    result = compare(actual, expected)
                except (TypeError, ValueError, re.error):
                    result = False

        return result != filter.negate

    def _read_attribute(self, rule: LeafRule, filter: LeafFilter, resource: ResourceSnapshot) -> Any:
        if rule.source == "state":
            return _MISSING if resource.state is None else resource.state
        if rule.source == "tag":
            if not filter.key or not isinstance(filter.key, str):
                return _UNRESOLVED
            return resource.tags.get(filter.key, _MISSING)

        attribute = filter.key or rule.attribute
        if not attribute or not isinstance(attribute, str):
            return _UNRESOLVED
        if not resource.has_attribute(attribute):
            return _MISSING
        value = resource.get_attribute(attribute)
        return _MISSING if value is None else value



def _element_snapshot(item: Any, parent: ResourceSnapshot) -> ResourceSnapshot:
    """View one collection element as a snapshot so leaf filters apply to it."""
    if isinstance(item, ResourceSnapshot):
        return item
    if isinstance(item, dict):
        tags = item.get("tags")
        return ResourceSnapshot(
            id=str(item.get("id", "")),
            type=str(item.get("type", "")),
            region=str(item.get("region") or parent.region),
            name=item.get("name"),
            state=item.get("state"),
            tags=tags if isinstance(tags, dict) else {},
            properties=item,
        )
    return ResourceSnapshot(id="", type="", region=parent.region, properties={"value": item})


def coerce(literal: Any, like: Any) -> Any:
    """Coerce a filter literal to the runtime type of a resource value.

    Raises:
        TypeError: If the literal cannot represent that type
        ValueError: If a string literal does not parse
    """
    if isinstance(like, bool):
        if isinstance(literal, bool):
            return literal
        if isinstance(literal, str) and literal.lower() in ("true", "false"):
            return literal.lower() == "true"
        raise TypeError(f"cannot compare bool with {type(literal).__name__}")

    if isinstance(like, (int, float)):
        if isinstance(literal, bool):
            raise TypeError("cannot compare number with bool")
        if isinstance(literal, (int, float)):
            return literal
        if isinstance(literal, str):
            number = float(literal)
            if isinstance(like, int) and number.is_integer():
                return int(number)
            return number
        raise TypeError(f"cannot compare number with {type(literal).__name__}")

    if isinstance(like, str):
        if isinstance(literal, bool):
            return str(literal).lower()
        if isinstance(literal, (str, int, float)):
            return str(literal)
        raise TypeError(f"cannot compare str with {type(literal).__name__}")

    return literal


def _numeric(actual: Any, expected: Any) -> tuple[float, float]:
    if isinstance(actual, bool) or not isinstance(actual, (int, float)):
        raise TypeError(f"not numeric: {type(actual).__name__}")
    return actual, coerce(expected, actual)


def _strings(actual: Any, expected: Any) -> tuple[str, str]:
    if not isinstance(actual, str) or not isinstance(expected, str):
        raise TypeError("operator requires string values")
    return actual, expected


def _eq(actual: Any, expected: Any) -> bool:
    if isinstance(expected, (list, tuple)):
        return _in(actual, expected)
    return actual == coerce(expected, actual)


def _ne(actual: Any, expected: Any) -> bool:
    return not _eq(actual, expected)


def _in(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple)):
        raise TypeError("'in' operator requires a list value")
    for item in expected:
        try:
            if actual == coerce(item, actual):
                return True
        except (TypeError, ValueError):
            continue
    return False


def _not_in(actual: Any, expected: Any) -> bool:
    return not _in(actual, expected)


def _lt(actual: Any, expected: Any) -> bool:
    x, y = _numeric(actual, expected)
    return x < y


def _lte(actual: Any, expected: Any) -> bool:
    x, y = _numeric(actual, expected)
    return x <= y


def _gt(actual: Any, expected: Any) -> bool:
    x, y = _numeric(actual, expected)
    return x > y


def _gte(actual: Any, expected: Any) -> bool:
    x, y = _numeric(actual, expected)
    return x >= y


def _between(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple)) or len(expected) != 2:
        raise ValueError("'between' operator requires exactly 2 values")
    return _gte(actual, expected[0]) and _lte(actual, expected[1])


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected) in actual
    if isinstance(actual, (list, tuple, dict)):
        return expected in actual
    raise TypeError(f"'contains' not supported for {type(actual).__name__}")


def _not_contains(actual: Any, expected: Any) -> bool:
    return not _contains(actual, expected)


def _starts_with(actual: Any, expected: Any) -> bool:
    text, prefix = _strings(actual, expected)
    return text.startswith(prefix)


def _ends_with(actual: Any, expected: Any) -> bool:
    text, suffix = _strings(actual, expected)
    return text.endswith(suffix)


def _regex(actual: Any, expected: Any) -> bool:
    text, pattern = _strings(actual, expected)
    return re.search(pattern, text) is not None


def _empty(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (str, list, tuple, dict)):
        return len(actual) == 0
    return False


def _not_empty(actual: Any, expected: Any) -> bool:
    return not _empty(actual, expected)


_OPERATORS = MappingProxyType({
    "eq": _eq,
    "ne": _ne,
    "in": _in,
    "not-in": _not_in,
    "lt": _lt,
    "lte": _lte,
    "gt": _gt,
    "gte": _gte,
    "between": _between,
    "contains": _contains,
    "not-contains": _not_contains,
    "starts-with": _starts_with,
    "ends-with": _ends_with,
    "regex": _regex,
    "empty": _empty,
    "not-empty": _not_empty,
})
