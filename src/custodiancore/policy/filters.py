"""Filter expression tree.

A filter is one of six immutable variants. Persisted policies store filters
as flat FilterSpec records; composite variants nest their children inside
the record's value so a stored tree converts back to the same tree:

    {"type": "and", "value": [<record>, ...]}
    {"type": "or", "value": [<record>, ...]}
    {"type": "not", "value": <record>}
    {"type": "collection", "key": "<attribute>", "op": "any|all|none", "value": <record>}
    {"type": "relationship", "key": "<relation>", "value": {"target_type": "...", "filter": <record>}}

The nested layout of the advanced filter format (and/or/not keys,
field/operator/value leaves) is accepted on input as well.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from custodiancore.policy.models import FilterSpec


class Quantifier(Enum):
    """Quantifier applied by a collection filter."""

    ANY = "any"
    ALL = "all"
    NONE = "none"


@dataclass(frozen=True)
class LeafFilter:
    """Single comparison against one attribute of a resource."""

    type: str
    key: str | None = None
    value: Any = None
    op: str | None = None
    negate: bool = False
    required: bool = False


@dataclass(frozen=True)
class AndFilter:
    """True iff every sub-filter is true (vacuously true)."""

    filters: tuple[Filter, ...] = ()


@dataclass(frozen=True)
class OrFilter:
    """True iff any sub-filter is true (vacuously false)."""

    filters: tuple[Filter, ...] = ()


@dataclass(frozen=True)
class NotFilter:
    """Negation of a single sub-filter."""

    filter: Filter


@dataclass(frozen=True)
class CollectionFilter:
    """Quantified filter over the elements of a list attribute."""

    attribute: str
    quantifier: Quantifier
    filter: Filter


@dataclass(frozen=True)
class RelationshipFilter:
    """Filter evaluated against a related resource."""

    relation: str
    filter: Filter
    target_type: str | None = None


Filter = Union[LeafFilter, AndFilter, OrFilter, NotFilter, CollectionFilter, RelationshipFilter]


def all_of(*filters: Filter) -> AndFilter:
    """Combine filters with AND."""
    return AndFilter(tuple(filters))


def any_of(*filters: Filter) -> OrFilter:
    """Combine filters with OR."""
    return OrFilter(tuple(filters))


def negate(filter: Filter) -> NotFilter:
    """Negate a filter."""
    return NotFilter(filter)


def from_spec(spec: FilterSpec | dict[str, Any]) -> Filter:
    """Convert a persisted filter record (or its dict form) into a filter tree.

    Composite records missing their nested filter degrade to a leaf of the
    same type, which the evaluator treats as unrecognized.
    """
    if isinstance(spec, dict):
        if "type" not in spec:
            return _from_advanced(spec)
        spec = FilterSpec.from_dict(spec)

    kind = str(spec.type).lower()
    if kind in ("and", "or"):
        children = tuple(from_spec(child) for child in _as_records(spec.value))
        return AndFilter(children) if kind == "and" else OrFilter(children)

    if kind == "not" and isinstance(spec.value, (dict, FilterSpec)):
        return NotFilter(from_spec(spec.value))

    if kind == "collection" and isinstance(spec.key, str) and spec.key and isinstance(spec.value, (dict, FilterSpec)):
        try:
            quantifier = Quantifier(str(spec.op or "any").lower())
        except ValueError:
            return _leaf_from_spec(spec)
        return CollectionFilter(spec.key, quantifier, from_spec(spec.value))

    if kind == "relationship" and isinstance(spec.key, str) and spec.key and isinstance(spec.value, dict):
        inner = spec.value.get("filter")
        if isinstance(inner, (dict, FilterSpec)):
            return RelationshipFilter(
                relation=spec.key,
                filter=from_spec(inner),
                target_type=spec.value.get("target_type"),
            )

    return _leaf_from_spec(spec)


def from_specs(specs: Iterable[FilterSpec | dict[str, Any]]) -> AndFilter:
    """Convert a policy's top-level filter list into one AND filter."""
    return AndFilter(tuple(from_spec(s) for s in specs))


def to_spec(filter: Filter) -> FilterSpec:
    """Convert a filter tree into a persisted record without losing structure."""
    if isinstance(filter, LeafFilter):
        return FilterSpec(
            type=filter.type,
            key=filter.key,
            value=filter.value,
            op=filter.op,
            required=filter.required,
            negate=filter.negate,
        )
    if isinstance(filter, AndFilter):
        return FilterSpec(type="and", value=[to_spec(f).to_dict() for f in filter.filters])
    if isinstance(filter, OrFilter):
        return FilterSpec(type="or", value=[to_spec(f).to_dict() for f in filter.filters])
    if isinstance(filter, NotFilter):
        return FilterSpec(type="not", value=to_spec(filter.filter).to_dict())
    if isinstance(filter, CollectionFilter):
        return FilterSpec(
            type="collection",
            key=filter.attribute,
            op=filter.quantifier.value,
            value=to_spec(filter.filter).to_dict(),
        )
    if isinstance(filter, RelationshipFilter):
        value: dict[str, Any] = {"filter": to_spec(filter.filter).to_dict()}
        if filter.target_type:
            value["target_type"] = filter.target_type
        return FilterSpec(type="relationship", key=filter.relation, value=value)
    raise TypeError(f"not a filter: {type(filter).__name__}")


def to_specs(filter: Filter) -> list[FilterSpec]:
    """Flatten a top-level AND into a policy filter list, one record per child."""
    if isinstance(filter, AndFilter):
        return [to_spec(f) for f in filter.filters]
    return [to_spec(filter)]


def _leaf_from_spec(spec: FilterSpec) -> LeafFilter:
    return LeafFilter(
        type=spec.type,
        key=spec.key,
        value=spec.value,
        op=spec.op,
        negate=spec.negate,
        required=spec.required,
    )


def _as_records(value: Any) -> list[FilterSpec | dict[str, Any]]:
    if value is None:
        return []
    if isinstance(value, (dict, FilterSpec)):
        return [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [v for v in value if isinstance(v, (dict, FilterSpec))]


def _from_advanced(data: dict[str, Any]) -> Filter:
    """Convert the nested advanced filter layout."""
    if "and" in data:
        return AndFilter(tuple(from_spec(d) for d in _as_records(data["and"])))
    if "or" in data:
        return OrFilter(tuple(from_spec(d) for d in _as_records(data["or"])))
    if isinstance(data.get("not"), dict):
        return NotFilter(from_spec(data["not"]))

    relationship = data.get("relationship")
    if isinstance(relationship, dict) and isinstance(relationship.get("target_filter"), dict):
        return RelationshipFilter(
            relation=relationship.get("type", ""),
            filter=from_spec(relationship["target_filter"]),
            target_type=relationship.get("target_type"),
        )

    collection = data.get("collection")
    field = data.get("field")
    if isinstance(collection, dict) and isinstance(collection.get("filter"), dict) and isinstance(field, str):
        try:
            quantifier = Quantifier(str(collection.get("operation", "any")).lower())
        except ValueError:
            return LeafFilter(type="collection", key=field)
        return CollectionFilter(field, quantifier, from_spec(collection["filter"]))

    return LeafFilter(
        type="value",
        key=field,
        value=data.get("value"),
        op=data.get("operator"),
    )
