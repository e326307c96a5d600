"""Tests for the filter tree and its persisted records."""

from __future__ import annotations

import json

from custodiancore.policy.filters import (
    AndFilter,
    CollectionFilter,
    LeafFilter,
    NotFilter,
    OrFilter,
    Quantifier,
    RelationshipFilter,
    all_of,
    any_of,
    from_spec,
    from_specs,
    negate,
    to_spec,
    to_specs,
)
from custodiancore.policy.models import FilterSpec


def nested_tree() -> AndFilter:
    return all_of(
        LeafFilter(type="cpu-utilization", op="lt", value=5),
        any_of(
            LeafFilter(type="tag-missing", key="Owner"),
            LeafFilter(type="tag", key="Environment", value="dev"),
        ),
        negate(LeafFilter(type="instance-state", value="stopped")),
        CollectionFilter("volumes", Quantifier.ALL, LeafFilter(type="value", key="encrypted", value=True)),
        RelationshipFilter("vpc", LeafFilter(type="value", key="is_default", value=True), target_type="vpc"),
    )


class TestRecordConversion:
    """Filter trees survive conversion to persisted records."""

    def test_leaf_round_trip(self):
        """A leaf keeps every field."""
        leaf = LeafFilter(type="value", key="engine", value=["mysql"], op="in", negate=True, required=True)
        assert from_spec(to_spec(leaf)) == leaf

    def test_nested_tree_round_trip(self):
        """A nested tree converts back to the same tree, through JSON."""
        tree = nested_tree()
        record = json.loads(json.dumps(to_spec(tree).to_dict()))
        assert from_spec(record) == tree

    def test_or_branches_kept(self):
        """Both branches of an OR are persisted."""
        spec = to_spec(any_of(LeafFilter(type="tag-missing", key="Owner"), LeafFilter(type="state", value="stopped")))
        assert spec.type == "or"
        assert [child["type"] for child in spec.value] == ["tag-missing", "state"]

    def test_top_level_list(self):
        """to_specs flattens the top-level AND; from_specs rebuilds it."""
        tree = nested_tree()
        specs = to_specs(tree)
        assert len(specs) == 5
        assert from_specs(specs) == tree

    def test_single_filter_to_specs(self):
        """A non-AND root becomes a one-element list."""
        specs = to_specs(LeafFilter(type="tag-missing", key="Owner"))
        assert [s.type for s in specs] == ["tag-missing"]


class TestDegradedRecords:
    """Malformed composite records degrade to unrecognized leaves."""

    def test_not_without_value(self):
        assert from_spec({"type": "not"}) == LeafFilter(type="not")

    def test_collection_bad_quantifier(self):
        f = from_spec({"type": "collection", "key": "volumes", "op": "most", "value": {"type": "tag"}})
        assert isinstance(f, LeafFilter)

    def test_and_ignores_non_records(self):
        f = from_spec(FilterSpec(type="and", value=[{"type": "tag", "key": "Owner"}, "junk", 3]))
        assert f == AndFilter((LeafFilter(type="tag", key="Owner"),))


class TestAdvancedLayout:
    """The nested and/or/not layout with field/operator leaves."""

    def test_or_of_fields(self):
        f = from_spec({"or": [
            {"field": "instance_type", "operator": "eq", "value": "t3.micro"},
            {"field": "instance_type", "operator": "eq", "value": "t3.small"},
        ]})
        assert f == OrFilter((
            LeafFilter(type="value", key="instance_type", value="t3.micro", op="eq"),
            LeafFilter(type="value", key="instance_type", value="t3.small", op="eq"),
        ))

    def test_not(self):
        f = from_spec({"not": {"field": "state", "operator": "eq", "value": "stopped"}})
        assert f == NotFilter(LeafFilter(type="value", key="state", value="stopped", op="eq"))

    def test_collection_and_relationship(self):
        collection = from_spec({
            "field": "volumes",
            "collection": {"operation": "none", "filter": {"field": "encrypted", "value": False}},
        })
        assert collection == CollectionFilter(
            "volumes", Quantifier.NONE, LeafFilter(type="value", key="encrypted", value=False)
        )

        relationship = from_spec({
            "relationship": {
                "type": "security_group",
                "target_type": "vpc",
                "target_filter": {"field": "open_ingress", "value": True},
            },
        })
        assert relationship == RelationshipFilter(
            "security_group", LeafFilter(type="value", key="open_ingress", value=True), target_type="vpc"
        )
