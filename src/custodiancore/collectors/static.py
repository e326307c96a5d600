"""Fixture-backed collector and relationship resolver."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from custodiancore.collectors.base import ResourceCollector
from custodiancore.errors import CollectorError
from custodiancore.policy.evaluator import RelationshipResolver
from custodiancore.resources import ResourceSnapshot, list_resource_types

logger = logging.getLogger(__name__)


class StaticCollector(ResourceCollector):
    """Collector serving snapshots held in memory.

    Snapshots are grouped by resource type. A snapshot without a region
    is served for every region and reported under the requested one.
    """

    def __init__(
        self,
        snapshots: Mapping[str, Iterable[ResourceSnapshot | dict[str, Any]]] | None = None,
    ) -> None:
        self._snapshots: dict[str, list[ResourceSnapshot]] = {}
        for resource_type, items in (snapshots or {}).items():
            self._snapshots[resource_type] = [_to_snapshot(item, resource_type) for item in items]

    @property
    def name(self) -> str:
        """Return collector name."""
        return "static"

    def resource_types(self) -> list[str]:
        """Resource types this collector holds snapshots for."""
        return sorted(self._snapshots)

    def add(self, resource_type: str, snapshot: ResourceSnapshot | dict[str, Any]) -> None:
        """Add one snapshot under a resource type."""
        self._snapshots.setdefault(resource_type, []).append(_to_snapshot(snapshot, resource_type))

    def collect(self, resource_type: str, region: str) -> Sequence[ResourceSnapshot]:
        """Return the held snapshots of a type that live in region."""
        result = []
        for snapshot in self._snapshots.get(resource_type, []):
            if not snapshot.region:
                result.append(replace(snapshot, region=region))
            elif snapshot.region == region:
                result.append(snapshot)
        return result

    def find(self, resource_id: str, resource_type: str | None = None) -> ResourceSnapshot | None:
        """Find a snapshot by id, optionally restricted to one resource type."""
        types = [resource_type] if resource_type else list(self._snapshots)
        for rt in types:
            for snapshot in self._snapshots.get(rt, []):
                if snapshot.id == resource_id:
                    return snapshot
        return None

    @classmethod
    def from_file(cls, path: Path) -> StaticCollector:
        """Load snapshots from a JSON or YAML fixture.

        The fixture maps resource types to lists of snapshot objects:

            ec2:
              - id: i-123
                region: us-east-1
                properties: {cpu_utilization: 2.5}

        Raises:
            CollectorError: If the file cannot be read or has the wrong shape
        """
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise CollectorError("fixture", f"cannot load {path}: {e}") from e

        if not isinstance(data, dict):
            raise CollectorError("fixture", f"{path} must map resource types to snapshot lists")

        snapshots: dict[str, list[dict[str, Any]]] = {}
        for resource_type, items in data.items():
            if not isinstance(items, list):
                raise CollectorError(str(resource_type), f"expected a list of snapshots in {path}")
            snapshots[str(resource_type)] = items

        try:
            collector = cls(snapshots)
        except (KeyError, TypeError, ValueError) as e:
            raise CollectorError("fixture", f"invalid snapshot in {path}: {e}") from e

        logger.debug("Loaded %d resource types from %s", len(snapshots), path)
        return collector


class MappingRelationshipResolver(RelationshipResolver):
    """Resolves relationships declared on the snapshot itself.

    A snapshot names its related resources in
    ``properties["relationships"][relation]``, either as the related
    resource id (looked up in the collector) or as an inline snapshot.
    """

    def __init__(self, collector: ResourceCollector) -> None:
        self.collector = collector

    def resolve(
        self,
        resource: ResourceSnapshot,
        relation: str,
        target_type: str | None = None,
    ) -> ResourceSnapshot | None:
        relationships = resource.properties.get("relationships")
        if not isinstance(relationships, dict):
            return None

        ref = relationships.get(relation)
        if isinstance(ref, dict):
            return _to_snapshot(ref, target_type or "", region=resource.region)
        if not isinstance(ref, str) or not ref:
            return None

        if isinstance(self.collector, StaticCollector):
            return self.collector.find(ref, target_type)

        types = [target_type] if target_type else list_resource_types()
        for rt in types:
            for candidate in self.collector.collect(rt, resource.region):
                if candidate.id == ref:
                    return candidate
        return None


def _to_snapshot(
    item: ResourceSnapshot | dict[str, Any],
    resource_type: str,
    region: str | None = None,
) -> ResourceSnapshot:
    if isinstance(item, ResourceSnapshot):
        return item
    if not isinstance(item, dict):
        raise TypeError(f"snapshot must be an object, got {type(item).__name__}")
    data = dict(item)
    data.setdefault("type", resource_type)
    return ResourceSnapshot.from_dict(data, region=region)
