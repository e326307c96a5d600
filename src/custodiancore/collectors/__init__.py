"""Collectors module for custodian-core - resource snapshot sources."""

from __future__ import annotations

from custodiancore.collectors.base import ResourceCollector
from custodiancore.collectors.static import MappingRelationshipResolver, StaticCollector

__all__ = [
    "ResourceCollector",
    "StaticCollector",
    "MappingRelationshipResolver",
]
