"""Base collector interface for resource snapshots."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from custodiancore.resources import ResourceSnapshot


class ResourceCollector(ABC):
    """Abstract base class for resource collectors.

    A collector enumerates resources of one type in one region and returns
    them as snapshots. The core treats it as a black box that may block or
    retry; failures surface as CollectorError.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return collector name."""
        pass

    @abstractmethod
    def collect(self, resource_type: str, region: str) -> Sequence[ResourceSnapshot]:
        """Collect snapshots for a resource type.

        Args:
            resource_type: Supported resource type (ec2, s3, ...)
            region: Region to enumerate

        Returns:
            Snapshots in collection order

        Raises:
            CollectorError: If the resources could not be retrieved
        """
        pass
