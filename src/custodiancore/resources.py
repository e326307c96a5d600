"""Resource catalog, snapshots and the static monthly cost table."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from custodiancore.errors import PolicyValidationError

# Top-level snapshot fields addressable by filter attributes
SNAPSHOT_FIELDS = ("id", "name", "type", "region", "state")


@dataclass(frozen=True)
class ResourceType:
    """A supported cloud resource type.

    Attributes:
        name: Short name used in policies (ec2, s3, ...)
        service: Provider service owning the resource
        description: Human-readable description
        filters: Filter types commonly used with this resource
        actions: Action types that make sense for this resource
    """

    name: str
    service: str
    description: str
    filters: tuple[str, ...] = ()
    actions: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "service": self.service,
            "description": self.description,
            "available_filters": list(self.filters),
            "available_actions": list(self.actions),
        }


SUPPORTED_RESOURCES: MappingProxyType[str, ResourceType] = MappingProxyType({
    "ec2": ResourceType(
        name="ec2",
        service="EC2",
        description="EC2 Instances",
        filters=("instance-state", "tag", "instance-type", "launch-time", "vpc-id", "subnet-id",
                 "cpu-utilization", "running-days"),
        actions=("stop", "terminate", "tag", "detach-volume", "create-snapshot"),
    ),
    "s3": ResourceType(
        name="s3",
        service="S3",
        description="S3 Buckets",
        filters=("bucket-name", "tag", "creation-date", "encryption", "public-access", "versioning"),
        actions=("delete", "tag", "encrypt", "block-public-access", "enable-versioning"),
    ),
    "rds": ResourceType(
        name="rds",
        service="RDS",
        description="RDS Instances",
        filters=("engine", "instance-class", "tag", "backup-retention-period", "multi-az", "encryption"),
        actions=("stop", "delete", "tag", "create-snapshot", "modify-backup-retention"),
    ),
    "lambda": ResourceType(
        name="lambda",
        service="Lambda",
        description="Lambda Functions",
        filters=("runtime", "last-modified", "tag", "memory-size", "timeout", "environment"),
        actions=("delete", "tag", "update-configuration", "update-environment"),
    ),
    "iam": ResourceType(
        name="iam",
        service="IAM",
        description="IAM Users, Roles, and Policies",
        filters=("creation-date", "last-used", "attached-policies", "tag", "path"),
        actions=("delete", "tag", "detach-policy", "add-to-group"),
    ),
    "vpc": ResourceType(
        name="vpc",
        service="VPC",
        description="VPC Resources",
        filters=("vpc-id", "tag", "state", "cidr-block", "is-default"),
        actions=("delete", "tag", "modify-attribute"),
    ),
    "ebs": ResourceType(
        name="ebs",
        service="EC2",
        description="EBS Volumes",
        filters=("volume-type", "state", "tag", "creation-time", "attachment-state", "encrypted"),
        actions=("delete", "tag", "create-snapshot", "detach", "encrypt"),
    ),
    "elb": ResourceType(
        name="elb",
        service="ELB",
        description="Load Balancers",
        filters=("load-balancer-name", "tag", "scheme", "vpc-id", "state"),
        actions=("delete", "tag", "modify-attributes"),
    ),
})


# Approximate on-demand USD per month, keyed by size class
MONTHLY_COST_BY_SIZE_CLASS: MappingProxyType[str, float] = MappingProxyType({
    "t3.nano": 4.38,
    "t3.micro": 8.76,
    "t3.small": 17.52,
    "t3.medium": 35.04,
    "t3.large": 70.08,
    "m5.large": 83.22,
    "m5.xlarge": 166.44,
    "db.t3.micro": 13.14,
    "db.t3.small": 26.28,
    "db.t3.medium": 52.56,
})


def get_resource_type(name: str) -> ResourceType:
    """Look up a supported resource type.

    Raises:
        PolicyValidationError: If the type is not supported
    """
    try:
        return SUPPORTED_RESOURCES[name]
    except KeyError:
        raise PolicyValidationError(f"unsupported resource type: {name}", path="resource_type") from None


def list_resource_types() -> list[str]:
    """List supported resource type names in sorted order."""
    return sorted(SUPPORTED_RESOURCES)


@dataclass(frozen=True)
class ResourceSnapshot:
    """Point-in-time attribute set describing one cloud resource.

    Snapshots are produced by a collector for a single scan and never
    persisted by the core.
    """

    id: str
    type: str
    region: str
    name: str | None = None
    state: str | None = None
    tags: dict[str, str] = field(default_factory=dict)
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def size_class(self) -> str:
        """Size class used for cost estimation."""
        for key in ("instance_type", "instance_class"):
            value = self.properties.get(key)
            if isinstance(value, str) and value:
                return value
        return self.type

    @property
    def monthly_cost(self) -> float:
        """Monthly cost of this resource, 0.0 for unknown size classes."""
        return MONTHLY_COST_BY_SIZE_CLASS.get(self.size_class, 0.0)

    def has_attribute(self, name: str) -> bool:
        """Check whether a top-level field or property is present."""
        if name in SNAPSHOT_FIELDS:
            return getattr(self, name) is not None
        return name in self.properties

    def get_attribute(self, name: str, default: Any = None) -> Any:
        """Get a top-level field or a property by name."""
        if name in SNAPSHOT_FIELDS:
            value = getattr(self, name)
            return default if value is None else value
        return self.properties.get(name, default)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "region": self.region,
            "tags": dict(sorted(self.tags.items())),
            "properties": dict(sorted(self.properties.items())),
        }
        if self.name is not None:
            result["name"] = self.name
        if self.state is not None:
            result["state"] = self.state
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any], region: str | None = None) -> ResourceSnapshot:
        """Create from dictionary.

        Args:
            data: Snapshot mapping with at least id and type
            region: Region to use when the mapping has none
        """
        return cls(
            id=str(data["id"]),
            type=data["type"],
            region=data.get("region") or region or "",
            name=data.get("name"),
            state=data.get("state"),
            tags={str(k): str(v) for k, v in (data.get("tags") or {}).items()},
            properties=dict(data.get("properties") or {}),
        )
