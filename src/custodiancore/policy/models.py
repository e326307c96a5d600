"""Policy data models."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CREATED_BY = "custodian-user"


class PolicyStatus(Enum):
    """Lifecycle status of a policy.

    Draft -> Active -> (Inactive | Deleted). Transitions are caller driven;
    the store only forces DELETED when archiving a deleted policy.
    """

    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    DELETED = "deleted"


class PolicySource(Enum):
    """Provenance of a policy."""

    MANUAL = "manual"
    TEMPLATE = "template"
    IMPORT = "import"
    WIZARD = "wizard"


class ModeType(Enum):
    """How a policy is meant to run."""

    ON_DEMAND = "on-demand"
    SCHEDULED = "scheduled"
    EVENT = "event"

    @classmethod
    def parse(cls, value: str) -> ModeType:
        """Parse mode type, accepting legacy spellings."""
        value = value.lower()
        value = _LEGACY_MODE_TYPES.get(value, value)
        return cls(value)


_LEGACY_MODE_TYPES = {
    "pull": "on-demand",
    "ondemand": "on-demand",
    "periodic": "scheduled",
    "push": "event",
}


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(UTC)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, assuming UTC for naive values."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def format_timestamp(value: datetime | None) -> str | None:
    """Format timestamp as ISO-8601."""
    return value.isoformat() if value is not None else None


@dataclass
class FilterSpec:
    """Persisted filter record.

    Leaf filters use key/value/op. Composite filters (and, or, not,
    collection, relationship) carry their nested records in value.

    Attributes:
        type: Filter type (cpu-utilization, tag-missing, and, or, ...)
        key: Tag key, property name or collection attribute
        value: Comparison literal or nested filter record(s)
        op: Comparison operator (eq, lt, gte, in, missing, ...)
        required: Whether the filter is mandatory for the policy
        negate: Invert the leaf result
    """

    type: str
    key: str | None = None
    value: Any = None
    op: str | None = None
    required: bool = False
    negate: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, omitting unset fields."""
        result: dict[str, Any] = {"type": self.type}
        if self.key:
            result["key"] = self.key
        if self.value is not None:
            result["value"] = self.value
        if self.op:
            result["op"] = self.op
        if self.required:
            result["required"] = True
        if self.negate:
            result["negate"] = True
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FilterSpec:
        """Create from dictionary."""
        return cls(
            type=str(data.get("type") or ""),
            key=data.get("key"),
            value=data.get("value"),
            op=data.get("op"),
            required=bool(data.get("required", False)),
            negate=bool(data.get("negate", False)),
        )


@dataclass
class ActionSpec:
    """Action template attached to a policy."""

    type: str
    settings: dict[str, Any] = field(default_factory=dict)
    dry_run: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"type": self.type, "dry_run": self.dry_run}
        if self.settings:
            result["settings"] = dict(sorted(self.settings.items()))
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionSpec:
        """Create from dictionary."""
        return cls(
            type=str(data.get("type") or ""),
            settings=dict(data.get("settings") or {}),
            dry_run=bool(data.get("dry_run", True)),
        )


@dataclass
class PolicyMode:
    """Execution mode of a policy."""

    type: ModeType = ModeType.ON_DEMAND
    schedule: str | None = None
    settings: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"type": self.type.value}
        if self.schedule:
            result["schedule"] = self.schedule
        if self.settings:
            result["settings"] = dict(sorted(self.settings.items()))
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PolicyMode:
        """Create from dictionary."""
        if not data:
            return cls()
        return cls(
            type=ModeType.parse(data.get("type") or ModeType.ON_DEMAND.value),
            schedule=data.get("schedule") or None,
            settings={str(k): str(v) for k, v in (data.get("settings") or {}).items()},
        )


@dataclass
class Policy:
    """A named governance rule.

    Attributes:
        name: Unique policy name (primary key in the store)
        resource_type: Supported resource type the policy targets
        filters: Top-level filter records (implicit AND)
        actions: Ordered action templates
        mode: Execution mode
        status: Lifecycle status
        version: Monotonic version, assigned by the store
        source: Provenance of the policy
    """

    name: str
    resource_type: str
    description: str = ""
    filters: list[FilterSpec] = field(default_factory=list)
    actions: list[ActionSpec] = field(default_factory=list)
    mode: PolicyMode = field(default_factory=PolicyMode)
    tags: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str = DEFAULT_CREATED_BY
    version: int = 0
    status: PolicyStatus = PolicyStatus.ACTIVE
    last_run: datetime | None = None
    run_count: int = 0
    source: PolicySource = PolicySource.MANUAL
    template_id: str | None = None

    @property
    def is_active(self) -> bool:
        """Whether batch scans should pick up this policy."""
        return self.status == PolicyStatus.ACTIVE

    def copy(self, **changes: Any) -> Policy:
        """Return a deep copy with the given fields replaced."""
        return replace(copy.deepcopy(self), **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted record layout."""
        result: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "resource_type": self.resource_type,
            "filters": [f.to_dict() for f in self.filters],
            "actions": [a.to_dict() for a in self.actions],
            "mode": self.mode.to_dict(),
            "tags": dict(sorted(self.tags.items())),
            "metadata": dict(sorted(self.metadata.items())),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "created_by": self.created_by,
            "version": self.version,
            "status": self.status.value,
            "run_count": self.run_count,
            "source": self.source.value,
        }
        if self.last_run is not None:
            result["last_run"] = format_timestamp(self.last_run)
        if self.template_id:
            result["template_id"] = self.template_id
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Policy:
        """Create from a persisted record.

        Raises:
            KeyError: If name or resource_type is missing
            ValueError: If an enum field or timestamp is invalid
        """
        return cls(
            name=data["name"],
            resource_type=data["resource_type"],
            description=data.get("description") or "",
            filters=[FilterSpec.from_dict(f) for f in data.get("filters") or []],
            actions=[ActionSpec.from_dict(a) for a in data.get("actions") or []],
            mode=PolicyMode.from_dict(data.get("mode")),
            tags={str(k): str(v) for k, v in (data.get("tags") or {}).items()},
            metadata=dict(data.get("metadata") or {}),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            created_by=data.get("created_by") or DEFAULT_CREATED_BY,
            version=int(data.get("version") or 0),
            status=PolicyStatus(data.get("status") or PolicyStatus.ACTIVE.value),
            last_run=parse_timestamp(data.get("last_run")),
            run_count=int(data.get("run_count") or 0),
            source=PolicySource(data.get("source") or PolicySource.MANUAL.value),
            template_id=data.get("template_id") or None,
        )

    @classmethod
    def from_yaml(cls, path: Path) -> Policy:
        """Load a policy from a YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Invalid policy format in {path}")
        return cls.from_dict(data)
