"""Action planning for matched resources.

Planning is a pure function of the action specs and the resource snapshot:
nothing is executed and no external state is read.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from custodiancore.policy.models import ActionSpec
from custodiancore.resources import ResourceSnapshot
from custodiancore.severity import Impact, highest_impact


@dataclass(frozen=True)
class ActionProfile:
    """Static impact metadata for an action type."""

    impact: Impact
    reversible: bool
    template: str


GENERIC_PROFILE = ActionProfile(Impact.MEDIUM, True, "Execute {type} on resource {id}")

ACTION_PROFILES: MappingProxyType[str, ActionProfile] = MappingProxyType({
    "stop": ActionProfile(Impact.MEDIUM, True, "Stop EC2 instance {id}"),
    "start": ActionProfile(Impact.LOW, True, "Start instance {id}"),
    "terminate": ActionProfile(Impact.HIGH, False, "Terminate EC2 instance {id}"),
    "delete": ActionProfile(Impact.HIGH, False, "Delete resource {id}"),
    "tag": ActionProfile(Impact.LOW, True, "Add tags to resource {id}"),
    "create-snapshot": ActionProfile(Impact.LOW, True, "Create snapshot of {id}"),
    "block-public-access": ActionProfile(Impact.HIGH, True, "Block public access on S3 bucket {id}"),
    "encrypt": ActionProfile(Impact.MEDIUM, True, "Enable encryption on {id}"),
    "enable-versioning": ActionProfile(Impact.LOW, True, "Enable versioning on S3 bucket {id}"),
    "modify-backup-retention": ActionProfile(Impact.MEDIUM, True, "Modify backup retention for RDS {id}"),
    "detach-volume": ActionProfile(Impact.MEDIUM, True, "Detach volumes from instance {id}"),
    "detach": ActionProfile(Impact.MEDIUM, True, "Detach volume {id}"),
    "detach-policy": ActionProfile(Impact.MEDIUM, True, "Detach policies from {id}"),
})

DESTRUCTIVE_ACTIONS = frozenset({"terminate", "delete", "stop"})


def get_action_profile(action_type: str) -> ActionProfile:
    """Look up the impact profile, falling back to the generic one."""
    return ACTION_PROFILES.get(action_type, GENERIC_PROFILE)


def is_destructive(action_type: str) -> bool:
    """Whether running the action would remove or interrupt a resource."""
    return action_type in DESTRUCTIVE_ACTIONS


@dataclass(frozen=True)
class PlannedAction:
    """An action that would be taken on a resource."""

    type: str
    description: str
    impact: Impact
    reversible: bool
    dry_run: bool
    settings: dict[str, Any] = field(default_factory=dict)

    @property
    def is_high_risk(self) -> bool:
        return self.impact == Impact.HIGH

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "type": self.type,
            "description": self.description,
            "dry_run": self.dry_run,
            "impact": self.impact.value,
            "reversible": self.reversible,
        }
        if self.settings:
            result["settings"] = dict(sorted(self.settings.items()))
        return result


class ActionPlanner:
    """Turns action specs into planned actions for one matched resource."""

    def __init__(self, profiles: MappingProxyType[str, ActionProfile] | None = None) -> None:
        self.profiles = profiles if profiles is not None else ACTION_PROFILES

    def plan(self, resource: ResourceSnapshot, actions: Iterable[ActionSpec]) -> list[PlannedAction]:
        """Plan every action in input order."""
        return [self.plan_action(resource, action) for action in actions]

    def plan_action(self, resource: ResourceSnapshot, action: ActionSpec) -> PlannedAction:
        """Plan a single action."""
        profile = self.profiles.get(action.type, GENERIC_PROFILE)
        return PlannedAction(
            type=action.type,
            description=profile.template.format(type=action.type, id=resource.id),
            impact=profile.impact,
            reversible=profile.reversible,
            dry_run=action.dry_run,
            settings=dict(action.settings),
        )

    @staticmethod
    def risk_level(planned: Iterable[PlannedAction]) -> Impact:
        """Risk of a resource: the highest impact among its planned actions."""
        return highest_impact([p.impact for p in planned])
