"""Scan orchestration.

A scan loads a policy, collects snapshots for its resource type, evaluates
the policy filters against each snapshot and plans the policy actions for
every match. Scans are always dry runs and never write to the store.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from custodiancore.collectors.base import ResourceCollector
from custodiancore.config import ScannerConfig
from custodiancore.errors import CollectorError
from custodiancore.policy.evaluator import FilterEvaluator
from custodiancore.policy.filters import from_specs
from custodiancore.policy.models import Policy, format_timestamp, utc_now
from custodiancore.policy.planner import ActionPlanner, PlannedAction
from custodiancore.resources import MONTHLY_COST_BY_SIZE_CLASS, ResourceSnapshot
from custodiancore.severity import Impact
from custodiancore.store import PolicyStore

logger = logging.getLogger(__name__)

CURRENCY = "USD"


@dataclass
class ComplianceStatus:
    """Compliance of a matched resource."""

    compliant: bool
    issues: list[str] = field(default_factory=list)
    severity: Impact = Impact.LOW

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "compliant": self.compliant,
            "issues": list(self.issues),
            "severity": self.severity.value,
        }


@dataclass
class MatchedResource:
    """A resource that matched the policy filters, with its planned actions."""

    resource: ResourceSnapshot
    planned_actions: list[PlannedAction] = field(default_factory=list)
    risk_level: Impact = Impact.LOW
    compliance: ComplianceStatus = field(default_factory=lambda: ComplianceStatus(compliant=False))

    @property
    def id(self) -> str:
        return self.resource.id

    @property
    def high_risk_actions(self) -> int:
        return sum(1 for a in self.planned_actions if a.is_high_risk)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, snapshot fields first."""
        result = self.resource.to_dict()
        result["planned_actions"] = [a.to_dict() for a in self.planned_actions]
        result["risk_level"] = self.risk_level.value
        result["compliance"] = self.compliance.to_dict()
        return result


@dataclass
class ScanSummary:
    """High-level statistics of one scan."""

    total_scanned: int = 0
    matched_resources: int = 0
    actions_planned: int = 0
    high_risk_actions: int = 0
    estimated_cost_savings: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_scanned": self.total_scanned,
            "matched_resources": self.matched_resources,
            "actions_planned": self.actions_planned,
            "high_risk_actions": self.high_risk_actions,
            "estimated_cost_savings": round(self.estimated_cost_savings, 2),
        }


@dataclass
class CostEstimate:
    """Estimated monthly cost impact of a scan."""

    current_monthly_cost: float
    projected_savings: float
    currency: str = CURRENCY

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "current_monthly_cost": round(self.current_monthly_cost, 2),
            "projected_savings": round(self.projected_savings, 2),
            "currency": self.currency,
        }


@dataclass
class ScanResult:
    """Result of scanning one policy.

    Attributes:
        policy_name: Scanned policy
        resource_type: Resource type the policy targets
        scan_time: When the scan started
        matched_resources: Matches in collection order
        summary: Aggregated statistics
        errors: Collector failures and truncation notes
        estimated_cost: Present when a match has a known size class
    """

    policy_name: str
    resource_type: str
    scan_time: datetime = field(default_factory=utc_now)
    matched_resources: list[MatchedResource] = field(default_factory=list)
    summary: ScanSummary = field(default_factory=ScanSummary)
    errors: list[str] = field(default_factory=list)
    estimated_cost: CostEstimate | None = None

    @property
    def dry_run(self) -> bool:
        """Scans never execute actions."""
        return True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "policy_name": self.policy_name,
            "resource_type": self.resource_type,
            "scan_time": format_timestamp(self.scan_time),
            "matched_resources": [m.to_dict() for m in self.matched_resources],
            "summary": self.summary.to_dict(),
            "errors": list(self.errors),
            "dry_run": self.dry_run,
        }
        if self.estimated_cost is not None:
            result["estimated_cost"] = self.estimated_cost.to_dict()
        return result


@dataclass
class BatchScanResult:
    """Results of scanning every active policy.

    Attributes:
        results: One result per scanned policy, in store listing order
        errors: One message per policy whose scan failed
        skipped: Policies skipped because they are not active
    """

    results: list[ScanResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def summary(self) -> ScanSummary:
        """Summary statistics over all results."""
        total = ScanSummary()
        for r in self.results:
            total.total_scanned += r.summary.total_scanned
            total.matched_resources += r.summary.matched_resources
            total.actions_planned += r.summary.actions_planned
            total.high_risk_actions += r.summary.high_risk_actions
            total.estimated_cost_savings += r.summary.estimated_cost_savings
        return total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary.to_dict(),
            "errors": list(self.errors),
            "skipped": list(self.skipped),
        }


class PolicyScanner:
    """Drives policy scans against a resource collector."""

    def __init__(
        self,
        store: PolicyStore,
        collector: ResourceCollector,
        config: ScannerConfig | None = None,
        evaluator: FilterEvaluator | None = None,
        planner: ActionPlanner | None = None,
    ) -> None:
        self.store = store
        self.collector = collector
        self.config = config or ScannerConfig()
        self.evaluator = evaluator or FilterEvaluator()
        self.planner = planner or ActionPlanner()

    def scan_policy(self, name: str) -> ScanResult:
        """Scan one stored policy.

        Raises:
            PolicyNotFoundError: If the policy does not exist
            StorageIOError: If the policy record cannot be loaded
        """
        return self.scan(self.store.get(name))

    def scan(self, policy: Policy) -> ScanResult:
        """Scan a policy object without touching the store."""
        result = ScanResult(policy_name=policy.name, resource_type=policy.resource_type)
        snapshots = self._collect(policy, result)

        limit = self.config.max_resources
        if len(snapshots) > limit:
            result.errors.append(
                f"resource limit reached: scanned {limit} of {len(snapshots)} {policy.resource_type} resources"
            )
            snapshots = snapshots[:limit]

        filters = from_specs(policy.filters)
        for snapshot in snapshots:
            if not self.evaluator.evaluate(filters, snapshot):
                continue
            planned = self.planner.plan(snapshot, policy.actions)
            risk = ActionPlanner.risk_level(planned)
            result.matched_resources.append(
                MatchedResource(
                    resource=snapshot,
                    planned_actions=planned,
                    risk_level=risk,
                    compliance=_compliance(policy, snapshot, risk),
                )
            )

        result.summary = _summarize(len(snapshots), result.matched_resources)
        result.estimated_cost = _estimate_cost(snapshots, result.matched_resources)
        logger.debug(
            "Scanned %d %s resources for %s, %d matched",
            len(snapshots), policy.resource_type, policy.name, len(result.matched_resources),
        )
        return result

    def scan_all_policies(self) -> BatchScanResult:
        """Scan every active policy; a failing policy never aborts the batch."""
        batch = BatchScanResult()
        active = []
        for policy in self.store.list():
            if policy.is_active:
                active.append(policy)
            else:
                batch.skipped.append(policy.name)

        if self.config.parallel and len(active) > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                outcomes = list(pool.map(self._scan_isolated, active))
        else:
            outcomes = [self._scan_isolated(p) for p in active]

        for result, error in outcomes:
            if result is not None:
                batch.results.append(result)
            if error is not None:
                batch.errors.append(error)
        return batch

    def _scan_isolated(self, policy: Policy) -> tuple[ScanResult | None, str | None]:
        try:
            return self.scan_policy(policy.name), None
        except Exception as e:
            logger.warning("Failed to scan policy %s: %s", policy.name, e)
            return None, f"policy '{policy.name}': {e}"

    def _collect(self, policy: Policy, result: ScanResult) -> list[ResourceSnapshot]:
        try:
            return list(self.collector.collect(policy.resource_type, self.config.region))
        except CollectorError as e:
            error = e
        except Exception as e:
            error = CollectorError(policy.resource_type, str(e))
        logger.error("Collector %s failed for policy %s: %s", self.collector.name, policy.name, error.message)
        result.errors.append(error.message)
        return []


def _compliance(policy: Policy, snapshot: ResourceSnapshot, risk: Impact) -> ComplianceStatus:
    issues = snapshot.properties.get("compliance_issues")
    if isinstance(issues, list) and issues:
        found = [str(i) for i in issues]
    else:
        found = [policy.description or f"Matches policy {policy.name}"]
    return ComplianceStatus(compliant=False, issues=found, severity=risk)


def _summarize(total_scanned: int, matched: list[MatchedResource]) -> ScanSummary:
    summary = ScanSummary(total_scanned=total_scanned, matched_resources=len(matched))
    for m in matched:
        summary.actions_planned += len(m.planned_actions)
        summary.high_risk_actions += m.high_risk_actions
        summary.estimated_cost_savings += m.resource.monthly_cost
    return summary


def _estimate_cost(scanned: list[ResourceSnapshot], matched: list[MatchedResource]) -> CostEstimate | None:
    if not any(m.resource.size_class in MONTHLY_COST_BY_SIZE_CLASS for m in matched):
        return None
    return CostEstimate(
        current_monthly_cost=sum(s.monthly_cost for s in scanned),
        projected_savings=sum(m.resource.monthly_cost for m in matched),
    )
