"""Tests for scan orchestration."""

from __future__ import annotations

import json

import pytest
from jsonschema import validate

from custodiancore.collectors import ResourceCollector, StaticCollector
from custodiancore.config import ScannerConfig
from custodiancore.errors import CollectorError, PolicyNotFoundError, StorageIOError
from custodiancore.policy.models import ActionSpec, FilterSpec, Policy, PolicyStatus
from custodiancore.scanner import PolicyScanner
from custodiancore.severity import Impact
from custodiancore.store import FilePolicyStore, MemoryPolicyStore

SCAN_RESULT_SCHEMA = {
    "type": "object",
    "required": ["policy_name", "resource_type", "scan_time", "matched_resources", "summary", "errors", "dry_run"],
    "properties": {
        "policy_name": {"type": "string"},
        "resource_type": {"type": "string"},
        "scan_time": {"type": "string"},
        "dry_run": {"const": True},
        "errors": {"type": "array", "items": {"type": "string"}},
        "summary": {
            "type": "object",
            "required": [
                "total_scanned",
                "matched_resources",
                "actions_planned",
                "high_risk_actions",
                "estimated_cost_savings",
            ],
        },
        "matched_resources": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "type", "region", "planned_actions", "risk_level", "compliance"],
                "properties": {
                    "risk_level": {"enum": ["low", "medium", "high"]},
                    "planned_actions": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["type", "description", "dry_run", "impact", "reversible"],
                        },
                    },
                    "compliance": {
                        "type": "object",
                        "required": ["compliant", "issues", "severity"],
                    },
                },
            },
        },
        "estimated_cost": {
            "type": "object",
            "required": ["current_monthly_cost", "projected_savings", "currency"],
        },
    },
}


def stale_ec2_policy(**overrides) -> Policy:
    values = dict(
        name="stale-ec2",
        resource_type="ec2",
        description="Idle EC2 instances",
        filters=[
            FilterSpec(type="cpu-utilization", op="lt", value=5),
            FilterSpec(type="running-days", op="gte", value=7),
        ],
        actions=[ActionSpec(type="stop", dry_run=True)],
    )
    values.update(overrides)
    return Policy(**values)


def ec2_snapshots() -> list[dict]:
    return [
        {"id": "i-a", "region": "us-east-1", "state": "running",
         "properties": {"cpu_utilization": 2.5, "running_days": 15, "instance_type": "t3.micro"}},
        {"id": "i-b", "region": "us-east-1", "state": "running",
         "properties": {"cpu_utilization": 1.2, "running_days": 20, "instance_type": "t3.small"}},
        {"id": "i-busy", "region": "us-east-1", "state": "running",
         "properties": {"cpu_utilization": 60.0, "running_days": 30, "instance_type": "m5.large"}},
        {"id": "i-west", "region": "us-west-2", "state": "running",
         "properties": {"cpu_utilization": 0.5, "running_days": 90, "instance_type": "t3.micro"}},
    ]


class FailingCollector(ResourceCollector):
    def __init__(self, error: Exception):
        self.error = error

    @property
    def name(self) -> str:
        return "failing"

    def collect(self, resource_type, region):
        raise self.error


@pytest.fixture
def store():
    return MemoryPolicyStore()


@pytest.fixture
def collector():
    return StaticCollector({"ec2": ec2_snapshots()})


@pytest.fixture
def scanner(store, collector):
    return PolicyScanner(store, collector, ScannerConfig(region="us-east-1"))


class TestScanPolicy:
    """Scanning a single policy."""

    def test_stale_ec2(self, store, scanner):
        """Idle instances match, each with one planned stop."""
        store.save(stale_ec2_policy())
        result = scanner.scan_policy("stale-ec2")

        assert [m.id for m in result.matched_resources] == ["i-a", "i-b"]
        assert result.summary.total_scanned == 3
        assert result.summary.matched_resources == 2
        assert result.summary.actions_planned == 2
        assert result.summary.high_risk_actions == 0
        assert result.summary.estimated_cost_savings == pytest.approx(26.28)
        assert result.dry_run is True
        assert result.errors == []

        match = result.matched_resources[0]
        assert match.risk_level == Impact.MEDIUM
        assert match.planned_actions[0].description == "Stop EC2 instance i-a"
        assert match.compliance.compliant is False
        assert match.compliance.issues == ["Idle EC2 instances"]

    def test_cost_estimate(self, store, scanner):
        store.save(stale_ec2_policy())
        cost = scanner.scan_policy("stale-ec2").estimated_cost
        assert cost is not None
        assert cost.projected_savings == pytest.approx(26.28)
        assert cost.current_monthly_cost == pytest.approx(8.76 + 17.52 + 83.22)
        assert cost.currency == "USD"

    def test_no_cost_estimate_without_size_class(self, store):
        store.save(Policy(name="public-buckets", resource_type="s3", filters=[FilterSpec(type="public-access")]))
        collector = StaticCollector({"s3": [{"id": "bucket-1", "properties": {"public_read": True}}]})
        result = PolicyScanner(store, collector).scan_policy("public-buckets")
        assert len(result.matched_resources) == 1
        assert result.estimated_cost is None
        assert "estimated_cost" not in result.to_dict()

    def test_dry_run_regardless_of_actions(self, store, scanner):
        """A scan is a dry run even when an action is not."""
        store.save(stale_ec2_policy(actions=[ActionSpec(type="terminate", dry_run=False)]))
        result = scanner.scan_policy("stale-ec2")
        assert result.dry_run is True
        assert result.summary.high_risk_actions == 2
        assert result.matched_resources[0].risk_level == Impact.HIGH
        assert result.matched_resources[0].compliance.severity == Impact.HIGH

    def test_compliance_issues_from_snapshot(self, store):
        store.save(stale_ec2_policy())
        collector = StaticCollector({"ec2": [{
            "id": "i-x",
            "properties": {"cpu_utilization": 1, "running_days": 9, "compliance_issues": ["missing Owner tag"]},
        }]})
        result = PolicyScanner(store, collector).scan_policy("stale-ec2")
        assert result.matched_resources[0].compliance.issues == ["missing Owner tag"]

    def test_no_filters_matches_everything(self, store, scanner):
        store.save(Policy(name="all-ec2", resource_type="ec2"))
        result = scanner.scan_policy("all-ec2")
        assert result.summary.matched_resources == 3
        assert result.summary.actions_planned == 0
        assert all(m.risk_level == Impact.LOW for m in result.matched_resources)

    def test_hand_edited_filters_fail_open(self, tmp_path, collector):
        """Records saved outside the store with malformed filters still scan."""
        store = FilePolicyStore(tmp_path / "store")
        record = {
            "name": "hand-edited",
            "resource_type": "ec2",
            "filters": [
                {"type": "cpu-utilization", "op": 5},
                {"type": "tag", "key": ["Owner"]},
                {"type": "collection", "key": "volumes", "op": 3, "value": {"type": "value", "key": "encrypted"}},
            ],
        }
        (tmp_path / "store" / "policies" / "hand-edited.json").write_text(json.dumps(record), encoding="utf-8")

        scanner = PolicyScanner(store, collector, ScannerConfig(region="us-east-1"))
        result = scanner.scan_policy("hand-edited")
        assert result.errors == []
        assert result.summary.matched_resources == 3

    def test_unknown_policy(self, scanner):
        with pytest.raises(PolicyNotFoundError):
            scanner.scan_policy("nope")

    def test_scan_does_not_touch_store(self, store, scanner):
        """Scans neither bump versions nor write history."""
        store.save(stale_ec2_policy())
        scanner.scan_policy("stale-ec2")
        scanner.scan_all_policies()
        policy = store.get("stale-ec2")
        assert policy.version == 1
        assert policy.run_count == 0
        assert store.history("stale-ec2") == []

    def test_result_schema(self, store, scanner):
        store.save(stale_ec2_policy())
        data = scanner.scan_policy("stale-ec2").to_dict()
        validate(instance=data, schema=SCAN_RESULT_SCHEMA)
        assert data["summary"]["estimated_cost_savings"] == 26.28
        assert data["matched_resources"][0]["properties"]["instance_type"] == "t3.micro"


class TestScanFailures:
    """Collector failures and resource limits are reported, not raised."""

    def test_collector_error(self, store):
        store.save(stale_ec2_policy())
        scanner = PolicyScanner(store, FailingCollector(CollectorError("ec2", "throttled")))
        result = scanner.scan_policy("stale-ec2")
        assert result.matched_resources == []
        assert result.summary.total_scanned == 0
        assert result.errors == ["failed to collect ec2 resources: throttled"]

    def test_unexpected_collector_exception(self, store):
        store.save(stale_ec2_policy())
        scanner = PolicyScanner(store, FailingCollector(RuntimeError("connection reset")))
        result = scanner.scan_policy("stale-ec2")
        assert result.errors == ["failed to collect ec2 resources: connection reset"]

    def test_resource_limit(self, store, collector):
        store.save(Policy(name="all-ec2", resource_type="ec2"))
        scanner = PolicyScanner(store, collector, ScannerConfig(max_resources=2))
        result = scanner.scan_policy("all-ec2")
        assert result.summary.total_scanned == 2
        assert [m.id for m in result.matched_resources] == ["i-a", "i-b"]
        assert result.errors == ["resource limit reached: scanned 2 of 3 ec2 resources"]


class BrokenStore(MemoryPolicyStore):
    def __init__(self, broken: str):
        super().__init__()
        self.broken = broken

    def get(self, name):
        if name == self.broken:
            raise StorageIOError(f"failed to parse policy '{name}'")
        return super().get(name)


class TestScanAll:
    """Batch scans over every active policy."""

    def test_skips_inactive(self, store, scanner):
        store.save(stale_ec2_policy())
        store.save(stale_ec2_policy(name="draft-ec2", status=PolicyStatus.DRAFT))
        store.save(stale_ec2_policy(name="off-ec2", status=PolicyStatus.INACTIVE))

        batch = scanner.scan_all_policies()
        assert [r.policy_name for r in batch.results] == ["stale-ec2"]
        assert batch.skipped == ["draft-ec2", "off-ec2"]
        assert batch.errors == []

    def test_failure_does_not_abort(self, collector):
        store = BrokenStore("b-broken")
        store.save(stale_ec2_policy(name="a-stale"))
        store.save(stale_ec2_policy(name="b-broken"))
        store.save(stale_ec2_policy(name="c-stale"))

        batch = PolicyScanner(store, collector).scan_all_policies()
        assert [r.policy_name for r in batch.results] == ["a-stale", "c-stale"]
        assert batch.errors == ["policy 'b-broken': failed to parse policy 'b-broken'"]

    def test_parallel_keeps_order(self, store, collector):
        names = [f"policy-{i:02d}" for i in range(8)]
        for name in names:
            store.save(stale_ec2_policy(name=name))
        scanner = PolicyScanner(store, collector, ScannerConfig(parallel=True, max_workers=4))

        batch = scanner.scan_all_policies()
        assert [r.policy_name for r in batch.results] == names
        assert batch.summary.matched_resources == 16
        assert batch.summary.estimated_cost_savings == pytest.approx(8 * 26.28)

    def test_empty_store(self, scanner):
        batch = scanner.scan_all_policies()
        assert batch.results == []
        assert batch.to_dict()["summary"]["matched_resources"] == 0
