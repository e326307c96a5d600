"""Tests for scan report output."""

from __future__ import annotations

import csv
import json

import pytest

from custodiancore.collectors import StaticCollector
from custodiancore.policy.models import ActionSpec, FilterSpec, Policy
from custodiancore.reports import CSV_HEADER, ScanReport
from custodiancore.scanner import BatchScanResult, PolicyScanner
from custodiancore.severity import Impact
from custodiancore.store import MemoryPolicyStore


@pytest.fixture
def batch() -> BatchScanResult:
    store = MemoryPolicyStore()
    store.save(Policy(
        name="stale-ec2",
        resource_type="ec2",
        filters=[FilterSpec(type="cpu-utilization")],
        actions=[ActionSpec(type="stop"), ActionSpec(type="tag", settings={"key": "idle"})],
    ))
    store.save(Policy(
        name="public-buckets",
        resource_type="s3",
        filters=[FilterSpec(type="public-access")],
        actions=[ActionSpec(type="block-public-access")],
    ))
    collector = StaticCollector({
        "ec2": [
            {"id": "i-a", "name": "web-1", "state": "running",
             "properties": {"cpu_utilization": 1.0, "instance_type": "t3.micro"}},
            {"id": "i-b", "properties": {"cpu_utilization": 50.0, "instance_type": "t3.micro"}},
        ],
        "s3": [{"id": "logs-bucket", "properties": {"public_read": True}}],
    })
    return PolicyScanner(store, collector).scan_all_policies()


@pytest.fixture
def report(batch) -> ScanReport:
    report = ScanReport.from_batch(batch)
    report.errors.append("policy 'broken': failed to parse policy 'broken'")
    return report


class TestScanReport:
    """Test ScanReport aggregation and output."""

    def test_totals(self, report):
        assert report.total_matched == 2
        assert report.total_savings == pytest.approx(8.76)
        assert report.count_by_risk(Impact.HIGH) == 1
        assert report.count_by_risk(Impact.MEDIUM) == 1
        assert report.count_by_risk(Impact.LOW) == 0

    def test_to_dict(self, report):
        data = report.to_dict()
        assert data["tool"] == "custodianctl"
        assert data["policies_scanned"] == 2
        assert data["estimated_cost_savings"] == 8.76
        assert [r["policy_name"] for r in data["results"]] == ["public-buckets", "stale-ec2"]

    def test_write_json(self, report, tmp_path):
        path = tmp_path / "out" / "scan_report.json"
        report.write_json(path)
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["total_matched"] == 2
        assert data["errors"] == ["policy 'broken': failed to parse policy 'broken'"]

    def test_write_markdown(self, report, tmp_path):
        path = tmp_path / "scan_report.md"
        report.write_markdown(path)
        text = path.read_text(encoding="utf-8")
        assert text.startswith("# Policy Scan Report")
        assert "- **high**: 1" in text
        assert "### stale-ec2" in text
        assert "| i-a | medium | stop, tag |" in text
        assert "## Errors" in text

    def test_write_csv(self, report, tmp_path):
        path = tmp_path / "scan_report.csv"
        report.write_csv(path)
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        assert rows[0] == CSV_HEADER
        assert rows[1:] == [
            ["public-buckets", "logs-bucket", "", "s3", "us-east-1", "", "high", "block-public-access", "0.00"],
            ["stale-ec2", "i-a", "web-1", "ec2", "us-east-1", "running", "medium", "stop;tag", "8.76"],
        ]

    def test_empty_report(self, tmp_path):
        report = ScanReport()
        path = tmp_path / "scan_report.md"
        report.write_markdown(path)
        assert "No policies scanned." in path.read_text(encoding="utf-8")
        assert report.to_dict()["total_matched"] == 0
