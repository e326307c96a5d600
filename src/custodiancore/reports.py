"""Scan reports in JSON, Markdown and CSV."""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from custodiancore import __version__
from custodiancore.scanner import BatchScanResult, ScanResult
from custodiancore.severity import Impact

CSV_HEADER = [
    "policy_name",
    "resource_id",
    "resource_name",
    "resource_type",
    "region",
    "state",
    "risk_level",
    "planned_actions",
    "monthly_cost",
]


@dataclass
class ScanReport:
    """Collection of scan results with metadata."""

    results: list[ScanResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    tool: str = "custodianctl"
    tool_version: str = __version__
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @classmethod
    def from_batch(cls, batch: BatchScanResult) -> ScanReport:
        """Build a report from a batch scan."""
        return cls(results=list(batch.results), errors=list(batch.errors))

    @property
    def total_matched(self) -> int:
        return sum(r.summary.matched_resources for r in self.results)

    @property
    def total_savings(self) -> float:
        return sum(r.summary.estimated_cost_savings for r in self.results)

    def count_by_risk(self, risk: Impact) -> int:
        """Count matched resources at a risk level."""
        return sum(1 for r in self.results for m in r.matched_resources if m.risk_level == risk)

    def to_dict(self) -> dict[str, Any]:
        """Convert report to dictionary."""
        return {
            "tool": self.tool,
            "tool_version": self.tool_version,
            "timestamp": self.timestamp,
            "policies_scanned": len(self.results),
            "total_matched": self.total_matched,
            "estimated_cost_savings": round(self.total_savings, 2),
            "results": [r.to_dict() for r in self.results],
            "errors": list(self.errors),
        }

    def write_json(self, path: Path) -> None:
        """Write report as JSON."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)

    def write_markdown(self, path: Path) -> None:
        """Write report as Markdown."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(self._generate_markdown())

    def _generate_markdown(self) -> str:
        lines = [
            "# Policy Scan Report",
            "",
            f"**Tool Version:** {self.tool_version}",
            f"**Timestamp:** {self.timestamp}",
            f"**Policies Scanned:** {len(self.results)}",
            f"**Matched Resources:** {self.total_matched}",
            f"**Estimated Monthly Savings:** ${self.total_savings:.2f}",
            "",
            "## Summary by Risk",
            "",
        ]

        for risk in sorted(Impact, reverse=True):
            count = self.count_by_risk(risk)
            if count > 0:
                lines.append(f"- **{risk.value}**: {count}")

        lines.extend(["", "## Policies", ""])

        if not self.results:
            lines.append("No policies scanned.")

        for result in self.results:
            s = result.summary
            lines.extend([
                f"### {result.policy_name}",
                "",
                f"- **Resource Type:** {result.resource_type}",
                f"- **Scanned:** {s.total_scanned}",
                f"- **Matched:** {s.matched_resources}",
                f"- **Actions Planned:** {s.actions_planned}",
                f"- **High Risk Actions:** {s.high_risk_actions}",
                "",
            ])
            if result.matched_resources:
                lines.extend([
                    "| Resource | Risk | Actions |",
                    "|---|---|---|",
                ])
                for m in result.matched_resources:
                    actions = ", ".join(a.type for a in m.planned_actions) or "-"
                    lines.append(f"| {m.id} | {m.risk_level.value} | {actions} |")
                lines.append("")
            for error in result.errors:
                lines.append(f"> {error}")
            if result.errors:
                lines.append("")

        if self.errors:
            lines.extend(["## Errors", ""])
            lines.extend(f"- {e}" for e in self.errors)
            lines.append("")

        return "\n".join(lines)

    def write_csv(self, path: Path) -> None:
        """Write report as CSV, one row per matched resource."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            for result in self.results:
                for m in result.matched_resources:
                    writer.writerow([
                        result.policy_name,
                        m.resource.id,
                        m.resource.name or "",
                        m.resource.type,
                        m.resource.region,
                        m.resource.state or "",
                        m.risk_level.value,
                        ";".join(a.type for a in m.planned_actions),
                        f"{m.resource.monthly_cost:.2f}",
                    ])
