"""
Runtime configuration for scanning and policy storage.

Supports:
- Environment variable configuration
- YAML file configuration
- Runtime overrides
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_REGION = "us-east-1"
DEFAULT_HOME = "~/.custodian"

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class ScannerConfig:
    """
    Configuration for the scan orchestrator.

    Defaults are safe: scans are bounded to 1000 resources and actions are
    planned as dry runs.
    """

    region: str = DEFAULT_REGION
    profile: str | None = None
    max_resources: int = 1000
    timeout_seconds: int = 300
    dry_run_default: bool = True

    # Batch scans
    parallel: bool = False
    max_workers: int = 4

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.region:
            self.region = DEFAULT_REGION

        if self.max_resources < 1:
            raise ValueError(f"max_resources must be >= 1, got {self.max_resources}")

        if self.timeout_seconds < 1:
            raise ValueError(f"timeout_seconds must be >= 1, got {self.timeout_seconds}")

        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

    @classmethod
    def from_env(cls) -> ScannerConfig:
        """
        Create configuration from environment variables.

        Environment variables:
            CUSTODIAN_REGION: Region to scan (falls back to AWS_REGION)
            CUSTODIAN_PROFILE: Credential profile (falls back to AWS_PROFILE)
            CUSTODIAN_MAX_RESOURCES: Maximum resources per scan
            CUSTODIAN_TIMEOUT: Timeout in seconds
            CUSTODIAN_DRY_RUN: Default dry-run setting (true/false)
            CUSTODIAN_PARALLEL: Scan policies concurrently (true/false)
        """
        region = os.getenv("CUSTODIAN_REGION") or os.getenv("AWS_REGION") or DEFAULT_REGION
        profile = os.getenv("CUSTODIAN_PROFILE") or os.getenv("AWS_PROFILE") or None

        return cls(
            region=region,
            profile=profile,
            max_resources=int(os.getenv("CUSTODIAN_MAX_RESOURCES", "1000")),
            timeout_seconds=int(os.getenv("CUSTODIAN_TIMEOUT", "300")),
            dry_run_default=_env_bool("CUSTODIAN_DRY_RUN", True),
            parallel=_env_bool("CUSTODIAN_PARALLEL", False),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScannerConfig:
        """Create configuration from dictionary (e.g., YAML).

        The original key spellings aws_region/aws_profile are accepted.
        """
        return cls(
            region=data.get("region") or data.get("aws_region") or DEFAULT_REGION,
            profile=data.get("profile") or data.get("aws_profile"),
            max_resources=int(data.get("max_resources") or 1000),
            timeout_seconds=int(data.get("timeout_seconds") or 300),
            dry_run_default=bool(data.get("dry_run_default", True)),
            parallel=bool(data.get("parallel", False)),
            max_workers=int(data.get("max_workers") or 4),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> ScannerConfig:
        """Load configuration from a YAML file, reading the scanner section if present."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Invalid configuration format in {path}")
        section = data.get("scanner", data)
        return cls.from_dict(section if isinstance(section, dict) else {})

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return asdict(self)


@dataclass
class StoreConfig:
    """Configuration for the file-backed policy store."""

    base_dir: Path = Path(DEFAULT_HOME)

    def __post_init__(self):
        self.base_dir = Path(self.base_dir).expanduser()

    @classmethod
    def from_env(cls) -> StoreConfig:
        """
        Create configuration from environment variables.

        Environment variables:
            CUSTODIAN_HOME: Store base directory (default ~/.custodian)
        """
        return cls(base_dir=Path(os.getenv("CUSTODIAN_HOME") or DEFAULT_HOME))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoreConfig:
        """Create configuration from dictionary."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and v}
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"base_dir": str(self.base_dir)}
