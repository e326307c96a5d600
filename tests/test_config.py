"""Tests for runtime configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from custodiancore.config import ScannerConfig, StoreConfig


class TestScannerConfig:
    """Test ScannerConfig defaults, validation and sources."""

    def test_defaults(self):
        """Defaults bound scans and plan dry runs."""
        config = ScannerConfig()
        assert config.region == "us-east-1"
        assert config.max_resources == 1000
        assert config.timeout_seconds == 300
        assert config.dry_run_default is True
        assert config.parallel is False

    @pytest.mark.parametrize("field", ["max_resources", "timeout_seconds", "max_workers"])
    def test_rejects_non_positive(self, field):
        with pytest.raises(ValueError, match=field):
            ScannerConfig(**{field: 0})

    def test_empty_region_defaults(self):
        assert ScannerConfig(region="").region == "us-east-1"

    def test_from_env(self, monkeypatch):
        """CUSTODIAN_* variables take precedence."""
        monkeypatch.setenv("CUSTODIAN_REGION", "eu-west-1")
        monkeypatch.setenv("AWS_REGION", "ap-south-1")
        monkeypatch.setenv("CUSTODIAN_MAX_RESOURCES", "50")
        monkeypatch.setenv("CUSTODIAN_DRY_RUN", "false")
        monkeypatch.setenv("CUSTODIAN_PARALLEL", "yes")
        config = ScannerConfig.from_env()
        assert config.region == "eu-west-1"
        assert config.max_resources == 50
        assert config.dry_run_default is False
        assert config.parallel is True

    def test_from_env_aws_fallback(self, monkeypatch):
        for name in ("CUSTODIAN_REGION", "CUSTODIAN_PROFILE"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("AWS_REGION", "ap-south-1")
        monkeypatch.setenv("AWS_PROFILE", "audit")
        config = ScannerConfig.from_env()
        assert config.region == "ap-south-1"
        assert config.profile == "audit"

    def test_from_dict_legacy_keys(self):
        config = ScannerConfig.from_dict({"aws_region": "us-west-2", "aws_profile": "prod", "max_resources": 10})
        assert config.region == "us-west-2"
        assert config.profile == "prod"
        assert config.max_resources == 10

    def test_from_yaml_section(self, tmp_path):
        path = tmp_path / "custodian.yaml"
        path.write_text("scanner:\n  region: eu-central-1\n  parallel: true\n  max_workers: 2\n", encoding="utf-8")
        config = ScannerConfig.from_yaml(path)
        assert config.region == "eu-central-1"
        assert config.parallel is True
        assert config.max_workers == 2

    def test_from_yaml_invalid(self, tmp_path):
        path = tmp_path / "custodian.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ValueError):
            ScannerConfig.from_yaml(path)

    def test_to_dict(self):
        assert ScannerConfig(region="us-west-1").to_dict()["region"] == "us-west-1"


class TestStoreConfig:
    """Test StoreConfig."""

    def test_base_dir(self, tmp_path):
        assert StoreConfig(base_dir=str(tmp_path)).base_dir == tmp_path

    def test_expands_home(self):
        assert StoreConfig().base_dir == Path("~/.custodian").expanduser()

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CUSTODIAN_HOME", str(tmp_path))
        assert StoreConfig.from_env().base_dir == tmp_path

    def test_from_dict(self, tmp_path):
        config = StoreConfig.from_dict({"base_dir": str(tmp_path), "unknown": 1})
        assert config.to_dict() == {"base_dir": str(tmp_path)}
