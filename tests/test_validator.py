"""Tests for policy record validation."""

from __future__ import annotations

import pytest

from custodiancore.errors import PolicyValidationError
from custodiancore.policy.validator import PolicyValidator, is_valid_name


def valid_record() -> dict:
    return {
        "name": "unencrypted-volumes",
        "resource_type": "ebs",
        "filters": [
            {"type": "value", "key": "encrypted", "value": False},
            {"type": "or", "value": [{"type": "tag-missing", "key": "Owner"}, {"type": "state", "value": "available"}]},
        ],
        "actions": [{"type": "encrypt", "dry_run": True}],
        "mode": {"type": "scheduled", "schedule": "rate(1 day)"},
        "status": "active",
    }


@pytest.fixture
def validator():
    return PolicyValidator()


def messages(errors: list[PolicyValidationError]) -> list[str]:
    return [e.message for e in errors]


class TestPolicyValidator:
    """Test the PolicyValidator."""

    def test_valid(self, validator):
        assert validator.validate_policy(valid_record()) == []

    def test_not_an_object(self, validator):
        assert messages(validator.validate_policy(["x"])) == ["Expected object, got list"]

    def test_missing_fields(self, validator):
        errors = messages(validator.validate_policy({}))
        assert "Missing required field: name" in errors
        assert "Missing required field: resource_type" in errors
        assert "policy name cannot be empty" in errors
        assert "resource type cannot be empty" in errors

    def test_unsupported_resource_type(self, validator):
        record = valid_record() | {"resource_type": "dynamodb"}
        errors = validator.validate_policy(record)
        assert messages(errors) == ["unsupported resource type: dynamodb"]
        assert errors[0].path == "resource_type"

    @pytest.mark.parametrize("name", [".hidden", "a/b", "a\\b"])
    def test_invalid_name(self, validator, name):
        errors = validator.validate_policy(valid_record() | {"name": name})
        assert errors[0].path == "name"

    def test_empty_filter_type(self, validator):
        record = valid_record()
        record["filters"].append({"type": ""})
        errors = validator.validate_policy(record)
        assert messages(errors) == ["filter 3: type cannot be empty"]
        assert errors[0].path == "filters[2].type"

    def test_nested_filter_type(self, validator):
        record = valid_record()
        record["filters"] = [{"type": "and", "value": [{"type": "not", "value": {"key": "x", "type": ""}}]}]
        errors = validator.validate_policy(record)
        assert len(errors) == 1
        assert errors[0].path == "filters[0].value[0].value.type"

    def test_composite_shapes(self, validator):
        record = valid_record()
        record["filters"] = [
            {"type": "or", "value": {"type": "tag"}},
            {"type": "collection", "op": "most", "value": {"type": "tag"}},
            {"type": "relationship", "key": "vpc", "value": "vpc-1"},
        ]
        errors = messages(validator.validate_policy(record))
        assert "'or' filter value must be a list of filters" in errors
        assert "collection filter requires a key" in errors
        assert "Invalid collection quantifier: most" in errors
        assert "relationship filter value must be an object" in errors

    def test_key_and_op_must_be_strings(self, validator):
        record = valid_record()
        record["filters"] = [
            {"type": "cpu-utilization", "op": 5},
            {"type": "tag", "key": ["Owner"]},
            {"type": "not", "value": {"type": "value", "key": 3, "value": 1}},
            {"and": [{"field": "size", "operator": ["gt"], "value": 1}]},
        ]
        errors = validator.validate_policy(record)
        assert messages(errors) == [
            "filter 1: op must be a string",
            "filter 2: key must be a string",
            "filter at filters[2].value: key must be a string",
            "filter at filters[3].and[0]: operator must be a string",
        ]
        assert errors[0].path == "filters[0].op"

    def test_empty_action_type(self, validator):
        record = valid_record()
        record["actions"] = [{"type": "tag"}, {"type": "  "}]
        assert messages(validator.validate_policy(record)) == ["action 2: type cannot be empty"]

    def test_action_fields(self, validator):
        record = valid_record()
        record["actions"] = [{"type": "tag", "settings": "Owner", "dry_run": "no"}]
        errors = messages(validator.validate_policy(record))
        assert "action settings must be an object" in errors
        assert "dry_run must be a boolean" in errors

    def test_field_types(self, validator):
        record = valid_record() | {"version": True, "status": "paused", "run_count": -1, "tags": []}
        paths = [e.path for e in validator.validate_policy(record)]
        assert sorted(paths) == ["run_count", "status", "tags", "version"]

    def test_mode_type(self, validator):
        record = valid_record() | {"mode": {"type": "hourly"}}
        assert messages(validator.validate_policy(record)) == ["Invalid mode type: hourly"]

    def test_legacy_mode_type(self, validator):
        record = valid_record() | {"mode": {"type": "periodic"}}
        assert validator.validate_policy(record) == []

    def test_validate_or_raise(self, validator):
        record = valid_record() | {"resource_type": "dynamodb", "actions": [{"type": ""}]}
        with pytest.raises(PolicyValidationError) as exc_info:
            validator.validate_or_raise(record)
        error = exc_info.value
        assert error.errors == ["unsupported resource type: dynamodb", "action 1: type cannot be empty"]
        assert error.path == "resource_type"

    def test_validate_file(self, validator, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("name: idle\nresource_type: ec2\nfilters:\n  - type: cpu-utilization\n", encoding="utf-8")
        assert validator.validate_file(path) == []

        broken = tmp_path / "broken.yaml"
        broken.write_text("name: [unclosed\n", encoding="utf-8")
        assert messages(validator.validate_file(broken))[0].startswith("Invalid YAML")


class TestPolicyNames:
    """Names double as file names."""

    def test_valid(self):
        assert is_valid_name("stale-ec2")
        assert is_valid_name("team.policy_v2")

    def test_invalid(self):
        assert not is_valid_name("")
        assert not is_valid_name(".")
        assert not is_valid_name("..")
        assert not is_valid_name("dir/name")
