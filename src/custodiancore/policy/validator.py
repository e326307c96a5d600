"""Schema and semantic validation for policy records."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from custodiancore.errors import PolicyValidationError
from custodiancore.policy.filters import Quantifier
from custodiancore.policy.models import FilterSpec, ModeType, PolicySource, PolicyStatus
from custodiancore.resources import SUPPORTED_RESOURCES

# Top-level layout of a persisted policy record
POLICY_SCHEMA = {
    "type": "object",
    "required": ["name", "resource_type"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "resource_type": {"type": "string", "enum": sorted(SUPPORTED_RESOURCES)},
        "filters": {"type": "array", "items": {"type": "object"}},
        "actions": {"type": "array", "items": {"type": "object"}},
        "mode": {"type": "object"},
        "tags": {"type": "object"},
        "metadata": {"type": "object"},
        "created_by": {"type": "string"},
        "version": {"type": "integer", "minimum": 0},
        "status": {"type": "string", "enum": [s.value for s in PolicyStatus]},
        "run_count": {"type": "integer", "minimum": 0},
        "source": {"type": "string", "enum": [s.value for s in PolicySource]},
    },
}

_TYPE_MAP: dict[str, type | tuple[type, ...]] = {
    "string": str,
    "integer": int,
    "number": (int, float),
    "boolean": bool,
    "array": list,
    "object": dict,
}


def is_valid_name(name: str) -> bool:
    """Policy names double as file names: no separators, no leading dot."""
    return bool(name) and not name.startswith(".") and "/" not in name and "\\" not in name


class PolicyValidator:
    """Validator for policy records.

    Collects every problem instead of stopping at the first one, so a
    caller can report all of them together.
    """

    def __init__(self) -> None:
        self.errors: list[PolicyValidationError] = []

    def validate_policy(self, data: Any) -> list[PolicyValidationError]:
        """Validate a policy record.

        Returns:
            List of validation errors (empty if valid)
        """
        self.errors = []
        if not isinstance(data, dict):
            self._error(f"Expected object, got {type(data).__name__}")
            return self.errors

        for req in POLICY_SCHEMA["required"]:
            if req not in data:
                self._error(f"Missing required field: {req}")

        name = data.get("name")
        if not str(name or "").strip():
            self._error("policy name cannot be empty", "name")
        elif not isinstance(name, str) or not is_valid_name(name):
            self._error(f"invalid policy name: {name!r}", "name")
        resource_type = data.get("resource_type")
        if not resource_type:
            self._error("resource type cannot be empty", "resource_type")
        elif resource_type not in SUPPORTED_RESOURCES:
            self._error(f"unsupported resource type: {resource_type}", "resource_type")

        for key, value in data.items():
            prop_schema = POLICY_SCHEMA["properties"].get(key)
            if prop_schema and key not in ("name", "resource_type") and value is not None:
                self._validate_value(value, prop_schema, key)

        filters = data.get("filters")
        if isinstance(filters, list):
            for i, record in enumerate(filters):
                self._validate_filter(record, f"filters[{i}]", i + 1)

        actions = data.get("actions")
        if isinstance(actions, list):
            for i, action in enumerate(actions):
                self._validate_action(action, f"actions[{i}]", i + 1)

        mode = data.get("mode")
        if isinstance(mode, dict) and mode.get("type"):
            try:
                ModeType.parse(str(mode["type"]))
            except ValueError:
                self._error(f"Invalid mode type: {mode['type']}", "mode.type")

        return self.errors

    def validate_or_raise(self, data: Any) -> None:
        """Validate a policy record, raising one aggregated error.

        Raises:
            PolicyValidationError: Carrying every message found
        """
        errors = self.validate_policy(data)
        if errors:
            messages = [e.message for e in errors]
            raise PolicyValidationError("; ".join(messages), path=errors[0].path, errors=messages)

    def validate_file(self, path: Path) -> list[PolicyValidationError]:
        """Validate a policy stored as a JSON or YAML file."""
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            return [PolicyValidationError(f"Invalid YAML: {e}")]
        except OSError as e:
            return [PolicyValidationError(f"Error reading file: {e}")]
        return self.validate_policy(data)

    def _validate_filter(self, record: Any, path: str, position: int | None = None) -> None:
        if isinstance(record, FilterSpec):
            record = record.to_dict()
        if not isinstance(record, dict):
            self._error(f"Expected object, got {type(record).__name__}", path)
            return

        if "type" not in record:
            # Advanced layout (and/or/not keys or field/operator leaf)
            for key in ("and", "or"):
                if isinstance(record.get(key), list):
                    for i, child in enumerate(record[key]):
                        self._validate_filter(child, f"{path}.{key}[{i}]")
            if isinstance(record.get("not"), dict):
                self._validate_filter(record["not"], f"{path}.not")
            for key in ("field", "operator"):
                if record.get(key) is not None and not isinstance(record[key], str):
                    self._error(f"filter at {path}: {key} must be a string", f"{path}.{key}")
            return

        kind = str(record.get("type") or "").lower()
        label = f"filter {position}" if position else f"filter at {path}"
        if not kind:
            self._error(f"{label}: type cannot be empty", f"{path}.type")
            return

        for key in ("key", "op"):
            if record.get(key) is not None and not isinstance(record[key], str):
                self._error(f"{label}: {key} must be a string", f"{path}.{key}")

        value = record.get("value")
        if kind in ("and", "or"):
            if value is not None and not isinstance(value, list):
                self._error(f"'{kind}' filter value must be a list of filters", f"{path}.value")
            for i, child in enumerate(value or []):
                self._validate_filter(child, f"{path}.value[{i}]")
        elif kind == "not":
            self._validate_filter(value, f"{path}.value")
        elif kind == "collection":
            if not record.get("key"):
                self._error("collection filter requires a key", f"{path}.key")
            op = str(record.get("op") or "any").lower()
            if op not in [q.value for q in Quantifier]:
                self._error(f"Invalid collection quantifier: {op}", f"{path}.op")
            self._validate_filter(value, f"{path}.value")
        elif kind == "relationship":
            if not record.get("key"):
                self._error("relationship filter requires a key", f"{path}.key")
            if not isinstance(value, dict):
                self._error("relationship filter value must be an object", f"{path}.value")
            else:
                self._validate_filter(value.get("filter"), f"{path}.value.filter")

    def _validate_action(self, action: Any, path: str, position: int) -> None:
        if not isinstance(action, dict):
            self._error(f"Expected object, got {type(action).__name__}", path)
            return
        if not str(action.get("type") or "").strip():
            self._error(f"action {position}: type cannot be empty", f"{path}.type")
        if "settings" in action and action["settings"] is not None and not isinstance(action["settings"], dict):
            self._error("action settings must be an object", f"{path}.settings")
        if "dry_run" in action and not isinstance(action["dry_run"], bool):
            self._error("dry_run must be a boolean", f"{path}.dry_run")

    def _validate_value(self, value: Any, schema: dict[str, Any], path: str) -> None:
        expected_type = schema.get("type")
        if expected_type in _TYPE_MAP:
            python_type = _TYPE_MAP[expected_type]
            # bool is an int subclass; reject it for numeric fields
            if not isinstance(value, python_type) or (
                expected_type in ("integer", "number") and isinstance(value, bool)
            ):
                self._error(f"Expected {expected_type}, got {type(value).__name__}", path)
                return

        if "enum" in schema and value not in schema["enum"]:
            self._error(f"Invalid {path}: {value}. Must be one of: {schema['enum']}", path)
        if "minimum" in schema and isinstance(value, (int, float)) and value < schema["minimum"]:
            self._error(f"{path} must be >= {schema['minimum']}", path)

    def _error(self, message: str, path: str | None = None) -> None:
        self.errors.append(PolicyValidationError(message, path))
