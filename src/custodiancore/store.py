"""Versioned policy storage with append-only history.

Every overwrite and every delete archives the pre-change record before the
current record changes, so no version is ever lost. Writes to one policy
name are serialized; writes to different names proceed in parallel.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml

from custodiancore.errors import PolicyNotFoundError, PolicyValidationError, StorageIOError
from custodiancore.locks import KeyedLock
from custodiancore.policy.models import (
    DEFAULT_CREATED_BY,
    FilterSpec,
    Policy,
    PolicySource,
    PolicyStatus,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from custodiancore.policy.validator import PolicyValidator, is_valid_name

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "yaml")

# Key added to archived records; ignored when the record is parsed back
ARCHIVED_AT_KEY = "archived_at"


@dataclass(frozen=True)
class HistoryEntry:
    """Archived policy version.

    Attributes:
        policy: Policy record as it was before the change
        saved_at: When the record was archived
    """

    policy: Policy
    saved_at: datetime

    @property
    def name(self) -> str:
        return self.policy.name

    @property
    def version(self) -> int:
        return self.policy.version

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "version": self.version,
            "saved_at": format_timestamp(self.saved_at),
            "policy": self.policy.to_dict(),
        }


def _json_default(value: Any) -> Any:
    if isinstance(value, FilterSpec):
        return value.to_dict()
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dump_record(record: dict[str, Any]) -> str:
    """Serialize a record as indented JSON."""
    try:
        return json.dumps(record, indent=2, default=_json_default)
    except (TypeError, ValueError) as e:
        raise StorageIOError(f"failed to serialize policy: {e}") from e


class PolicyStore(ABC):
    """Abstract policy store.

    Owns the versioning and history rules. Backends implement only the raw
    record primitives, working on plain dictionaries.
    """

    def __init__(self) -> None:
        self._locks = KeyedLock()

    # Record primitives

    @abstractmethod
    def _read_record(self, name: str) -> dict[str, Any] | None:
        """Read the current record, None if absent.

        Raises:
            StorageIOError: If the record exists but cannot be read or parsed
        """
        pass

    @abstractmethod
    def _write_record(self, name: str, record: dict[str, Any]) -> None:
        """Replace the current record atomically."""
        pass

    @abstractmethod
    def _remove_record(self, name: str) -> None:
        """Remove the current record."""
        pass

    @abstractmethod
    def _record_names(self) -> list[str]:
        """Names of all current records, sorted."""
        pass

    @abstractmethod
    def _archive_record(self, name: str, version: int, saved_at_ns: int, record: dict[str, Any]) -> None:
        """Append a record to the history of name."""
        pass

    @abstractmethod
    def _history_records(self, name: str) -> list[dict[str, Any]]:
        """All archived records of name, in any order."""
        pass

    @abstractmethod
    def info(self) -> dict[str, Any]:
        """Describe the backend."""
        pass

    # Operations

    def save(self, policy: Policy) -> Policy:
        """Save a policy, archiving the record it replaces.

        The input is not modified. The stored copy is returned with its
        assigned version and timestamps.

        Raises:
            PolicyValidationError: If the policy is invalid
            StorageIOError: If the current record cannot be read or written
        """
        PolicyValidator().validate_or_raise(policy.to_dict())

        with self._locks.hold(policy.name):
            now = utc_now()
            existing = self._read_record(policy.name)

            record = policy.copy(updated_at=now)
            if record.created_at is None:
                record.created_at = _created_at(existing) or now
            if not record.created_by:
                record.created_by = DEFAULT_CREATED_BY

            if existing is None:
                record.version = 1
            else:
                previous = int(existing.get("version") or 0)
                self._archive(policy.name, previous, existing)
                record.version = max(previous + 1, policy.version)

            self._write_record(policy.name, record.to_dict())

        logger.info("Saved policy %s version %d", record.name, record.version)
        return record

    def get(self, name: str) -> Policy:
        """Get the current record of a policy.

        Raises:
            PolicyNotFoundError: If no record exists
            StorageIOError: If the record cannot be read or parsed
        """
        record = self._read_record(name)
        if record is None:
            raise PolicyNotFoundError(name)
        return _parse_policy(record, name)

    def list(self) -> list[Policy]:
        """All current policies sorted by name; unreadable records are skipped."""
        policies = []
        for name in self._record_names():
            try:
                record = self._read_record(name)
                if record is None:
                    continue
                policies.append(_parse_policy(record, name))
            except StorageIOError as e:
                logger.warning("Skipping policy %s: %s", name, e.message)
        return policies

    def exists(self, name: str) -> bool:
        """Check whether a current record exists."""
        return name in self._record_names()

    def delete(self, name: str) -> None:
        """Delete a policy, archiving its final state as deleted.

        Raises:
            PolicyNotFoundError: If no record exists
        """
        with self._locks.hold(name):
            existing = self._read_record(name)
            if existing is None:
                raise PolicyNotFoundError(name)

            final = dict(existing)
            final["status"] = PolicyStatus.DELETED.value
            self._archive(name, int(existing.get("version") or 0), final)
            self._remove_record(name)

        logger.info("Deleted policy %s", name)

    def history(self, name: str) -> list[HistoryEntry]:
        """Archived versions of a policy, oldest first; empty if none."""
        entries = []
        for record in self._history_records(name):
            try:
                saved_at = parse_timestamp(record.get(ARCHIVED_AT_KEY))
                policy = Policy.from_dict(record)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping corrupt history entry of %s: %s", name, e)
                continue
            entries.append(HistoryEntry(policy=policy, saved_at=saved_at or policy.updated_at or utc_now()))
        entries.sort(key=lambda e: (e.saved_at, e.version))
        return entries

    def get_version(self, name: str, version: int) -> Policy:
        """Get a policy as it was at a given version.

        The current record is returned when it holds that version; otherwise
        the most recent archived entry with that version is.

        Raises:
            PolicyNotFoundError: If neither the current record nor history has the version
        """
        record = self._read_record(name)
        if record is not None and int(record.get("version") or 0) == version:
            return _parse_policy(record, name)
        for entry in reversed(self.history(name)):
            if entry.version == version:
                return entry.policy
        raise PolicyNotFoundError(name, version)

    def export_policy(self, name: str, fmt: str = "json") -> bytes:
        """Serialize the current record of a policy.

        Raises:
            PolicyNotFoundError: If no record exists
            PolicyValidationError: If the format is not supported
        """
        fmt = _check_format(fmt)
        record = self.get(name).to_dict()
        if fmt == "yaml":
            text = yaml.safe_dump(record, default_flow_style=False, sort_keys=False)
        else:
            text = dump_record(record)
        return text.encode("utf-8")

    def import_policy(self, data: bytes | str, fmt: str = "json") -> Policy:
        """Import a serialized policy through the normal save path.

        The imported policy gets fresh timestamps, import provenance and a
        version assigned as for any other save.

        Raises:
            PolicyValidationError: If the data does not hold a valid policy
        """
        fmt = _check_format(fmt)
        if isinstance(data, bytes):
            try:
                data = data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise PolicyValidationError(f"cannot decode policy: {e}") from e
        try:
            record = yaml.safe_load(data) if fmt == "yaml" else json.loads(data)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise PolicyValidationError(f"cannot parse {fmt} policy: {e}") from e

        PolicyValidator().validate_or_raise(record)
        try:
            policy = Policy.from_dict(record)
        except (KeyError, TypeError, ValueError) as e:
            raise PolicyValidationError(f"invalid policy record: {e}") from e

        now = utc_now()
        imported = policy.copy(
            source=PolicySource.IMPORT,
            created_at=now,
            updated_at=now,
            version=0,
        )
        return self.save(imported)

    def record_run(self, name: str, when: datetime | None = None) -> Policy:
        """Count one run of a policy and stamp its last run time.

        Raises:
            PolicyNotFoundError: If no record exists
        """
        with self._locks.hold(name):
            policy = self.get(name)
            return self.save(policy.copy(run_count=policy.run_count + 1, last_run=when or utc_now()))

    def _archive(self, name: str, version: int, record: dict[str, Any]) -> None:
        saved_at_ns = time.time_ns()
        archived = dict(record)
        archived[ARCHIVED_AT_KEY] = format_timestamp(_from_ns(saved_at_ns))
        self._archive_record(name, version, saved_at_ns, archived)


class FilePolicyStore(PolicyStore):
    """Policy store on the local filesystem.

    Layout:
        <base>/policies/<name>.json
        <base>/history/<name>/v<version>_<timestamp_ns>.json
    """

    def __init__(self, base_dir: Path | str) -> None:
        super().__init__()
        self.base_dir = Path(base_dir).expanduser()
        self.policies_dir = self.base_dir / "policies"
        self.history_dir = self.base_dir / "history"
        try:
            self.policies_dir.mkdir(parents=True, exist_ok=True)
            self.history_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"failed to create storage directory {self.base_dir}: {e}") from e

    def _policy_path(self, name: str) -> Path | None:
        if not is_valid_name(name):
            return None
        return self.policies_dir / f"{name}.json"

    def _read_record(self, name: str) -> dict[str, Any] | None:
        path = self._policy_path(name)
        if path is None:
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageIOError(f"failed to read policy file {path}: {e}") from e
        return _load_json(text, path)

    def _write_record(self, name: str, record: dict[str, Any]) -> None:
        path = self._policy_path(name)
        if path is None:
            raise PolicyValidationError(f"invalid policy name: {name!r}", path="name")
        _atomic_write(path, dump_record(record))

    def _remove_record(self, name: str) -> None:
        path = self._policy_path(name)
        if path is None:
            return
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageIOError(f"failed to delete policy file {path}: {e}") from e

    def _record_names(self) -> list[str]:
        try:
            return sorted(p.stem for p in self.policies_dir.glob("*.json") if p.is_file())
        except OSError as e:
            raise StorageIOError(f"failed to read policies directory: {e}") from e

    def _archive_record(self, name: str, version: int, saved_at_ns: int, record: dict[str, Any]) -> None:
        directory = self.history_dir / name
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"failed to create history directory {directory}: {e}") from e

        path = directory / f"v{version}_{saved_at_ns}.json"
        while path.exists():
            saved_at_ns += 1
            path = directory / f"v{version}_{saved_at_ns}.json"
        _atomic_write(path, dump_record(record))

    def _history_records(self, name: str) -> list[dict[str, Any]]:
        if not is_valid_name(name):
            return []
        directory = self.history_dir / name
        if not directory.is_dir():
            return []

        records = []
        for path in sorted(directory.glob("*.json")):
            try:
                records.append(_load_json(path.read_text(encoding="utf-8"), path))
            except (OSError, StorageIOError) as e:
                logger.warning("Skipping history file %s: %s", path, e)
        return records

    def info(self) -> dict[str, Any]:
        total_size = sum(p.stat().st_size for p in self.base_dir.rglob("*") if p.is_file())
        return {
            "storage_type": "file",
            "base_directory": str(self.base_dir),
            "policies_count": len(self._record_names()),
            "storage_path": str(self.policies_dir),
            "history_path": str(self.history_dir),
            "storage_size_bytes": total_size,
        }


class MemoryPolicyStore(PolicyStore):
    """Policy store held in process memory."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, dict[str, Any]] = {}
        self._history: dict[str, list[dict[str, Any]]] = {}

    def _read_record(self, name: str) -> dict[str, Any] | None:
        record = self._records.get(name)
        return copy.deepcopy(record) if record is not None else None

    def _write_record(self, name: str, record: dict[str, Any]) -> None:
        # Round-trip through JSON so stored records match the file backend
        self._records[name] = json.loads(dump_record(record))

    def _remove_record(self, name: str) -> None:
        self._records.pop(name, None)

    def _record_names(self) -> list[str]:
        return sorted(self._records)

    def _archive_record(self, name: str, version: int, saved_at_ns: int, record: dict[str, Any]) -> None:
        self._history.setdefault(name, []).append(json.loads(dump_record(record)))

    def _history_records(self, name: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self._history.get(name, []))

    def info(self) -> dict[str, Any]:
        return {
            "storage_type": "memory",
            "policies_count": len(self._records),
            "history_entries": sum(len(h) for h in self._history.values()),
        }


def _parse_policy(record: dict[str, Any], name: str) -> Policy:
    try:
        return Policy.from_dict(record)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise StorageIOError(f"failed to parse policy '{name}': {e}") from e


def _created_at(record: dict[str, Any] | None) -> datetime | None:
    if record is None:
        return None
    try:
        return parse_timestamp(record.get("created_at"))
    except (TypeError, ValueError):
        return None


def _load_json(text: str, path: Path) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise StorageIOError(f"failed to parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise StorageIOError(f"failed to parse {path}: expected an object")
    return data


def _atomic_write(path: Path, text: str) -> None:
    """Write via a temp file in the same directory, then rename over path."""
    try:
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise StorageIOError(f"failed to write {path}: {e}") from e


def _check_format(fmt: str) -> str:
    fmt = (fmt or "json").lower()
    if fmt == "yml":
        fmt = "yaml"
    if fmt not in EXPORT_FORMATS:
        raise PolicyValidationError(f"unsupported format: {fmt}", path="format")
    return fmt


def _from_ns(ns: int) -> datetime:
    return datetime.fromtimestamp(ns / 1_000_000_000, UTC)
