"""Helpers for interacting with the tenantctl state registry.

The registry directory (``/var/lib/tenantctl/registry`` by default) stores one
YAML file per collection (``accounts.yml``, ``instances.yml``,
``storage_accounts.yml``, ``invitations.yml``, ``rights.yml``) plus
``versions.yml`` for the version catalog. Files are replaced atomically and
every read-modify-write cycle runs under the collection's file lock.

Records carry an integer ``counter``. :meth:`StateRegistry.save` only persists
a record whose counter matches the stored one and bumps it, so a writer
holding a stale copy gets :class:`~tenantctl.errors.ConcurrentUpdateError`
instead of silently overwriting a newer version.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..errors import ConcurrentUpdateError
from ..locking import LockManager

ACCOUNTS = "accounts"
INSTANCES = "instances"
STORAGE_ACCOUNTS = "storage_accounts"
INVITATIONS = "invitations"
RIGHTS = "rights"


class StateRegistryError(RuntimeError):
    """Raised when state registry operations fail."""


class RecordNotFoundError(StateRegistryError):
    """Raised when a record id is not present in its collection."""

    def __init__(self, collection: str, record_id: int) -> None:
        """Record the missing collection/id pair."""
        super().__init__(f"{collection} record {record_id} not found in registry")
        self.collection = collection
        self.record_id = record_id


class DuplicateRecordError(StateRegistryError):
    """Raised when an insert conflicts with an existing record."""

    def __init__(self, collection: str, existing: Mapping[str, Any]) -> None:
        """Record the conflicting entry."""
        super().__init__(f"{collection} record conflicts with existing id {existing.get('id')}")
        self.collection = collection
        self.existing = dict(existing)


@dataclass(frozen=True)
class StateRegistry:
    """High-level interface to the YAML registry."""

    root: Path
    locks: LockManager | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        """Normalise the root path and default the lock manager."""
        object.__setattr__(self, "root", self.root.expanduser())
        if self.locks is None:
            object.__setattr__(self, "locks", LockManager(self.root / ".locks"))

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------
    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named registry file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a registry file, returning *default* when missing."""
        path = self.path_for(name)
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise StateRegistryError(f"Failed to parse registry file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given registry file."""
        self.ensure_root()
        path = self.path_for(name)

        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
            os.replace(tmp_path, path)
            os.chmod(path, 0o640)
        finally:
            tmp_path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Record collections
    # ------------------------------------------------------------------
    def records(self, collection: str) -> list[dict[str, Any]]:
        """Return every record stored in *collection*."""
        entries, _ = self._load(collection)
        return entries

    def get(self, collection: str, record_id: int) -> dict[str, Any] | None:
        """Return the record with *record_id* if present."""
        for entry in self.records(collection):
            if entry.get("id") == record_id:
                return entry
        return None

    def find(self, collection: str, **criteria: object) -> list[dict[str, Any]]:
        """Return records whose fields equal every value in *criteria*."""
        return [
            entry
            for entry in self.records(collection)
            if all(entry.get(key) == value for key, value in criteria.items())
        ]

    def allocate_id(self, collection: str) -> int:
        """Reserve and return the next id for *collection*."""
        with self._locked(collection):
            entries, next_id = self._load(collection)
            self._store(collection, entries, next_id + 1)
        return next_id

    def insert(
        self,
        collection: str,
        entry: Mapping[str, object],
        *,
        conflicts: Callable[[Mapping[str, Any]], bool] | None = None,
    ) -> dict[str, Any]:
        """Store a new record, allocating an id when ``entry['id']`` is ``None``.

        *conflicts* is evaluated against every existing record while the
        collection lock is held; a match raises :class:`DuplicateRecordError`
        and nothing is written.
        """
        with self._locked(collection):
            entries, next_id = self._load(collection)
            if conflicts is not None:
                for existing in entries:
                    if conflicts(existing):
                        raise DuplicateRecordError(collection, existing)
            record = dict(entry)
            if record.get("id") is None:
                record["id"] = next_id
                next_id += 1
            elif any(existing.get("id") == record["id"] for existing in entries):
                raise DuplicateRecordError(collection, record)
            else:
                next_id = max(next_id, int(record["id"]) + 1)
            record["counter"] = 0
            entries.append(record)
            self._store(collection, entries, next_id)
        return deepcopy(record)

    def save(self, collection: str, entry: Mapping[str, object]) -> dict[str, Any]:
        """Persist *entry* if its ``counter`` matches the stored record.

        Returns the stored mapping with the incremented counter.
        """
        record_id = _require_id(entry)
        expected = int(str(entry.get("counter", 0)))
        with self._locked(collection):
            entries, next_id = self._load(collection)
            for index, existing in enumerate(entries):
                if existing.get("id") != record_id:
                    continue
                actual = int(existing.get("counter", 0))
                if actual != expected:
                    raise ConcurrentUpdateError(collection, record_id, expected, actual)
                updated = dict(entry)
                updated["counter"] = actual + 1
                entries[index] = updated
                self._store(collection, entries, next_id)
                return deepcopy(updated)
        raise RecordNotFoundError(collection, record_id)

    def delete(
        self,
        collection: str,
        record_id: int,
        *,
        expected_counter: int | None = None,
    ) -> dict[str, Any]:
        """Remove the record with *record_id* and return its last stored value."""
        with self._locked(collection):
            entries, next_id = self._load(collection)
            for index, existing in enumerate(entries):
                if existing.get("id") != record_id:
                    continue
                actual = int(existing.get("counter", 0))
                if expected_counter is not None and actual != expected_counter:
                    raise ConcurrentUpdateError(collection, record_id, expected_counter, actual)
                del entries[index]
                self._store(collection, entries, next_id)
                return existing
        raise RecordNotFoundError(collection, record_id)

    @contextmanager
    def _locked(self, collection: str) -> Iterator[None]:
        assert self.locks is not None
        with self.locks.collection_lock(collection):
            yield

    def _load(self, collection: str) -> tuple[list[dict[str, Any]], int]:
        raw = self.read(f"{collection}.yml", default={collection: [], "next_id": 0})
        if not isinstance(raw, Mapping):
            raise StateRegistryError(f"Registry file {collection}.yml must contain a mapping.")
        raw_entries = raw.get(collection, [])
        if not isinstance(raw_entries, list):
            raise StateRegistryError(f"Registry key '{collection}' must be a list.")
        entries = [dict(item) for item in raw_entries if isinstance(item, Mapping)]
        next_id_raw = raw.get("next_id")
        if next_id_raw is None:
            next_id = max((int(entry.get("id", -1)) for entry in entries), default=-1) + 1
        else:
            next_id = int(next_id_raw)
        return entries, next_id

    def _store(self, collection: str, entries: Iterable[Mapping[str, object]], next_id: int) -> None:
        self.write(
            f"{collection}.yml",
            {"next_id": next_id, collection: [dict(entry) for entry in entries]},
        )

    # ------------------------------------------------------------------
    # Version helpers
    # ------------------------------------------------------------------
    def read_versions(self) -> Mapping[str, object]:
        """Return the contents of ``versions.yml`` (empty mapping if missing)."""
        value = self.read("versions.yml", default={"versions": []})
        return value if isinstance(value, Mapping) else {"versions": []}

    def write_versions(self, versions: Iterable[object]) -> None:
        """Persist version entries to ``versions.yml``."""
        self.write("versions.yml", {"versions": list(versions)})

    def list_versions(self) -> list[dict[str, Any]]:
        """Return the normalised version entries."""
        return _load_version_entries(self.read_versions())

    def get_version(self, version: str) -> dict[str, Any] | None:
        """Return the registry entry for *version* if present."""
        normalized_version = version.strip()
        if not normalized_version:
            raise StateRegistryError("Version identifier must be a non-empty string.")

        for entry in self.list_versions():
            if entry.get("version") == normalized_version:
                return deepcopy(entry)
        return None

    def upsert_version(self, entry: Mapping[str, object]) -> None:
        """Add or update a version registry entry."""
        normalized_entry = _normalize_version_entry(entry)
        with self._locked("versions"):
            versions = self.list_versions()
            stored: list[dict[str, Any]] = []
            replaced = False
            for existing in versions:
                if existing.get("version") == normalized_entry["version"]:
                    merged = dict(existing)
                    merged.update(normalized_entry)
                    stored.append(merged)
                    replaced = True
                else:
                    stored.append(existing)
            if not replaced:
                stored.append(normalized_entry)
            self.write_versions(stored)

    def remove_version(self, version: str) -> None:
        """Remove *version* from the registry."""
        normalized_version = version.strip()
        if not normalized_version:
            raise StateRegistryError("Version identifier must be a non-empty string.")

        with self._locked("versions"):
            versions = self.list_versions()
            filtered = [entry for entry in versions if entry.get("version") != normalized_version]
            if len(filtered) == len(versions):
                raise StateRegistryError(f"Version '{normalized_version}' not found in registry")
            self.write_versions(filtered)


def _require_id(entry: Mapping[str, object]) -> int:
    raw = entry.get("id")
    if raw is None:
        raise StateRegistryError("Record is missing an 'id'.")
    return int(str(raw))


def _load_version_entries(raw: Mapping[str, object]) -> list[dict[str, Any]]:
    """Return a normalised list of version entries from the registry mapping."""
    entries: list[dict[str, Any]] = []
    raw_entries = raw.get("versions", [])

    if isinstance(raw_entries, list):
        for item in raw_entries:
            if isinstance(item, Mapping):
                entries.append(_normalize_version_entry(item))
            else:
                entries.append({"version": str(item).strip()})
    return entries


def _normalize_version_entry(entry: Mapping[str, object]) -> dict[str, Any]:
    """Validate and normalise a version registry entry."""
    if not isinstance(entry, Mapping):
        raise StateRegistryError("Version entry must be a mapping.")

    version_raw = entry.get("version")
    version = str(version_raw).strip() if version_raw is not None else ""
    if not version:
        raise StateRegistryError("Version entry missing 'version'.")

    normalized: dict[str, Any] = {"version": version}

    if entry.get("image") is not None:
        normalized["image"] = str(entry["image"])

    if entry.get("released_at") is not None:
        normalized["released_at"] = str(entry["released_at"])

    if entry.get("notes") is not None:
        normalized["notes"] = str(entry["notes"])

    return normalized


__all__ = [
    "ACCOUNTS",
    "DuplicateRecordError",
    "INSTANCES",
    "INVITATIONS",
    "RIGHTS",
    "RecordNotFoundError",
    "STORAGE_ACCOUNTS",
    "StateRegistry",
    "StateRegistryError",
]
