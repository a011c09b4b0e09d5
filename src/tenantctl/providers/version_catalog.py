"""Catalog of software versions an instance can be provisioned with."""
from __future__ import annotations

from collections.abc import Iterable
from typing import Any
from dataclasses import dataclass, field

from packaging.version import InvalidVersion, Version

from ..domain import to_iso, utc_now
from ..errors import ValidationError, VersionNotAvailableError
from ..state import StateRegistry


def sort_versions(versions: Iterable[str]) -> list[str]:
    """Return versions sorted ascending using packaging where possible."""
    parsed: list[tuple[Version, str]] = []
    invalid: list[str] = []
    for version in set(versions):
        try:
            parsed.append((Version(version), version))
        except InvalidVersion:
            invalid.append(version)
    parsed.sort()
    invalid.sort()
    return invalid + [item for _, item in parsed]


def _stable_version_tuples(versions: Iterable[str]) -> list[tuple[Version, str]]:
    """Return stable (non pre/post-release) versions sorted ascending."""
    tuples: list[tuple[Version, str]] = []
    for version in versions:
        try:
            parsed = Version(version)
        except InvalidVersion:
            continue
        if parsed.is_prerelease or parsed.is_postrelease:
            continue
        tuples.append((parsed, version))
    tuples.sort()
    return tuples


@dataclass(slots=True)
class VersionCatalog:
    """View over ``versions.yml`` plus configured seed versions.

    Seed versions come from configuration and cannot be removed here; only
    entries registered in ``versions.yml`` can.
    """

    registry: StateRegistry
    seed_versions: tuple[str, ...] = field(default_factory=tuple)
    default_version: str | None = None

    def versions(self) -> list[str]:
        """Return every supported version, oldest first."""
        names = {entry["version"] for entry in self.registry.list_versions()}
        names.update(self.seed_versions)
        return sort_versions(names)

    def is_supported(self, version: str) -> bool:
        """Return ``True`` when *version* is in the catalog."""
        return version.strip() in self.versions()

    def latest(self) -> str | None:
        """Return the newest stable version (configured default wins)."""
        if self.default_version and self.is_supported(self.default_version):
            return self.default_version
        known = self.versions()
        stable = _stable_version_tuples(known)
        if stable:
            return stable[-1][1]
        return known[-1] if known else None

    def describe(self, version: str) -> dict[str, Any]:
        """Return the registry entry for *version*, or a bare entry for seeds."""
        normalized = _require_version(version)
        entry = self.registry.get_version(normalized)
        if entry is not None:
            return {**entry, "source": "registry"}
        if normalized in self.seed_versions:
            return {"version": normalized, "source": "config"}
        raise VersionNotAvailableError(f"Version '{normalized}' is not available.")

    def register(self, version: str, *, image: str | None = None, notes: str | None = None) -> dict[str, Any]:
        """Add or update *version* in ``versions.yml`` and return the stored entry."""
        normalized = _require_version(version)
        entry: dict[str, object] = {"version": normalized}
        if self.registry.get_version(normalized) is None:
            entry["released_at"] = to_iso(utc_now())
        if image is not None:
            entry["image"] = image
        if notes is not None:
            entry["notes"] = notes
        self.registry.upsert_version(entry)
        return self.describe(normalized)

    def unregister(self, version: str) -> None:
        """Remove *version* from ``versions.yml``."""
        normalized = _require_version(version)
        if self.registry.get_version(normalized) is None:
            if normalized in self.seed_versions:
                raise ValidationError(
                    f"Version '{normalized}' comes from configuration; remove it from the versions setting."
                )
            raise VersionNotAvailableError(f"Version '{normalized}' is not registered.")
        self.registry.remove_version(normalized)


def _require_version(version: str) -> str:
    normalized = version.strip()
    if not normalized:
        raise ValidationError("Version identifier must not be empty.")
    return normalized


__all__ = ["VersionCatalog", "sort_versions"]
