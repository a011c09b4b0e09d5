"""Configuration loader for tenantctl.

Configuration values are read from multiple sources, later sources winning:

1. Built-in defaults.
2. ``/etc/tenantctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``TENANTCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export TENANTCTL_POLLING__INTERVAL_SECONDS=5
    export TENANTCTL_NOTIFICATIONS__ADMIN_ADDRESSES='[ops@example.org]'

Values are coerced via PyYAML's ``safe_load`` so that booleans, numbers and
lists are parsed naturally. The resulting configuration is exposed as
immutable ``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "TENANTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
USER_ENV_VAR = f"{ENV_PREFIX}USER"
EMAIL_ENV_VAR = f"{ENV_PREFIX}EMAIL"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR, USER_ENV_VAR, EMAIL_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PollingConfig:
    """Availability polling budget."""

    deadline_seconds: float = 300.0
    interval_seconds: float = 10.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "deadline_seconds": self.deadline_seconds,
            "interval_seconds": self.interval_seconds,
        }


@dataclass(frozen=True)
class InvitationConfig:
    """Invitation defaults."""

    expiration_days: int = 14

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"expiration_days": self.expiration_days}


@dataclass(frozen=True)
class NotificationConfig:
    """Outgoing mail settings and administrative recipients."""

    smtp_host: str | None = None
    smtp_port: int = 25
    use_tls: bool = False
    username: str = ""
    password: str = ""
    from_address: str = "noreply@localhost"
    admin_addresses: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation (password masked)."""
        return {
            "smtp_host": self.smtp_host,
            "smtp_port": self.smtp_port,
            "use_tls": self.use_tls,
            "username": self.username,
            "password": "********" if self.password else "",
            "from_address": self.from_address,
            "admin_addresses": list(self.admin_addresses),
        }


@dataclass(frozen=True)
class StorageConfig:
    """How provisioned instances reach their storage service."""

    port: int = 443
    context: str = "durastore"
    default_rrs: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"port": self.port, "context": self.context, "default_rrs": self.default_rrs}


@dataclass(frozen=True)
class AuditConfig:
    """Audit queue credentials handed to provisioned instances."""

    queue: str = "audit"
    username: str = ""
    password: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation (password masked)."""
        return {
            "queue": self.queue,
            "username": self.username,
            "password": "********" if self.password else "",
        }


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd compute backend configuration values."""

    unit_dir: Path | None = None
    systemctl_bin: str = "systemctl"
    service_user: str = "tenant"
    exec_start: str = "/opt/tenant/{version}/bin/server"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "unit_dir": str(self.unit_dir) if self.unit_dir is not None else None,
            "systemctl_bin": self.systemctl_bin,
            "service_user": self.service_user,
            "exec_start": self.exec_start,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for tenantctl."""

    config_file: Path
    state_dir: Path
    registry_dir: Path
    logs_dir: Path
    runtime_dir: Path
    instance_root: Path
    templates_dir: Path
    lock_timeout: float
    endpoint: str
    domain: str
    default_version: str | None
    versions: tuple[str, ...]
    polling: PollingConfig
    invitations: InvitationConfig
    notifications: NotificationConfig
    storage: StorageConfig
    audit: AuditConfig
    systemd: SystemdConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "state_dir": str(self.state_dir),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "instance_root": str(self.instance_root),
            "templates_dir": str(self.templates_dir),
            "lock_timeout": self.lock_timeout,
            "endpoint": self.endpoint,
            "domain": self.domain,
            "default_version": self.default_version,
            "versions": list(self.versions),
            "polling": self.polling.to_dict(),
            "invitations": self.invitations.to_dict(),
            "notifications": self.notifications.to_dict(),
            "storage": self.storage.to_dict(),
            "audit": self.audit.to_dict(),
            "systemd": self.systemd.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/tenantctl/config.yml",
    "state_dir": "/var/lib/tenantctl",
    "registry_dir": None,  # derived from state_dir when absent
    "logs_dir": "/var/log/tenantctl",
    "runtime_dir": "/run/tenantctl",
    "instance_root": "/srv/tenants",
    "templates_dir": "/etc/tenantctl/templates",
    "lock_timeout": 30.0,
    "endpoint": "https://manage.localhost",
    "domain": "localhost",
    "default_version": None,
    "versions": [],
    "polling": {
        "deadline_seconds": 300.0,
        "interval_seconds": 10.0,
    },
    "invitations": {
        "expiration_days": 14,
    },
    "notifications": {
        "smtp_host": None,
        "smtp_port": 25,
        "use_tls": False,
        "username": "",
        "password": "",
        "from_address": "noreply@localhost",
        "admin_addresses": [],
    },
    "storage": {
        "port": 443,
        "context": "durastore",
        "default_rrs": True,
    },
    "audit": {
        "queue": "audit",
        "username": "",
        "password": "",
    },
    "systemd": {
        "unit_dir": None,
        "systemctl_bin": "systemctl",
        "service_user": "tenant",
        "exec_start": "/opt/tenant/{version}/bin/server",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    "polling": {"deadline_seconds", "interval_seconds"},
    "invitations": {"expiration_days"},
    "notifications": {
        "smtp_host",
        "smtp_port",
        "use_tls",
        "username",
        "password",
        "from_address",
        "admin_addresses",
    },
    "storage": {"port", "context", "default_rrs"},
    "audit": {"queue", "username", "password"},
    "systemd": {"unit_dir", "systemctl_bin", "service_user", "exec_start"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        unknown = set(_as_dict(value, section).keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    endpoint = raw.get("endpoint")
    if not isinstance(endpoint, str) or not endpoint.startswith(("http://", "https://")):
        raise ConfigError(f"endpoint must be an http(s) URL. Got {endpoint!r}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    state_dir = _to_path(raw.get("state_dir"))
    logs_dir = _to_path(raw.get("logs_dir"))
    runtime_dir = _to_path(raw.get("runtime_dir"))
    instance_root = _to_path(raw.get("instance_root"))
    templates_dir = _to_path(raw.get("templates_dir"))
    lock_timeout = _expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0)

    registry_dir_value = raw.get("registry_dir")
    registry_dir = _to_path(registry_dir_value) if registry_dir_value else state_dir / "registry"

    default_version_value = raw.get("default_version")
    default_version = (
        str(default_version_value).strip() or None if default_version_value is not None else None
    )
    versions = tuple(
        str(item).strip()
        for item in _as_sequence(raw.get("versions") or [], "versions")
        if str(item).strip()
    )

    polling_mapping = _as_dict(raw.get("polling"), "polling")
    polling = PollingConfig(
        deadline_seconds=_expect_positive_float(
            polling_mapping.get("deadline_seconds"), "polling.deadline_seconds", default=300.0
        ),
        interval_seconds=_expect_positive_float(
            polling_mapping.get("interval_seconds"), "polling.interval_seconds", default=10.0
        ),
    )

    invitations_mapping = _as_dict(raw.get("invitations"), "invitations")
    expiration_days = _expect_int(
        invitations_mapping.get("expiration_days"), "invitations.expiration_days", default=14
    )
    if expiration_days <= 0:
        raise ConfigError("invitations.expiration_days must be greater than zero.")

    notifications_mapping = _as_dict(raw.get("notifications"), "notifications")
    smtp_host_value = notifications_mapping.get("smtp_host")
    admin_addresses = tuple(
        str(item).strip()
        for item in _as_sequence(
            notifications_mapping.get("admin_addresses") or [],
            "notifications.admin_addresses",
        )
        if str(item).strip()
    )
    notifications = NotificationConfig(
        smtp_host=str(smtp_host_value).strip() or None if smtp_host_value else None,
        smtp_port=_expect_int(
            notifications_mapping.get("smtp_port"), "notifications.smtp_port", default=25
        ),
        use_tls=bool(notifications_mapping.get("use_tls", False)),
        username=str(notifications_mapping.get("username") or ""),
        password=str(notifications_mapping.get("password") or ""),
        from_address=str(notifications_mapping.get("from_address") or "noreply@localhost"),
        admin_addresses=admin_addresses,
    )

    storage_mapping = _as_dict(raw.get("storage"), "storage")
    storage = StorageConfig(
        port=_expect_int(storage_mapping.get("port"), "storage.port", default=443),
        context=str(storage_mapping.get("context") or "durastore"),
        default_rrs=bool(storage_mapping.get("default_rrs", True)),
    )

    audit_mapping = _as_dict(raw.get("audit"), "audit")
    audit = AuditConfig(
        queue=str(audit_mapping.get("queue") or "audit"),
        username=str(audit_mapping.get("username") or ""),
        password=str(audit_mapping.get("password") or ""),
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    unit_dir_value = systemd_mapping.get("unit_dir")
    systemd = SystemdConfig(
        unit_dir=_to_path(unit_dir_value) if unit_dir_value else None,
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
        service_user=str(systemd_mapping.get("service_user", "tenant")),
        exec_start=str(systemd_mapping.get("exec_start", "/opt/tenant/{version}/bin/server")),
    )

    return AppConfig(
        config_file=config_file,
        state_dir=state_dir,
        registry_dir=registry_dir,
        logs_dir=logs_dir,
        runtime_dir=runtime_dir,
        instance_root=instance_root,
        templates_dir=templates_dir,
        lock_timeout=lock_timeout,
        endpoint=str(raw.get("endpoint")).rstrip("/"),
        domain=str(raw.get("domain", "localhost")),
        default_version=default_version,
        versions=versions,
        polling=polling,
        invitations=InvitationConfig(expiration_days=expiration_days),
        notifications=notifications,
        storage=storage,
        audit=audit,
        systemd=systemd,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "AuditConfig",
    "ConfigError",
    "InvitationConfig",
    "NotificationConfig",
    "PollingConfig",
    "StorageConfig",
    "SystemdConfig",
    "load_config",
]
