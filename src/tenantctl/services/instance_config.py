"""Derive the configuration payload pushed to a provisioned instance.

The payload has four sections:

``admin``
    Where the management console finds the storage service, plus the
    management endpoint.
``store``
    The account's storage provider accounts (primary first) and the audit
    queue credentials.
``boss``
    Storage service location plus e-mail notification settings.
``users``
    Account membership as ``username -> roles``.

Building a payload never mutates stored state.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from ..config import AuditConfig, NotificationConfig, StorageConfig
from ..domain import Account, Instance, StorageProviderBinding
from ..errors import InstanceAccountNotFoundError
from ..logging import StructuredLogger
from ..state import ACCOUNTS, StateRegistry
from .bindings import StorageBindingRegistry
from .common import rights_for_account

NOTIFICATION_TYPE = "EMAIL"


@dataclass(frozen=True, slots=True)
class InstanceConfig:
    """Configuration sections for one instance."""

    admin: dict[str, object] = field(default_factory=dict)
    store: dict[str, object] = field(default_factory=dict)
    boss: dict[str, object] = field(default_factory=dict)
    users: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Return the wire payload."""
        return {
            "admin": dict(self.admin),
            "store": dict(self.store),
            "boss": dict(self.boss),
            "users": {name: list(roles) for name, roles in self.users.items()},
        }


@dataclass(slots=True)
class InstanceConfigBuilder:
    """Build :class:`InstanceConfig` payloads from registry state."""

    registry: StateRegistry
    bindings: StorageBindingRegistry
    logger: StructuredLogger
    endpoint: str
    storage: StorageConfig = field(default_factory=StorageConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    def build(self, instance: Instance) -> InstanceConfig:
        """Return the full configuration for *instance*."""
        account = self._account(instance)
        primary, secondaries = self.bindings.resolve(account)
        return InstanceConfig(
            admin=self._admin(instance),
            store=self._store(primary, secondaries),
            boss=self._boss(instance),
            users=self._users(account),
        )

    def build_users(self, instance: Instance) -> InstanceConfig:
        """Return a configuration holding only the ``users`` section."""
        return InstanceConfig(users=self._users(self._account(instance)))

    def _account(self, instance: Instance) -> Account:
        entry = self.registry.get(ACCOUNTS, instance.account_id)
        if entry is not None:
            return Account.from_dict(entry)
        error = InstanceAccountNotFoundError(instance.id, instance.account_id)
        with self.logger.operation(
            "instance config",
            args={"instance_id": instance.id},
            target={"kind": "instance", "id": instance.id},
        ) as op:
            op.error(str(error), rc=int(error.exit_code))
        raise error

    def _storage_location(self, instance: Instance) -> dict[str, object]:
        return {
            "host": instance.host_name,
            "port": self.storage.port,
            "context": self.storage.context,
        }

    def _admin(self, instance: Instance) -> dict[str, object]:
        section = self._storage_location(instance)
        section["management_url"] = self.endpoint
        return section

    def _store(
        self,
        primary: StorageProviderBinding,
        secondaries: list[StorageProviderBinding],
    ) -> dict[str, object]:
        return {
            "storage_accounts": [
                _storage_account(binding) for binding in (primary, *secondaries)
            ],
            "audit": {
                "queue": self.audit.queue,
                "username": self.audit.username,
                "password": self.audit.password,
            },
        }

    def _boss(self, instance: Instance) -> dict[str, object]:
        section = self._storage_location(instance)
        section["notifications"] = [
            {
                "type": NOTIFICATION_TYPE,
                "username": self.notifications.username,
                "password": self.notifications.password,
                "originator": self.notifications.from_address,
                "admins": list(self.notifications.admin_addresses),
            }
        ]
        return section

    def _users(self, account: Account) -> dict[str, list[str]]:
        return {
            rights.username: sorted(role.value for role in rights.roles)
            for rights in rights_for_account(self.registry, account.id)
        }


def _storage_account(binding: StorageProviderBinding) -> dict[str, object]:
    return {
        "id": str(binding.provider_account_id),
        "type": binding.provider_type.value,
        "primary": binding.primary,
        "username": binding.username,
        "password": binding.password,
        "options": {"storage_class": binding.storage_class},
    }


__all__ = ["InstanceConfig", "InstanceConfigBuilder", "NOTIFICATION_TYPE"]
