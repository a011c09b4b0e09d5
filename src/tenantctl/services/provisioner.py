"""Instance lifecycle orchestration.

State machine (a missing record is ``NONE``)::

    NONE -> CREATING -> INITIALIZING -> RUNNING
    RUNNING -> RESTARTING -> RUNNING
    CREATING | INITIALIZING | RUNNING | RESTARTING | STOPPING -> STOPPING -> NONE

An account owns at most one instance. The slot is claimed by a
version-checked write of ``Account.instance_id`` immediately before the
compute backend is asked to create anything, so of several concurrent creates
for one account exactly one reaches the backend.
"""
from __future__ import annotations

from dataclasses import dataclass, replace

from ..domain import Account, AccountStatus, Instance, InstanceState, Principal, utc_now
from ..errors import (
    ConcurrentUpdateError,
    InstanceAccountNotFoundError,
    InstanceNotAvailableError,
    InvalidAccountStatusError,
    VersionNotAvailableError,
)
from ..logging import StructuredLogger
from ..providers.compute import ComputeProvider, ComputeProviderError, ComputeStatus
from ..providers.version_catalog import VersionCatalog
from ..state import ACCOUNTS, INSTANCES, RecordNotFoundError, StateRegistry
from .common import instance_for_account, load_account, load_instance, save_account, save_instance
from .instance_config import InstanceConfigBuilder

STOPPABLE_STATES = frozenset(
    {
        InstanceState.CREATING,
        InstanceState.INITIALIZING,
        InstanceState.RUNNING,
        InstanceState.RESTARTING,
        InstanceState.STOPPING,
    }
)

# Backend status -> state an instance moves to, keyed by its current state.
_OBSERVED_TRANSITIONS: dict[tuple[InstanceState, ComputeStatus], InstanceState] = {
    (InstanceState.CREATING, ComputeStatus.BOOTING): InstanceState.INITIALIZING,
    (InstanceState.CREATING, ComputeStatus.RUNNING): InstanceState.RUNNING,
    (InstanceState.INITIALIZING, ComputeStatus.RUNNING): InstanceState.RUNNING,
    (InstanceState.RESTARTING, ComputeStatus.RUNNING): InstanceState.RUNNING,
}


def _actor(principal: Principal | None) -> str | None:
    return principal.username if principal is not None else None


@dataclass(slots=True)
class InstanceProvisioner:
    """Create, observe, restart, stop and reconfigure account instances."""

    registry: StateRegistry
    compute: ComputeProvider
    catalog: VersionCatalog
    config_builder: InstanceConfigBuilder
    logger: StructuredLogger

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def versions(self) -> list[str]:
        """Return the versions instances can be created with."""
        return self.catalog.versions()

    def latest_version(self) -> str | None:
        """Return the version used when none is requested."""
        return self.catalog.latest()

    def describe_version(self, version: str) -> dict[str, object]:
        """Return catalog details for *version*."""
        return self.catalog.describe(version)

    def register_version(
        self,
        version: str,
        *,
        image: str | None = None,
        notes: str | None = None,
        principal: Principal | None = None,
    ) -> dict[str, object]:
        """Add or update a version new instances can be created with."""
        with self.logger.operation(
            "version add",
            args={"version": version, "image": image, "actor": _actor(principal)},
            target={"kind": "version", "id": version},
        ) as op:
            entry = self.catalog.register(version, image=image, notes=notes)
            op.add_step("registry.upsert_version", detail=str(entry["version"]))
            op.success("Version registered.", changed=1, context={"version": entry["version"]})
            return entry

    def remove_version(self, version: str, *, principal: Principal | None = None) -> None:
        """Remove a registered version that no instance runs."""
        with self.logger.operation(
            "version remove",
            args={"version": version, "actor": _actor(principal)},
            target={"kind": "version", "id": version},
        ) as op:
            normalized = version.strip()
            consumers = sorted(
                int(entry["id"])
                for entry in self.registry.records(INSTANCES)
                if entry.get("version") == normalized
            )
            if consumers:
                joined = ", ".join(str(item) for item in consumers)
                raise InstanceNotAvailableError(
                    f"Version '{normalized}' is in use by instances: {joined}."
                )
            self.catalog.unregister(normalized)
            op.add_step("registry.remove_version", detail=normalized)
            op.success("Version removed.", changed=1)

    def find_instance(self, account_id: int) -> Instance | None:
        """Return the account's instance, if it has one."""
        return instance_for_account(self.registry, load_account(self.registry, account_id))

    def get_instance(self, instance_id: int) -> Instance:
        """Return the instance or raise :class:`InstanceNotAvailableError`."""
        return load_instance(self.registry, instance_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def create_instance(
        self,
        account_id: int,
        version: str | None = None,
        *,
        principal: Principal | None = None,
    ) -> Instance:
        """Provision an instance for the account and return it in CREATING."""
        with self.logger.operation(
            "instance create",
            args={"account_id": account_id, "version": version, "actor": _actor(principal)},
            target={"kind": "account", "id": account_id},
        ) as op:
            resolved_version = self._resolve_version(version)
            account = load_account(self.registry, account_id)
            if account.status is AccountStatus.CANCELLED:
                raise InvalidAccountStatusError(
                    f"Account {account.id} is cancelled; instances cannot be created."
                )
            self._ensure_slot_free(account)

            instance_id = self.registry.allocate_id(INSTANCES)
            self._claim(account, instance_id)
            op.add_step("account.claim", detail=f"instance_id={instance_id}")

            instance = Instance(
                id=instance_id,
                account_id=account.id,
                version=resolved_version,
                state=InstanceState.CREATING,
                created_at=utc_now(),
            )
            stored = Instance.from_dict(self.registry.insert(INSTANCES, instance.to_dict()))
            op.add_step("registry.insert", detail=f"state={stored.state.value}")

            handle = self.compute.create(account.id, account.subdomain, resolved_version)
            op.add_step("compute.create", detail=handle.provider_instance_id)

            created = save_instance(
                self.registry,
                replace(
                    stored,
                    provider_instance_id=handle.provider_instance_id,
                    host_name=handle.host_name,
                ),
            )
            op.success(
                "Instance created.",
                changed=3,
                context={"instance_id": created.id, "version": created.version, "host": created.host_name},
            )
            return created

    def observe(self, account_id: int) -> Instance | None:
        """Advance the account's instance from backend status; ``None`` if it has none.

        The first time the backend reports ``running`` the full configuration
        is pushed and the instance is marked initialized.
        """
        account = load_account(self.registry, account_id)
        instance = instance_for_account(self.registry, account)
        if instance is None or not instance.provider_instance_id:
            return instance
        if instance.state is InstanceState.STOPPING:
            return instance

        status = self.compute.status(instance.provider_instance_id)
        target = _OBSERVED_TRANSITIONS.get((instance.state, status), instance.state)
        needs_config = status is ComputeStatus.RUNNING and not instance.initialized
        if target is instance.state and not needs_config:
            return instance

        with self.logger.operation(
            "instance observe",
            args={"account_id": account_id, "backend_status": status},
            target={"kind": "instance", "id": instance.id},
        ) as op:
            if needs_config:
                payload = self.config_builder.build(instance).to_dict()
                self.compute.push_config(instance.provider_instance_id, payload)
                op.add_step("compute.push_config", detail="initial configuration")
            try:
                updated = save_instance(
                    self.registry,
                    replace(instance, state=target, initialized=instance.initialized or needs_config),
                )
            except ConcurrentUpdateError:
                # Another observer saved first.
                fresh = instance_for_account(self.registry, load_account(self.registry, account_id))
                op.warning("Instance was updated concurrently.", context={"instance_id": instance.id})
                return fresh
            op.success(
                f"Instance moved to {updated.state.value}.",
                changed=1,
                context={"from": instance.state, "to": updated.state},
            )
            return updated

    def restart(self, instance_id: int, *, principal: Principal | None = None) -> Instance:
        """Restart a RUNNING instance."""
        with self.logger.operation(
            "instance restart",
            args={"instance_id": instance_id, "actor": _actor(principal)},
            target={"kind": "instance", "id": instance_id},
        ) as op:
            instance = self._require_running(instance_id, "restarted")
            restarting = save_instance(self.registry, replace(instance, state=InstanceState.RESTARTING))
            op.add_step("registry.update", detail="state=RESTARTING")
            try:
                self.compute.restart(instance.provider_instance_id)
            except ComputeProviderError:
                save_instance(self.registry, replace(restarting, state=InstanceState.RUNNING))
                op.add_step("registry.rollback", detail="state=RUNNING")
                raise
            op.add_step("compute.restart", detail=instance.provider_instance_id)
            op.success("Instance restart requested.", changed=1)
            return restarting

    def stop(self, instance_id: int, *, principal: Principal | None = None) -> None:
        """Stop the instance, release the account's slot and delete the record.

        Accepted from CREATING, RESTARTING and STOPPING as well so an operator
        can abandon a failed create, a restart the backend never finished, or
        retry a stop that failed half way.
        """
        with self.logger.operation(
            "instance stop",
            args={"instance_id": instance_id, "actor": _actor(principal)},
            target={"kind": "instance", "id": instance_id},
        ) as op:
            instance = load_instance(self.registry, instance_id)
            if instance.state not in STOPPABLE_STATES:
                raise InstanceNotAvailableError(
                    f"Instance {instance.id} is {instance.state.value} and cannot be stopped."
                )
            if instance.state is not InstanceState.STOPPING:
                instance = save_instance(self.registry, replace(instance, state=InstanceState.STOPPING))
                op.add_step("registry.update", detail="state=STOPPING")

            if instance.provider_instance_id:
                self.compute.stop(instance.provider_instance_id)
                op.add_step("compute.stop", detail=instance.provider_instance_id)

            self._release(instance)
            op.add_step("account.release", detail=f"account_id={instance.account_id}")
            try:
                self.registry.delete(INSTANCES, instance.id, expected_counter=instance.counter)
            except RecordNotFoundError as exc:
                raise InstanceNotAvailableError(f"Instance {instance.id} was stopped concurrently.") from exc
            op.success("Instance stopped.", changed=3)

    def re_initialize(self, instance_id: int) -> Instance:
        """Push the full configuration to a RUNNING instance again."""
        with self.logger.operation(
            "instance reinit",
            args={"instance_id": instance_id},
            target={"kind": "instance", "id": instance_id},
        ) as op:
            instance = self._require_running(instance_id, "re-initialized")
            payload = self.config_builder.build(instance).to_dict()
            self.compute.push_config(instance.provider_instance_id, payload)
            op.success("Configuration pushed.", changed=1)
            return instance

    def re_initialize_user_roles(self, instance_id: int) -> Instance:
        """Push only the user/role section to a RUNNING instance."""
        with self.logger.operation(
            "instance reinit-users",
            args={"instance_id": instance_id},
            target={"kind": "instance", "id": instance_id},
        ) as op:
            instance = self._require_running(instance_id, "re-initialized")
            payload = self.config_builder.build_users(instance).to_dict()
            self.compute.push_config(instance.provider_instance_id, {"users": payload["users"]})
            op.success("User roles pushed.", changed=1)
            return instance

    def upgrade(self, instance_id: int, *, principal: Principal | None = None) -> Instance:
        """Replace the instance with one running the latest catalog version."""
        instance = load_instance(self.registry, instance_id)
        latest = self._resolve_version(None)
        self.stop(instance.id, principal=principal)
        return self.create_instance(instance.account_id, latest, principal=principal)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _resolve_version(self, version: str | None) -> str:
        if version is None:
            latest = self.catalog.latest()
            if latest is None:
                raise VersionNotAvailableError("No software versions are available.")
            return latest
        requested = version.strip()
        if not self.catalog.is_supported(requested):
            raise VersionNotAvailableError(f"Version '{requested}' is not available.")
        return requested

    def _ensure_slot_free(self, account: Account) -> None:
        held = account.instance_id
        if held is None:
            existing = instance_for_account(self.registry, account)
            held = existing.id if existing is not None else None
        if held is not None:
            raise InstanceNotAvailableError(f"Account {account.id} already has instance {held}.")

    def _claim(self, account: Account, instance_id: int) -> Account:
        try:
            return save_account(self.registry, replace(account, instance_id=instance_id))
        except ConcurrentUpdateError as exc:
            fresh = load_account(self.registry, account.id)
            if fresh.instance_id is not None:
                raise InstanceNotAvailableError(
                    f"Account {account.id} already has instance {fresh.instance_id}."
                ) from exc
            raise

    def _release(self, instance: Instance) -> None:
        entry = self.registry.get(ACCOUNTS, instance.account_id)
        if entry is None:
            raise InstanceAccountNotFoundError(instance.id, instance.account_id)
        account = Account.from_dict(entry)
        if account.instance_id == instance.id:
            save_account(self.registry, replace(account, instance_id=None))

    def _require_running(self, instance_id: int, action: str) -> Instance:
        instance = load_instance(self.registry, instance_id)
        if instance.state is not InstanceState.RUNNING:
            raise InstanceNotAvailableError(
                f"Instance {instance.id} is {instance.state.value}; only RUNNING instances can be {action}."
            )
        return instance


__all__ = ["InstanceProvisioner", "STOPPABLE_STATES"]
