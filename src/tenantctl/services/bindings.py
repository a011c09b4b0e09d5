"""Storage-provider bindings of an account.

An account references its storage provider accounts by id: one primary and an
ordered list of secondaries. Whenever an account has any binding, exactly one
of them is primary.
"""
from __future__ import annotations

from dataclasses import dataclass, replace

from ..domain import Account, StorageProviderBinding, StorageProviderType
from ..errors import ProviderAccountNotAvailableError
from ..logging import StructuredLogger
from ..providers.storage import StorageAccountNotFoundError, StorageAccountRegistry
from ..state import StateRegistry
from .common import load_account, save_account


@dataclass(slots=True)
class StorageBindingRegistry:
    """Add, remove and resolve an account's storage-provider bindings."""

    registry: StateRegistry
    storage_accounts: StorageAccountRegistry
    logger: StructuredLogger

    def add_binding(self, account_id: int, provider_type: StorageProviderType) -> int:
        """Bind a new, empty provider account and return its id.

        The first binding of an account becomes primary; later ones are
        appended as secondaries.
        """
        with self.logger.operation(
            "binding add",
            args={"account_id": account_id, "provider_type": provider_type},
            target={"kind": "account", "id": account_id},
        ) as op:
            account = load_account(self.registry, account_id)
            binding_id = self.storage_accounts.create_empty(provider_type)
            op.add_step("storage.create", detail=f"provider_account_id={binding_id}")
            if account.primary_binding_id is None:
                updated = replace(account, primary_binding_id=binding_id)
            else:
                updated = replace(
                    account,
                    secondary_binding_ids=(*account.secondary_binding_ids, binding_id),
                )
            save_account(self.registry, updated)
            op.add_step("registry.update", detail=f"bindings={list(updated.binding_ids)}")
            op.success(
                "Storage binding added.",
                changed=2,
                context={"binding_id": binding_id, "primary": updated.primary_binding_id == binding_id},
            )
            return binding_id

    def remove_binding(self, account_id: int, binding_id: int) -> None:
        """Unbind and delete *binding_id*.

        Removing the primary promotes the first secondary. An unknown or
        already removed id raises :class:`ProviderAccountNotAvailableError`.
        """
        with self.logger.operation(
            "binding remove",
            args={"account_id": account_id, "binding_id": binding_id},
            target={"kind": "account", "id": account_id},
        ) as op:
            account = load_account(self.registry, account_id)
            if binding_id not in account.binding_ids:
                raise ProviderAccountNotAvailableError(
                    f"Storage provider binding {binding_id} is not bound to account {account_id}."
                )
            save_account(self.registry, _without_binding(account, binding_id))
            op.add_step("registry.update", detail=f"removed={binding_id}")
            try:
                self.storage_accounts.delete(binding_id)
            except StorageAccountNotFoundError:
                op.warning(
                    "Binding removed; provider account record was already gone.",
                    changed=1,
                    context={"binding_id": binding_id},
                )
                return
            op.add_step("storage.delete", detail=f"provider_account_id={binding_id}")
            op.success("Storage binding removed.", changed=2)

    def set_primary(self, account_id: int, binding_id: int) -> Account:
        """Make *binding_id* the primary binding, demoting the current primary."""
        with self.logger.operation(
            "binding set-primary",
            args={"account_id": account_id, "binding_id": binding_id},
            target={"kind": "account", "id": account_id},
        ) as op:
            account = load_account(self.registry, account_id)
            if binding_id not in account.secondary_binding_ids:
                if binding_id == account.primary_binding_id:
                    op.success("Binding already primary.", changed=0)
                    return account
                raise ProviderAccountNotAvailableError(
                    f"Storage provider binding {binding_id} is not bound to account {account_id}."
                )
            secondaries = [item for item in account.secondary_binding_ids if item != binding_id]
            if account.primary_binding_id is not None:
                secondaries.insert(0, account.primary_binding_id)
            updated = save_account(
                self.registry,
                replace(account, primary_binding_id=binding_id, secondary_binding_ids=tuple(secondaries)),
            )
            op.success("Primary binding changed.", changed=1)
            return updated

    def set_credentials(
        self,
        account_id: int,
        binding_id: int,
        *,
        username: str,
        password: str,
        rrs: bool | None = None,
    ) -> StorageProviderBinding:
        """Store the credentials an instance uses for one of the account's bindings.

        *rrs* left as ``None`` keeps the current reduced-redundancy setting.
        """
        with self.logger.operation(
            "binding credentials",
            args={"account_id": account_id, "binding_id": binding_id, "username": username, "rrs": rrs},
            target={"kind": "account", "id": account_id},
        ) as op:
            account = load_account(self.registry, account_id)
            if binding_id not in account.binding_ids:
                raise ProviderAccountNotAvailableError(
                    f"Storage provider binding {binding_id} is not bound to account {account_id}."
                )
            try:
                self.storage_accounts.set_credentials(
                    binding_id, username=username, password=password, rrs=rrs
                )
            except StorageAccountNotFoundError as exc:
                raise ProviderAccountNotAvailableError(
                    f"Storage Provider Account with ID: {binding_id} does not exist in the registry."
                ) from exc
            op.add_step("storage.update", detail=f"provider_account_id={binding_id}")
            op.success("Storage credentials updated.", changed=1)
            return self._binding(binding_id, primary=binding_id == account.primary_binding_id)

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    def get_primary(self, account_id: int) -> StorageProviderBinding:
        """Return the primary binding of the account."""
        primary, _ = self.resolve(load_account(self.registry, account_id))
        return primary

    def get_secondaries(self, account_id: int) -> list[StorageProviderBinding]:
        """Return the secondary bindings of the account in order."""
        account = load_account(self.registry, account_id)
        return [self._binding(binding_id, primary=False) for binding_id in account.secondary_binding_ids]

    def resolve(self, account: Account) -> tuple[StorageProviderBinding, list[StorageProviderBinding]]:
        """Resolve every binding of *account* to its provider credentials."""
        if account.primary_binding_id is None:
            raise ProviderAccountNotAvailableError(
                f"Account {account.id} has no primary storage provider."
            )
        primary = self._binding(account.primary_binding_id, primary=True)
        secondaries = [
            self._binding(binding_id, primary=False) for binding_id in account.secondary_binding_ids
        ]
        return primary, secondaries

    def _binding(self, binding_id: int, *, primary: bool) -> StorageProviderBinding:
        try:
            provider_account = self.storage_accounts.get(binding_id)
        except StorageAccountNotFoundError as exc:
            raise ProviderAccountNotAvailableError(
                f"Storage Provider Account with ID: {binding_id} does not exist in the registry."
            ) from exc
        return StorageProviderBinding.from_provider_account(provider_account, primary=primary)


def _without_binding(account: Account, binding_id: int) -> Account:
    if binding_id != account.primary_binding_id:
        return replace(
            account,
            secondary_binding_ids=tuple(
                item for item in account.secondary_binding_ids if item != binding_id
            ),
        )
    if account.secondary_binding_ids:
        promoted, *rest = account.secondary_binding_ids
        return replace(account, primary_binding_id=promoted, secondary_binding_ids=tuple(rest))
    return replace(account, primary_binding_id=None)


__all__ = ["StorageBindingRegistry"]
