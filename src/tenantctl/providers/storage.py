"""Registry of external storage-provider accounts.

Storage provider accounts hold the credentials an instance uses to reach a
vendor's object store. They live in the ``storage_accounts`` collection of the
state registry; accounts reference them by id through their bindings.
"""
from __future__ import annotations

from dataclasses import dataclass, replace

from ..domain import StorageProviderAccount, StorageProviderType
from ..state import STORAGE_ACCOUNTS, RecordNotFoundError, StateRegistry


class StorageAccountNotFoundError(LookupError):
    """Raised when a storage provider account id is unknown."""

    def __init__(self, provider_account_id: int) -> None:
        """Record the missing id."""
        super().__init__(f"Storage provider account {provider_account_id} does not exist.")
        self.provider_account_id = provider_account_id


@dataclass(slots=True)
class StorageAccountRegistry:
    """Create, look up and delete storage provider accounts."""

    registry: StateRegistry
    default_rrs: bool = True

    def create_empty(self, provider_type: StorageProviderType) -> int:
        """Create a provider account without credentials and return its id."""
        stored = self.registry.insert(
            STORAGE_ACCOUNTS,
            {
                "id": None,
                "provider_type": provider_type.value,
                "username": "",
                "password": "",
                "rrs": self.default_rrs,
            },
        )
        return int(stored["id"])

    def get(self, provider_account_id: int) -> StorageProviderAccount:
        """Return the provider account or raise :class:`StorageAccountNotFoundError`."""
        entry = self.registry.get(STORAGE_ACCOUNTS, provider_account_id)
        if entry is None:
            raise StorageAccountNotFoundError(provider_account_id)
        return StorageProviderAccount.from_dict(entry)

    def set_credentials(
        self,
        provider_account_id: int,
        *,
        username: str,
        password: str,
        rrs: bool | None = None,
    ) -> StorageProviderAccount:
        """Store credentials for a provider account (version-checked)."""
        current = self.get(provider_account_id)
        updated = replace(
            current,
            username=username,
            password=password,
            rrs=current.rrs if rrs is None else rrs,
        )
        return StorageProviderAccount.from_dict(self.registry.save(STORAGE_ACCOUNTS, updated.to_dict()))

    def delete(self, provider_account_id: int) -> None:
        """Delete the provider account."""
        try:
            self.registry.delete(STORAGE_ACCOUNTS, provider_account_id)
        except RecordNotFoundError as exc:
            raise StorageAccountNotFoundError(provider_account_id) from exc


__all__ = ["StorageAccountNotFoundError", "StorageAccountRegistry"]
