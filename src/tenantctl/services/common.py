"""Record access helpers shared by the orchestrator services."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace

from ..domain import Account, AccountRights, Instance, Role
from ..errors import AccountNotFoundError, InstanceNotAvailableError
from ..state import (
    ACCOUNTS,
    INSTANCES,
    RIGHTS,
    DuplicateRecordError,
    RecordNotFoundError,
    StateRegistry,
)


def load_account(registry: StateRegistry, account_id: int) -> Account:
    """Return the stored account or raise :class:`AccountNotFoundError`."""
    entry = registry.get(ACCOUNTS, account_id)
    if entry is None:
        raise AccountNotFoundError(account_id)
    return Account.from_dict(entry)


def save_account(registry: StateRegistry, account: Account) -> Account:
    """Persist *account* if nobody changed it since it was loaded."""
    return Account.from_dict(registry.save(ACCOUNTS, account.to_dict()))


def load_instance(registry: StateRegistry, instance_id: int) -> Instance:
    """Return the stored instance or raise :class:`InstanceNotAvailableError`."""
    entry = registry.get(INSTANCES, instance_id)
    if entry is None:
        raise InstanceNotAvailableError(f"Instance {instance_id} does not exist.")
    return Instance.from_dict(entry)


def save_instance(registry: StateRegistry, instance: Instance) -> Instance:
    """Persist *instance* if nobody changed it since it was loaded."""
    try:
        return Instance.from_dict(registry.save(INSTANCES, instance.to_dict()))
    except RecordNotFoundError as exc:
        raise InstanceNotAvailableError(f"Instance {instance.id} no longer exists.") from exc


def instance_for_account(registry: StateRegistry, account: Account) -> Instance | None:
    """Return the single instance owned by *account*, if any.

    More than one stored instance means the single-instance invariant was
    broken outside the orchestrator; that is reported rather than resolved by
    picking one.
    """
    entries = registry.find(INSTANCES, account_id=account.id)
    if len(entries) > 1:
        ids = ", ".join(str(entry.get("id")) for entry in entries)
        raise InstanceNotAvailableError(
            f"Account {account.id} has {len(entries)} instances ({ids}); "
            "at most one is allowed."
        )
    if not entries:
        return None
    return Instance.from_dict(entries[0])


def rights_for_account(registry: StateRegistry, account_id: int) -> list[AccountRights]:
    """Return every membership record of *account_id*, ordered by username."""
    entries = registry.find(RIGHTS, account_id=account_id)
    return sorted((AccountRights.from_dict(entry) for entry in entries), key=lambda item: item.username)


def grant_roles(
    registry: StateRegistry,
    account_id: int,
    username: str,
    roles: Iterable[Role],
) -> AccountRights:
    """Add *roles* to the user's rights on the account, creating them if absent."""
    wanted = frozenset(roles)
    existing = registry.find(RIGHTS, account_id=account_id, username=username)
    if not existing:
        try:
            stored = registry.insert(
                RIGHTS,
                {
                    "id": None,
                    "account_id": account_id,
                    "username": username,
                    "roles": sorted(role.value for role in wanted),
                },
                conflicts=lambda entry: entry.get("account_id") == account_id
                and entry.get("username") == username,
            )
            return AccountRights.from_dict(stored)
        except DuplicateRecordError as exc:
            existing = [exc.existing]
    current = AccountRights.from_dict(existing[0])
    if wanted <= current.roles:
        return current
    merged = replace(current, roles=current.roles | wanted)
    return AccountRights.from_dict(registry.save(RIGHTS, merged.to_dict()))


__all__ = [
    "grant_roles",
    "instance_for_account",
    "rights_for_account",
    "load_account",
    "load_instance",
    "save_account",
    "save_instance",
]
