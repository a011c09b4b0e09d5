"""Account lifecycle: creation and status transitions.

Allowed transitions::

    PENDING | INACTIVE -> ACTIVE
    ACTIVE             -> INACTIVE
    ACTIVE | INACTIVE  -> CANCELLED   (only while no instance exists)

CANCELLED is terminal. Accounts are never deleted; a cancelled account frees
its subdomain for reuse.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace

from ..domain import (
    OWNER_ROLES,
    Account,
    AccountCreationInfo,
    AccountRights,
    AccountStatus,
    Principal,
)
from ..errors import (
    ConcurrentUpdateError,
    InstanceNotAvailableError,
    InvalidAccountStatusError,
    SubdomainAlreadyExistsError,
    ValidationError,
)
from ..logging import StructuredLogger
from ..providers.notifier import NotificationError, Notifier
from ..state import ACCOUNTS, DuplicateRecordError, StateRegistry
from .bindings import StorageBindingRegistry
from .common import (
    grant_roles,
    instance_for_account,
    load_account,
    rights_for_account,
    save_account,
)

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{1,61})[a-z0-9]$")
CANCELLATION_SUBJECT = "Account Cancellation"

_ALLOWED_FROM: dict[AccountStatus, frozenset[AccountStatus]] = {
    AccountStatus.ACTIVE: frozenset({AccountStatus.PENDING, AccountStatus.INACTIVE}),
    AccountStatus.INACTIVE: frozenset({AccountStatus.ACTIVE}),
    AccountStatus.CANCELLED: frozenset({AccountStatus.ACTIVE, AccountStatus.INACTIVE}),
}


def validate_subdomain(subdomain: str) -> str:
    """Return the normalised subdomain or raise :class:`ValidationError`."""
    candidate = subdomain.strip()
    if not SUBDOMAIN_PATTERN.fullmatch(candidate):
        raise ValidationError(
            f"Invalid subdomain '{subdomain}'. Use 3-63 lowercase letters, digits or "
            "hyphens, starting and ending with a letter or digit."
        )
    return candidate


@dataclass(slots=True)
class AccountLifecycle:
    """Create accounts and move them through their status lifecycle."""

    registry: StateRegistry
    bindings: StorageBindingRegistry
    notifier: Notifier
    logger: StructuredLogger
    admin_addresses: tuple[str, ...] = ()

    def create_account(self, info: AccountCreationInfo, owner: Principal) -> Account:
        """Create a PENDING account owned by *owner*.

        The subdomain check and the insert happen under one registry lock, so
        two concurrent creations of the same subdomain cannot both succeed.
        """
        subdomain = validate_subdomain(info.subdomain)
        if not info.acct_name.strip():
            raise ValidationError("Account name must not be empty.")

        with self.logger.operation(
            "account create",
            args={
                "subdomain": subdomain,
                "service_plan": info.service_plan,
                "primary_storage": info.primary_storage_provider_type,
                "secondary_storage": list(info.secondary_storage_provider_types),
                "actor": owner.username,
            },
            target={"kind": "account", "subdomain": subdomain},
        ) as op:
            draft = {
                "id": None,
                "subdomain": subdomain,
                "acct_name": info.acct_name.strip(),
                "org_name": info.org_name,
                "department": info.department,
                "status": AccountStatus.PENDING.value,
                "service_plan": info.service_plan.value,
                "primary_binding_id": None,
                "secondary_binding_ids": [],
                "instance_id": None,
            }
            try:
                stored = self.registry.insert(
                    ACCOUNTS,
                    draft,
                    conflicts=lambda entry: entry.get("subdomain") == subdomain
                    and entry.get("status") != AccountStatus.CANCELLED.value,
                )
            except DuplicateRecordError as exc:
                raise SubdomainAlreadyExistsError(subdomain) from exc
            account_id = int(stored["id"])
            op.add_step("registry.insert", detail=f"account_id={account_id}")

            self.bindings.add_binding(account_id, info.primary_storage_provider_type)
            for provider_type in info.secondary_storage_provider_types:
                self.bindings.add_binding(account_id, provider_type)
            op.add_step(
                "bindings.add",
                detail=f"count={1 + len(info.secondary_storage_provider_types)}",
            )

            grant_roles(self.registry, account_id, owner.username, OWNER_ROLES)
            op.add_step("rights.grant", detail=owner.username)

            account = load_account(self.registry, account_id)
            op.success("Account created.", changed=1, context={"account_id": account.id})
            return account

    def activate(
        self,
        account_id: int,
        principal: Principal,
        expected_counter: int | None = None,
    ) -> Account:
        """Move a PENDING or INACTIVE account to ACTIVE."""
        return self._transition(account_id, AccountStatus.ACTIVE, principal, expected_counter)

    def deactivate(
        self,
        account_id: int,
        principal: Principal,
        expected_counter: int | None = None,
    ) -> Account:
        """Move an ACTIVE account to INACTIVE."""
        return self._transition(account_id, AccountStatus.INACTIVE, principal, expected_counter)

    def cancel_account(self, account_id: int, principal: Principal) -> Account:
        """Cancel the account and notify the administrators.

        Refused with :class:`InstanceNotAvailableError` while the account still
        owns an instance; the account is left untouched in that case.
        """
        account = load_account(self.registry, account_id)
        held = account.instance_id
        if held is None:
            existing = instance_for_account(self.registry, account)
            held = existing.id if existing is not None else None
        if held is not None:
            raise InstanceNotAvailableError(
                f"Account {account.id} still has instance {held}; stop it before cancelling."
            )
        cancelled = self._transition(account_id, AccountStatus.CANCELLED, principal, account.counter)

        with self.logger.operation(
            "account notify",
            args={"account_id": account_id, "recipients": list(self.admin_addresses)},
            target={"kind": "account", "id": account_id},
        ) as op:
            body = (
                f"Account '{cancelled.acct_name}' (subdomain '{cancelled.subdomain}', "
                f"id {cancelled.id}) was cancelled by {principal.username}."
            )
            failures: list[str] = []
            for address in self.admin_addresses:
                try:
                    self.notifier.send(CANCELLATION_SUBJECT, body, address)
                except NotificationError as exc:
                    failures.append(str(exc))
            if failures:
                op.warning("Some administrators were not notified.", errors=failures)
            else:
                op.success("Administrators notified.", context={"sent": len(self.admin_addresses)})
        return cancelled

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_account(self, account_id: int) -> Account:
        """Return the account or raise :class:`AccountNotFoundError`."""
        return load_account(self.registry, account_id)

    def list_accounts(self, status: AccountStatus | None = None) -> list[Account]:
        """Return accounts ordered by id, optionally filtered by status."""
        accounts = [Account.from_dict(entry) for entry in self.registry.records(ACCOUNTS)]
        if status is not None:
            accounts = [account for account in accounts if account.status is status]
        return sorted(accounts, key=lambda account: account.id)

    def list_users(self, account_id: int) -> list[AccountRights]:
        """Return the users holding rights on the account."""
        load_account(self.registry, account_id)
        return rights_for_account(self.registry, account_id)

    def _transition(
        self,
        account_id: int,
        target: AccountStatus,
        principal: Principal,
        expected_counter: int | None,
    ) -> Account:
        with self.logger.operation(
            f"account {target.value.lower()}",
            args={"account_id": account_id, "expected_counter": expected_counter, "actor": principal.username},
            target={"kind": "account", "id": account_id},
        ) as op:
            account = load_account(self.registry, account_id)
            if expected_counter is not None and expected_counter != account.counter:
                raise ConcurrentUpdateError(ACCOUNTS, account.id, expected_counter, account.counter)
            if account.status not in _ALLOWED_FROM[target]:
                raise InvalidAccountStatusError(
                    f"Account {account.id} is {account.status.value} and cannot become {target.value}."
                )
            updated = save_account(self.registry, replace(account, status=target))
            op.success(
                f"Account is now {target.value}.",
                changed=1,
                context={"from": account.status, "to": target},
            )
            return updated


__all__ = [
    "AccountLifecycle",
    "CANCELLATION_SUBJECT",
    "SUBDOMAIN_PATTERN",
    "validate_subdomain",
]
