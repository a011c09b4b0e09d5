"""Account lifecycle tests."""
from __future__ import annotations

import threading
from dataclasses import dataclass, field

import pytest
from conftest import ADMINS, Services, creation_info

from tenantctl.domain import AccountCreationInfo, AccountStatus, Principal, Role, ServicePlan
from tenantctl.errors import (
    AccountNotFoundError,
    ConcurrentUpdateError,
    InstanceNotAvailableError,
    InvalidAccountStatusError,
    SubdomainAlreadyExistsError,
    ValidationError,
)
from tenantctl.providers.notifier import NotificationError
from tenantctl.services import AccountLifecycle, validate_subdomain
from tenantctl.services.accounts import CANCELLATION_SUBJECT


@dataclass
class FailingNotifier:
    """Notifier that refuses one recipient."""

    refuse: str
    delivered: list[str] = field(default_factory=list)

    def send(self, subject: str, body: str, recipient: str) -> None:
        if recipient == self.refuse:
            raise NotificationError(f"mailbox {recipient} unavailable")
        self.delivered.append(recipient)


def test_create_account_is_pending_with_owner_rights(services: Services, owner: Principal) -> None:
    """New accounts start PENDING and the creator owns them."""
    account = services.accounts.create_account(creation_info(), owner)

    assert account.id == 0
    assert account.status is AccountStatus.PENDING
    assert account.subdomain == "acme"
    assert account.acct_name == "Acme Corp"
    assert account.service_plan is ServicePlan.PROFESSIONAL
    assert account.instance_id is None
    assert account.primary_binding_id is not None
    users = services.accounts.list_users(account.id)
    assert [(rights.username, rights.roles) for rights in users] == [
        ("olivia", frozenset({Role.OWNER, Role.ADMIN, Role.USER}))
    ]


def test_duplicate_subdomain_rejected(services: Services, owner: Principal) -> None:
    """Subdomains are unique among non-cancelled accounts."""
    services.accounts.create_account(creation_info(), owner)

    with pytest.raises(SubdomainAlreadyExistsError):
        services.accounts.create_account(creation_info(), owner)

    assert len(services.accounts.list_accounts()) == 1


def test_concurrent_creates_of_same_subdomain(services: Services, owner: Principal) -> None:
    """Only one of several simultaneous creations succeeds."""
    barrier = threading.Barrier(4)
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()

    def create() -> None:
        barrier.wait()
        try:
            services.accounts.create_account(creation_info(), owner)
            outcome = "created"
        except SubdomainAlreadyExistsError:
            outcome = "duplicate"
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=create) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["created", "duplicate", "duplicate", "duplicate"]


@pytest.mark.parametrize("subdomain", ["ab", "Acme", "-acme", "acme-", "ac_me", "a" * 64, ""])
def test_invalid_subdomains_rejected(subdomain: str) -> None:
    """Subdomains must be 3-63 lowercase alphanumerics or inner hyphens."""
    with pytest.raises(ValidationError):
        validate_subdomain(subdomain)


@pytest.mark.parametrize("subdomain", ["abc", "acme-labs", "a1b", "a" * 63])
def test_valid_subdomains_accepted(subdomain: str) -> None:
    """Boundary lengths and inner hyphens are accepted."""
    assert validate_subdomain(subdomain) == subdomain


def test_blank_account_name_rejected(services: Services, owner: Principal) -> None:
    """Account names must not be blank."""
    with pytest.raises(ValidationError):
        services.accounts.create_account(AccountCreationInfo(subdomain="acme", acct_name="   "), owner)


def test_status_transitions(services: Services, owner: Principal) -> None:
    """PENDING -> ACTIVE -> INACTIVE -> ACTIVE -> CANCELLED."""
    account = services.accounts.create_account(creation_info(), owner)

    assert services.accounts.activate(account.id, owner).status is AccountStatus.ACTIVE
    assert services.accounts.deactivate(account.id, owner).status is AccountStatus.INACTIVE
    assert services.accounts.activate(account.id, owner).status is AccountStatus.ACTIVE
    cancelled = services.accounts.cancel_account(account.id, owner)

    assert cancelled.status is AccountStatus.CANCELLED
    with pytest.raises(InvalidAccountStatusError):
        services.accounts.activate(account.id, owner)


@pytest.mark.parametrize("action", ["deactivate", "cancel"])
def test_pending_account_cannot_skip_activation(
    services: Services, owner: Principal, action: str
) -> None:
    """Pending accounts can only be activated."""
    account = services.accounts.create_account(creation_info(), owner)

    with pytest.raises(InvalidAccountStatusError):
        if action == "deactivate":
            services.accounts.deactivate(account.id, owner)
        else:
            services.accounts.cancel_account(account.id, owner)

    assert services.accounts.get_account(account.id).status is AccountStatus.PENDING


def test_activate_twice_rejected(services: Services, owner: Principal) -> None:
    """Transitions to the current status are refused."""
    account = services.accounts.create_account(creation_info(), owner)
    services.accounts.activate(account.id, owner)

    with pytest.raises(InvalidAccountStatusError):
        services.accounts.activate(account.id, owner)


def test_stale_expected_counter_rejected(services: Services, owner: Principal) -> None:
    """A caller holding an outdated copy loses the update."""
    account = services.accounts.create_account(creation_info(), owner)
    services.accounts.activate(account.id, owner, expected_counter=account.counter)

    with pytest.raises(ConcurrentUpdateError):
        services.accounts.deactivate(account.id, owner, expected_counter=account.counter)

    assert services.accounts.get_account(account.id).status is AccountStatus.ACTIVE


def test_cancel_refused_while_instance_exists(services: Services, owner: Principal) -> None:
    """An account with an instance cannot be cancelled."""
    account = services.accounts.create_account(creation_info(), owner)
    services.accounts.activate(account.id, owner)
    instance = services.provisioner.create_instance(account.id)

    with pytest.raises(InstanceNotAvailableError):
        services.accounts.cancel_account(account.id, owner)
    assert services.accounts.get_account(account.id).status is AccountStatus.ACTIVE

    services.provisioner.stop(instance.id)
    assert services.accounts.cancel_account(account.id, owner).status is AccountStatus.CANCELLED


def test_cancel_notifies_every_admin(services: Services, owner: Principal) -> None:
    """Each administrator receives a cancellation message."""
    account = services.accounts.create_account(creation_info(), owner)
    services.accounts.activate(account.id, owner)

    services.accounts.cancel_account(account.id, owner)

    assert [message.recipient for message in services.notifier.messages] == list(ADMINS)
    assert all(message.subject == CANCELLATION_SUBJECT for message in services.notifier.messages)
    assert "acme" in services.notifier.messages[0].body


def test_cancel_survives_notification_failure(services: Services, owner: Principal) -> None:
    """A failed notification is logged as a warning; the cancellation stands."""
    notifier = FailingNotifier(refuse=ADMINS[0])
    accounts = AccountLifecycle(
        registry=services.registry,
        bindings=services.bindings,
        notifier=notifier,
        logger=services.logger,
        admin_addresses=ADMINS,
    )
    account = accounts.create_account(creation_info(), owner)
    accounts.activate(account.id, owner)

    cancelled = accounts.cancel_account(account.id, owner)

    assert cancelled.status is AccountStatus.CANCELLED
    assert notifier.delivered == [ADMINS[1]]
    assert '"status": "warning"' in services.logger.path.read_text(encoding="utf-8")


def test_cancelled_subdomain_can_be_reused(services: Services, owner: Principal) -> None:
    """Cancelling frees the subdomain; the old account is kept."""
    first = services.accounts.create_account(creation_info(), owner)
    services.accounts.activate(first.id, owner)
    services.accounts.cancel_account(first.id, owner)

    second = services.accounts.create_account(creation_info(), owner)

    assert second.id != first.id
    assert [account.id for account in services.accounts.list_accounts()] == [first.id, second.id]
    assert [account.id for account in services.accounts.list_accounts(AccountStatus.CANCELLED)] == [first.id]


def test_unknown_account_lookups(services: Services, owner: Principal) -> None:
    """Operations on unknown ids raise AccountNotFoundError."""
    with pytest.raises(AccountNotFoundError):
        services.accounts.get_account(5)
    with pytest.raises(AccountNotFoundError):
        services.accounts.activate(5, owner)
    with pytest.raises(AccountNotFoundError):
        services.accounts.list_users(5)
