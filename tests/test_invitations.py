"""Invitation issuance and redemption tests."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from conftest import ENDPOINT, Services, creation_info

from tenantctl.domain import MILLIS_PER_DAY, Principal, Role
from tenantctl.errors import (
    AccountNotFoundError,
    InvitationExpiredError,
    InvitationNotFoundError,
    ValidationError,
)
from tenantctl.locking import LockTimeoutError
from tenantctl.providers.notifier import RecordingNotifier
from tenantctl.services import InvitationService
from tenantctl.services.common import rights_for_account
from tenantctl.services.invitations import INVITATION_SUBJECT

ISSUED_AT = datetime(2026, 3, 1, 9, 30, 15, 250_000, tzinfo=UTC)


@pytest.fixture()
def invitations(services: Services) -> InvitationService:
    """Invitation service pinned to a fixed clock."""
    return InvitationService(
        registry=services.registry,
        logger=services.logger,
        endpoint=ENDPOINT,
        notifier=services.notifier,
        clock=lambda: ISSUED_AT,
    )


@pytest.fixture()
def account_id(services: Services, owner: Principal) -> int:
    """Id of a freshly created account."""
    return services.accounts.create_account(creation_info(), owner).id


def test_invite_sets_expiration_in_whole_days(
    invitations: InvitationService, account_id: int, owner: Principal
) -> None:
    """Expiration is exactly the requested number of days after creation."""
    invitation = invitations.invite(account_id, "bob@example.org", 3, principal=owner)

    difference = invitation.expiration_date - invitation.creation_date
    assert difference == timedelta(milliseconds=3 * MILLIS_PER_DAY)
    assert invitation.creation_date == ISSUED_AT
    assert invitation.redemption_code


def test_invite_notifies_recipient_with_redemption_url(
    invitations: InvitationService, services: Services, account_id: int, owner: Principal
) -> None:
    """The notification body carries the redemption URL."""
    invitation = invitations.invite(account_id, " bob@example.org ", principal=owner)

    assert len(services.notifier.messages) == 1
    message = services.notifier.messages[0]
    assert message.subject == INVITATION_SUBJECT
    assert message.recipient == "bob@example.org"
    assert f"{ENDPOINT}/users/redeem/{invitation.redemption_code}" in message.body
    assert "olivia" in message.body
    assert invitation.expiration_date - invitation.creation_date == timedelta(days=14)


def test_invite_uses_explicit_notifier(
    invitations: InvitationService, services: Services, account_id: int, owner: Principal
) -> None:
    """A notifier passed to invite replaces the default for that call."""
    override = RecordingNotifier()

    invitations.invite(account_id, "bob@example.org", 1, override, principal=owner)

    assert [message.recipient for message in override.messages] == ["bob@example.org"]
    assert services.notifier.messages == []


def test_invite_persists_and_lists(
    invitations: InvitationService, account_id: int, owner: Principal
) -> None:
    """Invitations are stored and listed per account."""
    first = invitations.invite(account_id, "bob@example.org", principal=owner)
    second = invitations.invite(account_id, "carol@example.org", principal=owner)

    pending = invitations.list_pending(account_id)

    assert [item.id for item in pending] == [first.id, second.id]
    assert pending[0].creation_date == ISSUED_AT
    assert first.redemption_code != second.redemption_code
    assert invitations.list_pending(account_id + 1) == []


@pytest.mark.parametrize(("email", "days"), [("not-an-email", 3), ("bob@example.org", 0)])
def test_invite_rejects_bad_input(
    invitations: InvitationService, account_id: int, owner: Principal, email: str, days: int
) -> None:
    """Malformed addresses and non-positive lifetimes are validation errors."""
    with pytest.raises(ValidationError):
        invitations.invite(account_id, email, days, principal=owner)


def test_invite_unknown_account(invitations: InvitationService, owner: Principal) -> None:
    """Inviting into a missing account fails before anything is stored."""
    with pytest.raises(AccountNotFoundError):
        invitations.invite(7, "bob@example.org", principal=owner)


def test_redeem_just_before_expiration_grants_user_role(
    invitations: InvitationService, services: Services, account_id: int, owner: Principal
) -> None:
    """Redeeming one millisecond before expiry succeeds and consumes the invitation."""
    invitation = invitations.invite(account_id, "bob@example.org", 2, principal=owner)
    moment = invitation.expiration_date - timedelta(milliseconds=1)

    rights = invitations.redeem(invitation.redemption_code, Principal("bob"), now=moment)

    assert rights.username == "bob"
    assert rights.roles == frozenset({Role.USER})
    assert invitations.list_pending(account_id) == []
    with pytest.raises(InvitationNotFoundError):
        invitations.redeem(invitation.redemption_code, Principal("bob"), now=moment)
    usernames = [item.username for item in rights_for_account(services.registry, account_id)]
    assert usernames == ["bob", "olivia"]


def test_redeem_at_expiration_fails_and_keeps_invitation(
    invitations: InvitationService, account_id: int, owner: Principal
) -> None:
    """An invitation is expired at its expiration instant."""
    invitation = invitations.invite(account_id, "bob@example.org", 2, principal=owner)

    with pytest.raises(InvitationExpiredError):
        invitations.redeem(invitation.redemption_code, Principal("bob"), now=invitation.expiration_date)

    assert [item.id for item in invitations.list_pending(account_id)] == [invitation.id]


def test_redeem_merges_with_existing_rights(
    invitations: InvitationService, services: Services, account_id: int, owner: Principal
) -> None:
    """Redeeming as an existing member keeps their roles."""
    invitation = invitations.invite(account_id, "olivia@example.org", principal=owner)

    rights = invitations.redeem(invitation.redemption_code, owner, now=ISSUED_AT)

    assert rights.roles == frozenset({Role.OWNER, Role.ADMIN, Role.USER})
    assert len(rights_for_account(services.registry, account_id)) == 1


def test_redeem_unknown_code(invitations: InvitationService) -> None:
    """Unknown codes are reported as missing."""
    with pytest.raises(InvitationNotFoundError):
        invitations.redeem("no-such-code", Principal("bob"))


def test_delete_invitation(
    invitations: InvitationService, account_id: int, owner: Principal
) -> None:
    """Deleting removes the invitation; deleting it again is an error."""
    invitation = invitations.invite(account_id, "bob@example.org", principal=owner)

    invitations.delete_invitation(invitation.id)

    assert invitations.list_pending(account_id) == []
    with pytest.raises(InvitationNotFoundError):
        invitations.delete_invitation(invitation.id)


def test_failed_grant_keeps_invitation_redeemable(
    invitations: InvitationService,
    services: Services,
    account_id: int,
    owner: Principal,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """If the role cannot be granted the invitation stays usable."""
    invitation = invitations.invite(account_id, "bob@example.org", principal=owner)

    def refuse(*args: object, **kwargs: object) -> None:
        raise LockTimeoutError("rights collection busy")

    monkeypatch.setattr("tenantctl.services.invitations.grant_roles", refuse)
    with pytest.raises(LockTimeoutError):
        invitations.redeem(invitation.redemption_code, Principal("bob"), now=ISSUED_AT)

    pending = invitations.list_pending(account_id)
    assert [(item.id, item.redemption_code) for item in pending] == [
        (invitation.id, invitation.redemption_code)
    ]
    usernames = [item.username for item in rights_for_account(services.registry, account_id)]
    assert usernames == ["olivia"]

    monkeypatch.undo()
    rights = invitations.redeem(invitation.redemption_code, Principal("bob"), now=ISSUED_AT)
    assert rights.roles == frozenset({Role.USER})
    assert invitations.list_pending(account_id) == []
