"""Time-limited, single-use invitations to join an account."""
from __future__ import annotations

import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from ..domain import AccountRights, Principal, Role, UserInvitation, utc_now
from ..errors import InvitationExpiredError, InvitationNotFoundError, TenantCtlError, ValidationError
from ..locking import LockTimeoutError
from ..logging import StructuredLogger
from ..providers.notifier import Notifier
from ..state import INVITATIONS, RecordNotFoundError, StateRegistry, StateRegistryError
from .common import grant_roles, load_account

INVITATION_SUBJECT = "Account Invitation"
_CODE_BYTES = 18


def generate_redemption_code() -> str:
    """Return a fresh url-safe redemption code."""
    return secrets.token_urlsafe(_CODE_BYTES)


def _invitation_body(invitation: UserInvitation, endpoint: str, acct_name: str, inviter: str) -> str:
    url = invitation.redemption_url(endpoint)
    return (
        f"You have been invited by {inviter} to join the account '{acct_name}'.\n"
        "\n"
        f"To accept the invitation, follow this link before "
        f"{invitation.expiration_date:%Y-%m-%d %H:%M} UTC:\n"
        "\n"
        f"    {url}\n"
    )


@dataclass(slots=True)
class InvitationService:
    """Issue, list, delete and redeem user invitations."""

    registry: StateRegistry
    logger: StructuredLogger
    endpoint: str
    notifier: Notifier
    default_expiration_days: int = 14
    clock: Callable[[], datetime] = utc_now

    def invite(
        self,
        account_id: int,
        email: str,
        expiration_days: int | None = None,
        notifier: Notifier | None = None,
        *,
        principal: Principal,
    ) -> UserInvitation:
        """Persist a new invitation for *email* and notify the recipient.

        The recipient receives a message whose body contains the redemption
        URL ``<endpoint>/users/redeem/<code>``. If sending fails the invitation
        stays stored and the error propagates.
        """
        days = self.default_expiration_days if expiration_days is None else expiration_days
        address = email.strip()
        if "@" not in address:
            raise ValidationError(f"'{email}' is not a valid email address.")
        if days <= 0:
            raise ValidationError("Invitation expiration must be at least one day.")

        with self.logger.operation(
            "invitation send",
            args={"account_id": account_id, "email": address, "expiration_days": days},
            target={"kind": "account", "id": account_id},
        ) as op:
            account = load_account(self.registry, account_id)
            invitation_id = self.registry.allocate_id(INVITATIONS)
            invitation = UserInvitation.issue(
                invitation_id=invitation_id,
                account_id=account.id,
                user_email=address,
                expiration_days=days,
                redemption_code=generate_redemption_code(),
                now=self.clock(),
            )
            self.registry.insert(INVITATIONS, invitation.to_dict())
            op.add_step("registry.insert", detail=f"invitation_id={invitation.id}")

            sender = notifier if notifier is not None else self.notifier
            sender.send(
                INVITATION_SUBJECT,
                _invitation_body(invitation, self.endpoint, account.acct_name, principal.username),
                address,
            )
            op.add_step("notify", detail=address)
            op.success(
                "Invitation sent.",
                changed=1,
                context={"invitation_id": invitation.id, "expires": invitation.expiration_date},
            )
            return invitation

    def list_pending(self, account_id: int) -> list[UserInvitation]:
        """Return every stored invitation of the account, expired ones included."""
        entries = self.registry.find(INVITATIONS, account_id=account_id)
        return sorted((UserInvitation.from_dict(entry) for entry in entries), key=lambda item: item.id)

    def delete_invitation(self, invitation_id: int) -> None:
        """Delete an invitation by id."""
        with self.logger.operation(
            "invitation delete",
            args={"invitation_id": invitation_id},
            target={"kind": "invitation", "id": invitation_id},
        ) as op:
            try:
                self.registry.delete(INVITATIONS, invitation_id)
            except RecordNotFoundError as exc:
                raise InvitationNotFoundError(f"Invitation {invitation_id} does not exist.") from exc
            op.success("Invitation deleted.", changed=1)

    def redeem(self, code: str, as_user: Principal, *, now: datetime | None = None) -> AccountRights:
        """Grant *as_user* the USER role on the invitation's account.

        Redemption must happen strictly before the expiration date. The
        invitation is consumed first so a code is redeemed at most once; it
        is put back if granting the role fails. An expired invitation is kept
        so it still shows up in :meth:`list_pending`.
        """
        with self.logger.operation(
            "invitation redeem",
            args={"username": as_user.username},
            target={"kind": "invitation"},
        ) as op:
            matches = self.registry.find(INVITATIONS, redemption_code=code)
            if not matches:
                raise InvitationNotFoundError("No invitation matches the redemption code.")
            invitation = UserInvitation.from_dict(matches[0])
            moment = now if now is not None else self.clock()
            if invitation.is_expired(moment):
                raise InvitationExpiredError(
                    f"Invitation {invitation.id} expired at "
                    f"{invitation.expiration_date.isoformat()}."
                )
            load_account(self.registry, invitation.account_id)
            try:
                self.registry.delete(INVITATIONS, invitation.id, expected_counter=invitation.counter)
            except RecordNotFoundError as exc:
                raise InvitationNotFoundError(
                    f"Invitation {invitation.id} was redeemed concurrently."
                ) from exc
            op.add_step("registry.delete", detail=f"invitation_id={invitation.id}")
            try:
                rights = grant_roles(self.registry, invitation.account_id, as_user.username, {Role.USER})
            except (TenantCtlError, StateRegistryError, LockTimeoutError):
                self.registry.insert(INVITATIONS, invitation.to_dict())
                op.add_step("registry.restore", detail=f"invitation_id={invitation.id}")
                raise
            op.add_step("rights.grant", detail=f"roles={sorted(role.value for role in rights.roles)}")
            op.success(
                "Invitation redeemed.",
                changed=2,
                context={"invitation_id": invitation.id, "account_id": invitation.account_id},
            )
            return rights


__all__ = ["INVITATION_SUBJECT", "InvitationService", "generate_redemption_code"]
