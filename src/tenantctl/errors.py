"""Typed errors raised by the tenantctl orchestrator.

Every error carries the :class:`~tenantctl.exit_codes.ExitCode` the CLI should
terminate with. All of them are recoverable by the caller; only unexpected
failures (registry outages, malformed provider output) escape as other
exception types.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class TenantCtlError(RuntimeError):
    """Base class for orchestrator errors."""

    exit_code: ExitCode = ExitCode.PROVIDER


class ValidationError(TenantCtlError):
    """Raised when caller supplied input is malformed."""

    exit_code = ExitCode.VALIDATION


class AccountNotFoundError(TenantCtlError):
    """Raised when a referenced account id does not exist."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, account_id: int) -> None:
        """Record the missing account id."""
        super().__init__(f"Account {account_id} not found.")
        self.account_id = account_id


class InvalidAccountStatusError(TenantCtlError):
    """Raised when an account status transition is not permitted."""

    exit_code = ExitCode.CONFLICT


class SubdomainAlreadyExistsError(ValidationError):
    """Raised when a non-cancelled account already uses the subdomain."""

    def __init__(self, subdomain: str) -> None:
        """Record the conflicting subdomain."""
        super().__init__(f"The subdomain '{subdomain}' is already in use.")
        self.subdomain = subdomain


class ConcurrentUpdateError(TenantCtlError):
    """Raised when a version-checked save finds a newer stored counter."""

    exit_code = ExitCode.CONFLICT

    def __init__(self, collection: str, record_id: int, expected: int, actual: int) -> None:
        """Record which record lost the update race."""
        super().__init__(
            f"{collection} record {record_id} was modified concurrently "
            f"(expected counter {expected}, found {actual})."
        )
        self.collection = collection
        self.record_id = record_id
        self.expected = expected
        self.actual = actual


class InstanceNotAvailableError(TenantCtlError):
    """Raised when an instance is absent, busy, or already exists."""

    exit_code = ExitCode.CONFLICT


class InstanceAccountNotFoundError(TenantCtlError):
    """Raised when an instance references an account that cannot be resolved."""

    def __init__(self, instance_id: int, account_id: int) -> None:
        """Record the dangling instance/account pair."""
        super().__init__(
            f"Instance {instance_id} references account {account_id}, "
            "which does not exist."
        )
        self.instance_id = instance_id
        self.account_id = account_id


class ProviderAccountNotAvailableError(TenantCtlError):
    """Raised when a storage provider binding is missing or already removed."""

    exit_code = ExitCode.VALIDATION


class InvitationNotFoundError(TenantCtlError):
    """Raised when an invitation id or redemption code is unknown."""

    exit_code = ExitCode.VALIDATION


class InvitationExpiredError(TenantCtlError):
    """Raised when an invitation is redeemed at or after its expiration."""

    exit_code = ExitCode.CONFLICT


class VersionNotAvailableError(ValidationError):
    """Raised when a requested software version is not in the catalog."""


__all__ = [
    "AccountNotFoundError",
    "ConcurrentUpdateError",
    "InstanceAccountNotFoundError",
    "InstanceNotAvailableError",
    "InvalidAccountStatusError",
    "InvitationExpiredError",
    "InvitationNotFoundError",
    "ProviderAccountNotAvailableError",
    "SubdomainAlreadyExistsError",
    "TenantCtlError",
    "ValidationError",
    "VersionNotAvailableError",
]
