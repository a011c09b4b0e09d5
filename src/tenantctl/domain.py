"""Domain records managed by the orchestrator.

Records are immutable; services derive updated copies with
:func:`dataclasses.replace` and hand them to the state registry, which checks
``counter`` before persisting. Each record converts to and from the plain
mappings stored in the YAML registry.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum

MILLIS_PER_DAY = 86_400_000


class AccountStatus(str, Enum):
    """Lifecycle status of an account."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    CANCELLED = "CANCELLED"


class ServicePlan(str, Enum):
    """Subscription tiers."""

    TRIAL = "TRIAL"
    PROFESSIONAL = "PROFESSIONAL"
    PROFESSIONAL_PLUS = "PROFESSIONAL_PLUS"
    ENTERPRISE = "ENTERPRISE"


class InstanceState(str, Enum):
    """Lifecycle state of a provisioned instance (no record means NONE)."""

    CREATING = "CREATING"
    INITIALIZING = "INITIALIZING"
    RUNNING = "RUNNING"
    RESTARTING = "RESTARTING"
    STOPPING = "STOPPING"


class StorageProviderType(str, Enum):
    """Storage vendors an account can bind to."""

    AMAZON_S3 = "AMAZON_S3"
    MICROSOFT_AZURE = "MICROSOFT_AZURE"
    RACKSPACE = "RACKSPACE"
    EMC = "EMC"
    IRODS = "IRODS"


class Role(str, Enum):
    """Roles a user can hold on an account."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    USER = "USER"


OWNER_ROLES: frozenset[Role] = frozenset({Role.OWNER, Role.ADMIN, Role.USER})


def utc_now() -> datetime:
    """Return the current time truncated to millisecond precision."""
    now = datetime.now(tz=UTC)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_iso(value: datetime) -> str:
    """Serialise *value* as an ISO-8601 UTC timestamp with milliseconds."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: object) -> datetime:
    """Parse a timestamp produced by :func:`to_iso` (or a datetime) into UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _optional_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    return int(str(value))


def _int_tuple(values: object) -> tuple[int, ...]:
    if not isinstance(values, Iterable) or isinstance(values, (str, bytes)):
        return ()
    return tuple(int(item) for item in values)


@dataclass(frozen=True, slots=True)
class Principal:
    """The user on whose behalf a command runs."""

    username: str
    email: str | None = None


@dataclass(frozen=True, slots=True)
class AccountCreationInfo:
    """Inputs required to create an account."""

    subdomain: str
    acct_name: str
    org_name: str = ""
    department: str = ""
    primary_storage_provider_type: StorageProviderType = StorageProviderType.AMAZON_S3
    secondary_storage_provider_types: tuple[StorageProviderType, ...] = ()
    service_plan: ServicePlan = ServicePlan.PROFESSIONAL


@dataclass(frozen=True, slots=True)
class Account:
    """A billable subscriber with a unique subdomain."""

    id: int
    subdomain: str
    acct_name: str
    status: AccountStatus
    service_plan: ServicePlan
    org_name: str = ""
    department: str = ""
    primary_binding_id: int | None = None
    secondary_binding_ids: tuple[int, ...] = ()
    instance_id: int | None = None
    counter: int = 0

    @property
    def binding_ids(self) -> tuple[int, ...]:
        """Return all binding ids, primary first."""
        if self.primary_binding_id is None:
            return self.secondary_binding_ids
        return (self.primary_binding_id, *self.secondary_binding_ids)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": self.id,
            "subdomain": self.subdomain,
            "acct_name": self.acct_name,
            "org_name": self.org_name,
            "department": self.department,
            "status": self.status.value,
            "service_plan": self.service_plan.value,
            "primary_binding_id": self.primary_binding_id,
            "secondary_binding_ids": list(self.secondary_binding_ids),
            "instance_id": self.instance_id,
            "counter": self.counter,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Account:
        """Build an account from a registry mapping."""
        return cls(
            id=int(str(data["id"])),
            subdomain=str(data["subdomain"]),
            acct_name=str(data.get("acct_name") or ""),
            org_name=str(data.get("org_name") or ""),
            department=str(data.get("department") or ""),
            status=AccountStatus(str(data.get("status", AccountStatus.PENDING.value))),
            service_plan=ServicePlan(str(data.get("service_plan", ServicePlan.PROFESSIONAL.value))),
            primary_binding_id=_optional_int(data.get("primary_binding_id")),
            secondary_binding_ids=_int_tuple(data.get("secondary_binding_ids")),
            instance_id=_optional_int(data.get("instance_id")),
            counter=int(str(data.get("counter", 0))),
        )


@dataclass(frozen=True, slots=True)
class Instance:
    """A provisioned compute instance bound to one account."""

    id: int
    account_id: int
    version: str
    state: InstanceState
    host_name: str = ""
    provider_instance_id: str = ""
    initialized: bool = False
    created_at: datetime = field(default_factory=utc_now)
    counter: int = 0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "version": self.version,
            "state": self.state.value,
            "host_name": self.host_name,
            "provider_instance_id": self.provider_instance_id,
            "initialized": self.initialized,
            "created_at": to_iso(self.created_at),
            "counter": self.counter,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Instance:
        """Build an instance from a registry mapping."""
        return cls(
            id=int(str(data["id"])),
            account_id=int(str(data["account_id"])),
            version=str(data.get("version") or ""),
            state=InstanceState(str(data.get("state", InstanceState.CREATING.value))),
            host_name=str(data.get("host_name") or ""),
            provider_instance_id=str(data.get("provider_instance_id") or ""),
            initialized=bool(data.get("initialized", False)),
            created_at=parse_iso(data["created_at"]) if data.get("created_at") else utc_now(),
            counter=int(str(data.get("counter", 0))),
        )


@dataclass(frozen=True, slots=True)
class StorageProviderAccount:
    """Credentials for one external storage-provider account."""

    id: int
    provider_type: StorageProviderType
    username: str = ""
    password: str = ""
    rrs: bool = True
    counter: int = 0

    @property
    def storage_class(self) -> str:
        """Return the storage-class option derived from the RRS flag."""
        return "rrs" if self.rrs else "standard"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": self.id,
            "provider_type": self.provider_type.value,
            "username": self.username,
            "password": self.password,
            "rrs": self.rrs,
            "counter": self.counter,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> StorageProviderAccount:
        """Build a provider account from a registry mapping."""
        return cls(
            id=int(str(data["id"])),
            provider_type=StorageProviderType(str(data["provider_type"])),
            username=str(data.get("username") or ""),
            password=str(data.get("password") or ""),
            rrs=bool(data.get("rrs", True)),
            counter=int(str(data.get("counter", 0))),
        )


@dataclass(frozen=True, slots=True)
class StorageProviderBinding:
    """An account's view of one bound storage-provider account."""

    provider_account_id: int
    provider_type: StorageProviderType
    primary: bool
    username: str
    password: str
    storage_class: str

    @property
    def id(self) -> int:
        """Bindings are identified by their provider account id."""
        return self.provider_account_id

    @classmethod
    def from_provider_account(
        cls, provider_account: StorageProviderAccount, *, primary: bool
    ) -> StorageProviderBinding:
        """Bind *provider_account* as primary or secondary."""
        return cls(
            provider_account_id=provider_account.id,
            provider_type=provider_account.provider_type,
            primary=primary,
            username=provider_account.username,
            password=provider_account.password,
            storage_class=provider_account.storage_class,
        )

    def to_dict(self, *, include_secrets: bool = False) -> dict[str, object]:
        """Return a serialisable representation (password masked by default)."""
        return {
            "id": self.provider_account_id,
            "type": self.provider_type.value,
            "primary": self.primary,
            "username": self.username,
            "password": self.password if include_secrets else "********",
            "storage_class": self.storage_class,
        }


@dataclass(frozen=True, slots=True)
class UserInvitation:
    """A time-limited, single-use invitation to join an account."""

    id: int
    account_id: int
    user_email: str
    creation_date: datetime
    expiration_date: datetime
    redemption_code: str
    counter: int = 0

    @classmethod
    def issue(
        cls,
        *,
        invitation_id: int,
        account_id: int,
        user_email: str,
        expiration_days: int,
        redemption_code: str,
        now: datetime | None = None,
    ) -> UserInvitation:
        """Create an invitation expiring *expiration_days* days after *now*."""
        created = now if now is not None else utc_now()
        expires = created + timedelta(milliseconds=expiration_days * MILLIS_PER_DAY)
        return cls(
            id=invitation_id,
            account_id=account_id,
            user_email=user_email,
            creation_date=created,
            expiration_date=expires,
            redemption_code=redemption_code,
        )

    def is_expired(self, now: datetime) -> bool:
        """Return ``True`` when the invitation can no longer be redeemed."""
        return now >= self.expiration_date

    def redemption_url(self, endpoint: str) -> str:
        """Return the URL a recipient follows to redeem the invitation."""
        return f"{endpoint.rstrip('/')}/users/redeem/{self.redemption_code}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "user_email": self.user_email,
            "creation_date": to_iso(self.creation_date),
            "expiration_date": to_iso(self.expiration_date),
            "redemption_code": self.redemption_code,
            "counter": self.counter,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> UserInvitation:
        """Build an invitation from a registry mapping."""
        return cls(
            id=int(str(data["id"])),
            account_id=int(str(data["account_id"])),
            user_email=str(data["user_email"]),
            creation_date=parse_iso(data["creation_date"]),
            expiration_date=parse_iso(data["expiration_date"]),
            redemption_code=str(data["redemption_code"]),
            counter=int(str(data.get("counter", 0))),
        )


@dataclass(frozen=True, slots=True)
class AccountRights:
    """Roles held by a user on an account."""

    id: int
    account_id: int
    username: str
    roles: frozenset[Role]
    counter: int = 0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "username": self.username,
            "roles": sorted(role.value for role in self.roles),
            "counter": self.counter,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> AccountRights:
        """Build account rights from a registry mapping."""
        raw_roles = data.get("roles") or []
        roles = frozenset(Role(str(role)) for role in raw_roles) if isinstance(raw_roles, list) else frozenset()
        return cls(
            id=int(str(data["id"])),
            account_id=int(str(data["account_id"])),
            username=str(data["username"]),
            roles=roles,
            counter=int(str(data.get("counter", 0))),
        )


__all__ = [
    "Account",
    "AccountCreationInfo",
    "AccountRights",
    "AccountStatus",
    "Instance",
    "InstanceState",
    "MILLIS_PER_DAY",
    "OWNER_ROLES",
    "Principal",
    "Role",
    "ServicePlan",
    "StorageProviderAccount",
    "StorageProviderBinding",
    "StorageProviderType",
    "UserInvitation",
    "parse_iso",
    "to_iso",
    "utc_now",
]
