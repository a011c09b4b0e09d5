"""Shared fixtures and fake collaborators for the test suite."""
from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from tenantctl.config import NotificationConfig
from tenantctl.domain import AccountCreationInfo, Principal, ServicePlan, StorageProviderType
from tenantctl.locking import LockManager
from tenantctl.logging import StructuredLogger
from tenantctl.providers.compute import ComputeHandle, ComputeProviderError, ComputeStatus
from tenantctl.providers.notifier import RecordingNotifier
from tenantctl.providers.storage import StorageAccountRegistry
from tenantctl.providers.version_catalog import VersionCatalog
from tenantctl.services import (
    AccountLifecycle,
    InstanceConfigBuilder,
    InstanceProvisioner,
    InvitationService,
    StorageBindingRegistry,
)
from tenantctl.state import StateRegistry


@dataclass
class FakeComputeProvider:
    """In-memory compute backend with scripted status reports."""

    statuses: list[ComputeStatus] = field(default_factory=list)
    default_status: ComputeStatus = ComputeStatus.RUNNING
    fail_create: bool = False
    fail_restart: bool = False
    created: list[tuple[int, str, str]] = field(default_factory=list)
    stopped: list[str] = field(default_factory=list)
    restarted: list[str] = field(default_factory=list)
    pushed: list[tuple[str, dict[str, object]]] = field(default_factory=list)
    status_calls: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def create(self, account_id: int, subdomain: str, version: str) -> ComputeHandle:
        if self.fail_create:
            raise ComputeProviderError("backend unavailable")
        with self._lock:
            self.created.append((account_id, subdomain, version))
        return ComputeHandle(provider_instance_id=f"vm-{subdomain}", host_name=f"{subdomain}.example.org")

    def stop(self, provider_instance_id: str) -> None:
        self.stopped.append(provider_instance_id)

    def restart(self, provider_instance_id: str) -> None:
        if self.fail_restart:
            raise ComputeProviderError("restart refused")
        self.restarted.append(provider_instance_id)

    def status(self, provider_instance_id: str) -> ComputeStatus:
        self.status_calls += 1
        if self.statuses:
            return self.statuses.pop(0)
        return self.default_status

    def push_config(self, provider_instance_id: str, payload: Mapping[str, object]) -> None:
        self.pushed.append((provider_instance_id, dict(payload)))


@dataclass
class Services:
    """Bundle of services wired against a temporary registry."""

    registry: StateRegistry
    logger: StructuredLogger
    compute: FakeComputeProvider
    notifier: RecordingNotifier
    storage_accounts: StorageAccountRegistry
    bindings: StorageBindingRegistry
    config_builder: InstanceConfigBuilder
    provisioner: InstanceProvisioner
    accounts: AccountLifecycle
    invitations: InvitationService


ENDPOINT = "https://manage.example.org"
ADMINS = ("ops@example.org", "billing@example.org")


@pytest.fixture()
def registry(tmp_path: Path) -> StateRegistry:
    registry = StateRegistry(tmp_path / "registry", locks=LockManager(tmp_path / "run", default_timeout=5.0))
    registry.ensure_root()
    return registry


@pytest.fixture()
def owner() -> Principal:
    return Principal(username="olivia", email="olivia@example.org")


@pytest.fixture()
def services(tmp_path: Path, registry: StateRegistry) -> Services:
    logger = StructuredLogger(tmp_path / "logs")
    compute = FakeComputeProvider()
    notifier = RecordingNotifier()
    storage_accounts = StorageAccountRegistry(registry)
    bindings = StorageBindingRegistry(registry, storage_accounts, logger)
    notifications = NotificationConfig(
        username="mailer",
        password="secret",
        from_address="noreply@example.org",
        admin_addresses=ADMINS,
    )
    config_builder = InstanceConfigBuilder(
        registry=registry,
        bindings=bindings,
        logger=logger,
        endpoint=ENDPOINT,
        notifications=notifications,
    )
    catalog = VersionCatalog(registry, seed_versions=("1.0", "1.1", "2.0.0rc1"))
    provisioner = InstanceProvisioner(
        registry=registry,
        compute=compute,
        catalog=catalog,
        config_builder=config_builder,
        logger=logger,
    )
    accounts = AccountLifecycle(
        registry=registry,
        bindings=bindings,
        notifier=notifier,
        logger=logger,
        admin_addresses=ADMINS,
    )
    invitations = InvitationService(
        registry=registry,
        logger=logger,
        endpoint=ENDPOINT,
        notifier=notifier,
    )
    return Services(
        registry=registry,
        logger=logger,
        compute=compute,
        notifier=notifier,
        storage_accounts=storage_accounts,
        bindings=bindings,
        config_builder=config_builder,
        provisioner=provisioner,
        accounts=accounts,
        invitations=invitations,
    )


def creation_info(
    subdomain: str = "acme",
    *,
    secondaries: tuple[StorageProviderType, ...] = (),
) -> AccountCreationInfo:
    """Return creation inputs for a PROFESSIONAL account."""
    return AccountCreationInfo(
        subdomain=subdomain,
        acct_name=f"{subdomain.title()} Corp",
        org_name="Acme Holdings",
        department="Research",
        secondary_storage_provider_types=secondaries,
        service_plan=ServicePlan.PROFESSIONAL,
    )
