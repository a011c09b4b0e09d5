"""Wire configuration, persistence, collaborators and services together."""
from __future__ import annotations

from dataclasses import dataclass

from .config import AppConfig
from .locking import LockManager
from .logging import StructuredLogger
from .providers import (
    ComputeProvider,
    Notifier,
    RecordingNotifier,
    SmtpNotifier,
    StorageAccountRegistry,
    SystemdComputeProvider,
    VersionCatalog,
)
from .services import (
    AccountLifecycle,
    AvailabilityPoller,
    InstanceConfigBuilder,
    InstanceProvisioner,
    InvitationService,
    StorageBindingRegistry,
)
from .state import StateRegistry
from .templates import TemplateEngine


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    registry: StateRegistry
    locks: LockManager
    logger: StructuredLogger
    templates: TemplateEngine
    notifier: Notifier
    compute: ComputeProvider
    catalog: VersionCatalog
    storage_accounts: StorageAccountRegistry
    bindings: StorageBindingRegistry
    config_builder: InstanceConfigBuilder
    provisioner: InstanceProvisioner
    poller: AvailabilityPoller
    accounts: AccountLifecycle
    invitations: InvitationService


def build_notifier(config: AppConfig) -> Notifier:
    """Return an SMTP notifier, or a recording one when no host is configured."""
    settings = config.notifications
    if not settings.smtp_host:
        return RecordingNotifier()
    return SmtpNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        from_address=settings.from_address,
        username=settings.username,
        password=settings.password,
        use_tls=settings.use_tls,
    )


def build_runtime(
    config: AppConfig,
    *,
    compute: ComputeProvider | None = None,
    notifier: Notifier | None = None,
) -> RuntimeContext:
    """Build every runtime object from *config*.

    *compute* and *notifier* replace the configured collaborators, which is
    how tests run commands without systemd or a mail relay.
    """
    locks = LockManager(config.runtime_dir, config.lock_timeout)
    registry = StateRegistry(config.registry_dir, locks=locks)
    registry.ensure_root()
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    resolved_notifier = notifier if notifier is not None else build_notifier(config)

    if compute is None:
        systemd = config.systemd
        compute = SystemdComputeProvider(
            templates=templates,
            instance_root=config.instance_root,
            domain=config.domain,
            systemd_dir=systemd.unit_dir or (config.runtime_dir / "systemd"),
            systemctl_bin=systemd.systemctl_bin,
            service_user=systemd.service_user,
            exec_start=systemd.exec_start,
        )

    catalog = VersionCatalog(
        registry,
        seed_versions=config.versions,
        default_version=config.default_version,
    )
    storage_accounts = StorageAccountRegistry(registry, default_rrs=config.storage.default_rrs)
    bindings = StorageBindingRegistry(registry, storage_accounts, logger)
    config_builder = InstanceConfigBuilder(
        registry=registry,
        bindings=bindings,
        logger=logger,
        endpoint=config.endpoint,
        storage=config.storage,
        audit=config.audit,
        notifications=config.notifications,
    )
    provisioner = InstanceProvisioner(
        registry=registry,
        compute=compute,
        catalog=catalog,
        config_builder=config_builder,
        logger=logger,
    )
    poller = AvailabilityPoller(
        provisioner,
        deadline_seconds=config.polling.deadline_seconds,
        interval_seconds=config.polling.interval_seconds,
    )
    accounts = AccountLifecycle(
        registry=registry,
        bindings=bindings,
        notifier=resolved_notifier,
        logger=logger,
        admin_addresses=config.notifications.admin_addresses,
    )
    invitations = InvitationService(
        registry=registry,
        logger=logger,
        endpoint=config.endpoint,
        notifier=resolved_notifier,
        default_expiration_days=config.invitations.expiration_days,
    )
    return RuntimeContext(
        config=config,
        registry=registry,
        locks=locks,
        logger=logger,
        templates=templates,
        notifier=resolved_notifier,
        compute=compute,
        catalog=catalog,
        storage_accounts=storage_accounts,
        bindings=bindings,
        config_builder=config_builder,
        provisioner=provisioner,
        poller=poller,
        accounts=accounts,
        invitations=invitations,
    )


__all__ = ["RuntimeContext", "build_notifier", "build_runtime"]
