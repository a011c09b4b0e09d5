"""Provider interfaces for tenantctl."""
from __future__ import annotations

from .compute import ComputeHandle, ComputeProvider, ComputeProviderError, ComputeStatus
from .notifier import Notification, NotificationError, Notifier, RecordingNotifier, SmtpNotifier
from .storage import StorageAccountNotFoundError, StorageAccountRegistry
from .systemd import SystemdComputeProvider, SystemdError
from .version_catalog import VersionCatalog

__all__ = [
    "ComputeHandle",
    "ComputeProvider",
    "ComputeProviderError",
    "ComputeStatus",
    "Notification",
    "NotificationError",
    "Notifier",
    "RecordingNotifier",
    "SmtpNotifier",
    "StorageAccountNotFoundError",
    "StorageAccountRegistry",
    "SystemdComputeProvider",
    "SystemdError",
    "VersionCatalog",
]
