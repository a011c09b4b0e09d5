"""Orchestrator services."""
from __future__ import annotations

from .accounts import AccountLifecycle, validate_subdomain
from .availability import AvailabilityPoller, AvailabilityResult, AvailabilityStatus, CancelToken
from .bindings import StorageBindingRegistry
from .instance_config import InstanceConfig, InstanceConfigBuilder
from .invitations import InvitationService
from .provisioner import InstanceProvisioner

__all__ = [
    "AccountLifecycle",
    "AvailabilityPoller",
    "AvailabilityResult",
    "AvailabilityStatus",
    "CancelToken",
    "InstanceConfig",
    "InstanceConfigBuilder",
    "InstanceProvisioner",
    "InvitationService",
    "StorageBindingRegistry",
    "validate_subdomain",
]
