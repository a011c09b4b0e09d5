"""Compute provisioning backend interface.

The orchestrator never talks to a vendor SDK directly. It drives any object
implementing :class:`ComputeProvider`; :mod:`tenantctl.providers.systemd`
ships a backend that runs instances as local systemd units.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class ComputeProviderError(RuntimeError):
    """Raised when the compute backend rejects or fails a lifecycle call."""


class ComputeStatus(str, Enum):
    """Backend-reported status of a provisioned instance."""

    PENDING = "pending"
    BOOTING = "booting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ComputeHandle:
    """Identifiers returned by the backend for a newly created instance."""

    provider_instance_id: str
    host_name: str


class ComputeProvider(Protocol):
    """Capabilities the orchestrator requires from a compute backend."""

    def create(self, account_id: int, subdomain: str, version: str) -> ComputeHandle:
        """Allocate resources for a new instance; may return before it boots."""
        ...

    def stop(self, provider_instance_id: str) -> None:
        """Request that the instance stops and releases its resources."""
        ...

    def restart(self, provider_instance_id: str) -> None:
        """Request an in-place restart."""
        ...

    def status(self, provider_instance_id: str) -> ComputeStatus:
        """Return the current backend status."""
        ...

    def push_config(self, provider_instance_id: str, payload: Mapping[str, object]) -> None:
        """Deliver configuration to the running instance."""
        ...


__all__ = ["ComputeHandle", "ComputeProvider", "ComputeProviderError", "ComputeStatus"]
