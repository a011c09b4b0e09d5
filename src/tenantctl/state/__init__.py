"""State registry package."""
from __future__ import annotations

from .registry import (
    ACCOUNTS,
    INSTANCES,
    INVITATIONS,
    RIGHTS,
    STORAGE_ACCOUNTS,
    DuplicateRecordError,
    RecordNotFoundError,
    StateRegistry,
    StateRegistryError,
)

__all__ = [
    "ACCOUNTS",
    "DuplicateRecordError",
    "INSTANCES",
    "INVITATIONS",
    "RIGHTS",
    "RecordNotFoundError",
    "STORAGE_ACCOUNTS",
    "StateRegistry",
    "StateRegistryError",
]
