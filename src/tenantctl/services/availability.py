"""Bounded, cancellable wait for an account's instance to become ready.

An instance is ready once it is RUNNING and its configuration has been
pushed. Each attempt goes through :meth:`InstanceProvisioner.observe`, so
polling is also what drives a freshly created instance through its state
machine.

Waiting happens on a :class:`CancelToken` rather than ``time.sleep`` so a
caller can abandon the wait at any moment. The final sleep is clamped to the
remaining budget: a wait with deadline ``T`` and interval ``I`` returns within
``T + I``.
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

from ..domain import Instance, InstanceState
from .provisioner import InstanceProvisioner


class AvailabilityStatus(str, Enum):
    """Outcome of an availability check or wait."""

    READY = "READY"
    NOT_READY = "NOT_READY"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"


class CancelToken:
    """Cooperative cancellation flag that doubles as an interruptible sleep."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; wakes any pending :meth:`wait`."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to *timeout* seconds; return ``True`` if cancelled."""
        return self._event.wait(timeout)


@dataclass(frozen=True, slots=True)
class AvailabilityResult:
    """Terminal result of :meth:`AvailabilityPoller.wait`."""

    status: AvailabilityStatus
    instance: Instance | None
    attempts: int
    elapsed_seconds: float

    @property
    def ready(self) -> bool:
        return self.status is AvailabilityStatus.READY

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "status": self.status.value,
            "instance": self.instance.to_dict() if self.instance is not None else None,
            "attempts": self.attempts,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


def is_ready(instance: Instance | None) -> bool:
    """Return ``True`` when *instance* is running and configured."""
    return (
        instance is not None
        and instance.state is InstanceState.RUNNING
        and instance.initialized
    )


class AvailabilityPoller:
    """Poll an account's instance until it is ready, times out or is cancelled."""

    def __init__(
        self,
        provisioner: InstanceProvisioner,
        *,
        deadline_seconds: float = 300.0,
        interval_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        max_workers: int = 4,
    ) -> None:
        if deadline_seconds < 0 or interval_seconds <= 0:
            raise ValueError("deadline must be >= 0 and interval > 0 seconds.")
        self.provisioner = provisioner
        self.deadline_seconds = deadline_seconds
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    def check(self, account_id: int) -> AvailabilityResult:
        """Probe once without waiting; returns READY or NOT_READY."""
        start = self._clock()
        instance = self.provisioner.observe(account_id)
        status = AvailabilityStatus.READY if is_ready(instance) else AvailabilityStatus.NOT_READY
        return AvailabilityResult(status, instance, 1, self._clock() - start)

    def wait(
        self,
        account_id: int,
        *,
        deadline: float | None = None,
        interval: float | None = None,
        cancel: CancelToken | None = None,
    ) -> AvailabilityResult:
        """Block until the instance is ready or the wait ends another way.

        Lookup failures (unknown account, more than one instance) propagate
        immediately; running out of time is reported as TIMEOUT.
        """
        budget = self.deadline_seconds if deadline is None else deadline
        step = self.interval_seconds if interval is None else interval
        token = cancel if cancel is not None else CancelToken()
        start = self._clock()
        attempts = 0
        instance: Instance | None = None

        while True:
            if token.cancelled:
                return self._result(AvailabilityStatus.CANCELLED, instance, attempts, start)
            attempts += 1
            instance = self.provisioner.observe(account_id)
            if is_ready(instance):
                return self._result(AvailabilityStatus.READY, instance, attempts, start)
            remaining = budget - (self._clock() - start)
            if remaining <= 0:
                return self._result(AvailabilityStatus.TIMEOUT, instance, attempts, start)
            if token.wait(min(step, remaining)):
                return self._result(AvailabilityStatus.CANCELLED, instance, attempts, start)

    def submit(
        self,
        account_id: int,
        *,
        deadline: float | None = None,
        interval: float | None = None,
        cancel: CancelToken | None = None,
    ) -> Future[AvailabilityResult]:
        """Run :meth:`wait` on a worker thread and return its future."""
        return self._pool().submit(
            self.wait, account_id, deadline=deadline, interval=interval, cancel=cancel
        )

    def shutdown(self, *, wait: bool = True) -> None:
        """Stop the worker pool created by :meth:`submit`."""
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="tenantctl-poll"
                )
            return self._executor

    def _result(
        self,
        status: AvailabilityStatus,
        instance: Instance | None,
        attempts: int,
        start: float,
    ) -> AvailabilityResult:
        return AvailabilityResult(status, instance, attempts, self._clock() - start)


__all__ = [
    "AvailabilityPoller",
    "AvailabilityResult",
    "AvailabilityStatus",
    "CancelToken",
    "is_ready",
]
