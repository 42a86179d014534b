"""Guard against overlapping batch runs."""

import threading
import uuid
from datetime import datetime, timedelta
from typing import Protocol

import structlog


logger = structlog.get_logger()

DEFAULT_LEASE_NAME = "digest-batch"


class LeaseStore(Protocol):
    """Storage for named, expiring leases."""

    def try_acquire_lease(
        self, name: str, holder: str, now: datetime, ttl: timedelta
    ) -> bool:
        """Take the lease unless someone else holds an unexpired one."""
        ...

    def release_lease(self, name: str, holder: str) -> None:
        """Give the lease back."""
        ...


class SingleFlightGuard:
    """At most one batch run at a time.

    Combines a non-blocking in-process lock with a lease row in the
    database, so runs in other processes are excluded too. An abandoned
    lease expires after ``ttl``.
    """

    def __init__(
        self,
        store: LeaseStore,
        ttl: timedelta,
        name: str = DEFAULT_LEASE_NAME,
        holder: str | None = None,
    ) -> None:
        """Initialize the guard.

        Args:
            store: Lease storage.
            ttl: Lease lifetime.
            name: Lease name.
            holder: Holder identity; random if omitted.
        """
        self._store = store
        self._ttl = ttl
        self._name = name
        self._holder = holder or f"scheduler-{uuid.uuid4().hex[:12]}"
        self._lock = threading.Lock()
        self._log = logger.bind(component="single_flight", lease=name)

    @property
    def holder(self) -> str:
        """Identity written into the lease row."""
        return self._holder

    def acquire(self, now: datetime) -> bool:
        """Try to enter.

        Args:
            now: Current time, for lease expiry.

        Returns:
            True if the caller may run; it must call release() afterwards.
        """
        if not self._lock.acquire(blocking=False):
            self._log.info("guard_busy_in_process")
            return False
        try:
            acquired = self._store.try_acquire_lease(
                self._name, self._holder, now, self._ttl
            )
        except BaseException:
            self._lock.release()
            raise
        if not acquired:
            self._lock.release()
            self._log.info("guard_busy_lease_held")
            return False
        return True

    def release(self) -> None:
        """Leave; the lease row is removed."""
        try:
            self._store.release_lease(self._name, self._holder)
        finally:
            self._lock.release()
