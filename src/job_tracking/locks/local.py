import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from job_tracking.locks.protocol import LockProvider


class _Lease:
    __slots__ = ("acquired_at", "until", "min_hold", "holder")

    def __init__(self, acquired_at: datetime, until: datetime, min_hold: timedelta):
        self.holder = threading.get_ident()
        self.acquired_at = acquired_at
        self.until = until
        self.min_hold = min_hold


class LocalLockProvider(LockProvider):
    """
    Lease-based lock shared by the threads of a single process.

    Follows the same hold semantics as the table-backed provider, which makes it
    a stand-in for tests and single-instance deployments.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._guard = threading.Lock()
        self._leases: Dict[str, _Lease] = {}

    def try_acquire(self, lock_name: str, min_hold: timedelta, max_hold: timedelta) -> bool:
        now = self._clock()
        with self._guard:
            lease = self._leases.get(lock_name)
            if lease is not None and lease.until > now:
                return False
            self._leases[lock_name] = _Lease(acquired_at=now, until=now + max_hold, min_hold=min_hold)
            return True

    def release(self, lock_name: str) -> None:
        now = self._clock()
        with self._guard:
            lease = self._leases.get(lock_name)
            # A lease taken over after expiry belongs to another thread
            if lease is None or lease.holder != threading.get_ident():
                return
            earliest = lease.acquired_at + lease.min_hold
            if earliest > now:
                lease.until = earliest
            else:
                del self._leases[lock_name]

    def is_locked(self, lock_name: str) -> bool:
        with self._guard:
            lease = self._leases.get(lock_name)
            return lease is not None and lease.until > self._clock()
