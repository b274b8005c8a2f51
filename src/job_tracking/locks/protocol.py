from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator, Protocol


class LockProvider(Protocol):
    """
    Cross-process mutual exclusion used while creating registry entries.
    """

    def try_acquire(self, lock_name: str, min_hold: timedelta, max_hold: timedelta) -> bool:
        """
        Try to take the lock without waiting.

        A held lock expires after `max_hold` even if it is never released, and a
        release within `min_hold` of acquisition keeps it held until `min_hold`
        has passed. Return True if the lock was taken.
        """
        ...

    def release(self, lock_name: str) -> None:
        """Release a lock taken by this provider."""
        ...


@contextmanager
def hold_lock(provider: LockProvider, lock_name: str, min_hold: timedelta, max_hold: timedelta) -> Iterator[bool]:
    """
    Try to take a lock for the duration of a `with` block.

    Yields whether the lock was acquired. An acquired lock is released on every
    exit path, including exceptions raised inside the block.
    """
    acquired = provider.try_acquire(lock_name, min_hold, max_hold)
    try:
        yield acquired
    finally:
        if acquired:
            provider.release(lock_name)
