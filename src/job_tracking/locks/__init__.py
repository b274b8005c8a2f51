from .protocol import LockProvider, hold_lock
from .local import LocalLockProvider

__all__ = ["LockProvider", "hold_lock", "LocalLockProvider"]
