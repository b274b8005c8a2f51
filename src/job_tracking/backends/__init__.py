from .base import BaseBackend
from .in_memory import InMemoryBackend
from .persisted import PersistedBackend

__all__ = ["BaseBackend", "InMemoryBackend", "PersistedBackend"]
