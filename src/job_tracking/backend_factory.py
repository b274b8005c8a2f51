import logging
from typing import Optional

from job_tracking.backends.base import BaseBackend
from job_tracking.backends.in_memory import InMemoryBackend
from job_tracking.backends.persisted import PersistedBackend
from job_tracking.interceptor import ExecutionInterceptor
from job_tracking.locks.protocol import LockProvider
from job_tracking.settings import IN_MEMORY_MODE, TrackingSettings
from job_tracking.storages.protocol import ExecutionLogStore, RegistryStore
from job_tracking.tracker import ExecutionTracker

logger = logging.getLogger(__name__)


def create_backend(
    settings: TrackingSettings,
    registry_store: Optional[RegistryStore] = None,
    log_store: Optional[ExecutionLogStore] = None,
    lock_provider: Optional[LockProvider] = None,
) -> BaseBackend:
    """
    Build the single tracking backend for this process.

    Args:
        settings (TrackingSettings): Tracking configuration; `mode` selects the backend.
        registry_store (RegistryStore): Registry storage, required by the persisted backend.
        log_store (ExecutionLogStore): Execution log storage, required by the persisted backend.
        lock_provider (LockProvider): Coordination lock for registry creation. Without one,
            registry entries are created without cross-process coordination.

    Returns:
        BaseBackend: The persisted backend when `mode` asks for it and both stores are given,
        the in-memory backend otherwise.
    """
    mode = settings.mode
    if PersistedBackend.supports(mode):
        if registry_store is None or log_store is None:
            logger.warning(
                "Tracking mode '%s' needs a registry store and an execution log store, "
                "falling back to '%s'", mode, IN_MEMORY_MODE,
            )
            return InMemoryBackend()
        return PersistedBackend(registry_store, log_store, lock_provider, settings.lock)

    if not InMemoryBackend.supports(mode):
        logger.warning("No tracking backend for mode '%s', falling back to '%s'", mode, IN_MEMORY_MODE)
    return InMemoryBackend()


def create_interceptor(
    settings: Optional[TrackingSettings] = None,
    registry_store: Optional[RegistryStore] = None,
    log_store: Optional[ExecutionLogStore] = None,
    lock_provider: Optional[LockProvider] = None,
) -> ExecutionInterceptor:
    """
    Wire settings, backend, tracker and interceptor together.

    The tracker is reachable as `interceptor.tracker`; call its `start()` before
    the first job runs and `stop()` on shutdown.
    """
    settings = settings or TrackingSettings()
    backend = create_backend(settings, registry_store, log_store, lock_provider)
    return ExecutionInterceptor(ExecutionTracker(settings, backend))
