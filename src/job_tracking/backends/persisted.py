import logging
from datetime import datetime
from typing import List, Optional

from job_tracking.cache import RegistryCache
from job_tracking.coordinator import RegistryCoordinator
from job_tracking.domain.registry import JobMetadata, RegistryEntry
from job_tracking.domain.execution import ExecutionContext, ExecutionLog, ExecutionResult
from job_tracking.locks.protocol import LockProvider
from job_tracking.settings import LockSettings, PERSISTED_MODE
from job_tracking.storages.protocol import ExecutionLogStore, RegistryStore
from .base import BaseBackend

logger = logging.getLogger(__name__)


class PersistedBackend(BaseBackend):
    """
    Backend delegating durable storage to a registry store and an execution log store.

    Registry creation goes through the RegistryCoordinator, so that instances
    sharing the stores and the lock provider create each entry exactly once.
    A RUNNING log row is written when an execution starts, which lets the stuck
    detector find executions whose process died before finishing.
    """

    name = "Persisted Job Tracking"
    modes = (PERSISTED_MODE, "database", "db")

    def __init__(
        self,
        registry_store: RegistryStore,
        log_store: ExecutionLogStore,
        lock_provider: Optional[LockProvider] = None,
        lock_settings: Optional[LockSettings] = None,
    ):
        self.registry_store = registry_store
        self.log_store = log_store
        self.lock_provider = lock_provider
        self.cache = RegistryCache()
        self.coordinator = RegistryCoordinator(
            registry_store,
            self.cache,
            lock_provider,
            lock_settings or LockSettings(),
        )

    def initialize(self) -> None:
        logger.info(
            "Initialized %s backend (lock provider: %s)",
            self.name, "available" if self.lock_provider is not None else "not available",
        )

    def shutdown(self) -> None:
        logger.info("Shutting down %s backend", self.name)
        self.cache.clear()

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.debug("Registry cache cleared")

    def ensure_registry_entry(self, metadata: JobMetadata) -> RegistryEntry:
        return self.coordinator.ensure(metadata)

    def create_execution_context(
        self,
        entry: RegistryEntry,
        service_name: Optional[str],
        host_name: Optional[str],
    ) -> ExecutionContext:
        context = self._new_context(entry, service_name, host_name)
        self.log_store.save(self.log_store.create_from_context(context))
        return context

    def apply_result(self, context: ExecutionContext, result: ExecutionResult, update_registry: bool = True) -> bool:
        record = self.log_store.find_by_id(context.execution_id)
        if record is None:
            logger.debug("No RUNNING log found for execution %s, creating it", context.execution_id)
            record = self.log_store.create_from_context(context)
        if record.status.is_terminal:
            logger.warning(
                "Execution %s of '%s' is already %s, ignoring %s",
                record.id, record.name, record.status.value, result.status.value,
            )
            return False

        self.log_store.apply_result(record, result)
        self.log_store.save(record)

        if update_registry:
            self._record_last_execution(context, result)

        logger.debug(
            "Saved execution result for '%s': %s in %sms",
            context.name, result.status.value, result.duration_ms,
        )
        return True

    def _record_last_execution(self, context: ExecutionContext, result: ExecutionResult) -> None:
        updated = self.registry_store.update_last_execution(
            context.registry_id,
            context.start_time,
            result.duration_ms,
        )
        if updated == 0:
            logger.warning(
                "Registry entry not found while saving execution of '%s' (registry id %s)",
                context.name, context.registry_id,
            )
            return
        cached = self.cache.get(context.name)
        if cached is not None:
            self.cache.replace(cached.with_last_execution(context.start_time, result.duration_ms))

    def find_running_executions(self, started_before: datetime) -> List[ExecutionLog]:
        return self.log_store.find_running_started_before(started_before)

    def purge_executions(self, finished_before: datetime) -> int:
        return self.log_store.delete_finished_before(finished_before)

    def get_registry_entry(self, name: str) -> Optional[RegistryEntry]:
        return self.registry_store.find_by_name(name)

    def list_recent_executions(self, name: str, limit: int = 10) -> List[ExecutionLog]:
        return self.log_store.list_recent(name, limit)
