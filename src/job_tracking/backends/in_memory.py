import logging
import threading
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from job_tracking.domain.registry import JobMetadata, RegistryEntry
from job_tracking.domain.execution import ExecutionContext, ExecutionLog, ExecutionResult
from job_tracking.settings import IN_MEMORY_MODE
from .base import BaseBackend

logger = logging.getLogger(__name__)


class InMemoryBackend(BaseBackend):
    """
    Backend keeping registry entries and execution logs in process memory.

    Only one process can see this data, so a local lock replaces the distributed
    one for registry creation. Everything is lost when the process exits.
    """

    name = "In-Memory Job Tracking"
    modes = (IN_MEMORY_MODE, "memory")

    def __init__(self):
        self._registry: Dict[str, RegistryEntry] = {}
        self._registry_lock = threading.Lock()
        self._executions: Dict[str, ExecutionLog] = {}
        self._executions_lock = threading.Lock()

    def initialize(self) -> None:
        logger.info("Initialized %s backend", self.name)

    def shutdown(self) -> None:
        logger.info("Shutting down %s backend", self.name)
        self.clear_cache()

    def clear_cache(self) -> None:
        with self._registry_lock:
            self._registry.clear()
        with self._executions_lock:
            self._executions.clear()
        logger.debug("In-memory registry and execution logs cleared")

    def ensure_registry_entry(self, metadata: JobMetadata) -> RegistryEntry:
        entry = self._registry.get(metadata.name)
        if entry is not None and not entry.needs_metadata_update(metadata):
            return entry

        with self._registry_lock:
            entry = self._registry.get(metadata.name)
            if entry is None:
                logger.debug("Creating in-memory registry entry for '%s'", metadata.name)
                entry = RegistryEntry.from_metadata(metadata, registry_id=uuid.uuid4().hex)
            elif entry.needs_metadata_update(metadata):
                entry = entry.with_metadata(metadata)
            self._registry[metadata.name] = entry
            return entry

    def create_execution_context(
        self,
        entry: RegistryEntry,
        service_name: Optional[str],
        host_name: Optional[str],
    ) -> ExecutionContext:
        context = self._new_context(entry, service_name, host_name)
        with self._executions_lock:
            self._executions[context.execution_id] = ExecutionLog.from_context(context)
        return context

    def apply_result(self, context: ExecutionContext, result: ExecutionResult, update_registry: bool = True) -> bool:
        with self._executions_lock:
            record = self._executions.get(context.execution_id)
            if record is None:
                record = ExecutionLog.from_context(context)
                self._executions[record.id] = record
            if record.status.is_terminal:
                logger.warning(
                    "Execution %s of '%s' is already %s, ignoring %s",
                    record.id, record.name, record.status.value, result.status.value,
                )
                return False
            record.apply_result(result)

        if update_registry:
            with self._registry_lock:
                entry = self._registry.get(context.name)
                if entry is not None:
                    self._registry[context.name] = entry.with_last_execution(context.start_time, result.duration_ms)

        logger.debug(
            "Saved in-memory execution result for '%s': %s in %sms",
            context.name, result.status.value, result.duration_ms,
        )
        return True

    def find_running_executions(self, started_before: datetime) -> List[ExecutionLog]:
        with self._executions_lock:
            return [
                record.model_copy()
                for record in self._executions.values()
                if not record.status.is_terminal and record.started_at < started_before
            ]

    def purge_executions(self, finished_before: datetime) -> int:
        with self._executions_lock:
            expired = [
                log_id for log_id, record in self._executions.items()
                if record.status.is_terminal and record.ended_at is not None and record.ended_at < finished_before
            ]
            for log_id in expired:
                del self._executions[log_id]
        return len(expired)

    def get_registry_entry(self, name: str) -> Optional[RegistryEntry]:
        return self._registry.get(name)

    def list_recent_executions(self, name: str, limit: int = 10) -> List[ExecutionLog]:
        with self._executions_lock:
            records = [record.model_copy() for record in self._executions.values() if record.name == name]
        records.sort(key=lambda record: record.started_at, reverse=True)
        return records[:limit]

    @property
    def registry_count(self) -> int:
        return len(self._registry)

    @property
    def execution_count(self) -> int:
        return len(self._executions)
