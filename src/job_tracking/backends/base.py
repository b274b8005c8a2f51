from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from job_tracking.domain.registry import JobMetadata, RegistryEntry
from job_tracking.domain.execution import ExecutionContext, ExecutionLog, ExecutionResult


class BaseBackend(ABC):
    """
    Storage strategy for execution tracking.

    Exactly one backend is active per process. The tracker and the interceptor
    only talk to this contract, never to a concrete backend.
    """

    name: str = "base"
    modes: Tuple[str, ...] = ()

    @classmethod
    def supports(cls, mode: str) -> bool:
        return mode in cls.modes

    def initialize(self) -> None:
        pass

    def shutdown(self) -> None:
        pass

    @abstractmethod
    def clear_cache(self) -> None:
        ...

    @abstractmethod
    def ensure_registry_entry(self, metadata: JobMetadata) -> RegistryEntry:
        """Return the job's registry entry, creating it exactly once if it does not exist."""
        ...

    @abstractmethod
    def create_execution_context(
        self,
        entry: RegistryEntry,
        service_name: Optional[str],
        host_name: Optional[str],
    ) -> ExecutionContext:
        ...

    @abstractmethod
    def apply_result(self, context: ExecutionContext, result: ExecutionResult, update_registry: bool = True) -> bool:
        """
        Record the terminal result of an execution.

        Return False without changing anything if the stored execution already
        has a terminal status. When `update_registry` is set, the registry entry's
        last execution time and duration are overwritten with this execution's.
        """
        ...

    @abstractmethod
    def find_running_executions(self, started_before: datetime) -> List[ExecutionLog]:
        ...

    @abstractmethod
    def purge_executions(self, finished_before: datetime) -> int:
        ...

    @abstractmethod
    def get_registry_entry(self, name: str) -> Optional[RegistryEntry]:
        ...

    @abstractmethod
    def list_recent_executions(self, name: str, limit: int = 10) -> List[ExecutionLog]:
        ...

    def _new_context(
        self,
        entry: RegistryEntry,
        service_name: Optional[str],
        host_name: Optional[str],
    ) -> ExecutionContext:
        return ExecutionContext(
            registry_id=entry.id,
            name=entry.name,
            lock_name=entry.lock_name,
            service_name=service_name,
            host_name=host_name,
        )
