from datetime import datetime
from typing import List, Optional, Protocol

from job_tracking.domain.registry import JobMetadata, RegistryEntry
from job_tracking.domain.execution import ExecutionContext, ExecutionLog, ExecutionResult


class RegistryStore(Protocol):
    def find_by_name(self, name: str) -> Optional[RegistryEntry]:
        """Retrieve a registry entry by job name."""
        ...

    def save(self, entry: RegistryEntry) -> RegistryEntry:
        """
        Persist a new registry entry and return it with its assigned ID.

        Raise DuplicateRegistryEntryError if an entry with the same name already exists.
        """
        ...

    def update_last_execution(self, registry_id: str, executed_at: datetime, duration_ms: Optional[int]) -> int:
        """Record the latest execution on a registry entry. Return the number of rows updated."""
        ...

    def update_metadata(self, registry_id: str, metadata: JobMetadata) -> int:
        """Overwrite the owner, schedule and lock fields of an entry. Return the number of rows updated."""
        ...


class ExecutionLogStore(Protocol):
    def create_from_context(self, context: ExecutionContext) -> ExecutionLog:
        """Build a RUNNING log record for a context. The record is not persisted yet."""
        ...

    def apply_result(self, record: ExecutionLog, result: ExecutionResult) -> None:
        """Copy a terminal result onto a log record."""
        ...

    def save(self, record: ExecutionLog) -> ExecutionLog:
        """Insert or update a log record."""
        ...

    def find_by_id(self, log_id: str) -> Optional[ExecutionLog]:
        """Retrieve a log record by its ID."""
        ...

    def find_running_started_before(self, cutoff: datetime) -> List[ExecutionLog]:
        """List RUNNING records whose start time is older than the cutoff."""
        ...

    def delete_finished_before(self, cutoff: datetime) -> int:
        """Delete terminal records that ended before the cutoff. Return the number deleted."""
        ...

    def list_recent(self, name: str, limit: int = 10) -> List[ExecutionLog]:
        """List records for a job, newest start time first."""
        ...
