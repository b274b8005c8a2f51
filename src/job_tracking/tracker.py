import logging
import socket
from typing import List, Optional

from job_tracking.backends.base import BaseBackend
from job_tracking.domain.registry import JobMetadata, RegistryEntry
from job_tracking.domain.execution import ExecutionContext, ExecutionLog, ExecutionResult
from job_tracking.errors import ExecutionStateError
from job_tracking.maintenance import CronSweep, ExecutionLogRetention, StuckExecutionDetector
from job_tracking.settings import TrackingSettings

logger = logging.getLogger(__name__)


class ExecutionTracker:
    """
    Execution lifecycle manager.

    Creates and terminates execution records through the active backend and
    enforces the RUNNING -> SUCCESS | FAILED | TIMEOUT state machine.
    """

    def __init__(self, settings: TrackingSettings, backend: BaseBackend, host_name: Optional[str] = None):
        self.settings = settings
        self.backend = backend
        self._host_name = host_name
        self.stuck_detector = StuckExecutionDetector(backend, settings.stuck_threshold_minutes)
        self.retention = ExecutionLogRetention(backend, settings.retention_days)
        self._sweeps: List[CronSweep] = []

    def __enter__(self) -> "ExecutionTracker":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def start(self) -> None:
        self.backend.initialize()
        logger.info(
            "Job tracking started with backend: %s (mode: %s, enabled: %s)",
            self.backend.name, self.settings.mode, self.settings.enabled,
        )
        if self.settings.maintenance_enabled and not self._sweeps:
            self._sweeps = [
                CronSweep("stuck-detector", self.settings.stuck_check_schedule, self.stuck_detector.run),
                CronSweep("log-retention", self.settings.cleanup_schedule, self.retention.run),
            ]
            for sweep in self._sweeps:
                sweep.start()

    def stop(self) -> None:
        for sweep in self._sweeps:
            sweep.stop()
        self._sweeps = []
        self.backend.shutdown()

    @property
    def host_name(self) -> str:
        if self._host_name is None:
            try:
                self._host_name = socket.gethostname()
            except OSError:
                self._host_name = "unknown"
        return self._host_name

    def is_enabled(self) -> bool:
        return self.settings.enabled

    def is_excluded(self, name: str) -> bool:
        return self.settings.is_excluded(name)

    def ensure_registry_entry(self, metadata: JobMetadata) -> RegistryEntry:
        return self.backend.ensure_registry_entry(metadata)

    def create_execution_context(self, entry: RegistryEntry, service_name: Optional[str] = None) -> ExecutionContext:
        return self.backend.create_execution_context(
            entry,
            service_name or self.settings.service_name,
            self.host_name,
        )

    def apply_result(self, context: ExecutionContext, result: ExecutionResult) -> bool:
        """
        Record the terminal result of an execution.

        The first terminal result wins. A later one is logged as an anomaly and
        dropped, and False is returned instead of raising.
        """
        try:
            context.transition_to(result.status)
        except ExecutionStateError as e:
            logger.warning("Ignoring result for '%s': %s", context.name, e)
            return False
        return self.backend.apply_result(context, result)

    def clear_cache(self) -> None:
        self.backend.clear_cache()

    def get_registry_entry(self, name: str) -> Optional[RegistryEntry]:
        return self.backend.get_registry_entry(name)

    def list_recent_executions(self, name: str, limit: int = 10) -> List[ExecutionLog]:
        return self.backend.list_recent_executions(name, limit)
