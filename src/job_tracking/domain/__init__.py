from .registry import JobKind, JobMetadata, RegistryEntry
from .execution import ExecutionStatus, ExecutionContext, ExecutionResult, ExecutionLog

__all__ = [
    "JobKind", "JobMetadata", "RegistryEntry",
    "ExecutionStatus", "ExecutionContext", "ExecutionResult", "ExecutionLog",
]
