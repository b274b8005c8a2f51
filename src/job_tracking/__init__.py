"""
Job Execution Tracking

Records the execution history of periodically-triggered jobs running across one
or more process instances. Triggering the jobs stays with the host scheduler.

Core Concepts:

Registry entry:
    The canonical record of a job, identified by its stable name.
    It is created exactly once, the first time any instance sees the job run,
    and carries the time and duration of the job's latest execution.

Execution:
    A single invocation of a job. It starts RUNNING and ends with exactly one
    terminal status: SUCCESS, FAILED or TIMEOUT.

Backend:
    Where registry entries and execution logs live. The in-memory backend keeps
    them in the process; the persisted backend delegates to external stores and
    coordinates registry creation across instances with a distributed lock.

Interceptor:
    The wrapper placed around each job body. Tracking failures never affect the
    job: it always runs, and its own result or exception reaches the caller.

Relationships:
    - A registry entry can have many executions; every execution references
      an existing registry entry.
"""

from .settings import TrackingSettings, LockSettings
from .domain import (
    JobKind, JobMetadata, RegistryEntry,
    ExecutionStatus, ExecutionContext, ExecutionResult, ExecutionLog,
)
from .backends import BaseBackend, InMemoryBackend, PersistedBackend
from .tracker import ExecutionTracker
from .interceptor import ExecutionInterceptor, build_metadata
from .backend_factory import create_backend, create_interceptor

__all__ = [
    "TrackingSettings", "LockSettings",
    "JobKind", "JobMetadata", "RegistryEntry",
    "ExecutionStatus", "ExecutionContext", "ExecutionResult", "ExecutionLog",
    "BaseBackend", "InMemoryBackend", "PersistedBackend",
    "ExecutionTracker", "ExecutionInterceptor", "build_metadata",
    "create_backend", "create_interceptor",
]
