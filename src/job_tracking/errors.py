"""
Error classes for job tracking.

Tracking errors never reach the job's caller: the interceptor catches them at
its boundary and logs them. Job-body errors are not wrapped by any of these
classes; they are recorded and re-raised unchanged.
"""


class JobTrackingError(Exception):
    """Base exception for job tracking."""
    pass


class ExecutionStateError(JobTrackingError):
    """
    Illegal execution status transition.

    Raised when something tries to terminate an execution that already has a
    terminal status, or to move an execution back to RUNNING.
    """
    pass


class DuplicateRegistryEntryError(JobTrackingError):
    """A registry entry with the same job name already exists in the store."""

    def __init__(self, name: str):
        super().__init__(f"Registry entry already exists for job '{name}'")
        self.name = name
