import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from job_tracking.errors import ExecutionStateError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    SQLite discards timezone information on storage, so values read back from it
    are naive even though they were written as UTC.
    """
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class ExecutionContext(BaseModel):
    """
    Represents one invocation of a tracked job, from start until a terminal result is applied.
    """
    execution_id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Unique execution identifier")
    registry_id: str = Field(..., description="Registry entry this execution belongs to")
    name: str = Field(..., description="Job name")
    lock_name: Optional[str] = None
    start_time: datetime = Field(default_factory=utcnow)
    status: ExecutionStatus = ExecutionStatus.RUNNING
    service_name: Optional[str] = None
    host_name: Optional[str] = None

    @field_validator("start_time")
    def check_timezone(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def transition_to(self, status: ExecutionStatus) -> None:
        """
        Move the execution from RUNNING to a terminal status.

        Raises:
            ExecutionStateError: If the status is not terminal, or the execution already finished.
        """
        if not status.is_terminal:
            raise ExecutionStateError(f"Execution {self.execution_id} cannot transition to {status.value}")
        if self.status.is_terminal:
            raise ExecutionStateError(
                f"Execution {self.execution_id} of '{self.name}' is already {self.status.value}, "
                f"refusing {status.value}"
            )
        self.status = status


class ExecutionResult(BaseModel):
    """
    Terminal outcome of an execution.
    """
    status: ExecutionStatus
    end_time: datetime = Field(default_factory=utcnow)
    duration_ms: Optional[int] = Field(None, ge=0)
    error_message: Optional[str] = None
    items_processed: Optional[int] = None

    @field_validator("status")
    @classmethod
    def check_terminal(cls, v: ExecutionStatus) -> ExecutionStatus:
        if not v.is_terminal:
            raise ValueError("Execution result status must be SUCCESS, FAILED or TIMEOUT")
        return v

    @classmethod
    def success(cls, duration_ms: int, items_processed: Optional[int] = None) -> "ExecutionResult":
        return cls(status=ExecutionStatus.SUCCESS, duration_ms=duration_ms, items_processed=items_processed)

    @classmethod
    def failure(cls, duration_ms: int, error_message: Optional[str]) -> "ExecutionResult":
        return cls(status=ExecutionStatus.FAILED, duration_ms=duration_ms, error_message=error_message)

    @classmethod
    def timeout(cls, duration_ms: int, error_message: Optional[str] = None) -> "ExecutionResult":
        return cls(status=ExecutionStatus.TIMEOUT, duration_ms=duration_ms, error_message=error_message)

    @property
    def is_success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS


class ExecutionLog(BaseModel):
    """
    Durable record of one execution: the context it started with and, once
    finished, the result it ended with.
    """
    id: str = Field(..., description="Same value as the execution id of the originating context")
    registry_id: str
    name: str
    lock_name: Optional[str] = None
    service_name: Optional[str] = None
    host_name: Optional[str] = None
    started_at: datetime
    status: ExecutionStatus = ExecutionStatus.RUNNING
    ended_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    items_processed: Optional[int] = None

    @field_validator("started_at", "ended_at")
    def check_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @classmethod
    def from_context(cls, context: ExecutionContext) -> "ExecutionLog":
        """Build the RUNNING record an execution starts with."""
        return cls(
            id=context.execution_id,
            registry_id=context.registry_id,
            name=context.name,
            lock_name=context.lock_name,
            service_name=context.service_name,
            host_name=context.host_name,
            started_at=context.start_time,
            status=ExecutionStatus.RUNNING,
        )

    def apply_result(self, result: ExecutionResult) -> None:
        if self.status.is_terminal:
            raise ExecutionStateError(
                f"Execution log {self.id} of '{self.name}' is already {self.status.value}, "
                f"refusing {result.status.value}"
            )
        self.status = result.status
        self.ended_at = result.end_time
        self.duration_ms = result.duration_ms
        self.error_message = result.error_message
        self.items_processed = result.items_processed

    def to_context(self) -> ExecutionContext:
        return ExecutionContext(
            execution_id=self.id,
            registry_id=self.registry_id,
            name=self.name,
            lock_name=self.lock_name,
            start_time=self.started_at,
            status=self.status,
            service_name=self.service_name,
            host_name=self.host_name,
        )
