from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from job_tracking.domain.execution import ensure_utc


class JobKind(str, Enum):
    LOCAL = "local"
    DISTRIBUTED = "distributed"


class JobMetadata(BaseModel):
    """
    Static description of a job, produced by the host each time the job is invoked.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Stable unique job name, the only coordination key")
    owner_class: str = Field(..., description="Fully qualified owner of the job body (class or module)")
    owner_method: str = Field(..., description="Name of the job body function or method")
    schedule_expression: Optional[str] = Field(None, description="Cron expression or other schedule description")
    lock_name: Optional[str] = Field(None, description="Execution lock name, set only for distributed jobs")
    kind: JobKind = Field(JobKind.LOCAL, description="LOCAL or DISTRIBUTED")

    @model_validator(mode="before")
    @classmethod
    def derive_kind(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("kind") is None:
            data = dict(data)
            data["kind"] = JobKind.DISTRIBUTED if data.get("lock_name") else JobKind.LOCAL
        return data


class RegistryEntry(BaseModel):
    """
    Canonical record identifying a job by its name.

    Created once, the first time any instance observes the job running, and
    updated with the last execution time and duration after every run.
    """
    id: Optional[str] = Field(None, description="Registry identifier, assigned by the store")
    name: str = Field(..., description="Unique job name")
    owner_class: str
    owner_method: str
    schedule_expression: Optional[str] = None
    lock_name: Optional[str] = None
    kind: JobKind = JobKind.LOCAL
    display_name: Optional[str] = None
    enabled: bool = True
    last_execution_at: Optional[datetime] = None
    last_duration_ms: Optional[int] = None

    @field_validator("last_execution_at")
    def check_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @classmethod
    def from_metadata(cls, metadata: JobMetadata, registry_id: Optional[str] = None) -> "RegistryEntry":
        return cls(
            id=registry_id,
            name=metadata.name,
            owner_class=metadata.owner_class,
            owner_method=metadata.owner_method,
            schedule_expression=metadata.schedule_expression,
            lock_name=metadata.lock_name,
            kind=metadata.kind,
            display_name=metadata.name,
            enabled=True,
        )

    def needs_metadata_update(self, metadata: JobMetadata) -> bool:
        """
        Check whether the job's metadata changed since the entry was registered.
        """
        return (
            self.owner_class != metadata.owner_class
            or self.owner_method != metadata.owner_method
            or self.schedule_expression != metadata.schedule_expression
            or self.lock_name != metadata.lock_name
            or self.kind != metadata.kind
        )

    def with_metadata(self, metadata: JobMetadata) -> "RegistryEntry":
        return self.model_copy(update=_metadata_fields(metadata))

    def with_last_execution(self, executed_at: datetime, duration_ms: Optional[int]) -> "RegistryEntry":
        return self.model_copy(update={"last_execution_at": executed_at, "last_duration_ms": duration_ms})


def _metadata_fields(metadata: JobMetadata) -> Dict[str, Any]:
    return {
        "owner_class": metadata.owner_class,
        "owner_method": metadata.owner_method,
        "schedule_expression": metadata.schedule_expression,
        "lock_name": metadata.lock_name,
        "kind": metadata.kind,
    }
