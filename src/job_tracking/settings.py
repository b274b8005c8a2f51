from datetime import timedelta
from typing import List

from croniter import croniter
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PERSISTED_MODE = "persisted"
IN_MEMORY_MODE = "in-memory"

_MODE_ALIASES = {
    "persisted": PERSISTED_MODE,
    "database": PERSISTED_MODE,
    "db": PERSISTED_MODE,
    "in-memory": IN_MEMORY_MODE,
    "in_memory": IN_MEMORY_MODE,
    "memory": IN_MEMORY_MODE,
}


class LockSettings(BaseModel):
    """Coordination lock used while creating registry entries"""

    max_hold: timedelta = Field(default=timedelta(seconds=60), description="Maximum time to hold the lock")
    min_hold: timedelta = Field(default=timedelta(seconds=1), description="Minimum time to hold the lock")
    max_retries: int = Field(default=3, ge=0, description="Lock attempts after the first one fails")
    retry_delays_ms: List[int] = Field(
        default_factory=lambda: [100, 200, 500],
        description="Backoff delays between lock attempts; the last one repeats",
    )

    @field_validator("retry_delays_ms")
    @classmethod
    def check_delays(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("retry_delays_ms must contain at least one delay")
        if any(delay < 0 for delay in v):
            raise ValueError("retry_delays_ms must not contain negative delays")
        return v

    @model_validator(mode="after")
    def check_hold_range(self) -> "LockSettings":
        if self.min_hold > self.max_hold:
            raise ValueError("lock min_hold must not exceed max_hold")
        return self

    def delay_for(self, attempt: int) -> float:
        """Return the backoff for a zero-based retry attempt, in seconds."""
        delays = self.retry_delays_ms
        return delays[min(attempt, len(delays) - 1)] / 1000.0


class TrackingSettings(BaseSettings):
    """Job execution tracking settings"""

    enabled: bool = Field(default=True, description="Enable execution tracking")
    interceptor_enabled: bool = Field(default=True, description="Wrap tracked jobs at all")
    mode: str = Field(default=PERSISTED_MODE, description="Tracking backend (persisted, in-memory)")
    retention_days: int = Field(default=90, ge=1, description="Days to keep finished execution logs")
    cleanup_schedule: str = Field(default="0 3 * * *", description="Cron expression for log retention cleanup")
    stuck_threshold_minutes: int = Field(default=30, ge=1, description="Minutes before a RUNNING execution is stuck")
    stuck_check_schedule: str = Field(default="*/5 * * * *", description="Cron expression for the stuck sweep")
    maintenance_enabled: bool = Field(default=False, description="Run stuck detection and retention sweeps")
    excluded_names: List[str] = Field(default_factory=list, description="Job name prefixes to leave untracked")
    service_name: str = Field(default="unknown-service", description="Name of the service running the jobs")
    lock: LockSettings = Field(default_factory=LockSettings)

    model_config = SettingsConfigDict(env_prefix="JOB_TRACKING_", env_nested_delimiter="__")

    @field_validator("mode")
    @classmethod
    def normalize_mode(cls, v: str) -> str:
        key = v.strip().lower()
        return _MODE_ALIASES.get(key, key)

    @field_validator("cleanup_schedule", "stuck_check_schedule")
    @classmethod
    def check_cron(cls, v: str) -> str:
        # Six-field expressions put seconds first, as CronSweep reads them
        if not croniter.is_valid(v, second_at_beginning=True):
            raise ValueError(f"Invalid cron expression: {v!r}")
        return v

    def is_excluded(self, name: str) -> bool:
        """
        Check whether a job is excluded from tracking.

        Each configured pattern is a case-sensitive prefix of the job name.
        """
        return any(name.startswith(pattern) for pattern in self.excluded_names)
