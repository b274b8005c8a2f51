import threading
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest

from job_tracking.domain.registry import JobMetadata, RegistryEntry
from job_tracking.errors import DuplicateRegistryEntryError
from job_tracking.settings import LockSettings, TrackingSettings
from job_tracking.storages.sqlalchemy import (
    InMemoryDatabase,
    SqlAlchemyDatabase,
    SqlAlchemyExecutionLogStore,
    SqlAlchemyRegistryStore,
)


class DictRegistryStore:
    """Thread-safe registry store enforcing unique names, like a database unique index."""

    def __init__(self):
        self._lock = threading.Lock()
        self.entries: Dict[str, RegistryEntry] = {}
        self.insert_attempts = 0
        self.find_calls = 0

    def find_by_name(self, name: str) -> Optional[RegistryEntry]:
        with self._lock:
            self.find_calls += 1
            return self.entries.get(name)

    def save(self, entry: RegistryEntry) -> RegistryEntry:
        with self._lock:
            self.insert_attempts += 1
            if entry.name in self.entries:
                raise DuplicateRegistryEntryError(entry.name)
            saved = entry.model_copy(update={"id": uuid.uuid4().hex})
            self.entries[saved.name] = saved
            return saved

    def update_last_execution(self, registry_id: str, executed_at: datetime, duration_ms: Optional[int]) -> int:
        with self._lock:
            for name, entry in self.entries.items():
                if entry.id == registry_id:
                    self.entries[name] = entry.with_last_execution(executed_at, duration_ms)
                    return 1
            return 0

    def update_metadata(self, registry_id: str, metadata: JobMetadata) -> int:
        with self._lock:
            for name, entry in self.entries.items():
                if entry.id == registry_id:
                    self.entries[name] = entry.with_metadata(metadata)
                    return 1
            return 0


class BusyLockProvider:
    """Lock provider whose lock is always held by someone else."""

    def __init__(self):
        self.attempts: List[str] = []
        self.releases: List[str] = []

    def try_acquire(self, lock_name: str, min_hold: timedelta, max_hold: timedelta) -> bool:
        self.attempts.append(lock_name)
        return False

    def release(self, lock_name: str) -> None:
        self.releases.append(lock_name)


@pytest.fixture(scope="function")
def metadata() -> JobMetadata:
    return JobMetadata(
        name="daily-cleanup",
        owner_class="app.jobs.CleanupJobs",
        owner_method="cleanup",
        schedule_expression="0 3 * * *",
    )


@pytest.fixture(scope="function")
def fast_lock_settings() -> LockSettings:
    return LockSettings(
        min_hold=timedelta(0),
        max_hold=timedelta(seconds=5),
        max_retries=3,
        retry_delays_ms=[10, 20, 50],
    )


@pytest.fixture(scope="function")
def settings(fast_lock_settings: LockSettings) -> TrackingSettings:
    return TrackingSettings(
        mode="in-memory",
        service_name="test-service",
        excluded_names=["CacheMetricsCollector"],
        lock=fast_lock_settings,
    )


@pytest.fixture(scope="function")
def database() -> SqlAlchemyDatabase:
    db = InMemoryDatabase()
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture(scope="function")
def registry_store(database: SqlAlchemyDatabase) -> SqlAlchemyRegistryStore:
    return SqlAlchemyRegistryStore(database)


@pytest.fixture(scope="function")
def log_store(database: SqlAlchemyDatabase) -> SqlAlchemyExecutionLogStore:
    return SqlAlchemyExecutionLogStore(database)


@pytest.fixture(scope="function")
def dict_registry_store() -> DictRegistryStore:
    return DictRegistryStore()


@pytest.fixture(scope="function")
def busy_lock_provider() -> BusyLockProvider:
    return BusyLockProvider()
