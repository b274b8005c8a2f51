from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from job_tracking.backends.in_memory import InMemoryBackend
from job_tracking.domain.execution import ExecutionResult, ExecutionStatus
from job_tracking.domain.registry import JobMetadata


@pytest.fixture(scope="function")
def backend() -> InMemoryBackend:
    backend = InMemoryBackend()
    backend.initialize()
    yield backend
    backend.shutdown()


def test_three_runs_of_daily_cleanup(backend: InMemoryBackend, metadata: JobMetadata):
    durations = [120, 80, 95]
    for duration in durations:
        entry = backend.ensure_registry_entry(metadata)
        context = backend.create_execution_context(entry, "test-service", "host-a")
        assert backend.apply_result(context, ExecutionResult.success(duration)) is True

    assert backend.registry_count == 1
    assert backend.execution_count == 3

    entry = backend.get_registry_entry("daily-cleanup")
    assert entry.last_duration_ms == 95
    assert entry.last_execution_at is not None

    logs = backend.list_recent_executions("daily-cleanup")
    assert len(logs) == 3
    assert all(log.status == ExecutionStatus.SUCCESS for log in logs)
    assert all(log.registry_id == entry.id for log in logs)


def test_second_result_is_ignored(backend: InMemoryBackend, metadata: JobMetadata):
    entry = backend.ensure_registry_entry(metadata)
    context = backend.create_execution_context(entry, "test-service", "host-a")

    assert backend.apply_result(context, ExecutionResult.failure(10, "boom")) is True
    assert backend.apply_result(context, ExecutionResult.success(20)) is False

    [log] = backend.list_recent_executions(metadata.name)
    assert log.status == ExecutionStatus.FAILED
    assert log.error_message == "boom"
    assert backend.get_registry_entry(metadata.name).last_duration_ms == 10


def test_running_execution_is_recorded_at_start(backend: InMemoryBackend, metadata: JobMetadata):
    entry = backend.ensure_registry_entry(metadata)
    context = backend.create_execution_context(entry, "test-service", "host-a")

    [log] = backend.list_recent_executions(metadata.name)
    assert log.id == context.execution_id
    assert log.status == ExecutionStatus.RUNNING
    assert log.service_name == "test-service"
    assert log.host_name == "host-a"


def test_concurrent_ensure_creates_one_entry(backend: InMemoryBackend, metadata: JobMetadata):
    with ThreadPoolExecutor(max_workers=10) as pool:
        entries = list(pool.map(lambda _: backend.ensure_registry_entry(metadata), range(50)))

    assert backend.registry_count == 1
    assert len({entry.id for entry in entries}) == 1


def test_metadata_change_updates_entry(backend: InMemoryBackend, metadata: JobMetadata):
    original = backend.ensure_registry_entry(metadata)
    moved = metadata.model_copy(update={"owner_class": "app.jobs.MovedJobs"})

    updated = backend.ensure_registry_entry(moved)

    assert updated.id == original.id
    assert updated.owner_class == "app.jobs.MovedJobs"


def test_find_running_and_purge(backend: InMemoryBackend, metadata: JobMetadata):
    entry = backend.ensure_registry_entry(metadata)
    now = datetime.now(timezone.utc)

    running = backend.create_execution_context(entry, "test-service", "host-a")
    finished = backend.create_execution_context(entry, "test-service", "host-a")
    backend.apply_result(
        finished,
        ExecutionResult(status=ExecutionStatus.SUCCESS, end_time=now - timedelta(days=100), duration_ms=1),
    )

    stuck = backend.find_running_executions(now + timedelta(seconds=1))
    assert [log.id for log in stuck] == [running.execution_id]
    assert backend.find_running_executions(now - timedelta(hours=1)) == []

    assert backend.purge_executions(now - timedelta(days=90)) == 1
    assert [log.id for log in backend.list_recent_executions(metadata.name)] == [running.execution_id]


def test_clear_cache_drops_everything(backend: InMemoryBackend, metadata: JobMetadata):
    entry = backend.ensure_registry_entry(metadata)
    backend.create_execution_context(entry, None, None)

    backend.clear_cache()

    assert backend.registry_count == 0
    assert backend.execution_count == 0
    assert backend.get_registry_entry(metadata.name) is None
