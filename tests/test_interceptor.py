import asyncio
import threading
import time

import pytest

from job_tracking.backends.in_memory import InMemoryBackend
from job_tracking.domain.execution import ExecutionStatus
from job_tracking.domain.registry import JobKind, JobMetadata
from job_tracking.interceptor import ExecutionInterceptor, build_metadata
from job_tracking.settings import TrackingSettings
from job_tracking.tracker import ExecutionTracker


class ReportJobs:
    def build(self, day: str) -> str:
        return f"report-{day}"


def nightly_export():
    return None


class BrokenBackend(InMemoryBackend):
    def ensure_registry_entry(self, metadata: JobMetadata):
        raise RuntimeError("registry unavailable")


class SlowRegistryBackend(InMemoryBackend):
    def __init__(self):
        super().__init__()
        self.registry_threads = []

    def ensure_registry_entry(self, metadata: JobMetadata):
        self.registry_threads.append(threading.get_ident())
        time.sleep(0.2)
        return super().ensure_registry_entry(metadata)


class UnsavableBackend(InMemoryBackend):
    def apply_result(self, context, result, update_registry=True):
        raise RuntimeError("log store unavailable")


@pytest.fixture(scope="function")
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture(scope="function")
def interceptor(settings: TrackingSettings, backend: InMemoryBackend) -> ExecutionInterceptor:
    return ExecutionInterceptor(ExecutionTracker(settings, backend, host_name="host-a"))


def test_build_metadata_for_method():
    metadata = build_metadata(ReportJobs.build, schedule="0 6 * * *")

    assert metadata.name == "ReportJobs_build"
    assert metadata.owner_class == f"{ReportJobs.__module__}.ReportJobs"
    assert metadata.owner_method == "build"
    assert metadata.schedule_expression == "0 6 * * *"
    assert metadata.kind == JobKind.LOCAL


def test_build_metadata_for_function():
    metadata = build_metadata(nightly_export, lock_name="export-lock")

    module = nightly_export.__module__
    assert metadata.name == f"{module.rsplit('.', 1)[-1]}_nightly_export"
    assert metadata.owner_class == module
    assert metadata.kind == JobKind.DISTRIBUTED
    assert metadata.lock_name == "export-lock"


def test_build_metadata_explicit_name():
    assert build_metadata(nightly_export, name="export").name == "export"


def test_successful_job_is_recorded(interceptor: ExecutionInterceptor, backend: InMemoryBackend):
    @interceptor.track(name="daily-cleanup", schedule="0 3 * * *")
    def cleanup(limit):
        return limit * 2

    assert cleanup(21) == 42
    assert cleanup.__name__ == "cleanup"

    [log] = backend.list_recent_executions("daily-cleanup")
    assert log.status == ExecutionStatus.SUCCESS
    assert log.duration_ms >= 0
    assert log.host_name == "host-a"
    assert backend.get_registry_entry("daily-cleanup").schedule_expression == "0 3 * * *"


def test_failing_job_reraises_same_exception(interceptor: ExecutionInterceptor, backend: InMemoryBackend):
    error = ValueError("disk full")

    @interceptor.track(name="daily-cleanup")
    def cleanup():
        raise error

    with pytest.raises(ValueError) as exc_info:
        cleanup()

    assert exc_info.value is error
    [log] = backend.list_recent_executions("daily-cleanup")
    assert log.status == ExecutionStatus.FAILED
    assert log.error_message == "disk full"


def test_exception_without_message_uses_type_name(interceptor: ExecutionInterceptor, backend: InMemoryBackend):
    @interceptor.track(name="daily-cleanup")
    def cleanup():
        raise KeyError()

    with pytest.raises(KeyError):
        cleanup()

    [log] = backend.list_recent_executions("daily-cleanup")
    assert log.error_message == "KeyError"


def test_bare_decorator(interceptor: ExecutionInterceptor, backend: InMemoryBackend):
    @interceptor.track
    def refresh():
        return "ok"

    assert refresh() == "ok"
    assert backend.registry_count == 1


def test_disabled_tracking_runs_untracked(settings: TrackingSettings, backend: InMemoryBackend):
    interceptor = ExecutionInterceptor(ExecutionTracker(settings.model_copy(update={"enabled": False}), backend))

    @interceptor.track(name="daily-cleanup")
    def cleanup():
        return "done"

    assert cleanup() == "done"
    assert backend.registry_count == 0
    assert backend.execution_count == 0


def test_excluded_job_runs_untracked(interceptor: ExecutionInterceptor, backend: InMemoryBackend):
    @interceptor.track(name="CacheMetricsCollector_collect")
    def collect():
        return 5

    assert collect() == 5
    assert backend.registry_count == 0


def test_interceptor_switched_off_returns_function(settings: TrackingSettings, backend: InMemoryBackend):
    interceptor = ExecutionInterceptor(
        ExecutionTracker(settings.model_copy(update={"interceptor_enabled": False}), backend)
    )

    def cleanup():
        return "done"

    assert interceptor.track(cleanup) is cleanup


def test_tracking_setup_failure_does_not_block_job(settings: TrackingSettings, caplog):
    interceptor = ExecutionInterceptor(ExecutionTracker(settings, BrokenBackend()))
    calls = []

    @interceptor.track(name="daily-cleanup")
    def cleanup():
        calls.append(1)
        return "done"

    assert cleanup() == "done"
    assert calls == [1]
    assert "running untracked" in caplog.text


def test_result_save_failure_does_not_block_job(settings: TrackingSettings, caplog):
    interceptor = ExecutionInterceptor(ExecutionTracker(settings, UnsavableBackend()))

    @interceptor.track(name="daily-cleanup")
    def cleanup():
        return "done"

    assert cleanup() == "done"
    assert "Failed to save execution result" in caplog.text


@pytest.mark.asyncio
async def test_async_job_is_recorded(interceptor: ExecutionInterceptor, backend: InMemoryBackend):
    @interceptor.track(name="daily-cleanup")
    async def cleanup():
        await asyncio.sleep(0)
        return "done"

    assert await cleanup() == "done"

    [log] = backend.list_recent_executions("daily-cleanup")
    assert log.status == ExecutionStatus.SUCCESS


@pytest.mark.asyncio
async def test_async_failure_is_recorded(interceptor: ExecutionInterceptor, backend: InMemoryBackend):
    @interceptor.track(name="daily-cleanup")
    async def cleanup():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError, match="upstream down"):
        await cleanup()

    [log] = backend.list_recent_executions("daily-cleanup")
    assert log.status == ExecutionStatus.FAILED
    assert log.error_message == "upstream down"


@pytest.mark.asyncio
async def test_cancelled_async_job_is_recorded(interceptor: ExecutionInterceptor, backend: InMemoryBackend):
    started = asyncio.Event()

    @interceptor.track(name="daily-cleanup")
    async def cleanup():
        started.set()
        await asyncio.sleep(60)

    task = asyncio.ensure_future(cleanup())
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    [log] = backend.list_recent_executions("daily-cleanup")
    assert log.status == ExecutionStatus.FAILED
    assert log.error_message == "Execution cancelled"


@pytest.mark.asyncio
async def test_async_tracking_does_not_block_event_loop(settings: TrackingSettings):
    backend = SlowRegistryBackend()
    interceptor = ExecutionInterceptor(ExecutionTracker(settings, backend))
    ticks = []

    async def ticker():
        for _ in range(5):
            ticks.append(1)
            await asyncio.sleep(0.01)

    @interceptor.track(name="daily-cleanup")
    async def cleanup():
        return len(ticks)

    ticks_seen_by_job, _ = await asyncio.gather(cleanup(), ticker())

    assert ticks_seen_by_job > 0
    assert threading.get_ident() not in backend.registry_threads
    [log] = backend.list_recent_executions("daily-cleanup")
    assert log.status == ExecutionStatus.SUCCESS
