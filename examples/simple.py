import asyncio
import logging
import random

from job_tracking import TrackingSettings, create_interceptor
from job_tracking.locks.sqlalchemy import SqlAlchemyLockProvider
from job_tracking.storages.sqlalchemy import InMemoryDatabase, SqlAlchemyExecutionLogStore, SqlAlchemyRegistryStore

logging.basicConfig(level=logging.INFO)

# Set up persisted tracking on an in-memory SQLite database
database = InMemoryDatabase()
database.create_tables()
interceptor = create_interceptor(
    TrackingSettings(mode="persisted", service_name="example-service", excluded_names=["Metrics"]),
    registry_store=SqlAlchemyRegistryStore(database),
    log_store=SqlAlchemyExecutionLogStore(database),
    lock_provider=SqlAlchemyLockProvider(database),
)
tracker = interceptor.tracker


class ReportJobs:
    @interceptor.track(schedule="0 3 * * *", lock_name="daily-report")
    def daily_report(self):
        print("Building daily report")
        if random.random() < 0.3:
            raise RuntimeError("Report source unavailable")


@interceptor.track(name="daily-cleanup", schedule="*/10 * * * *")
async def cleanup():
    await asyncio.sleep(0.05)
    print("Cleaned up")


@interceptor.track(name="MetricsCollector")
def collect_metrics():
    print("Collecting metrics (untracked)")


async def main():
    tracker.start()
    jobs = ReportJobs()
    for _ in range(3):
        try:
            jobs.daily_report()
        except RuntimeError as e:
            print(f"Job failed: {e}")
        await cleanup()
        collect_metrics()

    for name in ("ReportJobs_daily_report", "daily-cleanup"):
        entry = tracker.get_registry_entry(name)
        print(f"{name}: last run {entry.last_execution_at} took {entry.last_duration_ms}ms")
        for record in tracker.list_recent_executions(name):
            print(f"  {record.started_at} {record.status.value} {record.error_message or ''}")
    tracker.stop()


if __name__ == "__main__":
    asyncio.run(main())
