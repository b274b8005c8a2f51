"""
Periodic maintenance of execution logs.

- StuckExecutionDetector: times out RUNNING executions whose process most likely died.
- ExecutionLogRetention: deletes finished executions older than the retention window.
- CronSweep: runs either of them on a cron schedule in a background thread.

A failing sweep is logged and tried again on the next trigger; it never stops
the process.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from croniter import croniter

from job_tracking.backends.base import BaseBackend
from job_tracking.domain.execution import ExecutionResult, ExecutionStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StuckExecutionDetector:
    def __init__(self, backend: BaseBackend, threshold_minutes: int, clock: Optional[Clock] = None):
        self.backend = backend
        self.threshold = timedelta(minutes=threshold_minutes)
        self._clock = clock or _utcnow

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Time out every RUNNING execution that started more than the threshold ago.

        The registry's last execution fields are left alone, since a newer run may
        already have written them. Returns the number of executions timed out.
        """
        now = now or self._clock()
        cutoff = now - self.threshold
        timed_out = 0
        for record in self.backend.find_running_executions(cutoff):
            elapsed_ms = int((now - record.started_at).total_seconds() * 1000)
            result = ExecutionResult(
                status=ExecutionStatus.TIMEOUT,
                end_time=now,
                duration_ms=elapsed_ms,
                error_message=(
                    f"Execution still RUNNING after {int(self.threshold.total_seconds() // 60)} minutes; "
                    f"marked as timed out by stuck execution detector"
                ),
            )
            try:
                if self.backend.apply_result(record.to_context(), result, update_registry=False):
                    timed_out += 1
            except Exception:
                logger.exception("Failed to time out stuck execution %s of '%s'", record.id, record.name)
        if timed_out:
            logger.info("Timed out %d stuck executions started before %s", timed_out, cutoff.isoformat())
        return timed_out

    def run(self) -> int:
        try:
            return self.sweep()
        except Exception:
            logger.exception("Stuck execution sweep failed, will retry on next trigger")
            return 0


class ExecutionLogRetention:
    def __init__(self, backend: BaseBackend, retention_days: int, clock: Optional[Clock] = None):
        self.backend = backend
        self.retention = timedelta(days=retention_days)
        self._clock = clock or _utcnow

    def purge(self, now: Optional[datetime] = None) -> int:
        """Delete finished executions that ended before the retention window. RUNNING ones are kept."""
        cutoff = (now or self._clock()) - self.retention
        deleted = self.backend.purge_executions(cutoff)
        if deleted:
            logger.info("Deleted %d execution logs finished before %s", deleted, cutoff.isoformat())
        return deleted

    def run(self) -> int:
        try:
            return self.purge()
        except Exception:
            logger.exception("Execution log cleanup failed, will retry on next trigger")
            return 0


class CronSweep:
    """
    Background thread calling an action each time a cron expression fires.
    """

    def __init__(
        self,
        name: str,
        cron_expression: str,
        action: Callable[[], object],
        clock: Optional[Clock] = None,
        retry_interval: float = 60.0,
    ):
        self.name = name
        self.cron_expression = cron_expression
        self.action = action
        self.retry_interval = retry_interval
        self._clock = clock or _utcnow
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def next_run_after(self, moment: datetime) -> datetime:
        cron = croniter(self.cron_expression, moment, second_at_beginning=True)
        return cron.get_next(datetime)

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name=f"job-tracking-{self.name}", daemon=True)
        self._thread.start()
        logger.debug("Started %s sweep (%s)", self.name, self.cron_expression)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.debug("Stopped %s sweep", self.name)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                now = self._clock()
                wait_seconds = max((self.next_run_after(now) - now).total_seconds(), 0.0)
            except Exception:
                logger.exception(
                    "%s sweep could not compute its next run from %r, retrying in %ss",
                    self.name, self.cron_expression, self.retry_interval,
                )
                self._stop_event.wait(self.retry_interval)
                continue
            if self._stop_event.wait(wait_seconds):
                break
            try:
                self.action()
            except Exception:
                logger.exception("%s sweep failed, will retry on next trigger", self.name)
