import asyncio
import functools
import inspect
import logging
import time
from typing import Any, Callable, Optional, TypeVar

from job_tracking.domain.registry import JobMetadata
from job_tracking.domain.execution import ExecutionContext, ExecutionResult
from job_tracking.tracker import ExecutionTracker

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def build_metadata(
    func: Callable[..., Any],
    name: Optional[str] = None,
    schedule: Optional[str] = None,
    lock_name: Optional[str] = None,
) -> JobMetadata:
    """
    Describe a job body function.

    The job name defaults to "<Owner>_<function>", where the owner is the
    enclosing class for methods and the module for plain functions.
    """
    qualname_parts = [part for part in func.__qualname__.split(".") if part != "<locals>"]
    method = qualname_parts[-1]
    owners = qualname_parts[:-1]
    module = func.__module__ or "__main__"
    if owners:
        owner_class = f"{module}.{'.'.join(owners)}"
        simple_owner = owners[-1]
    else:
        owner_class = module
        simple_owner = module.rsplit(".", 1)[-1]
    return JobMetadata(
        name=name or f"{simple_owner}_{method}",
        owner_class=owner_class,
        owner_method=method,
        schedule_expression=schedule,
        lock_name=lock_name,
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ExecutionInterceptor:
    """
    Wraps job bodies so that every invocation is tracked.

    The job body always runs and its own return value or exception reaches the
    caller unchanged. Failures of the tracking machinery are logged and dropped.
    """

    def __init__(self, tracker: ExecutionTracker):
        self.tracker = tracker

    def track(
        self,
        func: Optional[F] = None,
        *,
        name: Optional[str] = None,
        schedule: Optional[str] = None,
        lock_name: Optional[str] = None,
    ):
        """
        Decorator tracking a job body. Usable bare (`@track`) or with arguments.

        Args:
            name (str): Job name; derived from the function when omitted.
            schedule (str): Cron expression or other schedule description, stored on the registry entry.
            lock_name (str): Execution lock the job runs under, which marks it as distributed.
        """
        def decorator(fn: F) -> F:
            if not self.tracker.settings.interceptor_enabled:
                return fn
            return self.wrap(fn, build_metadata(fn, name, schedule, lock_name))

        if func is not None:
            return decorator(func)
        return decorator

    def wrap(self, func: F, metadata: JobMetadata) -> F:
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                return await self.invoke_async(metadata, func, *args, **kwargs)
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return self.invoke(metadata, func, *args, **kwargs)
        return wrapper

    def invoke(self, metadata: JobMetadata, func: Callable[..., Any], *args, **kwargs) -> Any:
        context = self._begin(metadata)
        if context is None:
            return func(*args, **kwargs)

        started = time.monotonic()
        try:
            value = func(*args, **kwargs)
        except Exception as e:
            self._finish(context, ExecutionResult.failure(_elapsed_ms(started), str(e) or type(e).__name__))
            raise
        self._finish(context, ExecutionResult.success(_elapsed_ms(started)))
        return value

    async def invoke_async(self, metadata: JobMetadata, func: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Coroutine counterpart of `invoke`.

        Tracking calls block on storage and on the registry lock backoff, so they
        run in a worker thread and the event loop stays free.
        """
        context = await asyncio.to_thread(self._begin, metadata)
        if context is None:
            return await func(*args, **kwargs)

        started = time.monotonic()
        try:
            value = await func(*args, **kwargs)
        except asyncio.CancelledError:
            await asyncio.to_thread(
                self._finish, context, ExecutionResult.failure(_elapsed_ms(started), "Execution cancelled"),
            )
            raise
        except Exception as e:
            await asyncio.to_thread(
                self._finish, context, ExecutionResult.failure(_elapsed_ms(started), str(e) or type(e).__name__),
            )
            raise
        await asyncio.to_thread(self._finish, context, ExecutionResult.success(_elapsed_ms(started)))
        return value

    def _begin(self, metadata: JobMetadata) -> Optional[ExecutionContext]:
        if not self.tracker.is_enabled():
            logger.debug("Job tracking is disabled, running '%s' untracked", metadata.name)
            return None
        if self.tracker.is_excluded(metadata.name):
            logger.debug("Job '%s' is excluded from tracking", metadata.name)
            return None
        try:
            entry = self.tracker.ensure_registry_entry(metadata)
            return self.tracker.create_execution_context(entry)
        except Exception as e:
            logger.warning("Failed to start tracking '%s', running untracked: %s", metadata.name, e)
            return None

    def _finish(self, context: ExecutionContext, result: ExecutionResult) -> None:
        if result.is_success:
            logger.debug("Job '%s' completed in %sms", context.name, result.duration_ms)
        else:
            logger.error("Job '%s' failed after %sms: %s", context.name, result.duration_ms, result.error_message)
        try:
            self.tracker.apply_result(context, result)
        except Exception as e:
            logger.error("Failed to save execution result for '%s': %s", context.name, e)
