"""
Compilation job scheduler.

Owns the pending queue and the in-flight jobs, enforces the concurrency
ceiling and publishes every job's progress and outcome on one event channel.

All queue mutation happens on the event loop thread, so no locking is needed;
the actual compilation work runs in child processes started by the job
processor.

Job lifecycle:
    submit()  -> queued     (ProgressEvent stage=queued)
    slot free -> active     (preparing, compiling x passes, processing)
    finished  -> terminal   (ProgressEvent completed|failed, then CompletedEvent)
    cancel()  -> terminal   (CancelledEvent only; no result)

Example:
    >>> async with CompilationScheduler(CompilerSettings.from_env()) as scheduler:
    ...     job_id = scheduler.submit(source, {"compiler": "xelatex"})
    ...     result = await scheduler.wait(job_id)
"""

import asyncio
import functools
import itertools
import time
from collections import OrderedDict
from typing import Any, Dict, List, Mapping, Optional, Union

from texforge.contexts.compilation.events import (
    CancelledEvent,
    CompletedEvent,
    EventChannel,
    ProgressEvent,
)
from texforge.contexts.compilation.exceptions import UnknownJobError
from texforge.contexts.compilation.logger import (
    _log_debug,
    _log_error,
    log_job_cancelled,
    log_job_result,
    log_job_submitted,
)
from texforge.contexts.compilation.models import (
    DEFAULT_PRIORITY,
    AvailabilityReport,
    CompilationError,
    CompilationJob,
    CompilationOptions,
    CompilationProgress,
    CompilationResult,
    ErrorKind,
    ProgressStage,
    QueueStatus,
)
from texforge.contexts.compilation.processor import JobProcessor
from texforge.contexts.compilation.prober import CompilerProber
from texforge.contexts.compilation.settings import CompilerSettings
from texforge.utils.timestamp import epoch_ms

OptionsInput = Union[CompilationOptions, Mapping[str, Any], None]


class CompilationScheduler:
    """
    Priority queue of compilation jobs with a concurrency ceiling.

    Args:
        settings: Compiler settings (default: CompilerSettings.from_env())
        processor: Job processor (default: built from settings)
        events: Event channel to publish on (default: a new channel)
        prober: Compiler availability prober (default: built from settings)
    """

    def __init__(
        self,
        settings: Optional[CompilerSettings] = None,
        processor: Optional[JobProcessor] = None,
        events: Optional[EventChannel] = None,
        prober: Optional[CompilerProber] = None,
    ):
        self.settings = settings or CompilerSettings.from_env()
        self.processor = processor or JobProcessor(self.settings)
        self.events = events or EventChannel()
        self.prober = prober or CompilerProber(
            self.settings.candidates, timeout_ms=self.settings.probe_timeout_ms
        )

        self._concurrency = self.settings.max_concurrent_jobs
        self._pending: List[CompilationJob] = []
        self._active: Dict[str, asyncio.Task] = {}
        # Cancelled jobs keep their slot until the compiler process has exited
        self._cancelling: Dict[str, asyncio.Task] = {}
        # Futures exist only while someone waits; unclaimed outcomes are bounded
        self._waiters: Dict[str, asyncio.Future] = {}
        self._finished: "OrderedDict[str, Optional[CompilationResult]]" = OrderedDict()
        self._sequence = itertools.count(1)
        self._closed = False

    # ------------------------------------------------------------------
    # Inbound interface
    # ------------------------------------------------------------------

    def submit(
        self,
        source: str,
        options: OptionsInput = None,
        priority: int = DEFAULT_PRIORITY,
    ) -> str:
        """
        Queue a document for compilation. Never blocks.

        Must be called from a coroutine or callback running on the event loop.
        Invalid options are replaced with defaults rather than rejected.

        Args:
            source: LaTeX document text
            options: CompilationOptions or a mapping of option fields
            priority: Higher values are started first (default: 1)

        Returns:
            The new job id
        """
        if self._closed:
            raise RuntimeError("Scheduler is closed")
        # Raises RuntimeError when no loop is running
        asyncio.get_running_loop()

        sequence = next(self._sequence)
        job = CompilationJob(
            id=f"job_{epoch_ms()}_{sequence}",
            source=source or "",
            options=CompilationOptions.resolve(options, self.settings.default_timeout_ms),
            priority=_coerce_priority(priority),
            submitted_at=time.monotonic(),
            sequence=sequence,
        )
        self._pending.append(job)
        self._pending.sort(key=lambda queued: queued.queue_key)
        log_job_submitted(job)

        self._emit_progress(
            CompilationProgress(job.id, ProgressStage.QUEUED, 0, "Queued for compilation")
        )
        self._schedule()
        return job.id

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a pending or running job.

        Pending jobs are removed at once. Running jobs have their compiler
        terminated; the CancelledEvent is published once the process is gone.

        Returns:
            True if the job was pending or running, False if unknown, finished
            or already being cancelled
        """
        for index, job in enumerate(self._pending):
            if job.id == job_id:
                del self._pending[index]
                log_job_cancelled(job_id, was_running=False)
                self._finish_cancelled(job_id)
                return True

        task = self._active.get(job_id)
        if task is not None and task.cancel():
            del self._active[job_id]
            self._cancelling[job_id] = task
            log_job_cancelled(job_id, was_running=True)
            return True

        return False

    def status(self) -> QueueStatus:
        pending = len(self._pending)
        active = len(self._active)
        return QueueStatus(pending=pending, active=active, total=pending + active)

    def clear(self) -> None:
        """Cancel every pending and running job. Safe to call repeatedly."""
        pending, self._pending = self._pending, []
        for job in pending:
            log_job_cancelled(job.id, was_running=False)
            self._finish_cancelled(job.id)

        for job_id in list(self._active):
            self.cancel(job_id)

    async def probe_availability(self) -> AvailabilityReport:
        return await self.prober.probe()

    async def wait(self, job_id: str) -> Optional[CompilationResult]:
        """
        Wait for a job's outcome and release it.

        Jobs that finished before anyone waited are found in a record of the
        last `retained_outcomes` outcomes; each entry can be collected once.

        Returns:
            The CompilationResult, or None if the job was cancelled

        Raises:
            UnknownJobError: If the id was never submitted, was already
                collected or has been evicted from the finished record
        """
        if job_id in self._finished:
            return self._finished.pop(job_id)

        future = self._waiters.get(job_id)
        if future is None:
            if not self._is_unfinished(job_id):
                raise UnknownJobError(job_id)
            future = asyncio.get_running_loop().create_future()
            self._waiters[job_id] = future
        return await asyncio.shield(future)

    async def compile(
        self,
        source: str,
        options: OptionsInput = None,
        priority: int = DEFAULT_PRIORITY,
    ) -> Optional[CompilationResult]:
        """Submit a job and wait for its outcome."""
        return await self.wait(self.submit(source, options, priority))

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @concurrency.setter
    def concurrency(self, value: int) -> None:
        self._concurrency = max(1, int(value))
        _log_debug(f"Concurrency ceiling set to {self._concurrency}")
        self._schedule()

    @property
    def occupied_slots(self) -> int:
        """Running jobs plus cancelled jobs whose compiler has not exited yet."""
        return len(self._active) + len(self._cancelling)

    async def aclose(self) -> None:
        """Cancel everything, wait for compilers and cleanups, close the event channel."""
        if self._closed:
            return
        self.clear()
        self._closed = True

        in_flight = list(self._active.values()) + list(self._cancelling.values())
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        await self.processor.drain()

        self.events.close()
        await asyncio.to_thread(_remove_if_empty, self.settings.temp_root)

    async def __aenter__(self) -> "CompilationScheduler":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _schedule(self) -> None:
        while self._pending and self.occupied_slots < self._concurrency:
            job = self._pending.pop(0)
            task = asyncio.get_running_loop().create_task(
                self.processor.process(job, report=self._emit_progress),
                name=f"texforge-{job.id}",
            )
            task.add_done_callback(functools.partial(self._on_job_done, job))
            self._active[job.id] = task

    def _on_job_done(self, job: CompilationJob, task: asyncio.Task) -> None:
        self._active.pop(job.id, None)
        self._cancelling.pop(job.id, None)

        if task.cancelled():
            self._finish_cancelled(job.id)
        else:
            error = task.exception()
            if error is not None:
                # Failures stay inside the job's own result
                _log_error(f"{job.id}: unexpected failure: {error!r}")
                result = CompilationResult(
                    job_id=job.id,
                    success=False,
                    log=str(error),
                    errors=[CompilationError(message=str(error), kind=ErrorKind.FATAL)],
                )
            else:
                result = task.result()
            self._finish_completed(result)

        if not self._closed:
            self._schedule()

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _emit_progress(self, progress: CompilationProgress) -> None:
        self.events.publish(ProgressEvent(progress))

    def _finish_completed(self, result: CompilationResult) -> None:
        if result.success:
            stage, message = ProgressStage.COMPLETED, "Compilation completed"
        else:
            stage, message = ProgressStage.FAILED, "Compilation failed"
        self._emit_progress(CompilationProgress(result.job_id, stage, 100, message))
        log_job_result(result)
        self.events.publish(CompletedEvent(result))
        self._resolve(result.job_id, result)

    def _finish_cancelled(self, job_id: str) -> None:
        self.events.publish(CancelledEvent(job_id))
        self._resolve(job_id, None)

    def _resolve(self, job_id: str, outcome: Optional[CompilationResult]) -> None:
        future = self._waiters.pop(job_id, None)
        if future is not None:
            if not future.done():
                future.set_result(outcome)
            return

        limit = self.settings.retained_outcomes
        if limit:
            self._finished[job_id] = outcome
            while len(self._finished) > limit:
                self._finished.popitem(last=False)

    def _is_unfinished(self, job_id: str) -> bool:
        if job_id in self._active or job_id in self._cancelling:
            return True
        return any(job.id == job_id for job in self._pending)


def _coerce_priority(priority: Any) -> int:
    try:
        return int(priority)
    except (TypeError, ValueError):
        return DEFAULT_PRIORITY


def _remove_if_empty(path) -> None:
    try:
        path.rmdir()
    except OSError:
        # Missing, or still holding kept working directories
        pass
