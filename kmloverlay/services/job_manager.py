"""Job submission, scheduling and cancellation.

Each submitted job runs as its own asyncio task. A semaphore caps how many
jobs run their pipeline at once; later submissions wait in PENDING until a
slot frees up. Every job ends with exactly one terminal event: DoneEvent on
success or cancellation, ErrorEvent on failure.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol
from uuid import uuid4

from kmloverlay.config import Settings, get_settings
from kmloverlay.exceptions import OverlayError
from kmloverlay.models.job import Job, JobState
from kmloverlay.render.pipeline import OverlayPipeline
from kmloverlay.schemas.events import DoneEvent, ErrorEvent, Event, LogEvent, ProgressEvent
from kmloverlay.schemas.options import JobSpec
from kmloverlay.services.event_channel import EventChannel
from kmloverlay.services.job_store import Clock, JobStore

logger = logging.getLogger(__name__)


class JobRunner(Protocol):
    async def run(self) -> Any: ...


PipelineFactory = Callable[..., JobRunner]


@dataclass
class _JobRun:
    job: Job
    channel: EventChannel
    cancel_requested: bool = False
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class JobHandle:
    """Caller's view of one submitted job."""

    def __init__(self, run: _JobRun, manager: "JobManager") -> None:
        self._run = run
        self._manager = manager

    @property
    def job_id(self) -> str:
        return self._run.job.id

    @property
    def job(self) -> Job:
        return self._run.job

    @property
    def state(self) -> JobState:
        return self._run.job.state

    def events(self) -> AsyncIterator[Event]:
        """New event stream; may be called any number of times, even after the job ended."""
        return self._run.channel.subscribe()

    def cancel(self) -> None:
        """Request cancellation. No-op once the job has finished or was already cancelled."""
        self._manager._cancel_run(self._run)

    async def wait(self) -> Job:
        """Wait for the job to reach a terminal state."""
        if self._run.task is not None:
            await asyncio.wait({self._run.task})
        return self._run.job


class JobManager:
    """Runs overlay jobs with a ceiling on concurrently running pipelines."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        pipeline_factory: PipelineFactory = OverlayPipeline,
        store: Optional[JobStore] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.settings = settings or get_settings()
        self._pipeline_factory = pipeline_factory
        self.store = store or JobStore(
            retention_seconds=self.settings.job_retention_seconds,
            cancelled_retention_seconds=self.settings.cancelled_job_retention_seconds,
            clock=clock,
        )
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_jobs)
        self._runs: dict[str, _JobRun] = {}

    @property
    def running_count(self) -> int:
        return sum(1 for run in self._runs.values() if run.job.state == JobState.RUNNING)

    def start(self, spec: JobSpec) -> JobHandle:
        """Submit a job. Must be called from inside a running event loop."""
        job = Job(id=uuid4().hex)
        run = _JobRun(job=job, channel=EventChannel(job.id))
        self.store.add(job)
        self._runs[job.id] = run

        run.task = asyncio.create_task(self._execute(run, spec), name=f"kmloverlay-job-{job.id}")
        logger.info(f"[JOB {job.id}] Submitted (output={spec.output_path})")
        return JobHandle(run, self)

    def get_job(self, job_id: str) -> Job:
        """
        Current snapshot of a job.

        Raises:
            JobNotFoundError: Unknown or already evicted job
        """
        return self.store.require(job_id)

    def list_jobs(self) -> list[Job]:
        return self.store.list_jobs()

    def cancel(self, job_id: str) -> None:
        """
        Cancel a job by id.

        Raises:
            JobNotFoundError: Unknown or already evicted job
        """
        run = self._runs.get(job_id)
        if run is not None:
            self._cancel_run(run)
            return
        # Finished jobs are still known to the store until evicted
        self.store.require(job_id)

    async def shutdown(self) -> None:
        """Cancel every unfinished job and wait for all of them to end."""
        runs = list(self._runs.values())
        for run in runs:
            self._cancel_run(run)
        tasks = [run.task for run in runs if run.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _cancel_run(self, run: _JobRun) -> None:
        if run.cancel_requested or run.job.state.is_terminal:
            return
        run.cancel_requested = True
        logger.info(f"[JOB {run.job.id}] Cancellation requested")
        if run.job.state == JobState.PENDING:
            # Never started: the task may not get to run its own handlers
            self._finish(run, JobState.CANCELLED, DoneEvent(success=False, cancelled=True))
        if run.task is not None:
            run.task.cancel()

    def _emit(self, run: _JobRun, event: Event) -> None:
        if isinstance(event, ProgressEvent):
            run.job.percent = event.percent
        run.channel.publish(event)

    async def _execute(self, run: _JobRun, spec: JobSpec) -> None:
        try:
            async with self._semaphore:
                await self._run_pipeline(run, spec)
        except asyncio.CancelledError:
            # Cancelled while still queued for a slot
            self._finish(run, JobState.CANCELLED, DoneEvent(success=False, cancelled=True))

    async def _run_pipeline(self, run: _JobRun, spec: JobSpec) -> None:
        job = run.job
        if run.cancel_requested:
            return
        job.transition_to(JobState.RUNNING)
        logger.info(f"[JOB {job.id}] Started")
        self._emit(run, ProgressEvent(percent=0.0, message="Started"))

        pipeline = self._pipeline_factory(
            job.id,
            spec,
            lambda event: self._emit(run, event),
            cancel_check=lambda: run.cancel_requested,
            settings=self.settings,
        )

        try:
            output_path = await pipeline.run()
        except asyncio.CancelledError:
            logger.info(f"[JOB {job.id}] Cancelled")
            self._finish(run, JobState.CANCELLED, DoneEvent(success=False, cancelled=True))
            return
        except OverlayError as e:
            logger.error(f"[JOB {job.id}] Failed: {e.code} {e.message}")
            job.error_code = e.code
            job.error_message = e.message
            self._finish(run, JobState.FAILED, ErrorEvent(message=e.message, code=e.code))
            return
        except Exception as e:
            logger.exception(f"[JOB {job.id}] Unexpected error")
            job.error_code = "INTERNAL_ERROR"
            job.error_message = str(e) or e.__class__.__name__
            self._finish(run, JobState.FAILED, ErrorEvent(message=job.error_message, code=job.error_code))
            return

        job.output_path = str(output_path) if output_path is not None else None
        self._emit(run, LogEvent(stream="system", message=f"Output written to {job.output_path}"))
        self._finish(run, JobState.DONE, DoneEvent(success=True))

    def _finish(self, run: _JobRun, state: JobState, event: Event) -> None:
        job = run.job
        if job.state.is_terminal:
            return
        job.transition_to(state)
        self.store.mark_finished(job)
        self._runs.pop(job.id, None)
        run.channel.publish(event)
        logger.info(f"[JOB {job.id}] Finished with state {state.value}")
