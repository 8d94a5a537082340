"""In-process job manager: registry, FIFO admission queue and concurrency limit.

All bookkeeping runs on the event loop and never awaits while touching the
registry or queue, so admission, promotion and completion are serialized
without a lock. Pipelines run as separate tasks and only write to their own
job record.
"""

import asyncio
import logging
import math
import os
from collections import deque
from datetime import timedelta
from typing import Deque, Dict, Iterable, List, Optional, Set

from noteforge.errors import InternalError, NotFoundError, ValidationError
from noteforge.jobs.dispatcher import JobDispatcher
from noteforge.jobs.models import (
    JobRecord,
    JobState,
    JobStatusView,
    OutputFormat,
    UploadedInput,
    utcnow,
)
from noteforge.jobs.pipeline import PipelineExecutor
from noteforge.storage.temp_results import TempResultStore, remove_file

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal Server Error"


class JobManager(JobDispatcher):
    """Admits jobs without bound, runs at most ``concurrency_limit`` at once.

    Two independent retention windows apply: output files are deleted
    ``artifact_ttl_seconds`` after a job completes, and the record itself is
    evicted ``record_ttl_seconds`` after it was created. A record can
    therefore outlive its files.
    """

    def __init__(
        self,
        pipeline: PipelineExecutor,
        store: TempResultStore,
        concurrency_limit: int = 1,
        artifact_ttl_seconds: float = 20 * 60,
        record_ttl_seconds: float = 60 * 60,
        cleanup_interval_seconds: float = 10 * 60,
        queue_slot_seconds: int = 3,
    ):
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self._pipeline = pipeline
        self._store = store
        self._concurrency_limit = concurrency_limit
        self._artifact_ttl = artifact_ttl_seconds
        self._record_ttl = record_ttl_seconds
        self._cleanup_interval = cleanup_interval_seconds
        self._queue_slot_seconds = queue_slot_seconds

        self._jobs: Dict[str, JobRecord] = {}
        self._queue: Deque[str] = deque()
        self._active = 0
        self._workers: Set[asyncio.Task] = set()
        self._expiry_handles: Dict[str, asyncio.TimerHandle] = {}
        self._maintenance_task: Optional[asyncio.Task] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def concurrency_limit(self) -> int:
        return self._concurrency_limit

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    def job_ids(self) -> List[str]:
        return list(self._jobs)

    # ------------------------------------------------------------------
    # Client operations
    # ------------------------------------------------------------------

    async def submit(
        self,
        upload: Optional[UploadedInput],
        requested_formats: Iterable[OutputFormat] = (OutputFormat.DOCX,),
    ) -> str:
        if upload is None or not upload.path or not os.path.isfile(upload.path):
            raise ValidationError("No file uploaded")

        try:
            formats = frozenset(OutputFormat(f) for f in requested_formats)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if not formats:
            formats = frozenset({OutputFormat.DOCX})

        job = JobRecord(
            file_size_bytes=upload.size_bytes,
            original_name=upload.original_name,
            requested_formats=formats,
        )
        try:
            job.input_path = self._store.adopt_upload(job.id, upload.path)
        except OSError as e:
            raise InternalError(f"Failed to store upload: {e}") from e
        return self._admit(job)

    async def get_status(self, job_id: str) -> JobRecord:
        return self._get(job_id).model_copy(deep=True)

    async def status_view(self, job_id: str) -> JobStatusView:
        job = self._get(job_id)
        return JobStatusView(
            state=job.state,
            progress=job.progress,
            time_left=self.time_left(job),
            outputs={f.value: f in job.outputs for f in sorted(job.requested_formats)},
            error=job.error,
        )

    async def cancel(self, job_id: str) -> None:
        """Forget the job. A pipeline already running is not interrupted;
        its files are reclaimed by the expiry timer it schedules on completion."""
        job = self._get(job_id)
        self._forget(job_id)
        if job.state == JobState.PROCESSING:
            logger.info(f"Job {job_id} cancelled while processing; output will be unreachable")
            return
        self._cancel_expiry(job_id)
        self._store.remove_job_dir(job_id)
        logger.info(f"Job {job_id} cancelled")

    def time_left(self, job: JobRecord) -> int:
        """Seconds left, coarse: estimate minus elapsed, or queue slots ahead."""
        if job.state == JobState.PROCESSING and job.started_at is not None:
            elapsed_ms = (utcnow() - job.started_at).total_seconds() * 1000
            return max(0, math.ceil((job.estimated_duration_ms - elapsed_ms) / 1000))
        if job.state == JobState.QUEUED:
            try:
                position = self._queue.index(job.id)
            except ValueError:
                return 0
            return (position + 1) * self._queue_slot_seconds
        return 0

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def cleanup(self) -> int:
        """Evict records older than the record TTL. Returns how many."""
        horizon = utcnow() - timedelta(seconds=self._record_ttl)
        stale = [job_id for job_id, job in self._jobs.items() if job.created_at < horizon]
        for job_id in stale:
            job = self._forget(job_id)
            if job.state == JobState.QUEUED:
                self._store.remove_job_dir(job_id)
        if stale:
            logger.info(f"Evicted {len(stale)} stale job record(s)")
        return len(stale)

    def _schedule_expiry(self, job: JobRecord) -> None:
        loop = asyncio.get_running_loop()
        self._expiry_handles[job.id] = loop.call_later(
            self._artifact_ttl, self._expire_outputs, job
        )

    def _cancel_expiry(self, job_id: str) -> None:
        handle = self._expiry_handles.pop(job_id, None)
        if handle is not None:
            handle.cancel()

    def _expire_outputs(self, job: JobRecord) -> None:
        self._expiry_handles.pop(job.id, None)
        for path in job.outputs.values():
            remove_file(path)
        self._store.remove_job_dir(job.id)
        logger.debug(f"Deleted output files of job {job.id}")

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _get(self, job_id: str) -> JobRecord:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job not found")
        return job

    def _admit(self, job: JobRecord) -> str:
        self._jobs[job.id] = job
        self._queue.append(job.id)
        logger.info(f"Job added to queue: {job.id}. Queue length: {len(self._queue)}")
        self._promote()
        return job.id

    def _forget(self, job_id: str) -> JobRecord:
        job = self._jobs.pop(job_id)
        try:
            self._queue.remove(job_id)
        except ValueError:
            pass
        return job

    def _promote(self) -> None:
        """Start queued jobs in FIFO order while capacity allows."""
        while not self._closed and self._active < self._concurrency_limit and self._queue:
            job_id = self._queue.popleft()
            job = self._jobs.get(job_id)
            if job is None:
                continue
            job.start(self._pipeline.estimate(job))
            self._active += 1
            task = asyncio.create_task(self._run_job(job), name=f"job-{job_id}")
            self._workers.add(task)
            task.add_done_callback(self._workers.discard)

    async def _run_job(self, job: JobRecord) -> None:
        try:
            await self._pipeline.run(job)
        except Exception:
            logger.exception(f"Unhandled error in worker for job {job.id}")
            if not job.is_terminal:
                job.outputs.clear()
                self._store.remove_job_dir(job.id)
                job.fail(INTERNAL_ERROR_MESSAGE)
        finally:
            self._active -= 1
            if job.state == JobState.COMPLETED:
                self._schedule_expiry(job)
            self._promote()

    async def wait_idle(self) -> None:
        """Wait until nothing is queued or running."""
        while self._workers:
            await asyncio.gather(*list(self._workers), return_exceptions=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._closed = False
        self._maintenance_task = asyncio.create_task(self._maintenance_loop())

    async def stop(self) -> None:
        self._closed = True
        if self._maintenance_task:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None

        for job_id in list(self._expiry_handles):
            self._cancel_expiry(job_id)

        workers = list(self._workers)
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    async def _maintenance_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            self.cleanup()
            try:
                removed = await asyncio.to_thread(self._store.cleanup_expired)
            except OSError:
                logger.exception("Work directory sweep failed")
                continue
            if removed:
                logger.info(f"Removed {removed} expired work director(ies)")
