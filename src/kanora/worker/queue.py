"""In-process job queue driving library scans and file imports.

A single worker task pulls jobs from a FIFO deque and runs them one at a
time, so every catalog mutation is serialized. Failed jobs are retried with
exponential backoff until they run out of attempts.

Typical usage example:
    queue = JobQueue(scanner, scan_store)
    queue.start()
    scan_id = await queue.enqueue_scan(["/srv/music"])
    ...
    await queue.close()
"""

import asyncio
import os
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Set

from loguru import logger

from kanora.core.config import settings
from kanora.core.exceptions import JobExhausted, QueueClosed
from kanora.core.models import ScanStatus
from kanora.core.scan_store import ScanRunStore
from kanora.worker.scanner import LibraryScanner


class JobType(str, Enum):
    SCAN_LIBRARY = "scan_library"
    IMPORT_FILE = "import_file"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    REQUEUED = "requeued"  # waiting out its backoff delay
    COMPLETED = "completed"
    FAILED_PERMANENTLY = "failed_permanently"


@dataclass
class Job:
    """A unit of work owned by the queue.

    attempts counts failed runs; a job that succeeds on its third run ends
    with attempts == 2.
    """

    type: JobType
    payload: Dict[str, Any]
    max_attempts: int = 3
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    attempts: int = 0
    status: JobStatus = JobStatus.QUEUED
    error: Optional[str] = None

    @property
    def scan_run_id(self) -> Optional[str]:
        return self.payload.get("scan_run_id")

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED_PERMANENTLY)


class JobQueue:
    """FIFO job queue with one worker and retry/backoff.

    Attributes:
        scanner: Executes scan and import jobs.
        scan_store: ScanRun persistence, updated on job start/finish.
        max_attempts: Runs allowed per job before it is dropped.
        backoff_base: Seconds multiplied by 2^attempts before a retry.
    """

    def __init__(
        self,
        scanner: LibraryScanner,
        scan_store: ScanRunStore,
        max_attempts: int = settings.JOB_MAX_ATTEMPTS,
        backoff_base: float = settings.JOB_BACKOFF_BASE_SECONDS,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.scanner = scanner
        self.scan_store = scan_store
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base

        self._pending: Deque[Job] = deque()
        self._cond = asyncio.Condition()
        self._retry_tasks: Set[asyncio.Task] = set()
        self._worker: Optional[asyncio.Task] = None
        self._closed = False
        self._unfinished = 0
        self._all_done = asyncio.Event()
        self._all_done.set()
        self.current_job: Optional[Job] = None

        # scan_run_id -> ImportFile jobs not yet terminal
        self._outstanding: Dict[str, int] = {}
        self._closing_runs: Set[str] = set()

    # ========== Lifecycle ==========

    def start(self) -> None:
        """Start the worker task on the running event loop."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="kanora-job-worker")
            logger.info("Job queue worker started")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def join(self) -> None:
        """Wait until every submitted job has completed or failed permanently."""
        await self._all_done.wait()

    async def close(self) -> None:
        """Stop accepting jobs, drain the queue and stop the worker.

        The in-flight job and any pending retries are allowed to finish.
        """
        if self._closed:
            return
        self._closed = True
        logger.info(f"Closing job queue ({self._unfinished} unfinished jobs)")
        if self._worker is not None and not self._worker.done():
            await self.join()
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        logger.info("Job queue closed")

    # ========== Submission ==========

    async def submit(self, job: Job) -> Job:
        if self._closed:
            raise QueueClosed("Job queue is closed")
        self._unfinished += 1
        self._all_done.clear()
        await self._push(job)
        logger.debug(f"Queued job {job.id} ({job.type.value})")
        return job

    async def enqueue_scan(self, paths: List[str]) -> str:
        """Create a Pending ScanRun and queue a ScanLibrary job for it.

        Returns:
            The ScanRun id callers poll for progress.
        """
        if self._closed:
            raise QueueClosed("Job queue is closed")
        run = await self.scan_store.create_run(ScanStatus.PENDING)
        await self.submit(
            Job(
                type=JobType.SCAN_LIBRARY,
                payload={"scan_run_id": run.id, "paths": list(paths)},
                max_attempts=self.max_attempts,
            )
        )
        return run.id

    async def enqueue_file_import(self, scan_run_id: str, file_path: str) -> Job:
        if self._closed:
            raise QueueClosed("Job queue is closed")
        if scan_run_id:
            self._outstanding[scan_run_id] = self._outstanding.get(scan_run_id, 0) + 1
        return await self.submit(
            Job(
                type=JobType.IMPORT_FILE,
                payload={"scan_run_id": scan_run_id, "file_path": str(file_path)},
                max_attempts=self.max_attempts,
            )
        )

    async def complete_run_when_drained(self, scan_run_id: str) -> None:
        """Mark a run Completed once its queued ImportFile jobs are terminal.

        Completes immediately when nothing is outstanding for the run.
        """
        if self._outstanding.get(scan_run_id):
            self._closing_runs.add(scan_run_id)
            logger.info(
                f"Scan run {scan_run_id} completes after "
                f"{self._outstanding[scan_run_id]} queued imports"
            )
            return
        await self._complete_run(scan_run_id)

    async def _complete_run(self, scan_run_id: str) -> None:
        await self.scan_store.update_run(scan_run_id, current_file=None, progress=100)
        await self.scan_store.mark_completed(scan_run_id)

    async def _push(self, job: Job) -> None:
        async with self._cond:
            job.status = JobStatus.QUEUED
            self._pending.append(job)
            self._cond.notify()

    # ========== Worker ==========

    async def _run(self) -> None:
        while True:
            async with self._cond:
                while not self._pending:
                    await self._cond.wait()
                job = self._pending.popleft()
            await self._execute(job)

    async def _execute(self, job: Job) -> None:
        job.status = JobStatus.RUNNING
        self.current_job = job
        try:
            await self._dispatch(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._handle_failure(job, e)
        else:
            job.status = JobStatus.COMPLETED
            job.error = None
            logger.info(f"Job {job.id} ({job.type.value}) completed")
            await self._finish(job)
        finally:
            self.current_job = None

    async def _dispatch(self, job: Job) -> None:
        if job.type == JobType.SCAN_LIBRARY:
            await self._process_scan_library(job)
        elif job.type == JobType.IMPORT_FILE:
            await self._process_import_file(job)
        else:
            raise ValueError(f"Unknown job type: {job.type}")

    async def _process_scan_library(self, job: Job) -> None:
        scan_run_id = job.payload["scan_run_id"]
        await self.scan_store.mark_processing(scan_run_id)
        await self.scanner.scan_library(scan_run_id, job.payload["paths"])
        await self.scan_store.mark_completed(scan_run_id)

    async def _process_import_file(self, job: Job) -> None:
        scan_run_id = job.payload["scan_run_id"]
        file_path = job.payload["file_path"]
        if scan_run_id:
            await self.scan_store.update_run(
                scan_run_id, current_file=os.path.basename(file_path)
            )
        await self.scanner.import_file(scan_run_id, file_path)
        if scan_run_id:
            await self.scan_store.record_file_result(scan_run_id, processed=1)

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        job.attempts += 1
        job.error = f"{type(error).__name__}: {error}"
        retryable = getattr(error, "retryable", True)

        if retryable and job.attempts < job.max_attempts:
            delay = self.backoff_base * (2 ** job.attempts)
            job.status = JobStatus.REQUEUED
            logger.warning(
                f"Job {job.id} ({job.type.value}) failed "
                f"(attempt {job.attempts}/{job.max_attempts}): {job.error}. "
                f"Retrying in {delay:.1f}s"
            )
            task = asyncio.create_task(self._requeue_after(job, delay))
            self._retry_tasks.add(task)
            task.add_done_callback(self._retry_tasks.discard)
            return

        job.status = JobStatus.FAILED_PERMANENTLY
        exhausted = JobExhausted(job.id, job.attempts, job.error)
        if retryable:
            logger.error(str(exhausted))
        else:
            logger.error(
                f"Job {job.id} ({job.type.value}) failed permanently: {job.error}"
            )
        try:
            await self._record_failure(job)
        finally:
            await self._finish(job)

    async def _record_failure(self, job: Job) -> None:
        scan_run_id = job.scan_run_id
        if not scan_run_id:
            return
        try:
            if job.type == JobType.SCAN_LIBRARY:
                await self.scan_store.mark_failed(scan_run_id)
            else:
                await self.scan_store.record_file_result(scan_run_id, errors=1)
        except Exception:
            logger.exception(f"Could not record failure of job {job.id} on scan run {scan_run_id}")

    async def _requeue_after(self, job: Job, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._push(job)

    async def _finish(self, job: Job) -> None:
        if job.type == JobType.IMPORT_FILE and job.scan_run_id:
            await self._release_run(job.scan_run_id)
        self._unfinished -= 1
        if self._unfinished <= 0:
            self._unfinished = 0
            self._all_done.set()

    async def _release_run(self, scan_run_id: str) -> None:
        """One ImportFile job of a run reached a terminal state."""
        remaining = self._outstanding.get(scan_run_id, 0) - 1
        if remaining > 0:
            self._outstanding[scan_run_id] = remaining
            return
        self._outstanding.pop(scan_run_id, None)
        try:
            if scan_run_id in self._closing_runs:
                self._closing_runs.discard(scan_run_id)
                await self._complete_run(scan_run_id)
            else:
                await self.scan_store.update_run(scan_run_id, current_file=None)
        except Exception:
            logger.exception(f"Could not update scan run {scan_run_id} after its imports drained")
