"""Loop job orchestration service.

Coordinates planning, job state, the ffmpeg worker pool and remote
storage. Planning happens in the caller's thread so every validation
error is raised before a job exists; only the ffmpeg run is queued.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from vidloop.backend.services.command_runner import ProgressInfo
from vidloop.backend.services.errors import ExecutionFailure
from vidloop.backend.services.ffmpeg_runner import FFmpegRunnerProtocol
from vidloop.backend.services.file_manager import FileManager
from vidloop.backend.services.job_store import InMemoryJobStore, JobStatus
from vidloop.backend.services.loop_planner import LoopPlanner, LoopRequest, PlannedLoop
from vidloop.backend.services.storage import SpacesStorage


class LoopService:
    """Orchestrates loop jobs.

    Each job gets one worker slot in a bounded thread pool, so at most
    ``max_workers`` ffmpeg processes run at once. The ``Future`` of a
    queued job is kept as its cancellation handle.
    """

    def __init__(
        self,
        job_store: InMemoryJobStore,
        file_manager: FileManager,
        planner: LoopPlanner,
        ffmpeg_runner: FFmpegRunnerProtocol,
        *,
        storage: SpacesStorage | None = None,
        max_workers: int = 2,
        ttl_seconds: float = 3600.0,
    ) -> None:
        """Initialize loop service.

        Args:
            job_store: Storage for job state.
            file_manager: Handler for file operations.
            planner: Loop planner.
            ffmpeg_runner: Plan executor.
            storage: Optional remote storage for finished outputs.
            max_workers: Number of concurrent ffmpeg runs.
            ttl_seconds: Time-to-live for finished jobs in seconds.
        """
        self._job_store = job_store
        self._file_manager = file_manager
        self._planner = planner
        self._ffmpeg_runner = ffmpeg_runner
        self._storage = storage
        self._ttl_seconds = ttl_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ffmpeg")
        self._futures: dict[str, Future[None]] = {}
        self._futures_lock = threading.Lock()

    @property
    def job_store(self) -> InMemoryJobStore:
        return self._job_store

    @property
    def file_manager(self) -> FileManager:
        return self._file_manager

    def cleanup_expired_jobs(self, now: float | None = None) -> list[str]:
        """Remove finished jobs older than the TTL, along with their outputs.

        Args:
            now: Current timestamp (defaults to time.time()).

        Returns:
            IDs of the removed jobs.
        """
        current_time = now if now is not None else time.time()
        return self._file_manager.cleanup_expired_jobs(
            self._job_store,
            current_time,
            self._ttl_seconds,
        )

    def submit(self, request: LoopRequest, *, job_id: str | None = None) -> dict[str, Any]:
        """Plan ``request`` and queue it for execution.

        Args:
            request: Loop request.
            job_id: Optional job identifier; generated when omitted.

        Returns:
            The created job record.

        Raises:
            LoopError: Any planner error; no job is created in that case.
        """
        planned = self._planner.plan(request)
        job_id = job_id or uuid.uuid4().hex
        output_name = request.output_path.name

        job = self._job_store.create_job(
            job_id,
            input_path=str(request.input_path),
            output_name=output_name,
            media_class=planned.media.media_class.value,
            strategy=planned.strategy.value,
            total_seconds=planned.total_seconds,
            plan=planned.plan.describe(),
        )
        logging.info("Job %s: Queued %s -> %s", job_id, planned.strategy.value, output_name)

        with self._futures_lock:
            future = self._executor.submit(self.run_job, job_id, planned)
            self._futures[job_id] = future
        future.add_done_callback(lambda _f: self._forget(job_id))
        return job

    def _forget(self, job_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(job_id, None)

    def cancel(self, job_id: str) -> bool:
        """Cancel a job that has not started running.

        Args:
            job_id: The job identifier.

        Returns:
            True if the job was cancelled, False if it is running, finished or unknown.
        """
        with self._futures_lock:
            future = self._futures.get(job_id)
        if future is None or not future.cancel():
            return False
        self._job_store.record_cancelled(job_id)
        logging.info("Job %s: Cancelled before start", job_id)
        return True

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        """Get job state.

        Args:
            job_id: The job identifier.

        Returns:
            Job state dictionary or None if not found.
        """
        return self._job_store.get_job(job_id)

    def run_job(self, job_id: str, planned: PlannedLoop) -> None:
        """Execute a planned loop and record the outcome.

        Never raises; failures are recorded on the job.

        Args:
            job_id: The job identifier.
            planned: Planner output for the job.
        """
        plan = planned.plan
        self._job_store.set_status(job_id, JobStatus.RUNNING)
        logging.info("Job %s: Running %s", job_id, plan.describe())

        def on_progress(progress: ProgressInfo) -> None:
            self._job_store.update_progress(job_id, progress.percent, progress.est_seconds_remaining)

        try:
            self._ffmpeg_runner.run_plan(plan, on_progress)
        except ExecutionFailure as e:
            logging.error("Job %s: %s (command: %s)", job_id, e, e.command)
            self._job_store.record_failure(job_id, str(e))
            return
        except Exception as e:
            logging.error("Job %s: Unhandled error running plan: %s", job_id, e, exc_info=True)
            self._job_store.record_failure(job_id, f"Unexpected error: {e}")
            return

        output_name = plan.output_path.name
        remote_url = self._upload(job_id, plan.output_path, output_name)
        self._job_store.record_success(job_id, f"/api/download/{output_name}", remote_url)
        logging.info("Job %s: Finished, output %s", job_id, plan.output_path)

    def _upload(self, job_id: str, local_path: Path, name: str) -> str | None:
        if self._storage is None:
            return None
        try:
            return self._storage.upload(local_path, name)
        except (BotoCoreError, ClientError, OSError) as e:
            logging.error("Job %s: Upload to remote storage failed: %s", job_id, e)
            return None

    def shutdown(self, *, wait: bool = True) -> None:
        """Cancel queued jobs and release the worker pool."""
        with self._futures_lock:
            pending = list(self._futures.items())
        for job_id, future in pending:
            if future.cancel():
                self._job_store.record_cancelled(job_id)
        self._executor.shutdown(wait=wait)
