"""Job state management service.

Provides thread-safe storage and manipulation of loop job state.
"""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Any, Protocol


class JobStatus(str, Enum):
    """Lifecycle states of a loop job."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_finished(self) -> bool:
        """Return True for terminal states."""
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobStoreProtocol(Protocol):
    """Protocol for job storage implementations."""

    def create_job(self, job_id: str, **fields: Any) -> dict[str, Any]:
        """Create a queued job."""
        ...

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        """Get a snapshot of the job state."""
        ...

    def set_status(self, job_id: str, status: JobStatus) -> None:
        """Update job status."""
        ...

    def update_progress(self, job_id: str, percent: float, est_seconds: float | None) -> None:
        """Update conversion progress."""
        ...

    def record_success(self, job_id: str, download_url: str, remote_url: str | None) -> None:
        """Mark the job succeeded."""
        ...

    def record_failure(self, job_id: str, error: str) -> None:
        """Mark the job failed."""
        ...

    def remove_job(self, job_id: str) -> dict[str, Any] | None:
        """Remove job from store."""
        ...

    def list_expired_jobs(self, now: float, ttl_seconds: float) -> list[str]:
        """Return finished job IDs older than the TTL."""
        ...


class InMemoryJobStore:
    """Thread-safe in-memory job storage.

    Readers get copies, so a snapshot never changes under a request
    handler while a worker updates the job.
    """

    def __init__(self) -> None:
        """Initialize empty job store."""
        self._jobs: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    @property
    def jobs(self) -> dict[str, dict[str, Any]]:
        """Direct access to the underlying records, for tests and diagnostics."""
        return self._jobs

    def create_job(self, job_id: str, **fields: Any) -> dict[str, Any]:
        """Create a new queued job.

        Args:
            job_id: Unique identifier for the job.
            **fields: Extra fields stored on the record (input path, strategy, ...).

        Returns:
            A copy of the created record.
        """
        record: dict[str, Any] = {
            "job_id": job_id,
            "status": JobStatus.QUEUED.value,
            "progress": 0.0,
            "est_seconds_remaining": None,
            "download_url": None,
            "remote_url": None,
            "error": None,
            "created_at": time.time(),
            "finished_at": None,
        }
        record.update(fields)
        with self._lock:
            self._jobs[job_id] = record
            return dict(record)

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        """Get job state as a dictionary.

        Args:
            job_id: The job identifier.

        Returns:
            A copy of the job record or None if not found.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            return dict(job) if job is not None else None

    def has_job(self, job_id: str) -> bool:
        """Check if job exists."""
        with self._lock:
            return job_id in self._jobs

    def set_status(self, job_id: str, status: JobStatus) -> None:
        """Update job status.

        Args:
            job_id: The job identifier.
            status: New status.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job:
                job["status"] = status.value
                if status.is_finished:
                    job["finished_at"] = time.time()

    def update_progress(self, job_id: str, percent: float, est_seconds: float | None) -> None:
        """Update conversion progress.

        Args:
            job_id: The job identifier.
            percent: Completion percentage.
            est_seconds: Estimated seconds remaining.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job:
                job["progress"] = round(percent, 2)
                job["est_seconds_remaining"] = (
                    round(est_seconds) if est_seconds is not None else None
                )

    def record_success(
        self,
        job_id: str,
        download_url: str,
        remote_url: str | None = None,
    ) -> None:
        """Mark the job succeeded.

        Args:
            job_id: The job identifier.
            download_url: Local download URL for the output.
            remote_url: Public URL in remote storage, if uploaded.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job:
                job.update({
                    "status": JobStatus.SUCCEEDED.value,
                    "progress": 100.0,
                    "est_seconds_remaining": 0,
                    "download_url": download_url,
                    "remote_url": remote_url,
                    "finished_at": time.time(),
                })

    def record_failure(self, job_id: str, error: str) -> None:
        """Mark the job failed.

        Args:
            job_id: The job identifier.
            error: Message describing the failure.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job:
                job.update({
                    "status": JobStatus.FAILED.value,
                    "est_seconds_remaining": None,
                    "error": error,
                    "finished_at": time.time(),
                })

    def record_cancelled(self, job_id: str) -> None:
        """Mark the job cancelled."""
        self.set_status(job_id, JobStatus.CANCELLED)

    def remove_job(self, job_id: str) -> dict[str, Any] | None:
        """Remove job from store.

        Args:
            job_id: The job identifier.

        Returns:
            The removed record, or None if it did not exist.
        """
        with self._lock:
            return self._jobs.pop(job_id, None)

    def list_expired_jobs(self, now: float, ttl_seconds: float) -> list[str]:
        """Return job IDs that are finished and older than the TTL.

        Args:
            now: Current timestamp.
            ttl_seconds: Time-to-live in seconds.

        Returns:
            List of expired job IDs.
        """
        expired: list[str] = []
        with self._lock:
            for job_id, job_data in self._jobs.items():
                if not JobStatus(job_data["status"]).is_finished:
                    continue
                if now - float(job_data["created_at"]) > ttl_seconds:
                    expired.append(job_id)
        return expired
