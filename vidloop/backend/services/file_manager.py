"""Filesystem I/O for uploads, rendered outputs and cleanup."""

from __future__ import annotations

import logging
import secrets
import time
from pathlib import Path

from vidloop.backend.services.duration import Duration
from vidloop.backend.services.job_store import JobStoreProtocol
from vidloop.backend.services.loop_strategy import normalize_output_format


def is_safe_filename(name: str) -> bool:
    """Return True if ``name`` is a plain file name without path components."""
    return bool(name) and ".." not in name and "/" not in name and "\\" not in name


class FileManager:
    """Manage uploaded sources and rendered loops on local disk."""

    def __init__(self, uploads_dir: str | Path, output_dir: str | Path) -> None:
        """Initialize file manager.

        Args:
            uploads_dir: Directory for uploaded source files.
            output_dir: Directory for rendered outputs.
        """
        self._uploads_dir = Path(uploads_dir)
        self._output_dir = Path(output_dir)

    @property
    def uploads_dir(self) -> Path:
        """Get the upload directory."""
        return self._uploads_dir

    @property
    def output_dir(self) -> Path:
        """Get the output directory."""
        return self._output_dir

    def ensure_dirs(self) -> None:
        """Ensure the upload and output directories exist."""
        self._uploads_dir.mkdir(parents=True, exist_ok=True)
        self._output_dir.mkdir(parents=True, exist_ok=True)

    def save_upload(self, original_name: str, data: bytes) -> Path:
        """Store uploaded bytes under a unique ``<epoch-ms>-<random><ext>`` name.

        Args:
            original_name: Client-side file name; only its extension is kept.
            data: File content.

        Returns:
            Path to the stored file.
        """
        suffix = Path(original_name or "").suffix.lower()
        if not is_safe_filename(suffix):
            suffix = ""
        name = f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{suffix}"
        self._uploads_dir.mkdir(parents=True, exist_ok=True)
        path = self._uploads_dir / name
        path.write_bytes(data)
        logging.info("Saved upload %s (%d bytes) to %s", original_name, len(data), path)
        return path

    def resolve_upload(self, file_path: str) -> Path:
        """Resolve a caller-supplied path to a file inside the upload directory.

        Bare names are looked up in the upload directory.

        Args:
            file_path: Path returned by the upload endpoint, or a bare name.

        Returns:
            The resolved path (it may not exist).

        Raises:
            ValueError: If the path points outside the upload directory.
        """
        candidate = Path(file_path)
        if not candidate.is_absolute() and candidate.parent == Path("."):
            candidate = self._uploads_dir / candidate
        resolved = candidate.resolve()
        root = self._uploads_dir.resolve()
        if root not in resolved.parents:
            raise ValueError(f"File path is outside the upload directory: {file_path}")
        return resolved

    def output_name_for(
        self,
        input_path: Path,
        output_format: str,
        duration: Duration,
        *,
        job_id: str,
    ) -> str:
        """Build the output file name, e.g. ``clip_0h1m30s_<job_id>.mp3``.

        The job id keeps outputs of concurrent jobs on the same upload apart.

        Args:
            input_path: Source file.
            output_format: Requested output format.
            duration: Requested duration.
            job_id: Job that owns the output.

        Returns:
            Output file name.
        """
        fmt = normalize_output_format(output_format)
        return f"{input_path.stem}_{duration.label()}_{job_id}.{fmt}"

    def output_path(self, name: str) -> Path:
        """Return the full path of a rendered output.

        Args:
            name: Output file name.

        Returns:
            Path inside the output directory.
        """
        return self._output_dir / name

    def output_exists(self, name: str) -> bool:
        """Check whether a rendered output exists.

        Args:
            name: Output file name.

        Returns:
            True if the file exists and is a regular file.
        """
        path = self.output_path(name)
        return path.exists() and path.is_file()

    def remove_output(self, name: str) -> None:
        """Delete a rendered output if it exists.

        Args:
            name: Output file name.
        """
        path = self.output_path(name)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logging.warning("Could not delete output file %s: %s", path, e)

    def cleanup_expired_jobs(
        self,
        job_store: JobStoreProtocol,
        now: float,
        ttl_seconds: float,
    ) -> list[str]:
        """Remove expired jobs and their output files.

        Args:
            job_store: Job store to query for expired jobs.
            now: Current timestamp.
            ttl_seconds: Time-to-live in seconds.

        Returns:
            IDs of the removed jobs.
        """
        expired_ids = job_store.list_expired_jobs(now, ttl_seconds)
        for job_id in expired_ids:
            job = job_store.remove_job(job_id)
            output_name = job.get("output_name") if job else None
            if output_name:
                self.remove_output(output_name)
                logging.info("Job %s: Expired, removed %s", job_id, output_name)
        return expired_ids
