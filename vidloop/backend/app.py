"""Backend FastAPI application for the media loop service.

This module provides a thin HTTP layer over the loop service.
Planning and execution are delegated to the services layer.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, File, HTTPException, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field

from vidloop.backend.services.duration import Duration
from vidloop.backend.services.errors import (
    InvalidDurationError,
    NoStrategyError,
    PlanValidationError,
    UnsupportedMediaError,
    UnsupportedStrategyError,
)
from vidloop.backend.services.ffmpeg_runner import FFmpegRunner
from vidloop.backend.services.file_manager import FileManager, is_safe_filename
from vidloop.backend.services.job_store import InMemoryJobStore
from vidloop.backend.services.loop_planner import LoopPlanner, LoopRequest
from vidloop.backend.services.loop_service import LoopService
from vidloop.backend.services.loop_strategy import ALLOWED_OUTPUT_FORMATS, is_output_format_allowed
from vidloop.backend.services.storage import SpacesStorage
from vidloop.backend.utils.constant import (
    DEFAULT_CROSSFADE_SECONDS,
    FFMPEG_MAX_CONCURRENT,
    FFMPEG_TIMEOUT_SECONDS,
    JOB_TTL_SECONDS,
    MAX_UPLOAD_BYTES,
    OUTPUT_DIR,
    UPLOADS_DIR,
)

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

# --- Service layer setup ---
_job_store = InMemoryJobStore()
_file_manager = FileManager(UPLOADS_DIR, OUTPUT_DIR)
_ffmpeg_runner = FFmpegRunner(timeout_seconds=FFMPEG_TIMEOUT_SECONDS)
_loop_service = LoopService(
    job_store=_job_store,
    file_manager=_file_manager,
    planner=LoopPlanner(),
    ffmpeg_runner=_ffmpeg_runner,
    storage=SpacesStorage.from_env(),
    max_workers=FFMPEG_MAX_CONCURRENT,
    ttl_seconds=float(JOB_TTL_SECONDS),
)

_file_manager.ensure_dirs()

# Job fields exposed by the status endpoint
STATUS_FIELDS = (
    "status",
    "progress",
    "est_seconds_remaining",
    "strategy",
    "total_seconds",
    "download_url",
    "remote_url",
    "error",
)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    _loop_service.shutdown(wait=False)


app = FastAPI(lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


class DurationBody(BaseModel):
    hours: float = Field(0, ge=0)
    minutes: float = Field(0, ge=0)
    seconds: float = Field(0, ge=0)


class ProcessBody(BaseModel):
    """JSON body of ``POST /api/process``."""

    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(alias="filePath")
    output_format: str = Field(alias="outputFormat")
    duration: DurationBody
    crossfade: bool = True
    crossfade_duration: float = Field(DEFAULT_CROSSFADE_SECONDS, ge=0, alias="crossfadeDuration")


def is_upload_type_allowed(content_type: str) -> bool:
    """Return True for audio/*, video/* and image/gif upload content types."""
    content_type = content_type.lower()
    return (
        content_type.startswith("audio/")
        or content_type.startswith("video/")
        or content_type == "image/gif"
    )


@app.post("/api/upload")
async def upload(file: UploadFile = File(...)) -> dict[str, Any]:
    """Store an uploaded audio, video or GIF file.

    Args:
        file: The uploaded file.

    Returns:
        The stored file's name, path, size and MIME type.

    Raises:
        HTTPException: 400 for a disallowed content type, 413 for oversized files.
    """
    content_type = file.content_type or ""
    if not is_upload_type_allowed(content_type):
        logging.warning("Rejected upload %s with content type %s", file.filename, content_type)
        raise HTTPException(status_code=400, detail="Only audio, video, and gif files are allowed")

    contents = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(contents) > MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)} MB limit",
        )

    try:
        path = _file_manager.save_upload(file.filename or "", contents)
    except OSError as e:
        logging.error("Failed to store upload %s: %s", file.filename, e)
        raise HTTPException(status_code=500, detail="Failed to store upload.")

    return {
        "message": "File uploaded successfully",
        "file": {
            "name": file.filename,
            "path": str(path),
            "size": len(contents),
            "mimetype": content_type,
        },
    }


@app.post("/api/process", status_code=202)
def process(body: ProcessBody) -> dict[str, Any]:
    """Plan a loop for an uploaded file and queue it for rendering.

    All planning errors are reported here, before any job is created.

    Args:
        body: Processing request.

    Returns:
        The job ID and its initial status.

    Raises:
        HTTPException: 400/404/415 for invalid requests, 500 for planner faults.
    """
    if not is_output_format_allowed(body.output_format):
        raise HTTPException(
            status_code=400,
            detail=(
                f"Unsupported output format: {body.output_format}. "
                f"Expected one of: {', '.join(sorted(ALLOWED_OUTPUT_FORMATS))}"
            ),
        )

    try:
        input_path = _file_manager.resolve_upload(body.file_path)
    except ValueError as e:
        logging.warning("Rejected process request: %s", e)
        raise HTTPException(status_code=400, detail="Invalid file path")
    if not input_path.is_file():
        raise HTTPException(status_code=404, detail="File not found")

    # Opportunistic cleanup of expired jobs and their outputs
    _loop_service.cleanup_expired_jobs()

    duration = Duration(
        hours=body.duration.hours,
        minutes=body.duration.minutes,
        seconds=body.duration.seconds,
    )
    job_id = uuid.uuid4().hex
    output_name = _file_manager.output_name_for(
        input_path,
        body.output_format,
        duration,
        job_id=job_id,
    )
    request = LoopRequest(
        input_path=input_path,
        output_path=_file_manager.output_path(output_name),
        output_format=body.output_format,
        duration=duration,
        crossfade=body.crossfade,
        crossfade_seconds=body.crossfade_duration,
    )

    try:
        job = _loop_service.submit(request, job_id=job_id)
    except UnsupportedMediaError as e:
        raise HTTPException(status_code=415, detail=str(e))
    except (InvalidDurationError, PlanValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (NoStrategyError, UnsupportedStrategyError) as e:
        logging.error("Planner fault for %s: %s", input_path, e, exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return {"message": "Processing started", "jobId": job["job_id"], "status": job["status"]}


@app.get("/api/status/{job_id}")
def get_status(job_id: str) -> dict[str, Any]:
    """Return the current state of a loop job.

    Args:
        job_id: The unique identifier for the job.

    Returns:
        The job's status, progress and result, or a 404 JSONResponse if not found.
    """
    job = _loop_service.get_job(job_id)
    if not job:
        logging.warning("Status request for invalid job_id: %s", job_id)
        return JSONResponse({"error": "Invalid job_id"}, status_code=404)
    return {"jobId": job_id, **{key: job.get(key) for key in STATUS_FIELDS}}


@app.delete("/api/jobs/{job_id}")
def cancel_job(job_id: str) -> dict[str, Any]:
    """Cancel a job that is still queued.

    Args:
        job_id: The unique identifier for the job.

    Returns:
        The cancelled job's status, 404 for unknown jobs or 409 once it has started.
    """
    job = _loop_service.get_job(job_id)
    if not job:
        return JSONResponse({"error": "Invalid job_id"}, status_code=404)
    if not _loop_service.cancel(job_id):
        return JSONResponse(
            {"error": f"Job cannot be cancelled in status {job['status']}"},
            status_code=409,
        )
    return {"jobId": job_id, "status": "cancelled"}


@app.get("/api/download/{file_name}")
def download(file_name: str) -> Response:
    """Serve a rendered loop for download.

    Args:
        file_name: The output file name.

    Returns:
        A FileResponse with the file, or a JSONResponse with an error.
    """
    if not is_safe_filename(file_name):
        logging.warning("Download request blocked for potentially unsafe filename: %s", file_name)
        return JSONResponse({"error": "Invalid filename"}, status_code=400)

    if not _file_manager.output_exists(file_name):
        logging.warning("Download request failed: File not found %s", file_name)
        return JSONResponse({"error": "File not found"}, status_code=404)

    path = _file_manager.output_path(file_name)
    logging.info("Serving file %s for download", path)
    return FileResponse(path, filename=file_name)


app.mount("/processed", StaticFiles(directory=OUTPUT_DIR), name="processed")
