"""Project-wide constants and configuration."""

from __future__ import annotations

from .env_loader import env_float, env_int, load_project_env

# Load once (single source of truth)
_ENV = load_project_env()

# Storage locations
UPLOADS_DIR: str = _ENV.get("UPLOADS_DIR", "uploads")
OUTPUT_DIR: str = _ENV.get("OUTPUT_DIR", "processed")
MAX_UPLOAD_BYTES: int = env_int(_ENV, "MAX_UPLOAD_BYTES", 100 * 1024 * 1024)

# Job lifecycle and worker pool
JOB_TTL_SECONDS: int = env_int(_ENV, "JOB_TTL_SECONDS", 3600)
FFMPEG_MAX_CONCURRENT: int = max(1, env_int(_ENV, "FFMPEG_MAX_CONCURRENT", 2))
# 0 disables the timeout
FFMPEG_TIMEOUT_SECONDS: float = env_float(_ENV, "FFMPEG_TIMEOUT_SECONDS", 0.0)

# External binaries
FFMPEG_BIN: str = _ENV.get("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN: str = _ENV.get("FFPROBE_BIN", "ffprobe")
FILE_BIN: str = _ENV.get("FILE_BIN", "file")

DEFAULT_CROSSFADE_SECONDS: float = env_float(_ENV, "DEFAULT_CROSSFADE_SECONDS", 2.0)

# Remote storage (DigitalOcean Spaces); upload is skipped unless key and secret are set
SPACES_KEY: str = _ENV.get("SPACES_KEY", "")
SPACES_SECRET: str = _ENV.get("SPACES_SECRET", "")
SPACES_REGION: str = _ENV.get("SPACES_REGION", "nyc3")
SPACES_BUCKET: str = _ENV.get("SPACES_BUCKET", "")
