"""Tests for the service layer modules."""

from __future__ import annotations

import sys
import threading
import time
from pathlib import Path
from typing import Any

import pytest

from vidloop.backend.services.command_runner import (
    CommandResult,
    CommandRunner,
    FFmpegProgressParser,
    ProgressInfo,
    parse_ffmpeg_time,
)
from vidloop.backend.services.duration import Duration
from vidloop.backend.services.errors import ExecutionFailure, PlanValidationError
from vidloop.backend.services.ffmpeg_runner import FFmpegRunner
from vidloop.backend.services.file_manager import FileManager, is_safe_filename
from vidloop.backend.services.job_store import InMemoryJobStore, JobStatus
from vidloop.backend.services.loop_planner import LoopPlanner, LoopRequest
from vidloop.backend.services.loop_service import LoopService
from vidloop.backend.services.loop_strategy import Strategy
from vidloop.backend.services.media_classifier import MediaClass, MediaInfo
from vidloop.backend.services.plan_builder import LoopParams, build_plan

# --- JobStore tests ---


def test_job_store__create_job_initializes_state() -> None:
    """Create job queued with no progress."""
    store = InMemoryJobStore()
    job = store.create_job("job1", strategy="audio_hard_loop")

    assert store.has_job("job1")
    assert job["status"] == "queued"
    assert job["progress"] == 0.0
    assert job["strategy"] == "audio_hard_loop"
    assert job["finished_at"] is None


def test_job_store__get_job_returns_copy() -> None:
    """Return a snapshot that callers cannot mutate."""
    store = InMemoryJobStore()
    store.create_job("job1")

    snapshot = store.get_job("job1")
    assert snapshot is not None
    snapshot["status"] = "tampered"

    job = store.get_job("job1")
    assert job is not None
    assert job["status"] == "queued"
    assert store.get_job("missing") is None


def test_job_store__update_progress() -> None:
    """Round progress and estimated remaining seconds."""
    store = InMemoryJobStore()
    store.create_job("job1")

    store.update_progress("job1", 50.25, 10.4)

    job = store.get_job("job1")
    assert job is not None
    assert job["progress"] == 50.25
    assert job["est_seconds_remaining"] == 10


def test_job_store__lifecycle_success() -> None:
    """Move through running to succeeded with download URLs."""
    store = InMemoryJobStore()
    store.create_job("job1")

    store.set_status("job1", JobStatus.RUNNING)
    assert store.get_job("job1")["status"] == "running"  # type: ignore[index]

    store.record_success("job1", "/api/download/out.mp3", "https://cdn/out.mp3")
    job = store.get_job("job1")
    assert job is not None
    assert job["status"] == "succeeded"
    assert job["progress"] == 100.0
    assert job["download_url"] == "/api/download/out.mp3"
    assert job["remote_url"] == "https://cdn/out.mp3"
    assert job["finished_at"] is not None


def test_job_store__record_failure() -> None:
    """Store the error message on failure."""
    store = InMemoryJobStore()
    store.create_job("job1")

    store.record_failure("job1", "ffmpeg exited with status 1")

    job = store.get_job("job1")
    assert job is not None
    assert job["status"] == "failed"
    assert job["error"] == "ffmpeg exited with status 1"


def test_job_store__remove_job() -> None:
    """Remove the job and return its record."""
    store = InMemoryJobStore()
    store.create_job("job1", output_name="a.mp3")

    removed = store.remove_job("job1")

    assert removed is not None and removed["output_name"] == "a.mp3"
    assert not store.has_job("job1")
    assert store.remove_job("job1") is None


def test_job_store__list_expired_jobs() -> None:
    """List finished jobs older than the TTL only."""
    store = InMemoryJobStore()

    store.create_job("recent")
    store.record_success("recent", "/api/download/r.mp3")
    store.jobs["recent"]["created_at"] = 9.0

    store.create_job("old")
    store.record_failure("old", "boom")
    store.jobs["old"]["created_at"] = 0.0

    store.create_job("running")
    store.set_status("running", JobStatus.RUNNING)
    store.jobs["running"]["created_at"] = 0.0

    expired = store.list_expired_jobs(now=10.0, ttl_seconds=5.0)

    assert expired == ["old"]


# --- CommandRunner tests ---


def test_parse_ffmpeg_time() -> None:
    """Parse FFmpeg time string to seconds."""
    assert parse_ffmpeg_time("00:00:01.50") == 1.5
    assert parse_ffmpeg_time("00:01:30.00") == 90.0
    assert parse_ffmpeg_time("01:00:00.00") == 3600.0


def test_progress_parser__computes_percent() -> None:
    """Compute percent against the expected duration."""
    line = "frame=  10 fps=0.0 q=-1.0 size=  256kB time=00:00:45.00 bitrate= 46.6kbits/s"

    progress = FFmpegProgressParser.parse_progress_line(line, 90.0, start_time=0.0)

    assert progress is not None
    assert progress.percent == 50.0


def test_progress_parser__ignores_unrelated_and_na_lines() -> None:
    """Return None for lines without a usable time."""
    assert FFmpegProgressParser.parse_progress_line("Stream #0:0", 10.0, 0.0) is None
    assert FFmpegProgressParser.parse_progress_line("size=N/A time=N/A", 10.0, 0.0) is None
    assert FFmpegProgressParser.parse_progress_line("time=garbage x", 10.0, 0.0) is None


def test_command_result_ok() -> None:
    """Treat only a clean zero exit as success."""
    assert CommandResult(returncode=0).ok
    assert not CommandResult(returncode=1).ok
    assert not CommandResult(returncode=0, timed_out=True).ok


# --- FFmpegRunner tests ---


class FakeCommandRunner:
    """CommandRunner stand-in recording the command it was given."""

    def __init__(self, result: CommandResult | Exception) -> None:
        self.result = result
        self.calls: list[dict[str, Any]] = []

    def run_command(
        self,
        cmd: list[str],
        *,
        expected_duration: float | None = None,
        on_progress: Any = None,  # noqa: ANN401
    ) -> CommandResult:
        self.calls.append({"cmd": cmd, "expected_duration": expected_duration})
        if isinstance(self.result, Exception):
            raise self.result
        if on_progress:
            on_progress(ProgressInfo(percent=40.0, est_seconds_remaining=3.0))
        return self.result


def test_ffmpeg_runner__runs_plan_command(tmp_path: Path) -> None:
    """Resolve the plan to arguments and report completion."""
    plan = build_plan(
        Strategy.AUDIO_HARD_LOOP,
        LoopParams(input_path=tmp_path / "in.mp3", output_path=tmp_path / "out" / "o.mp3", total_seconds=12),
    )
    fake = FakeCommandRunner(CommandResult(returncode=0))
    runner = FFmpegRunner(ffmpeg_bin="/opt/ffmpeg", command_runner=fake)  # type: ignore[arg-type]
    seen: list[float] = []

    runner.run_plan(plan, lambda p: seen.append(p.percent))

    assert fake.calls[0]["cmd"] == plan.to_command("/opt/ffmpeg")
    assert fake.calls[0]["expected_duration"] == 12
    assert seen == [40.0, 100.0]
    assert (tmp_path / "out").is_dir()


def test_ffmpeg_runner__raises_on_nonzero_exit(tmp_path: Path) -> None:
    """Surface a non-zero exit as ExecutionFailure carrying the command."""
    plan = build_plan(
        Strategy.VIDEO_HARD_LOOP,
        LoopParams(input_path=tmp_path / "in.mp4", output_path=tmp_path / "o.mp4", total_seconds=3),
    )
    fake = FakeCommandRunner(CommandResult(returncode=1, stderr_tail="Invalid data"))
    runner = FFmpegRunner(command_runner=fake)  # type: ignore[arg-type]

    with pytest.raises(ExecutionFailure) as exc_info:
        runner.run_plan(plan)

    assert exc_info.value.returncode == 1
    assert exc_info.value.command == plan.to_command()


def test_ffmpeg_runner__raises_when_binary_missing(tmp_path: Path) -> None:
    """Wrap OSError from process start in ExecutionFailure."""
    plan = build_plan(
        Strategy.VIDEO_HARD_LOOP,
        LoopParams(input_path=tmp_path / "in.mp4", output_path=tmp_path / "o.mp4", total_seconds=3),
    )
    runner = FFmpegRunner(command_runner=FakeCommandRunner(FileNotFoundError("ffmpeg")))  # type: ignore[arg-type]

    with pytest.raises(ExecutionFailure) as exc_info:
        runner.run_plan(plan)

    assert exc_info.value.returncode is None


def test_ffmpeg_runner__reports_timeout(tmp_path: Path) -> None:
    """Fail a run that was killed by the timeout."""
    plan = build_plan(
        Strategy.VIDEO_HARD_LOOP,
        LoopParams(input_path=tmp_path / "in.mp4", output_path=tmp_path / "o.mp4", total_seconds=3),
    )
    fake = FakeCommandRunner(CommandResult(returncode=-9, timed_out=True))
    runner = FFmpegRunner(command_runner=fake)  # type: ignore[arg-type]

    with pytest.raises(ExecutionFailure, match="timed out"):
        runner.run_plan(plan)


# --- FileManager tests ---


def test_file_manager__ensure_dirs(tmp_path: Path) -> None:
    """Create upload and output directories."""
    manager = FileManager(tmp_path / "up", tmp_path / "out")

    manager.ensure_dirs()

    assert (tmp_path / "up").is_dir()
    assert (tmp_path / "out").is_dir()


def test_file_manager__save_upload_uses_unique_name(tmp_path: Path) -> None:
    """Store bytes under a generated name keeping only the extension."""
    manager = FileManager(tmp_path / "up", tmp_path / "out")

    first = manager.save_upload("My Song.MP3", b"abc")
    second = manager.save_upload("My Song.MP3", b"abc")

    assert first.parent == tmp_path / "up"
    assert first.suffix == ".mp3"
    assert first.read_bytes() == b"abc"
    assert first != second


def test_file_manager__resolve_upload(tmp_path: Path) -> None:
    """Resolve bare names and stored paths, reject escapes."""
    manager = FileManager(tmp_path / "up", tmp_path / "out")
    stored = manager.save_upload("a.wav", b"x")

    assert manager.resolve_upload(str(stored)) == stored.resolve()
    assert manager.resolve_upload(stored.name) == stored.resolve()
    with pytest.raises(ValueError):
        manager.resolve_upload(str(tmp_path / "elsewhere.wav"))
    with pytest.raises(ValueError):
        manager.resolve_upload(str(tmp_path / "up" / ".." / "x.wav"))


def test_file_manager__output_names(tmp_path: Path) -> None:
    """Name outputs after the source stem, duration, owning job and format."""
    manager = FileManager(tmp_path / "up", tmp_path / "out")

    name = manager.output_name_for(Path("/x/1700-42.wav"), "MP3", Duration(0, 1, 30), job_id="abc")
    other = manager.output_name_for(Path("/x/1700-42.wav"), "mp3", Duration(0, 1, 30), job_id="def")

    assert name == "1700-42_0h1m30s_abc.mp3"
    assert other != name
    assert manager.output_path(name) == tmp_path / "out" / name


def test_file_manager__output_exists_and_remove(tmp_path: Path) -> None:
    """Check and delete rendered outputs."""
    manager = FileManager(tmp_path / "up", tmp_path / "out")
    manager.ensure_dirs()
    (tmp_path / "out" / "a.mp3").write_bytes(b"data")

    assert manager.output_exists("a.mp3")
    assert not manager.output_exists("b.mp3")

    manager.remove_output("a.mp3")
    manager.remove_output("b.mp3")

    assert not manager.output_exists("a.mp3")


def test_is_safe_filename() -> None:
    """Reject names with path components."""
    assert is_safe_filename("clip_0h0m5s.mp4")
    assert not is_safe_filename("../etc/passwd")
    assert not is_safe_filename("a/b.mp4")
    assert not is_safe_filename("a\\b.mp4")
    assert not is_safe_filename("")


# --- LoopService tests ---


class StubClassifier:
    """Classifier stub returning a fixed MediaInfo."""

    def __init__(self, media_class: MediaClass) -> None:
        self.media_class = media_class

    def inspect(self, path: Path) -> MediaInfo:  # noqa: ARG002
        return MediaInfo(media_class=self.media_class, mime_type="test/x", has_audio=True)


class StubRunner:
    """Plan runner stub that can block, fail or succeed."""

    def __init__(self, *, error: Exception | None = None, gate: threading.Event | None = None) -> None:
        self.error = error
        self.gate = gate
        self.started = threading.Event()
        self.plans: list[Any] = []

    def run_plan(self, plan: Any, on_progress: Any = None) -> None:  # noqa: ANN401
        self.plans.append(plan)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        if on_progress:
            on_progress(ProgressInfo(percent=60.0, est_seconds_remaining=2.0))
        if self.error is not None:
            raise self.error


class StubStorage:
    def __init__(self) -> None:
        self.uploaded: list[tuple[Path, str]] = []

    def upload(self, local_path: Path, name: str) -> str:
        self.uploaded.append((local_path, name))
        return f"https://bucket.example/{name}"


def make_service(
    tmp_path: Path,
    runner: Any,  # noqa: ANN401
    *,
    media_class: MediaClass = MediaClass.AUDIO,
    storage: Any = None,  # noqa: ANN401
    max_workers: int = 1,
) -> LoopService:
    return LoopService(
        InMemoryJobStore(),
        FileManager(tmp_path / "up", tmp_path / "out"),
        LoopPlanner(classifier=StubClassifier(media_class)),  # type: ignore[arg-type]
        runner,
        storage=storage,
        max_workers=max_workers,
    )


def loop_request(tmp_path: Path, **overrides: Any) -> LoopRequest:  # noqa: ANN401
    values: dict[str, Any] = {
        "input_path": tmp_path / "up" / "in.mp3",
        "output_path": tmp_path / "out" / "in_0h0m10s.mp3",
        "output_format": "mp3",
        "duration": Duration(0, 0, 10),
        "crossfade": True,
        "crossfade_seconds": 2.0,
    }
    values.update(overrides)
    return LoopRequest(**values)


def wait_finished(service: LoopService, job_id: str) -> dict[str, Any]:
    for _ in range(500):
        job = service.get_job(job_id)
        if job and JobStatus(job["status"]).is_finished:
            return job
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


def test_loop_service__runs_job_to_success(tmp_path: Path) -> None:
    """Queue, run and record success with remote URL."""
    runner = StubRunner()
    storage = StubStorage()
    service = make_service(tmp_path, runner, storage=storage)

    try:
        job = service.submit(loop_request(tmp_path), job_id="job1")
        assert job["status"] == "queued"
        assert job["strategy"] == Strategy.AUDIO_CROSSFADE_LOOP.value

        done = wait_finished(service, "job1")
    finally:
        service.shutdown()

    assert done["status"] == "succeeded"
    assert done["progress"] == 100.0
    assert done["download_url"] == "/api/download/in_0h0m10s.mp3"
    assert done["remote_url"] == "https://bucket.example/in_0h0m10s.mp3"
    assert storage.uploaded == [(tmp_path / "out" / "in_0h0m10s.mp3", "in_0h0m10s.mp3")]


def test_loop_service__records_execution_failure(tmp_path: Path) -> None:
    """Mark the job failed when ffmpeg fails."""
    runner = StubRunner(error=ExecutionFailure("ffmpeg exited with status 1", returncode=1, command=["ffmpeg"]))
    service = make_service(tmp_path, runner)

    try:
        service.submit(loop_request(tmp_path), job_id="job1")
        done = wait_finished(service, "job1")
    finally:
        service.shutdown()

    assert done["status"] == "failed"
    assert "status 1" in done["error"]


def test_loop_service__records_unexpected_error(tmp_path: Path) -> None:
    """Mark the job failed on unexpected errors without crashing the worker."""
    service = make_service(tmp_path, StubRunner(error=RuntimeError("disk on fire")))

    try:
        service.submit(loop_request(tmp_path), job_id="job1")
        done = wait_finished(service, "job1")
    finally:
        service.shutdown()

    assert done["status"] == "failed"
    assert "disk on fire" in done["error"]


def test_loop_service__planner_errors_create_no_job(tmp_path: Path) -> None:
    """Raise validation errors synchronously and never queue the job."""
    runner = StubRunner()
    service = make_service(tmp_path, runner, media_class=MediaClass.VIDEO)

    try:
        with pytest.raises(PlanValidationError):
            service.submit(
                loop_request(tmp_path, output_format="mp4", duration=Duration(0, 0, 1)),
                job_id="job1",
            )
    finally:
        service.shutdown()

    assert service.get_job("job1") is None
    assert runner.plans == []


def test_loop_service__cancel_queued_job(tmp_path: Path) -> None:
    """Cancel a job waiting for a worker slot but not a running one."""
    gate = threading.Event()
    runner = StubRunner(gate=gate)
    service = make_service(tmp_path, runner, max_workers=1)

    try:
        service.submit(loop_request(tmp_path), job_id="running")
        assert runner.started.wait(timeout=5.0)
        service.submit(loop_request(tmp_path), job_id="waiting")

        assert service.cancel("waiting")
        assert not service.cancel("running")
        assert not service.cancel("unknown")

        gate.set()
        wait_finished(service, "running")
    finally:
        gate.set()
        service.shutdown()

    job = service.get_job("waiting")
    assert job is not None
    assert job["status"] == "cancelled"
    assert len(runner.plans) == 1


def test_loop_service__cleanup_expired_jobs(tmp_path: Path) -> None:
    """Remove expired jobs together with their output files."""
    service = make_service(tmp_path, StubRunner())
    service.file_manager.ensure_dirs()
    (tmp_path / "out" / "old.mp3").write_bytes(b"x")
    service.job_store.create_job("old", output_name="old.mp3")
    service.job_store.record_success("old", "/api/download/old.mp3")
    service.job_store.jobs["old"]["created_at"] = 0.0

    try:
        removed = service.cleanup_expired_jobs(now=10_000.0)
    finally:
        service.shutdown()

    assert removed == ["old"]
    assert not service.job_store.has_job("old")
    assert not (tmp_path / "out" / "old.mp3").exists()


# --- CommandRunner with real processes ---


def test_command_runner__reports_progress_and_exit_code() -> None:
    """Stream stderr progress and return the exit status."""
    script = "import sys; sys.stderr.write('size=1kB time=00:00:05.00 bitrate=1\\n'); sys.exit(3)"
    seen: list[ProgressInfo] = []

    result = CommandRunner().run_command(
        [sys.executable, "-c", script],
        expected_duration=10.0,
        on_progress=seen.append,
    )

    assert result.returncode == 3
    assert not result.ok
    assert "time=00:00:05.00" in result.stderr_tail
    assert [p.percent for p in seen] == [50.0]


def test_command_runner__kills_on_timeout() -> None:
    """Kill a process that outlives the timeout."""
    runner = CommandRunner(timeout_seconds=0.2)

    result = runner.run_command([sys.executable, "-c", "import time; time.sleep(10)"])

    assert result.timed_out
    assert not result.ok
