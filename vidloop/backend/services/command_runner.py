"""Generic command execution with progress parsing.

Infrastructure module for running ffmpeg and parsing its progress output.
Commands are always argument lists; nothing goes through a shell.
"""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import IO, Protocol


@dataclass
class ProgressInfo:
    """Progress information from a running command.

    Attributes:
        percent: Completion percentage (0-100).
        est_seconds_remaining: Estimated seconds until completion, if known.
    """

    percent: float
    est_seconds_remaining: float | None


class ProgressCallback(Protocol):
    """Callback protocol for progress updates."""

    def __call__(self, progress: ProgressInfo) -> None:
        """Handle progress update.

        Args:
            progress: Current progress information.
        """
        ...


@dataclass
class CommandResult:
    """Outcome of a finished command.

    Attributes:
        returncode: Process exit status.
        timed_out: True if the process was killed by the timeout.
        stderr_tail: Last lines of stderr, for diagnostics.
    """

    returncode: int
    timed_out: bool = False
    stderr_tail: str = ""

    @property
    def ok(self) -> bool:
        """Return True for a zero exit status without a timeout."""
        return self.returncode == 0 and not self.timed_out


def parse_ffmpeg_time(time_str: str) -> float:
    """Parse FFmpeg time string (HH:MM:SS.ms) to seconds.

    Args:
        time_str: Time string in HH:MM:SS.ms format.

    Returns:
        Time in seconds.

    Raises:
        ValueError: If the time string format is invalid.
    """
    h, m, s_part = time_str.split(":")
    return int(h) * 3600 + int(m) * 60 + float(s_part)


class FFmpegProgressParser:
    """Parse FFmpeg stderr for progress information."""

    @staticmethod
    def parse_progress_line(
        line: str,
        expected_duration: float,
        start_time: float,
    ) -> ProgressInfo | None:
        """Parse a single FFmpeg output line for progress.

        Args:
            line: A line from FFmpeg stderr.
            expected_duration: Expected output duration in seconds.
            start_time: Wall-clock time when the command started.

        Returns:
            ProgressInfo if progress was found, None otherwise.
        """
        if "time=" not in line:
            return None

        t_str = line.split("time=")[1].split()[0]
        if t_str.startswith("N/A"):
            return None
        try:
            elapsed_output_time = parse_ffmpeg_time(t_str)
        except ValueError:
            logging.warning("Error parsing ffmpeg progress line '%s'", line.strip())
            return None

        pct = (
            min((elapsed_output_time / expected_duration) * 100.0, 100.0)
            if expected_duration > 0
            else 0.0
        )
        elapsed_wall = time.time() - start_time
        est_remain = (elapsed_wall / pct) * (100.0 - pct) if 0 < pct < 100 else None
        return ProgressInfo(percent=pct, est_seconds_remaining=est_remain)


class CommandRunner:
    """Execute commands with an optional timeout."""

    STDERR_TAIL_LINES = 20

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        """Initialize command runner.

        Args:
            timeout_seconds: Kill the process after this many seconds; None or 0 disables it.
        """
        self._timeout_seconds = timeout_seconds or None
        self._progress_parser = FFmpegProgressParser()

    def run_command(
        self,
        cmd: list[str],
        *,
        expected_duration: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> CommandResult:
        """Run a command with optional progress tracking.

        Args:
            cmd: Command-line arguments.
            expected_duration: Expected output duration for progress calculation.
            on_progress: Optional callback for progress updates.

        Returns:
            The command result.

        Raises:
            OSError: If the executable cannot be started.
        """
        return self._execute(cmd, expected_duration, on_progress)

    def _execute(
        self,
        cmd: list[str],
        expected_duration: float | None,
        on_progress: ProgressCallback | None,
    ) -> CommandResult:
        logging.info("Running command: %s", cmd)

        start_time = time.time()
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )

        timed_out = threading.Event()
        timer: threading.Timer | None = None
        if self._timeout_seconds:

            def kill() -> None:
                timed_out.set()
                proc.kill()

            timer = threading.Timer(self._timeout_seconds, kill)
            timer.daemon = True
            timer.start()

        tail: list[str] = []
        try:
            if proc.stderr:
                self._consume_stderr(proc.stderr, expected_duration, start_time, on_progress, tail)
            return_code = proc.wait()
        finally:
            if timer:
                timer.cancel()

        if timed_out.is_set():
            logging.error("Command timed out after %.0fs: %s", self._timeout_seconds, cmd)
        return CommandResult(
            returncode=return_code,
            timed_out=timed_out.is_set(),
            stderr_tail="".join(tail),
        )

    def _consume_stderr(
        self,
        stderr: IO[str],
        expected_duration: float | None,
        start_time: float,
        on_progress: ProgressCallback | None,
        tail: list[str],
    ) -> None:
        for line in stderr:
            tail.append(line)
            if len(tail) > self.STDERR_TAIL_LINES:
                del tail[0]
            if on_progress is None or not expected_duration:
                continue
            progress = self._progress_parser.parse_progress_line(
                line,
                expected_duration,
                start_time,
            )
            if progress:
                on_progress(progress)
