"""FFmpeg plan runner.

Thin adapter that resolves a ``TransformationPlan`` into an ffmpeg argument
list and executes it through the generic ``CommandRunner``.
"""

from __future__ import annotations

import logging
from typing import Protocol

from vidloop.backend.services.command_runner import (
    CommandRunner,
    ProgressCallback,
    ProgressInfo,
)
from vidloop.backend.services.errors import ExecutionFailure
from vidloop.backend.services.transformation_plan import TransformationPlan
from vidloop.backend.utils.constant import FFMPEG_BIN

__all__ = [
    "FFmpegRunner",
    "FFmpegRunnerProtocol",
    "ProgressCallback",
    "ProgressInfo",
]


class FFmpegRunnerProtocol(Protocol):
    """Protocol for plan execution implementations."""

    def run_plan(
        self,
        plan: TransformationPlan,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Execute ``plan``.

        Raises:
            ExecutionFailure: If the engine fails.
        """
        ...


class FFmpegRunner:
    """Execute transformation plans with ffmpeg."""

    def __init__(
        self,
        *,
        ffmpeg_bin: str = FFMPEG_BIN,
        timeout_seconds: float | None = None,
        command_runner: CommandRunner | None = None,
    ) -> None:
        """Initialize FFmpeg runner.

        Args:
            ffmpeg_bin: ffmpeg executable.
            timeout_seconds: Optional per-run timeout.
            command_runner: Command runner (created from the other options if not provided).
        """
        self._ffmpeg_bin = ffmpeg_bin
        self._command_runner = command_runner or CommandRunner(timeout_seconds=timeout_seconds)

    def run_plan(
        self,
        plan: TransformationPlan,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Run ``plan`` to completion.

        Progress is reported against the plan's duration limit; plans without
        one only report completion.

        Args:
            plan: Plan to execute.
            on_progress: Optional callback for progress updates.

        Raises:
            ExecutionFailure: If ffmpeg cannot start, times out or exits non-zero.
        """
        cmd = plan.to_command(self._ffmpeg_bin)
        plan.output_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            result = self._command_runner.run_command(
                cmd,
                expected_duration=plan.duration_limit,
                on_progress=on_progress,
            )
        except OSError as e:
            logging.error("Could not start ffmpeg: %s. Command: %s", e, cmd)
            raise ExecutionFailure(f"Could not start ffmpeg: {e}", returncode=None, command=cmd) from e

        if not result.ok:
            reason = "timed out" if result.timed_out else f"exited with status {result.returncode}"
            logging.error(
                "ffmpeg %s for %s. Command: %s\n%s",
                reason,
                plan.strategy.value,
                cmd,
                result.stderr_tail,
            )
            raise ExecutionFailure(f"ffmpeg {reason}", returncode=result.returncode, command=cmd)

        if on_progress:
            on_progress(ProgressInfo(percent=100.0, est_seconds_remaining=0.0))
