"""Error taxonomy for loop planning and execution.

Planner errors are raised synchronously so the HTTP layer can reject a
request before any job is queued. ``ExecutionFailure`` is raised by the
executor and recorded on the job instead of reaching the caller.
"""

from __future__ import annotations


class LoopError(Exception):
    """Base class for all loop planning and execution errors."""


class UnsupportedMediaError(LoopError):
    """Input content type is not audio/*, image/gif or video/*."""

    def __init__(self, mime_type: str) -> None:
        super().__init__(f"Unsupported media type: {mime_type or 'unknown'}")
        self.mime_type = mime_type


class InvalidDurationError(LoopError):
    """Requested duration does not add up to a positive number of seconds."""


class NoStrategyError(LoopError):
    """No loop strategy matches the given media class."""


class PlanValidationError(LoopError):
    """Plan parameters violate a constraint, e.g. a blend window that does not fit."""


class UnsupportedStrategyError(LoopError):
    """A strategy has no plan builder."""


class ExecutionFailure(LoopError):
    """The external engine exited non-zero or could not be started."""

    def __init__(self, message: str, *, returncode: int | None, command: list[str]) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.command = command
