"""Duration normalization."""

from __future__ import annotations

from dataclasses import dataclass

from vidloop.backend.services.errors import InvalidDurationError


@dataclass(frozen=True)
class Duration:
    """Requested output length split into hours, minutes and seconds."""

    hours: float = 0
    minutes: float = 0
    seconds: float = 0

    def label(self) -> str:
        """Return a compact label such as ``0h1m30s`` for output file names."""
        return f"{_compact(self.hours)}h{_compact(self.minutes)}m{_compact(self.seconds)}s"


def _compact(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def normalize(duration: Duration) -> float:
    """Convert ``duration`` to total seconds.

    Args:
        duration: Structured duration.

    Returns:
        ``hours * 3600 + minutes * 60 + seconds``.

    Raises:
        InvalidDurationError: If the total is not positive.
    """
    total = duration.hours * 3600 + duration.minutes * 60 + duration.seconds
    if total <= 0:
        raise InvalidDurationError(f"Duration must be greater than zero, got {total} seconds")
    return float(total)
