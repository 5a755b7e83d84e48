"""Loop strategy selection.

Decides which loop-construction algorithm applies to an input, based on
its media class, the requested output format and whether a crossfade was
asked for. First matching row wins:

    audio           crossfade     -> AUDIO_CROSSFADE_LOOP
    audio           no crossfade  -> AUDIO_HARD_LOOP
    animated image  (ignored)     -> IMAGE_HARD_LOOP
    video -> gif    (ignored)     -> VIDEO_TO_ANIMATED_IMAGE
    video           crossfade     -> VIDEO_CROSSFADE_LOOP
    video           no crossfade  -> VIDEO_HARD_LOOP
"""

from __future__ import annotations

from enum import Enum

from vidloop.backend.services.errors import NoStrategyError, PlanValidationError
from vidloop.backend.services.media_classifier import MediaClass

AUDIO_FORMATS = frozenset({"mp3", "wav", "aac", "m4a", "ogg", "flac"})
VIDEO_FORMATS = frozenset({"mp4", "mov", "mkv", "webm"})
ANIMATED_IMAGE_FORMATS = frozenset({"gif"})
ALLOWED_OUTPUT_FORMATS = AUDIO_FORMATS | VIDEO_FORMATS | ANIMATED_IMAGE_FORMATS


class Strategy(str, Enum):
    """Loop-construction algorithms."""

    AUDIO_CROSSFADE_LOOP = "audio_crossfade_loop"
    AUDIO_HARD_LOOP = "audio_hard_loop"
    IMAGE_HARD_LOOP = "image_hard_loop"
    VIDEO_TO_ANIMATED_IMAGE = "video_to_animated_image"
    VIDEO_CROSSFADE_LOOP = "video_crossfade_loop"
    VIDEO_HARD_LOOP = "video_hard_loop"

    @property
    def uses_crossfade(self) -> bool:
        """Return True for strategies that blend the loop boundary."""
        return self in (Strategy.AUDIO_CROSSFADE_LOOP, Strategy.VIDEO_CROSSFADE_LOOP)

    @property
    def output_formats(self) -> frozenset[str]:
        """Return the output formats this strategy can produce."""
        if self in (Strategy.AUDIO_CROSSFADE_LOOP, Strategy.AUDIO_HARD_LOOP):
            return AUDIO_FORMATS
        if self in (Strategy.VIDEO_CROSSFADE_LOOP, Strategy.VIDEO_HARD_LOOP):
            return VIDEO_FORMATS
        if self is Strategy.IMAGE_HARD_LOOP:
            # Re-encoded output: gif or a video container
            return ANIMATED_IMAGE_FORMATS | VIDEO_FORMATS
        return ANIMATED_IMAGE_FORMATS


def normalize_output_format(output_format: str) -> str:
    """Lower-case ``output_format`` and strip a leading dot."""
    return output_format.strip().lower().lstrip(".")


def is_output_format_allowed(output_format: str) -> bool:
    """Return True if the output format is one the service can produce.

    Args:
        output_format: Requested format, e.g. ``mp3`` or ``.gif``.

    Returns:
        True if the format is in the allowed set.
    """
    return normalize_output_format(output_format) in ALLOWED_OUTPUT_FORMATS


def is_animated_image_format(output_format: str) -> bool:
    """Return True if ``output_format`` is an animated-image format."""
    return normalize_output_format(output_format) in ANIMATED_IMAGE_FORMATS


def select_strategy(
    media_class: MediaClass,
    output_format: str,
    crossfade: bool,
) -> Strategy:
    """Choose the loop strategy for an input.

    Args:
        media_class: Classified input media.
        output_format: Requested output format.
        crossfade: Whether crossfade blending was requested.

    Returns:
        The selected strategy.

    Raises:
        NoStrategyError: If ``media_class`` is not a known media class.
    """
    if media_class is MediaClass.AUDIO:
        return Strategy.AUDIO_CROSSFADE_LOOP if crossfade else Strategy.AUDIO_HARD_LOOP
    if media_class is MediaClass.ANIMATED_IMAGE:
        return Strategy.IMAGE_HARD_LOOP
    if media_class is MediaClass.VIDEO:
        if is_animated_image_format(output_format):
            return Strategy.VIDEO_TO_ANIMATED_IMAGE
        return Strategy.VIDEO_CROSSFADE_LOOP if crossfade else Strategy.VIDEO_HARD_LOOP
    raise NoStrategyError(f"No loop strategy for media class: {media_class!r}")


def validate_output_format(strategy: Strategy, output_format: str) -> None:
    """Check that ``strategy`` can write ``output_format``.

    Raises:
        PlanValidationError: If the format belongs to another media family,
            e.g. ``gif`` from audio or ``mp3`` from a video loop.
    """
    fmt = normalize_output_format(output_format)
    if fmt not in strategy.output_formats:
        allowed = ", ".join(sorted(strategy.output_formats))
        raise PlanValidationError(
            f"Output format '{fmt}' is not supported for {strategy.value} "
            f"(expected one of: {allowed})"
        )
