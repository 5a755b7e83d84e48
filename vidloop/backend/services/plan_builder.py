"""Transformation plan builders.

One builder per loop strategy. Each builder turns ``LoopParams`` into a
``TransformationPlan`` and validates the parameters it depends on before
anything is handed to ffmpeg.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from vidloop.backend.services.errors import PlanValidationError, UnsupportedStrategyError
from vidloop.backend.services.loop_strategy import Strategy
from vidloop.backend.services.transformation_plan import (
    FilterStage,
    TransformationPlan,
    format_seconds,
)

# Animated-image output settings
GIF_FPS = 10
GIF_WIDTH = 320

LOOP_FOREVER = ("-stream_loop", "-1")
STREAM_COPY = ("-c", "copy")


@dataclass(frozen=True)
class LoopParams:
    """Normalized parameters for building a plan.

    Attributes:
        input_path: Path to the input file.
        output_path: Path for the output file.
        total_seconds: Target output length in seconds.
        crossfade_seconds: Blend window at the loop boundary.
        has_audio: Whether the input carries an audio stream.
    """

    input_path: Path
    output_path: Path
    total_seconds: float
    crossfade_seconds: float = 0.0
    has_audio: bool = True

    @property
    def blend_offset(self) -> float:
        """Return the point at which the loop boundary blend starts."""
        return self.total_seconds - self.crossfade_seconds


class PlanBuilder(Protocol):
    """Protocol for per-strategy plan builders."""

    @property
    @abstractmethod
    def strategy(self) -> Strategy:
        """Return the strategy this builder implements."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Return a human-readable description for status messages."""
        ...

    @abstractmethod
    def build(self, params: LoopParams) -> TransformationPlan:
        """Build the plan.

        Raises:
            PlanValidationError: If the parameters violate a constraint.
        """
        ...


def validate_blend_window(params: LoopParams) -> None:
    """Check that the crossfade window fits inside the requested duration.

    Raises:
        PlanValidationError: If the window is negative or not shorter than the duration.
    """
    if params.crossfade_seconds < 0:
        raise PlanValidationError(
            f"Crossfade duration must not be negative, got {params.crossfade_seconds}"
        )
    # Compare the values as rendered into the filter graph
    total = format_seconds(params.total_seconds)
    fade = format_seconds(params.crossfade_seconds)
    if float(total) <= float(fade):
        raise PlanValidationError(
            f"Duration ({total}s) must be longer than the crossfade ({fade}s)"
        )


def audio_crossfade_stages(params: LoopParams, *, prefix: str = "a") -> tuple[FilterStage, ...]:
    """Blend the audio tail into its own head, then trim to the target length.

    Args:
        params: Loop parameters.
        prefix: Prefix for intermediate pad labels.

    Returns:
        Stages ending in the ``aout`` label.
    """
    fade = format_seconds(params.crossfade_seconds)
    return (
        FilterStage(
            "asplit",
            params=(("outputs", "2"),),
            inputs=("0:a",),
            outputs=(f"{prefix}tail", f"{prefix}head"),
        ),
        FilterStage(
            "acrossfade",
            params=(("d", fade), ("c1", "tri"), ("c2", "tri")),
            inputs=(f"{prefix}tail", f"{prefix}head"),
            outputs=(f"{prefix}blend",),
        ),
        FilterStage(
            "atrim",
            params=(("start", "0"), ("end", format_seconds(params.total_seconds))),
            inputs=(f"{prefix}blend",),
            outputs=("aout",),
        ),
    )


class HardLoopPlanBuilder:
    """Loop the input forever and cut it at the target length.

    Audio and video hard loops copy streams without re-encoding; animated
    images are re-encoded.
    """

    def __init__(self, strategy: Strategy, *, maps: tuple[str, ...], stream_copy: bool) -> None:
        self._strategy = strategy
        self._maps = maps
        self._stream_copy = stream_copy

    @property
    def strategy(self) -> Strategy:
        return self._strategy

    @property
    def description(self) -> str:
        return "Hard loop"

    def build(self, params: LoopParams) -> TransformationPlan:
        if params.total_seconds <= 0:
            raise PlanValidationError("Duration must be greater than zero")
        return TransformationPlan(
            strategy=self._strategy,
            input_path=params.input_path,
            output_path=params.output_path,
            input_options=LOOP_FOREVER,
            output_maps=self._maps,
            output_options=STREAM_COPY if self._stream_copy else (),
            duration_limit=params.total_seconds,
        )


class AudioCrossfadePlanBuilder:
    """Crossfade the audio loop boundary with triangular curves."""

    @property
    def strategy(self) -> Strategy:
        return Strategy.AUDIO_CROSSFADE_LOOP

    @property
    def description(self) -> str:
        return "Audio crossfade loop"

    def build(self, params: LoopParams) -> TransformationPlan:
        validate_blend_window(params)
        return TransformationPlan(
            strategy=self.strategy,
            input_path=params.input_path,
            output_path=params.output_path,
            filter_graph=audio_crossfade_stages(params),
            output_maps=("[aout]",),
            duration_limit=params.total_seconds,
        )


class VideoCrossfadePlanBuilder:
    """Crossfade both picture and sound at the loop boundary.

    The last frame is held for the blend window so the fade has material to
    work with, then the padded tail fades into the head starting at
    ``total - crossfade``. Audio is blended independently and both are
    muxed and cut at the target length.
    """

    @property
    def strategy(self) -> Strategy:
        return Strategy.VIDEO_CROSSFADE_LOOP

    @property
    def description(self) -> str:
        return "Video crossfade loop"

    def build(self, params: LoopParams) -> TransformationPlan:
        validate_blend_window(params)
        fade = format_seconds(params.crossfade_seconds)
        stages: list[FilterStage] = [
            FilterStage(
                "split",
                params=(("outputs", "2"),),
                inputs=("0:v",),
                outputs=("vbody", "vhead"),
            ),
            FilterStage(
                "tpad",
                params=(("stop_mode", "clone"), ("stop_duration", fade)),
                inputs=("vbody",),
                outputs=("vtail",),
            ),
            FilterStage(
                "xfade",
                params=(
                    ("transition", "fade"),
                    ("duration", fade),
                    ("offset", format_seconds(params.blend_offset)),
                ),
                inputs=("vtail", "vhead"),
                outputs=("vout",),
            ),
        ]
        maps: tuple[str, ...] = ("[vout]",)
        if params.has_audio:
            stages.extend(audio_crossfade_stages(params))
            maps = ("[vout]", "[aout]")

        return TransformationPlan(
            strategy=self.strategy,
            input_path=params.input_path,
            output_path=params.output_path,
            filter_graph=tuple(stages),
            output_maps=maps,
            duration_limit=params.total_seconds,
        )


class AnimatedImagePlanBuilder:
    """Convert video to a looping GIF.

    Uses palettegen/paletteuse for colour quality. The requested duration
    is not applied; the whole input is converted.
    """

    def __init__(self, *, fps: int = GIF_FPS, width: int = GIF_WIDTH) -> None:
        self._fps = fps
        self._width = width

    @property
    def strategy(self) -> Strategy:
        return Strategy.VIDEO_TO_ANIMATED_IMAGE

    @property
    def description(self) -> str:
        return "GIF conversion"

    def build(self, params: LoopParams) -> TransformationPlan:
        stages = (
            FilterStage("fps", params=(("fps", str(self._fps)),), inputs=("0:v",), outputs=("gfps",)),
            FilterStage(
                "scale",
                params=(("w", str(self._width)), ("h", "-1"), ("flags", "lanczos")),
                inputs=("gfps",),
                outputs=("gscaled",),
            ),
            FilterStage(
                "split",
                params=(("outputs", "2"),),
                inputs=("gscaled",),
                outputs=("gsrc", "gframes"),
            ),
            FilterStage("palettegen", inputs=("gsrc",), outputs=("gpal",)),
            FilterStage("paletteuse", inputs=("gframes", "gpal"), outputs=("gout",)),
        )
        return TransformationPlan(
            strategy=self.strategy,
            input_path=params.input_path,
            output_path=params.output_path,
            filter_graph=stages,
            output_maps=("[gout]",),
            output_options=("-loop", "0"),
        )


PLAN_BUILDERS: dict[Strategy, PlanBuilder] = {
    Strategy.AUDIO_HARD_LOOP: HardLoopPlanBuilder(
        Strategy.AUDIO_HARD_LOOP, maps=("0:a",), stream_copy=True
    ),
    Strategy.VIDEO_HARD_LOOP: HardLoopPlanBuilder(
        Strategy.VIDEO_HARD_LOOP, maps=("0:v:0", "0:a:0?"), stream_copy=True
    ),
    Strategy.IMAGE_HARD_LOOP: HardLoopPlanBuilder(
        Strategy.IMAGE_HARD_LOOP, maps=("0:v",), stream_copy=False
    ),
    Strategy.AUDIO_CROSSFADE_LOOP: AudioCrossfadePlanBuilder(),
    Strategy.VIDEO_CROSSFADE_LOOP: VideoCrossfadePlanBuilder(),
    Strategy.VIDEO_TO_ANIMATED_IMAGE: AnimatedImagePlanBuilder(),
}


def get_plan_builder(strategy: Strategy) -> PlanBuilder:
    """Return the builder registered for ``strategy``.

    Raises:
        UnsupportedStrategyError: If no builder is registered.
    """
    builder = PLAN_BUILDERS.get(strategy)
    if builder is None:
        raise UnsupportedStrategyError(f"No plan builder for strategy: {strategy!r}")
    return builder


def build_plan(strategy: Strategy, params: LoopParams) -> TransformationPlan:
    """Build the plan for ``strategy``.

    Raises:
        PlanValidationError: If the parameters violate the strategy's constraints.
        UnsupportedStrategyError: If the strategy has no builder.
    """
    return get_plan_builder(strategy).build(params)
