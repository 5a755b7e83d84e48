"""Loop-synthesis planner.

Runs classify -> normalize -> select -> build for one request. Every step
is synchronous and side-effect free apart from probing the input file, so
all validation errors surface before a job is queued.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from vidloop.backend.services.duration import Duration, normalize
from vidloop.backend.services.loop_strategy import (
    Strategy,
    select_strategy,
    validate_output_format,
)
from vidloop.backend.services.media_classifier import MediaClassifier, MediaInfo
from vidloop.backend.services.plan_builder import LoopParams, build_plan
from vidloop.backend.services.transformation_plan import TransformationPlan


@dataclass(frozen=True)
class LoopRequest:
    """Caller-supplied description of the loop to produce."""

    input_path: Path
    output_path: Path
    output_format: str
    duration: Duration
    crossfade: bool = True
    crossfade_seconds: float = 2.0


@dataclass(frozen=True)
class PlannedLoop:
    """Planner output: the plan plus what was decided along the way."""

    media: MediaInfo
    total_seconds: float
    strategy: Strategy
    plan: TransformationPlan


class LoopPlanner:
    """Stateless planner; safe to share between threads."""

    def __init__(self, classifier: MediaClassifier | None = None) -> None:
        self._classifier = classifier or MediaClassifier()

    def plan(self, request: LoopRequest) -> PlannedLoop:
        """Plan the transformation for ``request``.

        Raises:
            UnsupportedMediaError: If the input is not audio, GIF or video.
            InvalidDurationError: If the duration is not positive.
            PlanValidationError: If the output format does not match the media
                family, or the crossfade window does not fit.
        """
        media = self._classifier.inspect(request.input_path)
        total_seconds = normalize(request.duration)
        strategy = select_strategy(media.media_class, request.output_format, request.crossfade)
        validate_output_format(strategy, request.output_format)
        params = LoopParams(
            input_path=request.input_path,
            output_path=request.output_path,
            total_seconds=total_seconds,
            crossfade_seconds=request.crossfade_seconds if strategy.uses_crossfade else 0.0,
            has_audio=media.has_audio,
        )
        plan = build_plan(strategy, params)
        logging.info(
            "Planned %s for %s: %.3fs, crossfade=%s",
            strategy.value,
            request.input_path,
            total_seconds,
            params.crossfade_seconds,
        )
        return PlannedLoop(media=media, total_seconds=total_seconds, strategy=strategy, plan=plan)
