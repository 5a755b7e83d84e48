"""Immutable description of an ffmpeg transformation.

A plan is built once by a plan builder and handed to the executor, which
resolves it into a structured argument list. No part of a plan is ever
interpolated into a shell string.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from vidloop.backend.services.loop_strategy import Strategy


def format_seconds(value: float) -> str:
    """Format a time value for ffmpeg without float noise.

    Args:
        value: Seconds.

    Returns:
        Decimal string with at most six fractional digits, e.g. ``90`` or ``2.5``.
    """
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


@dataclass(frozen=True)
class FilterStage:
    """One named filter in a filter graph.

    Attributes:
        name: ffmpeg filter name, e.g. ``acrossfade``.
        params: Ordered ``(key, value)`` option pairs.
        inputs: Input pad labels, e.g. ``("0:a",)``.
        outputs: Output pad labels.
    """

    name: str
    params: tuple[tuple[str, str], ...] = ()
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()

    def param(self, key: str) -> str | None:
        """Return the value of option ``key`` or None if it is not set."""
        for name, value in self.params:
            if name == key:
                return value
        return None

    def render(self) -> str:
        """Render the stage as a labelled filtergraph chain."""
        options = ":".join(f"{key}={value}" for key, value in self.params)
        body = f"{self.name}={options}" if options else self.name
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        return f"{ins}{body}{outs}"


@dataclass(frozen=True)
class TransformationPlan:
    """Fully parameterized transformation for one input file.

    Attributes:
        strategy: Strategy the plan was built for.
        input_path: Source file.
        output_path: Destination file.
        input_options: Options placed before ``-i`` (e.g. ``-stream_loop -1``).
        filter_graph: Ordered filter stages; empty for plain stream loops.
        output_maps: ``-map`` targets; filter labels are written as ``[label]``.
        output_options: Options placed after the maps (e.g. ``-c copy``).
        duration_limit: Hard output length in seconds, or None for no limit.
    """

    strategy: Strategy
    input_path: Path
    output_path: Path
    input_options: tuple[str, ...] = ()
    filter_graph: tuple[FilterStage, ...] = ()
    output_maps: tuple[str, ...] = ()
    output_options: tuple[str, ...] = ()
    duration_limit: float | None = None

    def stage(self, name: str) -> FilterStage | None:
        """Return the first filter stage called ``name``."""
        for stage in self.filter_graph:
            if stage.name == name:
                return stage
        return None

    def filter_complex(self) -> str | None:
        """Render the filter graph, or None when the plan has none."""
        if not self.filter_graph:
            return None
        return ";".join(stage.render() for stage in self.filter_graph)

    def to_command(self, ffmpeg_bin: str = "ffmpeg") -> list[str]:
        """Resolve the plan into an ffmpeg argument list.

        Args:
            ffmpeg_bin: ffmpeg executable.

        Returns:
            Command-line arguments, ready for ``subprocess`` without a shell.
        """
        cmd = [ffmpeg_bin, "-y", *self.input_options, "-i", str(self.input_path)]

        graph = self.filter_complex()
        if graph:
            cmd.extend(["-filter_complex", graph])

        for target in self.output_maps:
            cmd.extend(["-map", target])

        if self.duration_limit is not None:
            cmd.extend(["-t", format_seconds(self.duration_limit)])

        cmd.extend(self.output_options)
        cmd.append(str(self.output_path))
        return cmd

    def describe(self) -> dict[str, object]:
        """Return a JSON-friendly summary for logs and job records."""
        return {
            "strategy": self.strategy.value,
            "input": str(self.input_path),
            "output": str(self.output_path),
            "filter_complex": self.filter_complex(),
            "maps": list(self.output_maps),
            "duration_limit": self.duration_limit,
        }
