"""Per-application TDP to frame-rate performance curve.

The curve is a breakpoint table ordered by TDP.  Forward lookups interpolate
expected FPS for a power limit; inverse lookups find the lowest power limit
expected to reach a frame rate.  ``rescale`` nudges every node's FPS toward an
observation so the table converges on the running game's real behaviour.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from .errors import CurveError, LookupOutOfRange

logger = logging.getLogger("autotdp.control")

DEFAULT_DAMPING = 0.96


@dataclass
class PerformanceCurveNode:
    tdp_watts: float
    expected_fps: float
    process_gain: float = 0.0


def _bracket(values: Sequence[float], target: float) -> int:
    """Index ``i`` with ``values[i-1] <= target <= values[i]`` for ascending values."""
    if target < values[0] or target > values[-1]:
        raise LookupOutOfRange(target, values[0], values[-1])
    for i in range(1, len(values)):
        if target <= values[i]:
            return i
    raise LookupOutOfRange(target, values[0], values[-1])


def _lerp(x: float, x0: float, x1: float, y0: float, y1: float) -> float:
    return y0 + (x - x0) * (y1 - y0) / (x1 - x0)


class PerformanceCurve:
    def __init__(
        self,
        nodes: Iterable[PerformanceCurveNode],
        min_tdp: float = 5.0,
        max_tdp: float = 25.0,
        damping: float = DEFAULT_DAMPING,
        application: str | None = None,
    ) -> None:
        self._nodes = list(nodes)
        if len(self._nodes) < 2:
            raise CurveError("performance curve needs at least two nodes")
        for prev, node in zip(self._nodes, self._nodes[1:]):
            if node.tdp_watts <= prev.tdp_watts:
                raise CurveError(
                    f"TDP breakpoints must be strictly increasing ({prev.tdp_watts} then {node.tdp_watts})"
                )
        if min_tdp >= max_tdp:
            raise CurveError("min_tdp must be below max_tdp")
        if damping <= 0:
            raise CurveError("damping must be positive")
        self.min_tdp = float(min_tdp)
        self.max_tdp = float(max_tdp)
        self.damping = float(damping)
        self.application = application

    @classmethod
    def from_points(cls, points: Iterable[Sequence[float]], **kwargs: Any) -> "PerformanceCurve":
        return cls((PerformanceCurveNode(float(p[0]), float(p[1])) for p in points), **kwargs)

    @property
    def nodes(self) -> tuple[PerformanceCurveNode, ...]:
        return tuple(self._nodes)

    @property
    def tdp_values(self) -> list[float]:
        return [n.tdp_watts for n in self._nodes]

    @property
    def fps_values(self) -> list[float]:
        return [n.expected_fps for n in self._nodes]

    @property
    def min_fps(self) -> float:
        return min(self.fps_values)

    @property
    def max_fps(self) -> float:
        return max(self.fps_values)

    def clamp_tdp(self, tdp: float) -> float:
        return max(self.min_tdp, min(self.max_tdp, tdp))

    def expected_fps(self, tdp: float) -> float:
        xs = self.tdp_values
        ys = self.fps_values
        query = self.clamp_tdp(tdp)
        try:
            i = _bracket(xs, query)
        except LookupOutOfRange as exc:
            logger.debug(f"expected_fps lookup clamped: {exc}", extra={"event": "curve_lookup_out_of_range"})
            return ys[0] if query < xs[0] else ys[-1]
        return _lerp(query, xs[i - 1], xs[i], ys[i - 1], ys[i])

    def required_tdp(self, fps: float) -> float:
        """Lowest TDP the curve expects to deliver ``fps``, within the TDP limits."""
        xs = self.tdp_values
        ys = self.fps_values
        if fps > max(ys):
            return self.max_tdp
        if fps < min(ys):
            return self.min_tdp

        # First node in TDP order that reaches the frame rate; the curve may
        # plateau or dip slightly at the top end.
        i = next(idx for idx, y in enumerate(ys) if fps <= y)
        if i == 0:
            return self.clamp_tdp(xs[0])
        return self.clamp_tdp(_lerp(fps, ys[i - 1], ys[i], xs[i - 1], xs[i]))

    def damped_ratio(self, ratio: float) -> float:
        if self.damping < 1.0:
            return 1.0 + (ratio - 1.0) * self.damping
        return 1.0 + (ratio - 1.0) / self.damping

    def rescale(self, observed_fps: float, predicted_fps: float) -> float:
        """Scale every node toward ``observed / predicted``; returns the applied factor."""
        if predicted_fps <= 0 or observed_fps <= 0:
            logger.debug(
                f"rescale skipped observed={observed_fps:.3f} predicted={predicted_fps:.3f}",
                extra={"event": "curve_rescale_skipped"},
            )
            return 1.0
        factor = self.damped_ratio(observed_fps / predicted_fps)
        for node in self._nodes:
            node.expected_fps *= factor
        return factor

    def recompute_process_gains(self) -> None:
        """Fill each node's gain with the mean absolute slope of its adjacent segments."""
        slopes = [
            abs((b.expected_fps - a.expected_fps) / (b.tdp_watts - a.tdp_watts))
            for a, b in zip(self._nodes, self._nodes[1:])
        ]
        last = len(self._nodes) - 1
        for idx, node in enumerate(self._nodes):
            if idx == 0:
                node.process_gain = slopes[0]
            elif idx == last:
                node.process_gain = slopes[-1]
            else:
                node.process_gain = (slopes[idx - 1] + slopes[idx]) / 2

    def process_gain(self, fps_current: float) -> float:
        """Local dFPS/dTDP at the operating point, interpolated over FPS."""
        self.recompute_process_gains()
        ordered = sorted(self._nodes, key=lambda n: n.expected_fps)
        xs = [n.expected_fps for n in ordered]
        gains = [n.process_gain for n in ordered]
        if fps_current >= xs[-1]:
            return abs(gains[-1])
        if fps_current <= xs[0]:
            return abs(gains[0])
        i = _bracket(xs, fps_current)
        if xs[i] == xs[i - 1]:
            return abs(gains[i])
        return abs(_lerp(fps_current, xs[i - 1], xs[i], gains[i - 1], gains[i]))

    def copy(self) -> "PerformanceCurve":
        return PerformanceCurve(
            (PerformanceCurveNode(n.tdp_watts, n.expected_fps, n.process_gain) for n in self._nodes),
            min_tdp=self.min_tdp,
            max_tdp=self.max_tdp,
            damping=self.damping,
            application=self.application,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "application": self.application,
            "min_tdp": self.min_tdp,
            "max_tdp": self.max_tdp,
            "damping": self.damping,
            "nodes": [[n.tdp_watts, n.expected_fps] for n in self._nodes],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any], **defaults: Any) -> "PerformanceCurve":
        nodes = raw.get("nodes")
        if not isinstance(nodes, list):
            raise CurveError("curve document has no 'nodes' list")
        kwargs = dict(defaults)
        for key in ("min_tdp", "max_tdp", "damping", "application"):
            if raw.get(key) is not None:
                kwargs[key] = raw[key]
        try:
            return cls.from_points(nodes, **kwargs)
        except CurveError:
            raise
        except (TypeError, IndexError, ValueError) as exc:
            raise CurveError(f"invalid curve nodes: {exc}") from exc
