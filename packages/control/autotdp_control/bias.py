"""Controller output bias: the TDP the curve predicts for a wanted frame rate."""

from __future__ import annotations

import logging

from .curve import PerformanceCurve

logger = logging.getLogger("autotdp.control")


class BiasEstimator:
    """Calibrates the curve against one observation, then inverts it.

    Every call rescales the curve toward ``actual_fps`` observed at
    ``reference_tdp`` before looking up the TDP for ``wanted_fps``.
    """

    def __init__(self, curve: PerformanceCurve, actual_fps_range: tuple[float, float] | None = None) -> None:
        self.curve = curve
        self.actual_fps_range = actual_fps_range
        self.last_ratio: float | None = None

    def compute_bias(self, wanted_fps: float, actual_fps: float, reference_tdp: float) -> float:
        curve = self.curve
        reference_tdp = curve.clamp_tdp(reference_tdp)
        if self.actual_fps_range is not None:
            low, high = self.actual_fps_range
            actual_fps = max(low, min(high, actual_fps))

        expected = curve.expected_fps(reference_tdp)
        self.last_ratio = actual_fps / expected if expected > 0 else None
        factor = curve.rescale(actual_fps, expected)
        bias = curve.clamp_tdp(curve.required_tdp(wanted_fps))

        logger.info(
            f"bias wanted={wanted_fps:.1f} actual={actual_fps:.2f} ref_tdp={reference_tdp:.2f} "
            f"expected={expected:.2f} factor={factor:.4f} bias={bias:.3f}",
            extra={"event": "bias_computed"},
        )
        return bias
