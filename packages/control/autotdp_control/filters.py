"""Low-latency adaptive smoothing for noisy frame-rate and power readings."""

from __future__ import annotations

import math


class LowPassFilter:
    def __init__(self) -> None:
        self._last: float | None = None

    @property
    def last(self) -> float | None:
        return self._last

    def apply(self, value: float, alpha: float) -> float:
        if self._last is None:
            self._last = value
        else:
            self._last = alpha * value + (1.0 - alpha) * self._last
        return self._last

    def reset(self) -> None:
        self._last = None


class OneEuroFilter:
    """One Euro filter: cutoff frequency rises with the signal's speed.

    Slow drifts are smoothed with ``min_cutoff``; fast moves raise the cutoff by
    ``beta * |derivative|`` so the output follows real changes with little lag.
    """

    def __init__(self, min_cutoff: float = 1.0, beta: float = 0.0, d_cutoff: float = 1.0) -> None:
        self.min_cutoff = min_cutoff
        self.beta = beta
        self.d_cutoff = d_cutoff
        self._x = LowPassFilter()
        self._dx = LowPassFilter()

    @staticmethod
    def _alpha(dt: float, cutoff: float) -> float:
        tau = 1.0 / (2.0 * math.pi * cutoff)
        return 1.0 / (1.0 + tau / dt)

    @property
    def value(self) -> float | None:
        return self._x.last

    def filter(self, value: float, dt: float) -> float:
        if dt <= 0:
            raise ValueError("dt must be positive")
        previous = self._x.last
        dx = 0.0 if previous is None else (value - previous) / dt
        edx = self._dx.apply(dx, self._alpha(dt, self.d_cutoff))
        cutoff = self.min_cutoff + self.beta * abs(edx)
        return self._x.apply(value, self._alpha(dt, cutoff))

    def reset(self) -> None:
        self._x.reset()
        self._dx.reset()
