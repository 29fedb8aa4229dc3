"""Control model error types."""

from __future__ import annotations


class CurveError(ValueError):
    """A breakpoint table cannot be used for interpolation."""


class LookupOutOfRange(LookupError):
    """A bracket search did not find two nodes around the query value."""

    def __init__(self, value: float, low: float, high: float) -> None:
        super().__init__(f"{value:.3f} outside [{low:.3f}, {high:.3f}]")
        self.value = value
        self.low = low
        self.high = high
