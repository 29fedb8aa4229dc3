"""Control laws the adaptive controller delegates its per-state work to."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from .bias import BiasEstimator
from .curve import PerformanceCurve

logger = logging.getLogger("autotdp.control")


class ControllerState(str, Enum):
    IDLE = "Idle"
    BIAS_CALIBRATION = "BiasCalibration"
    PID_CONTROL = "PidControl"


@dataclass(frozen=True)
class ControlInputs:
    wanted_fps: float
    actual_fps: float
    actual_tdp: float
    reference_tdp: float
    setpoint: float | None
    interval_ms: int


@dataclass(frozen=True)
class StepResult:
    state: ControllerState
    setpoint: float | None
    bias: float | None = None


class ControlStrategy(ABC):
    name = "abstract"

    @abstractmethod
    def reset(self) -> None:
        """Forget everything learned since the controller was started."""

    @abstractmethod
    def enter_calibration(self) -> None:
        """Called whenever the controller (re)enters bias calibration."""

    @abstractmethod
    def step(self, state: ControllerState, inputs: ControlInputs) -> StepResult:
        ...

    def set_curve(self, curve: PerformanceCurve) -> None:
        pass


class BiasRatioStrategy(ControlStrategy):
    """Model-based bias calibration followed by proportional-ratio correction.

    Calibration seeds the setpoint from measured package power, then spends up
    to ``attempts`` curve inversions, each followed by a cooldown long enough
    for one actuation and the frame-rate response to settle.  Ratio correction
    then trims the remaining error every tick:
    ``clamp(wanted - actual, *error_clamp) * reference_tdp / actual``.
    """

    name = "bias-ratio"

    def __init__(
        self,
        curve: PerformanceCurve,
        attempts: int = 3,
        tolerance_percent: float = 10.0,
        cooldown_ms: int = 2700,
        error_clamp: tuple[float, float] = (-5.0, 15.0),
        fps_clamp: tuple[float, float] = (1.0, 500.0),
        bias_fps_range: tuple[float, float] | None = None,
    ) -> None:
        self.estimator = BiasEstimator(curve, actual_fps_range=bias_fps_range)
        self.attempts = attempts
        self.tolerance_percent = tolerance_percent
        self.cooldown_ms = cooldown_ms
        self.error_clamp = error_clamp
        self.fps_clamp = fps_clamp

        self._seeded = False
        self.attempts_used = 0
        self.cooldown_remaining_ms = 0

    @property
    def curve(self) -> PerformanceCurve:
        return self.estimator.curve

    def set_curve(self, curve: PerformanceCurve) -> None:
        self.estimator.curve = curve

    def reset(self) -> None:
        self._seeded = False
        self.enter_calibration()

    def enter_calibration(self) -> None:
        self.attempts_used = 0
        self.cooldown_remaining_ms = 0

    def step(self, state: ControllerState, inputs: ControlInputs) -> StepResult:
        if state == ControllerState.BIAS_CALIBRATION:
            return self._calibrate(inputs)
        if state == ControllerState.PID_CONTROL:
            return self._correct(inputs)
        return StepResult(state=state, setpoint=inputs.setpoint)

    def _calibrate(self, inputs: ControlInputs) -> StepResult:
        if not self._seeded:
            self._seeded = True
            logger.info(
                f"seeding setpoint from measured power {inputs.actual_tdp:.2f} W",
                extra={"event": "bias_seed"},
            )
            return StepResult(state=ControllerState.BIAS_CALIBRATION, setpoint=self.curve.clamp_tdp(inputs.actual_tdp))

        if self.cooldown_remaining_ms > 0:
            self.cooldown_remaining_ms = max(0, self.cooldown_remaining_ms - inputs.interval_ms)
            return StepResult(state=ControllerState.BIAS_CALIBRATION, setpoint=inputs.setpoint)

        error_percent = abs(inputs.wanted_fps - inputs.actual_fps) / inputs.wanted_fps * 100.0
        if self.attempts_used >= self.attempts or error_percent <= self.tolerance_percent:
            return StepResult(state=ControllerState.PID_CONTROL, setpoint=inputs.setpoint)

        bias = self.estimator.compute_bias(inputs.wanted_fps, inputs.actual_fps, inputs.reference_tdp)
        self.attempts_used += 1
        self.cooldown_remaining_ms = self.cooldown_ms
        return StepResult(state=ControllerState.BIAS_CALIBRATION, setpoint=bias, bias=bias)

    def _correct(self, inputs: ControlInputs) -> StepResult:
        low, high = self.fps_clamp
        actual = max(low, min(high, inputs.actual_fps))
        err_low, err_high = self.error_clamp
        error = max(err_low, min(err_high, inputs.wanted_fps - actual))
        adjustment = error * inputs.reference_tdp / actual

        base = inputs.setpoint if inputs.setpoint is not None else inputs.reference_tdp
        setpoint = self.curve.clamp_tdp(base + adjustment)
        logger.debug(
            f"ratio correction wanted={inputs.wanted_fps:.1f} actual={actual:.2f} "
            f"adjust={adjustment:.4f} setpoint={setpoint:.3f}",
            extra={"event": "ratio_correction"},
        )
        return StepResult(state=ControllerState.PID_CONTROL, setpoint=setpoint)
