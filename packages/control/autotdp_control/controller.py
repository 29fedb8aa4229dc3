"""AutoTDP state machine: owns the TDP setpoint and drives the control strategy."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any

from autotdp_telemetry.models import TelemetrySignals

from .curve import PerformanceCurve
from .filters import OneEuroFilter
from .published import PublishedValue
from .strategy import BiasRatioStrategy, ControlInputs, ControllerState, ControlStrategy

logger = logging.getLogger("autotdp.control")


@dataclass(frozen=True)
class ControllerSettings:
    min_tdp: float = 5.0
    max_tdp: float = 25.0
    interval_ms: int = 100
    apply_interval_ms: int = 1000
    fps_response_ms: int = 1300
    settle_margin_ms: int = 400
    bias_attempts: int = 3
    fps_tolerance_percent: float = 10.0
    error_clamp: tuple[float, float] = (-5.0, 15.0)
    fps_filter: tuple[float, float] = (0.15, 0.1)
    tdp_filter: tuple[float, float] = (0.25, 0.2)
    scene_detection: bool = True
    scene_error_percent: float = 25.0
    scene_error_ms: int = 3000
    bias_fps_min: float = 20.0
    bias_fps_max: float = 90.0

    @property
    def cooldown_ms(self) -> int:
        return self.apply_interval_ms + self.fps_response_ms + self.settle_margin_ms


class SetpointHistory:
    """Rolling setpoint buffer, newest first.

    Frame rate reacts to a TDP change roughly 1.3 s later, so the TDP that
    explains the current FPS is an older setpoint.  At a 100 ms cadence the
    reference blends the setpoints from 12 and 2 ticks ago.
    """

    def __init__(self, size: int = 20, old_index: int = 12, recent_index: int = 2, blend: float = 0.68) -> None:
        self._values: deque[float] = deque(maxlen=size)
        self.old_index = old_index
        self.recent_index = recent_index
        self.blend = blend

    def __len__(self) -> int:
        return len(self._values)

    def push(self, value: float) -> None:
        if not self._values:
            self.fill(value)
            return
        self._values.appendleft(value)

    def fill(self, value: float) -> None:
        self._values.clear()
        self._values.extend([value] * self._values.maxlen)

    def clear(self) -> None:
        self._values.clear()

    def reference(self) -> float | None:
        if not self._values:
            return None
        last = len(self._values) - 1
        old = self._values[min(self.old_index, last)]
        recent = self._values[min(self.recent_index, last)]
        return old + (recent - old) * self.blend


class SceneChangeDetector:
    """Fires once the curve's prediction error stays above a threshold long enough."""

    def __init__(self, threshold_percent: float = 25.0, duration_ms: int = 3000) -> None:
        self.threshold_percent = threshold_percent
        self.duration_ms = duration_ms
        self.elapsed_ms = 0

    def reset(self) -> None:
        self.elapsed_ms = 0

    def update(self, error_percent: float, interval_ms: int) -> bool:
        if error_percent < self.threshold_percent:
            self.elapsed_ms = 0
            return False
        self.elapsed_ms += interval_ms
        if self.elapsed_ms > self.duration_ms:
            self.elapsed_ms = 0
            return True
        return False


@dataclass(frozen=True)
class TickResult:
    state: ControllerState
    previous_state: ControllerState
    setpoint: float | None
    skipped: bool = False
    stopped: bool = False
    reason: str | None = None
    bias: float | None = None

    @property
    def transitioned(self) -> bool:
        return self.state != self.previous_state


class AdaptiveController:
    """Owns controller state, the live curve, the filters and the setpoint.

    ``tick`` runs once per AutoTdp interval.  Transition triggers are checked
    in priority order: stop request, sustained curve error in PidControl,
    FPS target change; otherwise the strategy handles the current state.  The
    clamped setpoint is published through :attr:`output` for other jobs.
    """

    def __init__(
        self,
        curve: PerformanceCurve,
        settings: ControllerSettings | None = None,
        strategy: ControlStrategy | None = None,
    ) -> None:
        self.settings = settings or ControllerSettings()
        s = self.settings
        self._curve = curve
        self.strategy = strategy or BiasRatioStrategy(
            curve,
            attempts=s.bias_attempts,
            tolerance_percent=s.fps_tolerance_percent,
            cooldown_ms=s.cooldown_ms,
            error_clamp=s.error_clamp,
            bias_fps_range=(s.bias_fps_min, s.bias_fps_max),
        )
        self.fps_filter = OneEuroFilter(*s.fps_filter)
        self.tdp_filter = OneEuroFilter(*s.tdp_filter)
        self.output: PublishedValue[float] = PublishedValue()

        self._state = ControllerState.IDLE
        self._setpoint: float | None = None
        self._target_fps: float | None = None
        self._previous_target: float | None = None
        self._stop_requested = False
        self._history = SetpointHistory()
        self._scene = SceneChangeDetector(s.scene_error_percent, s.scene_error_ms)
        self.last_fps: float | None = None
        self.last_tdp: float | None = None

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def setpoint(self) -> float | None:
        return self._setpoint

    @property
    def curve(self) -> PerformanceCurve:
        return self._curve

    @property
    def target_fps(self) -> float | None:
        return self._target_fps

    def set_target_fps(self, fps: float | None) -> None:
        self._target_fps = float(fps) if fps else None

    def set_curve(self, curve: PerformanceCurve) -> None:
        """Swap in another application's curve; calibration restarts on the next tick."""
        self._curve = curve
        self.strategy.set_curve(curve)
        if self._state != ControllerState.IDLE:
            self._enter_calibration("curve replaced")

    def request_stop(self) -> None:
        self._stop_requested = True

    def cancel_stop(self) -> None:
        """Withdraw a stop request the next tick has not consumed yet."""
        self._stop_requested = False

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def clamp(self, tdp: float) -> float:
        return max(self.settings.min_tdp, min(self.settings.max_tdp, tdp))

    def reset(self) -> None:
        self._state = ControllerState.IDLE
        self._setpoint = None
        self._previous_target = None
        self._history.clear()
        self._scene.reset()
        self.fps_filter.reset()
        self.tdp_filter.reset()
        self.strategy.reset()
        if self.output.read() is not None:
            self.output.publish(None)

    def _enter_calibration(self, reason: str) -> None:
        previous = self._state
        self._state = ControllerState.BIAS_CALIBRATION
        self._scene.reset()
        self.strategy.enter_calibration()
        logger.info(
            f"autotdp {previous.value} -> {self._state.value} ({reason})",
            extra={"event": "autotdp_state"},
        )

    def _curve_error_percent(self, actual_fps: float, reference_tdp: float) -> float:
        expected = self._curve.expected_fps(reference_tdp)
        if expected <= 0:
            return 0.0
        return abs(actual_fps / expected - 1.0) * 100.0

    def tick(self, signals: TelemetrySignals) -> TickResult:
        previous = self._state
        s = self.settings

        if self._stop_requested:
            self._stop_requested = False
            self.reset()
            logger.info(f"autotdp {previous.value} -> Idle (stop requested)", extra={"event": "autotdp_state"})
            return TickResult(
                state=self._state, previous_state=previous, setpoint=None, stopped=True, reason="stop requested"
            )

        wanted = self._target_fps
        if not signals.usable or not wanted:
            return TickResult(state=previous, previous_state=previous, setpoint=self._setpoint, skipped=True)

        dt = s.interval_ms / 1000.0
        actual_fps = self.fps_filter.filter(float(signals.fps), dt)
        actual_tdp = self.tdp_filter.filter(float(signals.package_power), dt)
        self.last_fps = actual_fps
        self.last_tdp = actual_tdp

        reference = self._history.reference()
        if reference is None:
            reference = self.clamp(actual_tdp)

        if self._previous_target is None:
            self._previous_target = wanted
        target_changed = wanted != self._previous_target
        self._previous_target = wanted

        reason = None
        if self._state == ControllerState.IDLE:
            reason = "telemetry available"
            self._enter_calibration(reason)
        elif (
            s.scene_detection
            and self._state == ControllerState.PID_CONTROL
            and self._scene.update(self._curve_error_percent(actual_fps, reference), s.interval_ms)
        ):
            reason = "scene change"
            self._enter_calibration(reason)
        elif target_changed:
            reason = "target fps changed"
            self._enter_calibration(reason)

        inputs = ControlInputs(
            wanted_fps=wanted,
            actual_fps=actual_fps,
            actual_tdp=actual_tdp,
            reference_tdp=reference,
            setpoint=self._setpoint,
            interval_ms=s.interval_ms,
        )
        result = self.strategy.step(self._state, inputs)
        if result.state != self._state:
            logger.info(
                f"autotdp {self._state.value} -> {result.state.value}",
                extra={"event": "autotdp_state"},
            )
            reason = reason or "calibration finished"
            self._scene.reset()
        self._state = result.state

        if result.setpoint is not None:
            self._setpoint = self.clamp(result.setpoint)
        if self._setpoint is not None:
            self._history.push(self._setpoint)
            self.output.publish(self._setpoint)

        return TickResult(
            state=self._state,
            previous_state=previous,
            setpoint=self._setpoint,
            reason=reason,
            bias=result.bias,
        )

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "setpoint": self._setpoint,
            "target_fps": self._target_fps,
            "filtered_fps": self.last_fps,
            "filtered_tdp": self.last_tdp,
            "strategy": self.strategy.name,
            "application": self._curve.application,
        }
