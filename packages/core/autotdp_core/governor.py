"""The governor context: owns the hardware requests and the five watchdog jobs."""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Sequence
from uuid import UUID

from autotdp_control import AdaptiveController, ControllerSettings, CurveLibrary, PublishedValue
from autotdp_telemetry import (
    SignalNames,
    TelemetryChannel,
    TelemetryDisconnected,
    TelemetrySignals,
    TelemetryUnavailable,
)

from .config import AppConfig, curves_path
from .errors import HardwareWriteSkipped, InitializationBlocked
from .hardware import READBACK_MAX_WATTS, TDP_RAILS, PowerRail, Processor, ProcessorVendor, RequestOrigin, TdpRequest
from .platform_checks import driver_blocklist_enabled
from .power_scheme import InMemoryPowerScheme, PowerMode, PowerSchemeBackend
from .scheduler import PeriodicJob, WatchdogScheduler

logger = logging.getLogger("autotdp.governor")

# AMD firmware drops the package limit by 10% under the Better Battery overlay.
BETTER_BATTERY_DERATE = 0.9


@dataclass
class Profile:
    name: str
    tdp_override: bool = False
    tdp_value: list[float] | None = None
    gpu_override: bool = False
    gpu_clock: float | None = None


def controller_settings(cfg: AppConfig, apply_interval_ms: int | None = None) -> ControllerSettings:
    c = cfg.controller
    w = cfg.watchdog
    return ControllerSettings(
        min_tdp=c.min_tdp,
        max_tdp=c.max_tdp,
        interval_ms=w.autotdp_ms,
        apply_interval_ms=apply_interval_ms or w.cpu_ms,
        fps_response_ms=c.fps_response_ms,
        settle_margin_ms=c.settle_margin_ms,
        bias_attempts=c.bias_attempts,
        fps_tolerance_percent=c.fps_tolerance_percent,
        error_clamp=(c.error_clamp_low, c.error_clamp_high),
        fps_filter=(c.fps_filter_min_cutoff, c.fps_filter_beta),
        tdp_filter=(c.tdp_filter_min_cutoff, c.tdp_filter_beta),
        scene_detection=c.scene_detection,
        scene_error_percent=c.scene_error_percent,
        scene_error_ms=c.scene_error_ms,
        bias_fps_min=c.bias_fps_min,
        bias_fps_max=c.bias_fps_max,
    )


class Governor:
    """Owned context passed to every watchdog callback.

    Each job only mutates state inside its own lock domain.  The AutoTdp job
    hands its setpoint to the CpuLimit job through ``controller.output`` and
    the TelemetrySensor job hands readings to AutoTdp through ``signals``;
    neither reader ever takes the writer's lock.
    """

    def __init__(
        self,
        cfg: AppConfig,
        processor: Processor,
        channel: TelemetryChannel | None = None,
        power_scheme: PowerSchemeBackend | None = None,
        curves: CurveLibrary | None = None,
        blocklist_check: Callable[[], bool] = driver_blocklist_enabled,
    ) -> None:
        self.cfg = cfg
        self.processor = processor
        t = cfg.telemetry
        self.channel = channel or TelemetryChannel(
            name=t.shared_memory_name,
            path=Path(t.shared_memory_path) if t.shared_memory_path else None,
            monitor_processes=t.monitor_processes,
            require_monitor_process=t.require_monitor_process,
        )
        self.signal_names = SignalNames(
            fps_group=t.fps_group,
            framerate_label=t.framerate_label,
            frame_time_label=t.frame_time_label,
            cpu_group=t.cpu_group,
            package_power_label=t.package_power_label,
        )
        self.power_scheme = power_scheme or InMemoryPowerScheme()
        self._blocklist_check = blocklist_check

        c = cfg.controller
        if curves is None:
            curves = CurveLibrary(min_tdp=c.min_tdp, max_tdp=c.max_tdp, damping=c.rescale_damping)
            curves.load_dir(curves_path(cfg))
        self.curves = curves

        w = cfg.watchdog
        self._cpu_interval_ms = w.cpu_intel_ms if processor.vendor == ProcessorVendor.INTEL else w.cpu_ms
        self.controller = AdaptiveController(
            self.curves.curve_for(None), settings=controller_settings(cfg, self._cpu_interval_ms)
        )
        self.signals: PublishedValue[TelemetrySignals] = PublishedValue()

        self.power_job = PeriodicJob("power_scheme", self._power_tick, w.power_ms)
        self.cpu_job = PeriodicJob("cpu_limit", self._cpu_tick, self._cpu_interval_ms)
        self.gpu_job = PeriodicJob("gpu_clock", self._gpu_tick, w.gpu_ms)
        self.sensor_job = PeriodicJob("telemetry_sensor", self._sensor_tick, w.sensor_ms)
        self.autotdp_job = PeriodicJob("autotdp", self._autotdp_tick, w.autotdp_ms)
        self.scheduler = WatchdogScheduler(
            [self.power_job, self.cpu_job, self.gpu_job, self.sensor_job, self.autotdp_job]
        )

        p = cfg.performance
        self._fallback_tdp: dict[PowerRail, float] = {
            PowerRail.SLOW: p.tdp_sustained,
            PowerRail.STAPM: p.tdp_sustained,
            PowerRail.FAST: p.tdp_boost,
        }
        self._requested_tdp = dict(self._fallback_tdp)
        self._fallback_gfx_clock = p.gpu_clock
        self._requested_gfx_clock = p.gpu_clock
        self._requested_power_mode: UUID = PowerMode.from_index(p.power_mode)
        self.controller.set_target_fps(p.autotdp_fps_target)

        self.tdp_blocked = False
        self.active_profile: Profile | None = None
        self._next_connect_at = 0.0
        self._events: list[dict[str, Any]] = []
        self._events_lock = threading.Lock()
        self.channel.add_disconnect_listener(self._on_telemetry_disconnected)

    # events

    def recent_events(self, limit: int = 200) -> list[dict[str, Any]]:
        with self._events_lock:
            return self._events[-limit:]

    def _log_event(self, event: str, **fields: Any) -> None:
        row = {
            "ts_utc": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "autotdp_state": self.controller.state.value,
        }
        row.update(fields)
        with self._events_lock:
            self._events.append(row)
            if len(self._events) > 1000:
                self._events = self._events[-1000:]

    def _on_telemetry_disconnected(self) -> None:
        self._log_event("telemetry_lost")

    # requests

    @property
    def requested_tdp(self) -> dict[PowerRail, float]:
        return dict(self._requested_tdp)

    @property
    def fallback_tdp(self) -> dict[PowerRail, float]:
        return dict(self._fallback_tdp)

    @property
    def requested_gfx_clock(self) -> float:
        return self._requested_gfx_clock

    @property
    def requested_power_mode(self) -> UUID:
        return self._requested_power_mode

    def request_tdp(
        self,
        value: float | Sequence[float],
        rail: PowerRail | None = None,
        origin: RequestOrigin = RequestOrigin.USER,
    ) -> None:
        """Set the TDP the CpuLimit job converges on.

        With ``rail`` a single rail is set; otherwise ``value`` holds the
        slow, stapm and fast targets.  Only user requests replace the fallback
        restored when a profile is discarded.
        """
        if rail is not None:
            if rail not in TDP_RAILS:
                raise ValueError(f"{rail.name} follows the slow/fast rails and cannot be requested directly")
            updates = {rail: float(value)}  # type: ignore[arg-type]
        else:
            values = list(value)  # type: ignore[arg-type]
            if len(values) != len(TDP_RAILS):
                raise ValueError(f"expected {len(TDP_RAILS)} TDP values, got {len(values)}")
            updates = {r: float(v) for r, v in zip(TDP_RAILS, values)}

        if origin == RequestOrigin.USER:
            self._fallback_tdp.update(updates)
        self._requested_tdp.update(updates)
        self._log_event(
            "tdp_requested", origin=origin.value, values={r.name.lower(): v for r, v in updates.items()}
        )

    def submit(self, request: TdpRequest) -> None:
        self.request_tdp(request.wattage, rail=request.rail, origin=request.origin)

    def request_gpu_clock(self, mhz: float, origin: RequestOrigin = RequestOrigin.USER) -> None:
        if origin == RequestOrigin.USER:
            self._fallback_gfx_clock = float(mhz)
        self._requested_gfx_clock = float(mhz)
        self._log_event("gpu_clock_requested", origin=origin.value, mhz=float(mhz))

    def request_power_mode(self, index: int) -> None:
        self._requested_power_mode = PowerMode.from_index(index)
        logger.info(
            f"user requested power scheme: {PowerMode.name_of(self._requested_power_mode)}",
            extra={"event": "power_mode_requested"},
        )
        self._log_event("power_mode_requested", scheme=str(self._requested_power_mode))
        self.power_scheme.set_active_overlay_scheme(self._requested_power_mode)

    def set_fps_target(self, fps: float) -> None:
        self.cfg.performance.autotdp_fps_target = float(fps)
        self.controller.set_target_fps(fps)
        self._log_event("fps_target", fps=float(fps))

    def select_curve(self, application: str | None = None) -> str:
        """Load the curve for ``application`` (or the running game) into the controller."""
        name = application or self.curves.detect_application()
        curve = self.curves.curve_for(name)
        with self.autotdp_job.lock:
            self.controller.set_curve(curve)
        logger.info(f"performance curve: {curve.application}", extra={"event": "curve_selected"})
        self._log_event("curve_selected", application=curve.application)
        return curve.application or ""

    # watchdog lifecycle

    def start_tdp_watchdog(self) -> bool:
        if self.tdp_blocked:
            logger.warning("tdp watchdog not started: register access blocked", extra={"event": "tdp_blocked"})
            return False
        self.cpu_job.start()
        return True

    def stop_tdp_watchdog(self) -> None:
        self.cpu_job.request_stop()

    def start_gpu_watchdog(self) -> None:
        self.gpu_job.start()

    def stop_gpu_watchdog(self) -> None:
        self.gpu_job.request_stop()

    def start_autotdp(self, fps_target: float | None = None, application: str | None = None) -> bool:
        if self.tdp_blocked:
            logger.warning("autotdp not started: register access blocked", extra={"event": "tdp_blocked"})
            return False
        if fps_target is not None:
            self.set_fps_target(fps_target)
        self.select_curve(application)
        self.controller.cancel_stop()
        self.autotdp_job.start()
        self._log_event("autotdp_started", fps=self.controller.target_fps)
        return True

    def stop_autotdp(self) -> None:
        """Ask the controller to go idle; the AutoTdp job halts on its next tick."""
        if self.autotdp_job.running:
            self.controller.request_stop()
            self.autotdp_job.request_stop()

    # profiles

    def apply_profile(self, profile: Profile) -> None:
        self.active_profile = profile
        p = self.cfg.performance
        if profile.tdp_override and not p.tdp_watchdog_enabled:
            self.start_tdp_watchdog()
        if profile.tdp_override and profile.tdp_value:
            self.request_tdp(profile.tdp_value, origin=RequestOrigin.PROFILE)
        else:
            self.request_tdp([self._fallback_tdp[r] for r in TDP_RAILS], origin=RequestOrigin.PROFILE)

        if profile.gpu_override and profile.gpu_clock:
            if not p.gpu_watchdog_enabled:
                self.start_gpu_watchdog()
            self.request_gpu_clock(profile.gpu_clock, origin=RequestOrigin.PROFILE)
        self._log_event("profile_applied", profile=profile.name)

    def discard_profile(self, profile: Profile) -> None:
        p = self.cfg.performance
        self.request_tdp([self._fallback_tdp[r] for r in TDP_RAILS], origin=RequestOrigin.PROFILE)
        if profile.tdp_override and not p.tdp_watchdog_enabled:
            self.stop_tdp_watchdog()
        if profile.gpu_override:
            self.request_gpu_clock(self._fallback_gfx_clock, origin=RequestOrigin.PROFILE)
            if not p.gpu_watchdog_enabled:
                self.stop_gpu_watchdog()
        if self.active_profile is profile:
            self.active_profile = None
        self._log_event("profile_discarded", profile=profile.name)

    # process lifecycle

    def _block_tdp(self, reason: str) -> None:
        self.tdp_blocked = True
        self.cpu_job.stop()
        self.autotdp_job.stop()
        self.processor.stop()
        logger.warning(f"TDP control disabled: {reason}", extra={"event": "tdp_blocked"})
        self._log_event("tdp_blocked", reason=reason)

    def start(self, run_scheduler: bool = True) -> None:
        self.power_job.start()
        self.sensor_job.start()
        try:
            if self.processor.vendor == ProcessorVendor.INTEL and self._blocklist_check():
                raise InitializationBlocked("core isolation memory integrity is on; TDP read/write is disabled")
            self.processor.initialize()
        except InitializationBlocked as exc:
            self._block_tdp(str(exc))
        else:
            p = self.cfg.performance
            if p.tdp_watchdog_enabled:
                self.start_tdp_watchdog()
            if p.gpu_watchdog_enabled and p.gpu_clock:
                self.start_gpu_watchdog()
            if p.autotdp_enabled:
                self.start_autotdp()

        if run_scheduler:
            self.scheduler.start()
        self._log_event("governor_started", vendor=self.processor.vendor.value)

    def stop(self) -> None:
        if self.processor.is_initialized:
            self.processor.stop()
        for job in self.scheduler.jobs:
            job.stop()
        self.scheduler.stop()
        self.channel.remove_disconnect_listener(self._on_telemetry_disconnected)
        self.channel.close()
        self._log_event("governor_stopped")

    # job callbacks

    def _power_tick(self) -> None:
        active = self.power_scheme.get_active_overlay_scheme()
        if active is None:
            return
        if active != self._requested_power_mode:
            self.power_scheme.set_active_overlay_scheme(self._requested_power_mode)
            logger.info(
                f"power scheme re-applied: {PowerMode.name_of(self._requested_power_mode)}",
                extra={"event": "power_scheme_applied"},
            )
            self._log_event("power_scheme_applied", scheme=str(self._requested_power_mode))

    def _tdp_targets(self) -> dict[PowerRail, float]:
        if self.autotdp_job.running:
            setpoint = self.controller.output.read()
            if setpoint is not None:
                return {rail: setpoint for rail in TDP_RAILS}
        return dict(self._requested_tdp)

    def _apply_tdp_rails(self, targets: dict[PowerRail, float]) -> bool:
        processor = self.processor
        derate = (
            processor.vendor == ProcessorVendor.AMD and self._requested_power_mode == PowerMode.BETTER_BATTERY
        )
        done = True
        degraded = False
        for rail in TDP_RAILS:
            if rail == PowerRail.STAPM and not processor.has_stapm:
                continue
            target = targets[rail]
            if derate:
                target = float(math.trunc(target * BETTER_BATTERY_DERATE))

            read = processor.current_limits.get(rail, 0.0)
            if read <= 0 or read > READBACK_MAX_WATTS:
                degraded = True
            if read != target:
                processor.set_tdp_limit(rail, target)
                done = False
                logger.debug(
                    f"tdp {rail.name.lower()} read={read:.2f} set={target:.2f}", extra={"event": "tdp_write"}
                )

        self.cpu_job.interval_ms = self.cfg.watchdog.cpu_degraded_ms if degraded else self._cpu_interval_ms
        return done

    def _apply_msr_rails(self, targets: dict[PowerRail, float]) -> bool:
        processor = self.processor
        slow = processor.current_limits.get(PowerRail.MSR_SLOW, 0.0)
        fast = processor.current_limits.get(PowerRail.MSR_FAST, 0.0)
        if not slow or not fast:
            raise HardwareWriteSkipped("MSR limits not read back yet")

        wanted = (int(targets[PowerRail.SLOW]), int(targets[PowerRail.FAST]))
        if (slow, fast) != wanted:
            processor.set_msr_limit(*wanted)
            logger.debug(f"msr set slow={wanted[0]} fast={wanted[1]}", extra={"event": "msr_write"})
            return False
        return True

    def _cpu_tick(self) -> None:
        processor = self.processor
        if not processor.is_initialized:
            return
        targets = self._tdp_targets()
        try:
            tdp_done = self._apply_tdp_rails(targets)
            msr_done = self._apply_msr_rails(targets) if processor.has_msr else True
        except HardwareWriteSkipped as exc:
            logger.debug(f"cpu limit tick skipped: {exc}", extra={"event": "hardware_write_skipped"})
            return
        except InitializationBlocked as exc:
            self._block_tdp(str(exc))
            return

        if tdp_done and msr_done and self.cpu_job.pending_stop:
            self.cpu_job.stop()
            self._log_event("cpu_limit_converged")

    def _gpu_tick(self) -> None:
        processor = self.processor
        if not processor.is_initialized:
            return
        current = processor.current_gfx_clock
        wanted = self._requested_gfx_clock
        if not wanted:
            # No clock requested: the driver owns it, nothing left to converge.
            if self.gpu_job.pending_stop:
                self.gpu_job.stop()
                self._log_event("gpu_clock_converged")
            return
        if not current:
            return

        done = False
        if current != wanted:
            processor.set_gpu_clock(wanted)
            logger.debug(f"gpu clock read={current:.0f} set={wanted:.0f}", extra={"event": "gpu_write"})
        else:
            done = True

        if done and self.gpu_job.pending_stop:
            self.gpu_job.stop()
            self._log_event("gpu_clock_converged")

    def _sensor_tick(self) -> None:
        channel = self.channel
        reconnect_s = self.cfg.telemetry.reconnect_ms / 1000.0
        if not channel.connected:
            now = time.monotonic()
            if now < self._next_connect_at:
                return
            self._next_connect_at = now + reconnect_s
            try:
                channel.connect()
            except TelemetryUnavailable as exc:
                logger.debug(f"telemetry unavailable: {exc}", extra={"event": "telemetry_unavailable"})
                return
            self._log_event("telemetry_connected", groups=len(channel.groups))

        try:
            channel.poll_readings()
        except TelemetryDisconnected:
            self.signals.publish(TelemetrySignals())
            self._next_connect_at = time.monotonic() + reconnect_s
            return

        signals = channel.signals(self.signal_names)
        self.signals.publish(signals)
        logger.debug(
            f"signals frame_time_ms={signals.frame_time_ms} fps={signals.fps} package_power={signals.package_power}",
            extra={"event": "telemetry_signals"},
        )

    def _autotdp_tick(self) -> None:
        if not self.processor.is_initialized:
            return
        signals = self.signals.read() or TelemetrySignals()
        result = self.controller.tick(signals)

        if result.stopped:
            self.autotdp_job.stop()
            if not self.cfg.performance.tdp_watchdog_enabled:
                self.cpu_job.request_stop()
            self._log_event("autotdp_stopped")
            return
        if result.skipped:
            return
        if result.transitioned or result.reason:
            self._log_event(
                "autotdp_state",
                previous=result.previous_state.value,
                state=result.state.value,
                reason=result.reason,
                setpoint=result.setpoint,
            )
        if result.setpoint is not None and (not self.cpu_job.running or self.cpu_job.pending_stop):
            self.start_tdp_watchdog()

    def status(self) -> dict[str, Any]:
        return {
            "tdp_blocked": self.tdp_blocked,
            "telemetry_connected": self.channel.connected,
            "power_mode": PowerMode.name_of(self._requested_power_mode),
            "requested_tdp": {r.name.lower(): v for r, v in self._requested_tdp.items()},
            "fallback_tdp": {r.name.lower(): v for r, v in self._fallback_tdp.items()},
            "requested_gfx_clock": self._requested_gfx_clock,
            "active_profile": self.active_profile.name if self.active_profile else None,
            "controller": self.controller.status(),
            "processor": self.processor.status(),
            "jobs": [job.status() for job in self.scheduler.jobs],
        }
