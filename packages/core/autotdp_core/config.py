"""Persistent governor settings schema and load/save helpers."""

from __future__ import annotations

import json
import logging
import os
import platform
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from autotdp_telemetry.channel import DEFAULT_SHARED_MEMORY_NAME

logger = logging.getLogger("autotdp.config")

CONFIG_VERSION = 2


@dataclass
class TelemetryConfig:
    shared_memory_name: str = DEFAULT_SHARED_MEMORY_NAME
    shared_memory_path: str | None = None
    reconnect_ms: int = 3000
    monitor_processes: list[str] = field(default_factory=lambda: ["HWiNFO64.exe", "HWiNFO32.exe"])
    require_monitor_process: bool = False
    fps_group: str = "RTSS"
    framerate_label: str = "Framerate"
    frame_time_label: str = "Frame Time"
    cpu_group: str = "CPU [#0]: AMD Ryzen 7 4800U: Enhanced"
    package_power_label: str = "CPU Package Power"


@dataclass
class PerformanceConfig:
    tdp_sustained: float = 15.0
    tdp_boost: float = 15.0
    gpu_clock: float = 0.0
    autotdp_fps_target: float = 60.0
    autotdp_enabled: bool = False
    tdp_watchdog_enabled: bool = False
    gpu_watchdog_enabled: bool = False
    power_mode: int = 1


@dataclass
class ControllerConfig:
    min_tdp: float = 5.0
    max_tdp: float = 25.0
    bias_attempts: int = 3
    fps_tolerance_percent: float = 10.0
    fps_response_ms: int = 1300
    settle_margin_ms: int = 400
    rescale_damping: float = 0.96
    fps_filter_min_cutoff: float = 0.15
    fps_filter_beta: float = 0.1
    tdp_filter_min_cutoff: float = 0.25
    tdp_filter_beta: float = 0.2
    scene_detection: bool = True
    scene_error_percent: float = 25.0
    scene_error_ms: int = 3000
    error_clamp_low: float = -5.0
    error_clamp_high: float = 15.0
    bias_fps_min: float = 20.0
    bias_fps_max: float = 90.0


@dataclass
class WatchdogConfig:
    power_ms: int = 1000
    cpu_ms: int = 1000
    cpu_intel_ms: int = 5000
    cpu_degraded_ms: int = 3000
    gpu_ms: int = 1000
    sensor_ms: int = 100
    autotdp_ms: int = 100


@dataclass
class DiagnosticsConfig:
    keep_log_files: int = 7


@dataclass
class AppConfig:
    config_version: int = CONFIG_VERSION
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    watchdog: WatchdogConfig = field(default_factory=WatchdogConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)
    curves_dir: str | None = None


DEFAULT_CONFIG = AppConfig()


def config_root() -> Path:
    system = platform.system()
    if system == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        return base / "AutoTDP"
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "AutoTDP"
    return Path.home() / ".config" / "autotdp"


def config_path() -> Path:
    return config_root() / "config.json"


def curves_path(cfg: AppConfig) -> Path:
    if cfg.curves_dir:
        return Path(cfg.curves_dir)
    return config_root() / "curves"


def _merge(dataclass_type, raw: dict[str, Any]):
    defaults = dataclass_type()  # type: ignore[misc]
    if not isinstance(raw, dict):
        return defaults
    for k, v in raw.items():
        if hasattr(defaults, k):
            setattr(defaults, k, v)
    return defaults


def _coerce(value: Any, kind: type, default: Any) -> Any:
    try:
        if kind is bool and isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return kind(value)
    except (TypeError, ValueError):
        return default


def _normalize_telemetry(cfg: AppConfig) -> None:
    t = cfg.telemetry
    t.reconnect_ms = max(500, _coerce(t.reconnect_ms, int, 3000))
    if isinstance(t.monitor_processes, str):
        t.monitor_processes = [t.monitor_processes]
    t.monitor_processes = [str(p) for p in (t.monitor_processes or [])]


def _normalize_performance(cfg: AppConfig) -> None:
    p = cfg.performance
    defaults = PerformanceConfig()
    p.tdp_sustained = _coerce(p.tdp_sustained, float, defaults.tdp_sustained)
    p.tdp_boost = _coerce(p.tdp_boost, float, defaults.tdp_boost)
    p.gpu_clock = _coerce(p.gpu_clock, float, defaults.gpu_clock)
    p.autotdp_fps_target = _coerce(p.autotdp_fps_target, float, defaults.autotdp_fps_target)
    p.autotdp_enabled = _coerce(p.autotdp_enabled, bool, defaults.autotdp_enabled)
    p.tdp_watchdog_enabled = _coerce(p.tdp_watchdog_enabled, bool, defaults.tdp_watchdog_enabled)
    p.gpu_watchdog_enabled = _coerce(p.gpu_watchdog_enabled, bool, defaults.gpu_watchdog_enabled)
    p.power_mode = max(0, min(2, _coerce(p.power_mode, int, defaults.power_mode)))


def _normalize_controller(cfg: AppConfig) -> None:
    c = cfg.controller
    c.min_tdp = float(max(1.0, _coerce(c.min_tdp, float, 5.0)))
    c.max_tdp = float(max(c.min_tdp + 1.0, _coerce(c.max_tdp, float, 25.0)))
    c.bias_attempts = max(1, _coerce(c.bias_attempts, int, 3))
    c.fps_tolerance_percent = float(max(0.0, _coerce(c.fps_tolerance_percent, float, 10.0)))
    c.rescale_damping = float(_coerce(c.rescale_damping, float, 0.96))
    if c.rescale_damping <= 0:
        c.rescale_damping = 0.96
    c.error_clamp_low = float(min(0.0, _coerce(c.error_clamp_low, float, -5.0)))
    c.error_clamp_high = float(max(0.0, _coerce(c.error_clamp_high, float, 15.0)))
    c.bias_fps_min = float(max(1.0, _coerce(c.bias_fps_min, float, 20.0)))
    c.bias_fps_max = float(max(c.bias_fps_min, _coerce(c.bias_fps_max, float, 90.0)))


def _normalize_watchdog(cfg: AppConfig) -> None:
    w = cfg.watchdog
    for name, default in asdict(WatchdogConfig()).items():
        setattr(w, name, max(10, _coerce(getattr(w, name), int, default)))


def _migrate(raw: dict[str, Any]) -> dict[str, Any]:
    version = int(raw.get("config_version", 1))
    data = dict(raw)

    if version < 2:
        # v2 introduces the watchdog and diagnostics sections.
        data.setdefault("performance", {})
        data.setdefault("watchdog", {})
        data.setdefault("diagnostics", {})
        data["config_version"] = 2

    return data


def load_config(path: Path | None = None) -> AppConfig:
    path = path or config_path()
    if not path.exists():
        return AppConfig()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning(f"unreadable config {path}: {exc}", extra={"event": "config_unreadable"})
        return AppConfig()
    if not isinstance(raw, dict):
        return AppConfig()

    data = _migrate(raw)
    cfg = AppConfig(
        config_version=int(data.get("config_version", CONFIG_VERSION)),
        telemetry=_merge(TelemetryConfig, data.get("telemetry", {})),
        performance=_merge(PerformanceConfig, data.get("performance", {})),
        controller=_merge(ControllerConfig, data.get("controller", {})),
        watchdog=_merge(WatchdogConfig, data.get("watchdog", {})),
        diagnostics=_merge(DiagnosticsConfig, data.get("diagnostics", {})),
        curves_dir=data.get("curves_dir"),
    )

    _normalize_telemetry(cfg)
    _normalize_performance(cfg)
    _normalize_controller(cfg)
    _normalize_watchdog(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path | None = None) -> Path:
    cfg.config_version = CONFIG_VERSION
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True), encoding="utf-8")
    return path
