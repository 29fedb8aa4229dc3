"""Diagnostics export helpers for local support bundles."""

from __future__ import annotations

import json
import platform
import re
import tempfile
import zipfile
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import UUID

import psutil

from autotdp_control import CurveLibrary
from autotdp_telemetry import TelemetryChannel, TelemetryError, monitor_process_running

from .config import AppConfig, config_path, curves_path
from .logging_setup import log_dir
from .platform_checks import driver_blocklist_enabled


_SECRET_RE = re.compile(r"(token|secret|password|apikey|api_key|auth)", re.IGNORECASE)


def _jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, (Path, UUID)):
        return str(value)
    return value


def redact(value: Any) -> Any:
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if _SECRET_RE.search(str(k)):
                out[k] = "***REDACTED***"
            else:
                out[k] = redact(v)
        return out
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


def describe_telemetry(channel: TelemetryChannel) -> dict[str, Any]:
    """Connect once, poll once and describe what the monitor publishes."""
    try:
        channel.connect()
        channel.poll_readings()
    except TelemetryError as exc:
        return {"available": False, "error": str(exc)}
    try:
        header = channel.header
        return {
            "available": True,
            "version": header.version if header else None,
            "revision": header.revision if header else None,
            "groups": [
                {"name": g.name_original, "readings": len(g.readings)} for g in channel.groups
            ],
        }
    finally:
        channel.close()


def build_doctor_payload(cfg: AppConfig, channel: TelemetryChannel | None = None) -> dict[str, Any]:
    t = cfg.telemetry
    channel = channel or TelemetryChannel(
        name=t.shared_memory_name,
        path=Path(t.shared_memory_path) if t.shared_memory_path else None,
        monitor_processes=t.monitor_processes,
    )
    c = cfg.controller
    library = CurveLibrary(min_tdp=c.min_tdp, max_tdp=c.max_tdp, damping=c.rescale_damping)
    loaded = library.load_dir(curves_path(cfg))
    return {
        "ts_utc": datetime.now(timezone.utc).isoformat(),
        "platform": platform.platform(),
        "python": platform.python_version(),
        "cpu_count": psutil.cpu_count(logical=True),
        "processor": platform.processor(),
        "config": redact(asdict(cfg)),
        "monitor_running": monitor_process_running(t.monitor_processes),
        "telemetry": describe_telemetry(channel),
        "driver_blocklist_enabled": driver_blocklist_enabled(),
        "curves": {"loaded": loaded, "applications": library.applications},
    }


class DiagnosticsExporter:
    def __init__(self, app_name: str = "AutoTDP") -> None:
        self.app_name = app_name

    def bundle(
        self,
        cfg: AppConfig,
        doctor_payload: dict[str, Any],
        recent_events: list[dict[str, Any]] | None = None,
        output_dir: Path | None = None,
        logs_dir: Path | None = None,
    ) -> Path:
        output_base = output_dir or Path(tempfile.gettempdir())
        output_base.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        zip_path = output_base / f"autotdp-diagnostics-{stamp}.zip"

        logs_base = logs_dir or log_dir()
        logs = sorted(logs_base.glob("*.log*"))

        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            manifest = {
                "app": self.app_name,
                "created_utc": datetime.now(timezone.utc).isoformat(),
                "host": platform.platform(),
                "python": platform.python_version(),
                "config_path": str(config_path()),
                "log_dir": str(logs_base),
            }
            zf.writestr("manifest.json", json.dumps(manifest, indent=2, sort_keys=True))
            zf.writestr("doctor.json", json.dumps(redact(doctor_payload), indent=2, sort_keys=True, default=_jsonable))
            zf.writestr("config.redacted.json", json.dumps(redact(asdict(cfg)), indent=2, sort_keys=True))
            zf.writestr(
                "governor_events.json",
                json.dumps(redact(recent_events or []), indent=2, sort_keys=True, default=_jsonable),
            )

            for item in logs:
                zf.write(item, arcname=f"logs/{item.name}")

        return zip_path
