"""Performance curves stored as data, selectable per running application."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

import psutil

from .curve import PerformanceCurve
from .errors import CurveError

logger = logging.getLogger("autotdp.control")

DEFAULT_APPLICATION = "default"

# Measured on a Ryzen 7 4800U handheld; a generic starting point that the
# calibration pulls toward the running game.
DEFAULT_CURVE_POINTS: tuple[tuple[float, float], ...] = (
    (5, 13.766), (6, 15.366), (7, 23.533), (8, 33.4666), (9, 43.5), (10, 50.43),
    (11, 53.166), (12, 58.766), (13, 61.566), (14, 64.233), (15, 66.866), (16, 68.10),
    (17, 69.666), (18, 69.10), (19, 70.166), (20, 70.73), (21, 70.73), (22, 71.033),
    (23, 71.1), (24, 71.733), (25, 72.366),
)


def _key(application: str) -> str:
    return application.strip().lower()


class CurveLibrary:
    def __init__(self, min_tdp: float = 5.0, max_tdp: float = 25.0, damping: float = 0.96) -> None:
        self._defaults: dict[str, Any] = {"min_tdp": min_tdp, "max_tdp": max_tdp, "damping": damping}
        self._curves: dict[str, PerformanceCurve] = {
            DEFAULT_APPLICATION: PerformanceCurve.from_points(
                DEFAULT_CURVE_POINTS, application=DEFAULT_APPLICATION, **self._defaults
            )
        }

    @property
    def applications(self) -> list[str]:
        return sorted(self._curves)

    def add(self, curve: PerformanceCurve) -> None:
        if not curve.application:
            raise CurveError("curve has no application name")
        self._curves[_key(curve.application)] = curve

    def load_file(self, path: Path) -> PerformanceCurve:
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise CurveError(f"{path.name}: curve document must be an object")
        raw.setdefault("application", path.stem)
        curve = PerformanceCurve.from_dict(raw, **self._defaults)
        self.add(curve)
        return curve

    def load_dir(self, directory: Path) -> int:
        if not directory.is_dir():
            return 0
        loaded = 0
        for path in sorted(directory.glob("*.json")):
            try:
                self.load_file(path)
                loaded += 1
            except (OSError, ValueError) as exc:
                logger.warning(f"skipping curve {path.name}: {exc}", extra={"event": "curve_load_failed"})
        return loaded

    def save(self, curve: PerformanceCurve, directory: Path) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{_key(curve.application or DEFAULT_APPLICATION)}.json"
        path.write_text(json.dumps(curve.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
        return path

    def curve_for(self, application: str | None) -> PerformanceCurve:
        """Fresh copy of the curve for ``application``; falls back to the default curve."""
        curve = self._curves.get(_key(application or DEFAULT_APPLICATION))
        if curve is None:
            curve = self._curves[DEFAULT_APPLICATION]
        return curve.copy()

    def detect_application(self, candidates: Iterable[str] | None = None) -> str | None:
        """Most recently started process that has a curve in the library."""
        names = {_key(c) for c in (candidates or self._curves)} - {DEFAULT_APPLICATION}
        if not names:
            return None
        best: tuple[float, str] | None = None
        for proc in psutil.process_iter(["name", "create_time"]):
            name = _key(proc.info.get("name") or "")
            if name not in names:
                continue
            created = proc.info.get("create_time") or 0.0
            if best is None or created > best[0]:
                best = (created, name)
        return best[1] if best else None
