"""Sensor telemetry ingestion from the monitor's shared-memory region."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable

import psutil

from .errors import TelemetryDisconnected, TelemetryUnavailable
from .layout import HEADER_STRUCT, LIVE_SIGNATURE, decode_header, decode_reading, decode_sensor
from .models import SensorGroup, SharedMemoryHeader, TelemetrySignals
from .region import SharedMemoryRegion

logger = logging.getLogger("autotdp.telemetry")

DEFAULT_SHARED_MEMORY_NAME = "Global\\HWiNFO_SENS_SM2"
DEFAULT_MONITOR_PROCESSES = ("HWiNFO64.exe", "HWiNFO32.exe", "HWiNFO.exe")


@dataclass(frozen=True)
class SignalNames:
    fps_group: str = "RTSS"
    framerate_label: str = "Framerate"
    frame_time_label: str = "Frame Time"
    cpu_group: str = "CPU [#0]: AMD Ryzen 7 4800U: Enhanced"
    package_power_label: str = "CPU Package Power"


def monitor_process_running(names: Iterable[str] = DEFAULT_MONITOR_PROCESSES) -> bool:
    wanted = {n.lower() for n in names}
    for proc in psutil.process_iter(["name"]):
        name = (proc.info.get("name") or "").lower()
        if name in wanted:
            return True
    return False


def _section_end(header: SharedMemoryHeader) -> int:
    sensors = header.sensor_section_offset + header.sensor_element_size * header.sensor_element_count
    readings = header.reading_section_offset + header.reading_element_size * header.reading_element_count
    return max(HEADER_STRUCT.size, sensors, readings)


def _same_layout(a: SharedMemoryHeader, b: SharedMemoryHeader) -> bool:
    return replace(a, poll_time=0) == replace(b, poll_time=0)


class TelemetryChannel:
    """Owns the shared-memory handle and the latest sensor group snapshot.

    ``connect`` and ``poll_readings`` are driven by a single scheduler job.
    Readers on other threads only see whole snapshots: each poll builds a new
    group list and swaps it in, so a reader never observes a half-filled poll.
    The last snapshot stays readable after a disconnect.
    """

    def __init__(
        self,
        name: str = DEFAULT_SHARED_MEMORY_NAME,
        path: Path | None = None,
        monitor_processes: Iterable[str] = DEFAULT_MONITOR_PROCESSES,
        require_monitor_process: bool = False,
        region: SharedMemoryRegion | None = None,
    ) -> None:
        self._region = region or SharedMemoryRegion(name, path=path)
        self.monitor_processes = tuple(monitor_processes)
        self.require_monitor_process = require_monitor_process
        self._lock = threading.RLock()
        self._header: SharedMemoryHeader | None = None
        self._shells: list[SensorGroup] = []
        self._groups: list[SensorGroup] = []
        self._last_poll_utc: datetime | None = None
        self._disconnect_listeners: list[Callable[[], None]] = []

    @property
    def connected(self) -> bool:
        return self._region.is_open and self._header is not None

    @property
    def header(self) -> SharedMemoryHeader | None:
        return self._header

    @property
    def groups(self) -> list[SensorGroup]:
        return list(self._groups)

    @property
    def last_poll_utc(self) -> datetime | None:
        return self._last_poll_utc

    def add_disconnect_listener(self, callback: Callable[[], None]) -> None:
        self._disconnect_listeners.append(callback)

    def remove_disconnect_listener(self, callback: Callable[[], None]) -> None:
        if callback in self._disconnect_listeners:
            self._disconnect_listeners.remove(callback)

    def _emit_disconnected(self) -> None:
        for callback in list(self._disconnect_listeners):
            try:
                callback()
            except Exception:
                logger.exception("disconnect listener failed", extra={"event": "telemetry_listener_error"})

    def _read_header(self) -> SharedMemoryHeader:
        header = decode_header(self._region.read(0, HEADER_STRUCT.size))
        if header.signature != LIVE_SIGNATURE:
            raise TelemetryUnavailable(f"monitor region not live (signature 0x{header.signature:08X})")
        return header

    def connect(self) -> None:
        """Open the region and build the group layout; no-op when connected."""
        with self._lock:
            if self.connected:
                return
            if self.require_monitor_process and not monitor_process_running(self.monitor_processes):
                raise TelemetryUnavailable("monitoring application is not running")

            try:
                self._region.open(HEADER_STRUCT.size)
                header = self._read_header()
                if self._region.size < _section_end(header):
                    self._region.open(_section_end(header))
                self._header = header
                self.refresh_layout()
            except TelemetryUnavailable:
                self._drop_handle()
                raise
            except (TelemetryDisconnected, ValueError) as exc:
                self._drop_handle()
                raise TelemetryUnavailable(str(exc)) from exc

            logger.info(
                "telemetry connected",
                extra={"event": "telemetry_connected"},
            )

    def refresh_layout(self) -> None:
        """Rebuild the empty group shells from the sensor-name section."""
        with self._lock:
            header = self._header
            if header is None:
                raise TelemetryDisconnected("no header read yet")
            shells: list[SensorGroup] = []
            for index in range(header.sensor_element_count):
                offset = header.sensor_section_offset + index * header.sensor_element_size
                shells.append(decode_sensor(self._region.read(offset, header.sensor_element_size)))
            self._shells = shells
            for shell in shells:
                logger.debug(f"sensor group available: {shell.name_original}", extra={"event": "sensor_group"})

    def poll_readings(self) -> None:
        """Scan every reading record into a fresh snapshot.

        Raises :class:`TelemetryDisconnected` after dropping the handle when
        the region disappears, stops being live or changes layout mid-session.
        """
        with self._lock:
            if not self.connected:
                raise TelemetryDisconnected("telemetry channel is not connected")
            try:
                header = self._read_header()
                if not _same_layout(header, self._header):
                    raise TelemetryDisconnected("sensor layout changed")

                groups = [
                    replace(shell, readings=[]) for shell in self._shells
                ]
                for index in range(header.reading_element_count):
                    offset = header.reading_section_offset + index * header.reading_element_size
                    reading = decode_reading(self._region.read(offset, header.reading_element_size))
                    if reading.sensor_index >= len(groups):
                        raise TelemetryDisconnected(f"reading refers to unknown sensor {reading.sensor_index}")
                    groups[reading.sensor_index].readings.append(reading)
            except (TelemetryDisconnected, TelemetryUnavailable, ValueError) as exc:
                self._drop_handle()
                logger.warning(f"telemetry lost: {exc}", extra={"event": "telemetry_disconnected"})
                self._emit_disconnected()
                raise TelemetryDisconnected(str(exc)) from exc

            self._header = header
            self._groups = groups
            self._last_poll_utc = datetime.now(timezone.utc)

    def check_connection(self) -> bool:
        """Verify the monitor still publishes; drops the handle and signals otherwise."""
        with self._lock:
            if not self.connected:
                return False
            try:
                if self.require_monitor_process and not monitor_process_running(self.monitor_processes):
                    raise TelemetryUnavailable("monitoring application is not running")
                self._read_header()
            except (TelemetryDisconnected, TelemetryUnavailable) as exc:
                self._drop_handle()
                logger.warning(f"telemetry lost: {exc}", extra={"event": "telemetry_disconnected"})
                self._emit_disconnected()
                return False
            return True

    def lookup(self, group_name: str, label: str) -> float | None:
        """Value of ``label`` in the group named ``group_name``, exact match only.

        When the monitor publishes the same group or label more than once, the
        last record in region order wins.
        """
        value = None
        for group in self._groups:
            if group.name_original != group_name:
                continue
            reading = group.find(label)
            if reading is not None:
                value = reading.value
        return value

    def signals(self, names: SignalNames | None = None) -> TelemetrySignals:
        names = names or SignalNames()
        return TelemetrySignals(
            fps=self.lookup(names.fps_group, names.framerate_label),
            frame_time_ms=self.lookup(names.fps_group, names.frame_time_label),
            package_power=self.lookup(names.cpu_group, names.package_power_label),
        )

    def _drop_handle(self) -> None:
        self._region.close()
        self._header = None

    def close(self) -> None:
        with self._lock:
            self._drop_handle()
            self._shells = []
