"""Typed sensor telemetry models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum


class ReadingKind(IntEnum):
    NONE = 0
    TEMP = 1
    VOLT = 2
    FAN = 3
    CURRENT = 4
    POWER = 5
    CLOCK = 6
    USAGE = 7
    OTHER = 8


@dataclass(frozen=True)
class SharedMemoryHeader:
    signature: int
    version: int
    revision: int
    poll_time: int
    sensor_section_offset: int
    sensor_element_size: int
    sensor_element_count: int
    reading_section_offset: int
    reading_element_size: int
    reading_element_count: int


@dataclass(frozen=True)
class SensorReading:
    reading_kind: ReadingKind
    sensor_index: int
    sensor_id: int
    label_original: str
    label_user: str
    unit: str
    value: float
    value_min: float
    value_max: float
    value_avg: float


@dataclass
class SensorGroup:
    name_original: str
    name_user: str
    sensor_id: int = 0
    sensor_instance: int = 0
    readings: list[SensorReading] = field(default_factory=list)

    def find(self, label: str) -> SensorReading | None:
        """Last reading with this exact label; repeated labels overwrite earlier ones."""
        found = None
        for reading in self.readings:
            if reading.label_original == label:
                found = reading
        return found


@dataclass(frozen=True)
class TelemetrySignals:
    """Named signals extracted for the controller after each poll."""

    fps: float | None = None
    frame_time_ms: float | None = None
    package_power: float | None = None

    @property
    def usable(self) -> bool:
        return bool(self.fps) and bool(self.package_power)
