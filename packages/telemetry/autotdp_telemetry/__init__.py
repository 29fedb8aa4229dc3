"""Sensor telemetry ingestion from the hardware monitor's shared memory."""

from .channel import DEFAULT_SHARED_MEMORY_NAME, SignalNames, TelemetryChannel, monitor_process_running
from .errors import TelemetryDisconnected, TelemetryError, TelemetryUnavailable
from .models import ReadingKind, SensorGroup, SensorReading, SharedMemoryHeader, TelemetrySignals
from .region import SharedMemoryRegion

__all__ = [
    "DEFAULT_SHARED_MEMORY_NAME",
    "ReadingKind",
    "SensorGroup",
    "SensorReading",
    "SharedMemoryHeader",
    "SharedMemoryRegion",
    "SignalNames",
    "TelemetryChannel",
    "TelemetryDisconnected",
    "TelemetryError",
    "TelemetrySignals",
    "TelemetryUnavailable",
    "monitor_process_running",
]
