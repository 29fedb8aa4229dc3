"""Telemetry channel error types."""

from __future__ import annotations


class TelemetryError(RuntimeError):
    pass


class TelemetryUnavailable(TelemetryError):
    """Monitoring application is not running or its sensor region is not live."""


class TelemetryDisconnected(TelemetryError):
    """The shared region vanished or became unreadable during a scan."""
