"""Builds synthetic monitor shared-memory images for telemetry tests."""

from __future__ import annotations

import struct
from pathlib import Path

HEADER = struct.Struct("<IIIqIIIIII")
SENSOR = struct.Struct("<II128s128s")
READING = struct.Struct("<III128s128s16sdddd")

LIVE = 0x53695748
DEAD = 0x44414544


def _text(value: str, size: int) -> bytes:
    return value.encode("latin-1").ljust(size, b"\x00")[:size]


def build_region(groups, signature: int = LIVE, poll_time: int = 1) -> bytes:
    """``groups`` is a list of ``(name, [(kind, label, unit, value, vmin, vmax, vavg), ...])``."""
    readings = []
    for index, (_, rows) in enumerate(groups):
        for row in rows:
            readings.append((index, row))

    sensor_offset = HEADER.size
    reading_offset = sensor_offset + SENSOR.size * len(groups)
    out = bytearray(
        HEADER.pack(
            signature,
            2,
            1,
            poll_time,
            sensor_offset,
            SENSOR.size,
            len(groups),
            reading_offset,
            READING.size,
            len(readings),
        )
    )
    for sensor_id, (name, _) in enumerate(groups):
        out += SENSOR.pack(0xF000 + sensor_id, 0, _text(name, 128), _text(name, 128))
    for index, (kind, label, unit, value, vmin, vmax, vavg) in readings:
        out += READING.pack(
            kind, index, 0xF000 + index, _text(label, 128), _text(label, 128), _text(unit, 16), value, vmin, vmax, vavg
        )
    return bytes(out)


def default_groups(fps: float = 60.0, power: float = 12.0):
    return [
        ("RTSS", [(8, "Framerate", "FPS", fps, 0.0, 144.0, fps), (8, "Frame Time", "ms", 1000.0 / fps, 0.0, 50.0, 16.6)]),
        (
            "CPU [#0]: AMD Ryzen 7 4800U: Enhanced",
            [(1, "CPU (Tctl/Tdie)", "\xb0C", 61.0, 40.0, 90.0, 60.0), (5, "CPU Package Power", "W", power, 3.0, 30.0, 11.0)],
        ),
    ]


def write_region(path: Path, payload: bytes) -> None:
    """Overwrite in place so an existing mapping of the file sees the new bytes."""
    if path.exists() and path.stat().st_size >= len(payload):
        with path.open("r+b") as fh:
            fh.write(payload)
        return
    path.write_bytes(payload)


def set_signature(path: Path, signature: int) -> None:
    with path.open("r+b") as fh:
        fh.write(struct.pack("<I", signature))
