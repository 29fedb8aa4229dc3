"""Binary layout of the monitor's sensor shared-memory region.

All structures are little-endian and byte-packed.  The header describes two
sections of fixed-size records: sensor (group) names and readings.  Record
strides come from the header rather than from the struct sizes below, because
newer monitor builds append fields to each record.
"""

from __future__ import annotations

import struct

from .models import ReadingKind, SensorGroup, SensorReading, SharedMemoryHeader

__all__ = [
    "DEAD_SIGNATURE",
    "HEADER_STRUCT",
    "LIVE_SIGNATURE",
    "READING_STRUCT",
    "SENSOR_STRUCT",
    "STRING_LEN",
    "UNIT_STRING_LEN",
    "decode_header",
    "decode_reading",
    "decode_sensor",
]


STRING_LEN = 128
UNIT_STRING_LEN = 16

# "HWiS" while the monitor is publishing, "DEAD" once it has shut down.
LIVE_SIGNATURE = 0x53695748
DEAD_SIGNATURE = 0x44414544

HEADER_STRUCT = struct.Struct("<IIIqIIIIII")
SENSOR_STRUCT = struct.Struct(f"<II{STRING_LEN}s{STRING_LEN}s")
READING_STRUCT = struct.Struct(f"<III{STRING_LEN}s{STRING_LEN}s{UNIT_STRING_LEN}sdddd")


def _decode_string(value: bytes) -> str:
    return value.split(b"\x00", 1)[0].decode("latin-1")


def decode_header(payload: bytes) -> SharedMemoryHeader:
    if len(payload) < HEADER_STRUCT.size:
        raise ValueError(f"header too small: {len(payload)} bytes (expected {HEADER_STRUCT.size})")
    return SharedMemoryHeader(*HEADER_STRUCT.unpack_from(payload))


def decode_sensor(payload: bytes) -> SensorGroup:
    """Decode one sensor-name record into an empty group shell."""
    if len(payload) < SENSOR_STRUCT.size:
        raise ValueError(f"sensor record too small: {len(payload)} bytes (expected {SENSOR_STRUCT.size})")
    sensor_id, sensor_instance, name_orig, name_user = SENSOR_STRUCT.unpack_from(payload)
    return SensorGroup(
        name_original=_decode_string(name_orig),
        name_user=_decode_string(name_user),
        sensor_id=sensor_id,
        sensor_instance=sensor_instance,
    )


def decode_reading(payload: bytes) -> SensorReading:
    if len(payload) < READING_STRUCT.size:
        raise ValueError(f"reading record too small: {len(payload)} bytes (expected {READING_STRUCT.size})")
    (
        kind,
        sensor_index,
        sensor_id,
        label_orig,
        label_user,
        unit,
        value,
        value_min,
        value_max,
        value_avg,
    ) = READING_STRUCT.unpack_from(payload)
    try:
        reading_kind = ReadingKind(kind)
    except ValueError:
        reading_kind = ReadingKind.OTHER
    return SensorReading(
        reading_kind=reading_kind,
        sensor_index=sensor_index,
        sensor_id=sensor_id,
        label_original=_decode_string(label_orig),
        label_user=_decode_string(label_user),
        unit=_decode_string(unit),
        value=value,
        value_min=value_min,
        value_max=value_max,
        value_avg=value_avg,
    )
