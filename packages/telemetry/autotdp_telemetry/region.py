"""Read-only access to the monitor's named shared-memory region."""

from __future__ import annotations

import mmap
import os
from dataclasses import dataclass
from pathlib import Path

from .errors import TelemetryDisconnected, TelemetryUnavailable


@dataclass
class RegionConfig:
    name: str
    path: Path | None = None


def _posix_path(name: str) -> Path:
    short = name.split("\\")[-1]
    return Path("/dev/shm") / short


class SharedMemoryRegion:
    """Thin wrapper over mmap for a named mapping or a file-backed capture.

    On Windows the region is opened by tag name.  Elsewhere, or when an explicit
    ``path`` is given, the region is a file (``/dev/shm`` or a captured dump).
    """

    def __init__(self, name: str, path: Path | None = None) -> None:
        self.config = RegionConfig(name=name, path=path)
        self._map: mmap.mmap | None = None
        self._file = None

    @property
    def is_open(self) -> bool:
        return self._map is not None and not self._map.closed

    @property
    def size(self) -> int:
        return len(self._map) if self.is_open else 0

    def _file_path(self) -> Path | None:
        if self.config.path is not None:
            return self.config.path
        if os.name == "nt":
            return None
        return _posix_path(self.config.name)

    def open(self, length: int) -> None:
        self.close()
        path = self._file_path()
        try:
            if path is None:
                self._map = mmap.mmap(-1, length, tagname=self.config.name, access=mmap.ACCESS_READ)
                return
            self._file = path.open("rb")
            self._map = mmap.mmap(self._file.fileno(), 0, access=mmap.ACCESS_READ)
        except (OSError, ValueError) as exc:
            self.close()
            raise TelemetryUnavailable(f"shared memory {self.config.name!r} not available: {exc}") from exc

    def close(self) -> None:
        if self._map is not None:
            try:
                self._map.close()
            except (OSError, ValueError):
                pass
            self._map = None
        if self._file is not None:
            self._file.close()
            self._file = None

    def read(self, offset: int, size: int) -> bytes:
        if not self.is_open:
            raise TelemetryDisconnected("shared memory region is not open")
        try:
            payload = self._map[offset : offset + size]
        except (OSError, ValueError) as exc:
            raise TelemetryDisconnected(f"read failed at offset {offset}: {exc}") from exc
        if len(payload) != size:
            raise TelemetryDisconnected(f"short read at offset {offset}: {len(payload)}/{size} bytes")
        return bytes(payload)
