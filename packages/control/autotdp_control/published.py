"""Single-writer, multi-reader value shared across scheduler domains."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Snapshot(Generic[T]):
    value: T | None
    version: int
    published_utc: datetime | None


class PublishedValue(Generic[T]):
    """Readers take whole snapshots; the writer swaps in a new one per publish.

    Rebinding one attribute to a new immutable snapshot is atomic, so readers
    never wait on the writer and never see a torn value.
    """

    def __init__(self) -> None:
        self._snapshot: Snapshot[T] = Snapshot(value=None, version=0, published_utc=None)

    def publish(self, value: T | None) -> None:
        current = self._snapshot
        self._snapshot = Snapshot(value=value, version=current.version + 1, published_utc=datetime.now(timezone.utc))

    def read(self) -> T | None:
        return self._snapshot.value

    def snapshot(self) -> Snapshot[T]:
        return self._snapshot
