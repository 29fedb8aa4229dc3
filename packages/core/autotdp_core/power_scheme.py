"""OS overlay power scheme contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from uuid import UUID


class PowerMode:
    BETTER_BATTERY = UUID("961cc777-2547-4f9d-8174-7d86181b8a7a")
    BETTER_PERFORMANCE = UUID("00000000-0000-0000-0000-000000000000")
    BEST_PERFORMANCE = UUID("ded574b5-45a0-4f42-8737-46345c09c238")

    ALL = (BETTER_BATTERY, BETTER_PERFORMANCE, BEST_PERFORMANCE)
    NAMES = {
        BETTER_BATTERY: "Better Battery",
        BETTER_PERFORMANCE: "Better Performance",
        BEST_PERFORMANCE: "Best Performance",
    }

    @classmethod
    def from_index(cls, index: int) -> UUID:
        if not 0 <= index < len(cls.ALL):
            raise ValueError(f"power mode index must be 0..{len(cls.ALL) - 1}, got {index}")
        return cls.ALL[index]

    @classmethod
    def name_of(cls, scheme: UUID | None) -> str:
        if scheme is None:
            return "unset"
        return cls.NAMES.get(scheme, str(scheme))


class PowerSchemeBackend(ABC):
    @abstractmethod
    def get_active_overlay_scheme(self) -> UUID | None:
        """Current overlay scheme, or None when the OS call fails."""

    @abstractmethod
    def set_active_overlay_scheme(self, scheme: UUID) -> None:
        ...


class InMemoryPowerScheme(PowerSchemeBackend):
    def __init__(self, active: UUID | None = PowerMode.BETTER_PERFORMANCE) -> None:
        self.active = active
        self.set_calls: list[UUID] = []

    def get_active_overlay_scheme(self) -> UUID | None:
        return self.active

    def set_active_overlay_scheme(self, scheme: UUID) -> None:
        self.set_calls.append(scheme)
        self.active = scheme
