"""Hardware sink contract: power-limit and GPU-clock writes plus their read-back."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any

logger = logging.getLogger("autotdp.hardware")

# Read-back limits outside this range mean the driver has not reported yet.
READBACK_MAX_WATTS = 255


class PowerRail(IntEnum):
    SLOW = 0
    STAPM = 1
    FAST = 2
    MSR_SLOW = 3
    MSR_FAST = 4


TDP_RAILS = (PowerRail.SLOW, PowerRail.STAPM, PowerRail.FAST)


class RequestOrigin(str, Enum):
    USER = "User"
    PROFILE = "Profile"
    CONTROLLER = "Controller"


class ProcessorVendor(str, Enum):
    AMD = "AMD"
    INTEL = "Intel"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class TdpRequest:
    rail: PowerRail
    wattage: float
    origin: RequestOrigin = RequestOrigin.USER


class Processor(ABC):
    """Vendor power interface.

    Writes are fire-and-forget. Confirmation arrives later through
    :meth:`on_limit_changed` and :meth:`on_gfx_clock_changed`, which the
    driver layer calls whenever it reads fresh values back.
    """

    vendor = ProcessorVendor.UNKNOWN

    def __init__(self) -> None:
        self.is_initialized = False
        self.current_limits: dict[PowerRail, float] = {rail: 0.0 for rail in PowerRail}
        self.current_gfx_clock = 0.0

    @property
    def has_stapm(self) -> bool:
        return self.vendor != ProcessorVendor.INTEL

    @property
    def has_msr(self) -> bool:
        return self.vendor == ProcessorVendor.INTEL

    def initialize(self) -> None:
        self.is_initialized = True
        logger.info(f"{self.vendor.value} processor initialized", extra={"event": "processor_initialized"})

    def stop(self) -> None:
        self.is_initialized = False
        logger.info(f"{self.vendor.value} processor stopped", extra={"event": "processor_stopped"})

    @abstractmethod
    def set_tdp_limit(self, rail: PowerRail, watts: float) -> None:
        ...

    @abstractmethod
    def set_gpu_clock(self, mhz: float) -> None:
        ...

    def set_msr_limit(self, slow_watts: int, fast_watts: int) -> None:
        raise NotImplementedError(f"{self.vendor.value} processors have no MSR power limits")

    def on_limit_changed(self, rail: PowerRail, limit: float) -> None:
        self.current_limits[rail] = float(limit)

    def on_gfx_clock_changed(self, mhz: float) -> None:
        self.current_gfx_clock = float(mhz)

    def status(self) -> dict[str, Any]:
        return {
            "vendor": self.vendor.value,
            "initialized": self.is_initialized,
            "limits": {rail.name.lower(): value for rail, value in self.current_limits.items()},
            "gfx_clock": self.current_gfx_clock,
        }


class DryRunProcessor(Processor):
    """Records writes instead of touching registers.

    With ``echo`` the written value is reported back immediately, which makes
    the watchdogs converge the way they would on a responsive driver.
    """

    def __init__(self, vendor: ProcessorVendor = ProcessorVendor.AMD, echo: bool = True) -> None:
        super().__init__()
        self.vendor = vendor
        self.echo = echo
        self.writes: list[tuple[str, Any]] = []

    def set_tdp_limit(self, rail: PowerRail, watts: float) -> None:
        self.writes.append(("tdp", (rail, watts)))
        logger.info(f"dry-run tdp {rail.name.lower()}={watts:.2f} W", extra={"event": "hardware_write"})
        if self.echo:
            self.on_limit_changed(rail, watts)

    def set_msr_limit(self, slow_watts: int, fast_watts: int) -> None:
        if not self.has_msr:
            super().set_msr_limit(slow_watts, fast_watts)
        self.writes.append(("msr", (slow_watts, fast_watts)))
        logger.info(f"dry-run msr slow={slow_watts} fast={fast_watts}", extra={"event": "hardware_write"})
        if self.echo:
            self.on_limit_changed(PowerRail.MSR_SLOW, slow_watts)
            self.on_limit_changed(PowerRail.MSR_FAST, fast_watts)

    def set_gpu_clock(self, mhz: float) -> None:
        self.writes.append(("gpu", mhz))
        logger.info(f"dry-run gpu clock={mhz:.0f} MHz", extra={"event": "hardware_write"})
        if self.echo:
            self.on_gfx_clock_changed(mhz)
