"""Core governor services: settings, watchdog scheduling, hardware contracts and diagnostics."""

from .config import AppConfig, load_config, save_config
from .diagnostics import DiagnosticsExporter, build_doctor_payload
from .errors import HardwareWriteSkipped, InitializationBlocked
from .governor import Governor, Profile, controller_settings
from .hardware import DryRunProcessor, PowerRail, Processor, ProcessorVendor, RequestOrigin, TdpRequest
from .power_scheme import InMemoryPowerScheme, PowerMode, PowerSchemeBackend
from .scheduler import PeriodicJob, WatchdogScheduler

__all__ = [
    "AppConfig",
    "DiagnosticsExporter",
    "DryRunProcessor",
    "Governor",
    "HardwareWriteSkipped",
    "InMemoryPowerScheme",
    "InitializationBlocked",
    "PeriodicJob",
    "PowerMode",
    "PowerRail",
    "PowerSchemeBackend",
    "Processor",
    "ProcessorVendor",
    "Profile",
    "RequestOrigin",
    "TdpRequest",
    "WatchdogScheduler",
    "build_doctor_payload",
    "controller_settings",
    "load_config",
    "save_config",
]
