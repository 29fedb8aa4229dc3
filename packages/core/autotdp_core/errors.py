"""Errors raised by the hardware-facing side of the governor."""

from __future__ import annotations


class HardwareWriteSkipped(RuntimeError):
    """A rail write was held back because read-back state is not ready yet."""


class InitializationBlocked(RuntimeError):
    """Low-level register access is denied by an OS security policy."""
