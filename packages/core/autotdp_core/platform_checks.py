"""Host checks that gate low-level power-limit access."""

from __future__ import annotations

import platform


def _ci_config_key_path() -> str:
    return r"SYSTEM\CurrentControlSet\Control\CI\Config"


def driver_blocklist_enabled() -> bool:
    """True when Windows' vulnerable-driver block list (memory integrity) is on."""
    if platform.system() != "Windows":
        return False

    import winreg  # type: ignore

    try:
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, _ci_config_key_path(), 0, winreg.KEY_READ) as key:
            value, _ = winreg.QueryValueEx(key, "VulnerableDriverBlocklistEnable")
    except FileNotFoundError:
        return False
    try:
        return int(value) == 1
    except (TypeError, ValueError):
        return False

