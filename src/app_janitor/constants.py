"""!
@brief Static data shared by the removal engine.
@details Centralises registry roots, installer flags, leftover directory
templates, and concurrency bounds so backends and orchestration modules work
from one source of truth.
"""
from __future__ import annotations

from typing import Dict, Tuple

try:  # pragma: no cover - Windows registry handles are optional on test hosts.
    import winreg
except ImportError:  # pragma: no cover - test scaffolding supplies substitutes.
    winreg = None  # type: ignore[assignment]


if winreg is not None:  # pragma: no branch - deterministic assignments.
    HKLM = winreg.HKEY_LOCAL_MACHINE
    HKCU = winreg.HKEY_CURRENT_USER
    HKCR = winreg.HKEY_CLASSES_ROOT
    HKU = winreg.HKEY_USERS
else:  # pragma: no cover - exercised implicitly in non-Windows CI.
    HKLM = 0x80000002
    HKCU = 0x80000001
    HKCR = 0x80000000
    HKU = 0x80000003


REGISTRY_ROOTS: Dict[str, int] = {
    "HKLM": HKLM,
    "HKCU": HKCU,
    "HKCR": HKCR,
    "HKU": HKU,
}

UNINSTALL_ROOTS: Tuple[Tuple[int, str], ...] = (
    (HKLM, r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"),
    (HKLM, r"SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall"),
    (HKCU, r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"),
)
"""!
@brief Hive roots scanned for classic uninstall records, in query order.
"""

MSIEXEC = "msiexec.exe"

MSI_SILENT_ARGS: Tuple[str, ...] = ("/qn", "/norestart")
"""!
@brief UI and reboot suppression arguments appended to every MSI removal.
"""

MSI_SUCCESS_CODES: Tuple[int, ...] = (0, 1605, 1641, 3010)
"""!
@brief ``msiexec`` exit codes treated as a successful removal.
@details ``1605`` reports an unknown product (already gone); ``1641`` and
``3010`` report success with a pending reboot.
"""

UNINSTALL_TIMEOUT = 3600
"""!
@brief Default ceiling in seconds for a single uninstaller invocation.
"""

QUERY_TIMEOUT = 120
"""!
@brief Default ceiling in seconds for PowerShell inventory queries.
"""

LEFTOVER_ROOT_VARIABLES: Tuple[Tuple[str, str], ...] = (
    ("ProgramFiles", r"C:\Program Files"),
    ("ProgramFiles(x86)", r"C:\Program Files (x86)"),
)
"""!
@brief Environment variables (with fallbacks) probed by ``--recurse``.
"""

DEEP_CLEAN_ROOT_VARIABLES: Tuple[Tuple[str, str], ...] = LEFTOVER_ROOT_VARIABLES + (
    ("APPDATA", ""),
    ("LOCALAPPDATA", ""),
    ("ProgramData", r"C:\ProgramData"),
)
"""!
@brief Environment variables probed by the escalation deep clean.
@details Per-user roots carry no fallback so they are skipped when the
variable is absent instead of guessing a profile path.
"""

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 16
DEFAULT_CONCURRENCY = 4

DEFAULT_LOG_SUBDIRECTORY = ("AppJanitor", "logs")

REPORT_PREFIX = "removal-report"


__all__ = [
    "DEEP_CLEAN_ROOT_VARIABLES",
    "DEFAULT_CONCURRENCY",
    "DEFAULT_LOG_SUBDIRECTORY",
    "HKCR",
    "HKCU",
    "HKLM",
    "HKU",
    "LEFTOVER_ROOT_VARIABLES",
    "MAX_CONCURRENCY",
    "MIN_CONCURRENCY",
    "MSIEXEC",
    "MSI_SILENT_ARGS",
    "MSI_SUCCESS_CODES",
    "QUERY_TIMEOUT",
    "REGISTRY_ROOTS",
    "REPORT_PREFIX",
    "UNINSTALL_ROOTS",
    "UNINSTALL_TIMEOUT",
]
