"""!
@file appx.py
@brief Packaged-app (AppX/MSIX) query and removal.
@details Wraps the ``Get-AppxPackage``/``Remove-AppxPackage`` cmdlets. Queries
can be scoped to the current user or, with ``all_users``, machine-wide.
"""

from __future__ import annotations

import json
import subprocess
from typing import List

from . import command_runner, constants, logging_ext
from .models import PackagedAppEntry

__all__ = [
    "find_packages",
    "parse_package_json",
    "remove_package",
]

REMOVE_TIMEOUT = 300


def parse_package_json(raw: str) -> List[PackagedAppEntry]:
    """!
    @brief Convert ``ConvertTo-Json`` output into entries.
    @details PowerShell emits a bare object for a single result and an array for
    several; entries without a full name are dropped and duplicates collapsed.
    """
    text = (raw or "").strip()
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logging_ext.get_human_logger().debug("Unparseable AppX query output: %s", text[:200])
        return []
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        return []

    entries: List[PackagedAppEntry] = []
    seen: set[str] = set()
    for item in data:
        if not isinstance(item, dict):
            continue
        full_name = str(item.get("PackageFullName") or "").strip()
        if not full_name or full_name in seen:
            continue
        seen.add(full_name)
        entries.append(PackagedAppEntry(name=str(item.get("Name") or full_name), full_name=full_name))
    return entries


def find_packages(
    name_pattern: str,
    *,
    all_users: bool = False,
    timeout: float | None = constants.QUERY_TIMEOUT,
) -> List[PackagedAppEntry]:
    """!
    @brief Find packages whose name contains ``name_pattern``.
    @param name_pattern Fuzzy package name.
    @param all_users Query every profile instead of the current user.
    @param timeout Timeout in seconds.
    @returns Matching entries; empty on query failure.
    """
    pattern = name_pattern.strip()
    if not pattern:
        return []
    scope = " -AllUsers" if all_users else ""
    script = (
        f"Get-AppxPackage -Name {command_runner.ps_quote('*' + pattern + '*')}{scope} "
        "-ErrorAction SilentlyContinue | Select-Object Name, PackageFullName | ConvertTo-Json -Compress"
    )
    try:
        result = command_runner.run_powershell(script, event="appx_query", timeout=timeout)
    except subprocess.TimeoutExpired:
        logging_ext.get_human_logger().warning("Timeout querying packaged apps for %s", pattern)
        return []
    if result.returncode != 0:
        return []
    return parse_package_json(result.stdout)


def remove_package(
    full_name: str,
    *,
    all_users: bool = False,
    timeout: float | None = REMOVE_TIMEOUT,
) -> None:
    """!
    @brief Remove a package by its full name.
    @throws subprocess.CalledProcessError When the cmdlet fails.
    """
    scope = " -AllUsers" if all_users else ""
    script = f"Remove-AppxPackage -Package {command_runner.ps_quote(full_name)}{scope} -ErrorAction Stop"
    command_runner.run_powershell(
        script,
        event="appx_remove",
        timeout=timeout,
        check=True,
        extra={"package": full_name},
    )
