"""!
@file package_manager.py
@brief PackageManagement (``Get-Package``) backend.
@details Covers software registered with PowerShell package providers
(``msi``, ``Programs``, ``NuGet``, ``Chocolatey`` and friends) that the
classic uninstall hives miss.
"""

from __future__ import annotations

import json
import subprocess
from typing import List

from . import command_runner, constants, logging_ext
from .models import PackageManagerEntry

__all__ = ["find_packages", "parse_package_json", "uninstall_package"]


def parse_package_json(raw: str) -> List[PackageManagerEntry]:
    """!
    @brief Convert ``Get-Package | ConvertTo-Json`` output into entries.
    """
    text = (raw or "").strip()
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logging_ext.get_human_logger().debug("Unparseable Get-Package output: %s", text[:200])
        return []
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        return []

    entries: List[PackageManagerEntry] = []
    for item in data:
        if not isinstance(item, dict) or not item.get("Name"):
            continue
        entries.append(
            PackageManagerEntry(
                name=str(item.get("Name")),
                provider=str(item.get("ProviderName") or ""),
                version=str(item.get("Version") or ""),
                handle=str(item.get("FastPackageReference") or ""),
            )
        )
    return entries


def find_packages(name_pattern: str, *, timeout: float | None = constants.QUERY_TIMEOUT) -> List[PackageManagerEntry]:
    """!
    @brief Fuzzy ``Get-Package`` lookup.
    @returns Matching entries; empty when the query fails or times out.
    """
    pattern = name_pattern.strip()
    if not pattern:
        return []
    script = (
        f"Get-Package -Name {command_runner.ps_quote('*' + pattern + '*')} -ErrorAction SilentlyContinue | "
        "Select-Object Name, ProviderName, Version, FastPackageReference | ConvertTo-Json -Compress"
    )
    try:
        result = command_runner.run_powershell(script, event="package_query", timeout=timeout)
    except subprocess.TimeoutExpired:
        logging_ext.get_human_logger().warning("Timeout querying package manager for %s", pattern)
        return []
    if result.returncode != 0:
        return []
    return parse_package_json(result.stdout)


def uninstall_package(entry: PackageManagerEntry, *, timeout: float | None = constants.UNINSTALL_TIMEOUT) -> None:
    """!
    @brief Forced provider-based uninstall of ``entry``.
    @details The package is re-selected by exact name, provider and version so
    a fuzzy pattern can never widen the removal.
    @throws subprocess.CalledProcessError When the cmdlet fails.
    """
    selector = f"Get-Package -Name {command_runner.ps_quote(entry.name)}"
    if entry.provider:
        selector += f" -ProviderName {command_runner.ps_quote(entry.provider)}"
    if entry.version:
        selector += f" -RequiredVersion {command_runner.ps_quote(entry.version)}"
    script = f"{selector} -ErrorAction Stop | Uninstall-Package -Force -ErrorAction Stop"
    command_runner.run_powershell(
        script,
        event="package_uninstall",
        timeout=timeout,
        check=True,
        extra={"package": entry.name, "provider": entry.provider, "version": entry.version},
    )
