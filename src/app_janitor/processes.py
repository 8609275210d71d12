"""!
@brief Process enumeration and termination helpers.
@details Escalation needs both the image name and the executable path of
running processes, which ``tasklist`` does not report, so enumeration asks
PowerShell for ``Get-Process`` JSON. Termination uses ``taskkill /F /T`` by
PID so the whole process tree goes away.
"""
from __future__ import annotations

import json
import os
import subprocess
from dataclasses import dataclass
from typing import Iterable, List

from . import command_runner, constants, logging_ext

TASKKILL_TIMEOUT = 30


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str
    path: str = ""

    def describe(self) -> str:
        return f"{self.name} (PID {self.pid})"


def parse_process_json(raw: str) -> List[ProcessInfo]:
    """!
    @brief Convert ``Get-Process | Select-Object Id, ProcessName, Path`` JSON.
    """

    text = (raw or "").strip()
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logging_ext.get_human_logger().debug("Unparseable process listing: %s", text[:200])
        return []
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        return []

    processes: List[ProcessInfo] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        try:
            pid = int(item.get("Id"))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            continue
        processes.append(
            ProcessInfo(pid=pid, name=str(item.get("ProcessName") or ""), path=str(item.get("Path") or ""))
        )
    return processes


def list_processes(*, timeout: float | None = constants.QUERY_TIMEOUT) -> List[ProcessInfo]:
    """!
    @brief Enumerate running processes; an unavailable PowerShell yields ``[]``.
    """

    human_logger = logging_ext.get_human_logger()
    try:
        result = command_runner.run_powershell(
            "Get-Process | Select-Object Id, ProcessName, Path | ConvertTo-Json -Compress",
            event="process_query",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        human_logger.warning("Timed out enumerating processes")
        return []
    if result.returncode != 0:
        human_logger.debug("Process enumeration exited with %s", result.returncode)
        return []
    return parse_process_json(result.stdout)


def match_processes(processes: Iterable[ProcessInfo], name: str, *, exclude_pids: Iterable[int] = ()) -> List[ProcessInfo]:
    """!
    @brief Processes whose name or executable path contains ``name`` (case-insensitive).
    """

    needle = name.strip().casefold()
    if not needle:
        return []
    excluded = set(exclude_pids)
    return [
        proc
        for proc in processes
        if proc.pid not in excluded and (needle in proc.name.casefold() or needle in proc.path.casefold())
    ]


def find_processes(name: str) -> List[ProcessInfo]:
    return match_processes(list_processes(), name, exclude_pids=(os.getpid(),))


def terminate_process(pid: int, *, timeout: float | None = TASKKILL_TIMEOUT) -> None:
    """!
    @brief Forcefully end ``pid`` and its children.
    @throws subprocess.CalledProcessError When ``taskkill`` fails.
    """

    command_runner.run_command(
        ["taskkill.exe", "/PID", str(pid), "/F", "/T"],
        event="terminate_process",
        timeout=timeout,
        check=True,
        extra={"pid": pid},
    )


__all__ = [
    "ProcessInfo",
    "find_processes",
    "list_processes",
    "match_processes",
    "parse_process_json",
    "terminate_process",
]
