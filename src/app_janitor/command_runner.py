"""!
@brief Shared subprocess execution helper.
@details Every external executable the removal engine launches (uninstallers,
``msiexec``, ``reg.exe``, ``taskkill.exe``, PowerShell) goes through
:func:`run_command`, which records ``*_plan``/``*_result`` telemetry and turns
unsuccessful exits into :class:`subprocess.CalledProcessError` when asked to.
Dry-run handling lives in :mod:`app_janitor.gate`, so this module always
executes.
"""
from __future__ import annotations

import os
import subprocess
import time
from dataclasses import dataclass
from typing import Collection, Iterable, Mapping, MutableMapping, Sequence

from . import logging_ext

_SANITIZE_BLOCKLIST = {
    "PYTHONPATH",
    "PYTHONHOME",
    "PYTHONWARNINGS",
    "VIRTUAL_ENV",
    "CONDA_PREFIX",
    "__PYVENV_LAUNCHER__",
}


@dataclass
class CommandResult:
    """!
    @brief Outcome metadata returned by :func:`run_command`.
    @details ``returncode`` is ``127`` when the executable could not be found
    and ``error`` carries the operating system message in that case.
    """

    command: Sequence[str] | str
    returncode: int
    stdout: str
    stderr: str
    duration: float
    timed_out: bool = False
    error: str | None = None


def sanitize_environment(
    *,
    base_env: Mapping[str, str] | None = None,
    remove: Iterable[str] | None = None,
) -> MutableMapping[str, str]:
    """!
    @brief Produce a child environment without interpreter/virtualenv leakage.
    """

    source = base_env if base_env is not None else os.environ
    environment: MutableMapping[str, str] = {str(k): str(v) for k, v in source.items() if v is not None}
    for key in _SANITIZE_BLOCKLIST:
        environment.pop(key, None)
    for key in remove or ():
        environment.pop(key, None)
    return environment


def _display(command: Sequence[str] | str) -> str:
    if isinstance(command, str):
        return command
    return subprocess.list2cmdline([str(part) for part in command])


def run_command(
    command: Sequence[str] | str,
    *,
    event: str,
    timeout: float | None = None,
    check: bool = False,
    success_codes: Collection[int] = (0,),
    extra: Mapping[str, object] | None = None,
) -> CommandResult:
    """!
    @brief Execute ``command`` and emit structured telemetry.
    @details A string command is handed to the operating system verbatim, which
    is how registry uninstall strings must be launched on Windows; a sequence is
    quoted argument by argument.
    @param command Command line string or argument sequence.
    @param event Base event identifier recorded in machine logs.
    @param timeout Optional timeout in seconds.
    @param check Raise :class:`subprocess.CalledProcessError` when the exit code
    is not in ``success_codes`` (a missing executable counts as ``127``).
    @param success_codes Exit codes considered successful.
    @param extra Mapping merged into machine log payloads.
    @returns :class:`CommandResult` describing the observed outcome.
    @raises subprocess.TimeoutExpired When ``check`` is set and the timeout hits.
    """

    human_logger = logging_ext.get_human_logger()
    machine_logger = logging_ext.get_machine_logger()

    argv: Sequence[str] | str = command if isinstance(command, str) else [str(part) for part in command]
    shown = _display(argv)
    payload: MutableMapping[str, object] = {"command": shown, "timeout": timeout}
    if extra:
        payload.update(extra)
    machine_logger.info(f"{event}_plan", extra={"event": f"{event}_plan", "call": dict(payload)})
    human_logger.debug("Executing: %s", shown)

    start = time.monotonic()
    try:
        completed = subprocess.run(  # noqa: S603 - intentional command execution
            argv,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
            env=sanitize_environment(),
        )
    except FileNotFoundError as exc:
        duration = time.monotonic() - start
        machine_logger.error(
            f"{event}_missing",
            extra={"event": f"{event}_missing", "call": dict(payload), "error": str(exc)},
        )
        result = CommandResult(
            command=argv,
            returncode=127,
            stdout="",
            stderr=str(exc),
            duration=duration,
            error=str(exc),
        )
    except subprocess.TimeoutExpired as exc:
        duration = time.monotonic() - start
        machine_logger.error(
            f"{event}_timeout",
            extra={"event": f"{event}_timeout", "call": dict(payload), "duration": duration},
        )
        if check:
            raise
        return CommandResult(
            command=argv,
            returncode=1,
            stdout=str(exc.stdout or ""),
            stderr=str(exc.stderr or ""),
            duration=duration,
            timed_out=True,
            error="timeout",
        )
    else:
        duration = time.monotonic() - start
        result = CommandResult(
            command=argv,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration=duration,
        )
        machine_logger.info(
            f"{event}_result",
            extra={
                "event": f"{event}_result",
                "call": dict(payload),
                "result": {
                    "rc": result.returncode,
                    "duration_ms": round(duration * 1000, 3),
                    "stdout": result.stdout,
                    "stderr": result.stderr,
                },
            },
        )

    if result.returncode not in success_codes:
        human_logger.debug("Command %s exited with %s", shown, result.returncode)
        if check:
            raise subprocess.CalledProcessError(
                result.returncode,
                argv,
                output=result.stdout,
                stderr=result.stderr,
            )

    return result


def run_powershell(
    script: str,
    *,
    event: str,
    timeout: float | None = None,
    check: bool = False,
    extra: Mapping[str, object] | None = None,
) -> CommandResult:
    """!
    @brief Run a PowerShell snippet non-interactively.
    """

    return run_command(
        ["powershell.exe", "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command", script],
        event=event,
        timeout=timeout,
        check=check,
        extra=extra,
    )


def ps_quote(value: str) -> str:
    """!
    @brief Quote ``value`` as a single-quoted PowerShell string literal.
    """

    return "'" + str(value).replace("'", "''") + "'"


__all__ = [
    "CommandResult",
    "ps_quote",
    "run_command",
    "run_powershell",
    "sanitize_environment",
]
