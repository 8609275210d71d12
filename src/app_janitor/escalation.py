"""!
@brief Escalating removal for stubborn targets.
@details :class:`EscalationEngine` runs a linear state machine::

    START -> STANDARD_UNINSTALL -> [KILL_PROCESSES] -> [DEEP_CLEAN]
          -> PERSIST_REPORT -> DONE

The standard uninstall always runs first and its failure never stops the later
steps. Every gated action is appended to a :class:`RemovalReport` that is
written once, under a unique name, at the end of the run. Nothing is retried.
"""
from __future__ import annotations

import datetime as _dt
import enum
import re
import subprocess
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Mapping, Sequence

from . import constants, fs_tools, logging_ext, processes, registry_tools, uninstall_records, version
from .config import JanitorConfig
from .gate import ActionGate, ActionOutcome, ExecutionFailure
from .models import RecordKind, RegistryUninstallEntry, RemovalReport, RemovalTarget
from .processes import ProcessInfo
from .uninstaller import ActionKind, PartialFailure, SingleTargetUninstaller

_SLUG_PATTERN = re.compile(r"[^A-Za-z0-9._-]+")
_LOOKUP_ERRORS = (OSError, subprocess.SubprocessError, ValueError)

_ACTION_RECORD_KINDS = {
    ActionKind.UNINSTALL: RecordKind.UNINSTALLED,
    ActionKind.REMOVE_FOLDER: RecordKind.REMOVED_FOLDER,
    ActionKind.REMOVE_REGISTRY_KEY: RecordKind.REMOVED_REGISTRY_KEY,
}


class EscalationState(str, enum.Enum):
    START = "start"
    STANDARD_UNINSTALL = "standard-uninstall"
    KILL_PROCESSES = "kill-processes"
    DEEP_CLEAN = "deep-clean"
    PERSIST_REPORT = "persist-report"
    DONE = "done"


@dataclass
class EscalationResult:
    """!
    @brief Outcome of one escalation run.
    @details ``states`` lists the states visited in order. ``errors`` collects
    the failures observed in every step; the run itself never raises for them.
    """

    target: str
    report: RemovalReport
    report_path: Path | None = None
    states: List[EscalationState] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors)


class EscalationFailure(RuntimeError):
    """!
    @brief Raised by :func:`app_janitor.batch.escalation_operation` for runs with errors.
    """

    def __init__(self, result: EscalationResult) -> None:
        super().__init__(f"Escalation for '{result.target}' finished with {len(result.errors)} error(s)")
        self.result = result


def _status(outcome: ActionOutcome) -> str:
    if outcome.simulated:
        return "dry-run"
    if outcome.declined:
        return "declined"
    return outcome.status.value


def report_filename(target: str, *, moment: _dt.datetime | None = None) -> str:
    """!
    @brief Unique report file name: ``removal-report-{slug}-{UTC timestamp}-{8 hex}.json``.
    """

    moment = moment or _dt.datetime.now(tz=_dt.timezone.utc)
    slug = _SLUG_PATTERN.sub("_", target).strip("_.") or "target"
    return f"{constants.REPORT_PREFIX}-{slug[:48]}-{moment.strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:8]}.json"


class EscalationEngine:
    """!
    @brief Standard uninstall followed by optional process kill and deep clean.
    @details Process and registry inventories are injectable so the engine can
    be exercised without a live Windows host.
    """

    def __init__(
        self,
        config: JanitorConfig,
        gate: ActionGate,
        uninstaller: SingleTargetUninstaller,
        *,
        process_finder: Callable[[str], Sequence[ProcessInfo]] | None = None,
        record_scanner: Callable[[str], Sequence[RegistryUninstallEntry]] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.gate = gate
        self.uninstaller = uninstaller
        self._process_finder = process_finder or processes.find_processes
        self._record_scanner = record_scanner or uninstall_records.find_uninstall_records
        self._environ = environ

    def run(
        self,
        target: RemovalTarget | str,
        *,
        kill_processes: bool = False,
        deep_clean: bool = False,
        recurse: bool = False,
        dry_run: bool | None = None,
        force: bool | None = None,
    ) -> EscalationResult:
        """!
        @brief Execute the escalation state machine for ``target``.
        @returns The :class:`EscalationResult`, including the persisted report path.
        """

        human_logger = logging_ext.get_human_logger()
        machine_logger = logging_ext.get_machine_logger()

        removal_target = target if isinstance(target, RemovalTarget) else RemovalTarget.parse(target)
        dry_run = self.config.dry_run if dry_run is None else dry_run
        force = self.config.force if force is None else force
        name = removal_target.name
        result = EscalationResult(target=name, report=RemovalReport(name))

        def enter(state: EscalationState) -> None:
            result.states.append(state)
            machine_logger.info(
                "escalation_state",
                extra={"event": "escalation_state", "target": name, "state": state.value},
            )

        enter(EscalationState.START)
        human_logger.info("Starting stubborn removal of '%s'", name)

        enter(EscalationState.STANDARD_UNINSTALL)
        self._standard_uninstall(removal_target, result, recurse, dry_run, force)

        if kill_processes:
            enter(EscalationState.KILL_PROCESSES)
            self._kill_processes(name, result, dry_run, force)

        if deep_clean:
            enter(EscalationState.DEEP_CLEAN)
            self._deep_clean(name, result, dry_run, force)

        enter(EscalationState.PERSIST_REPORT)
        self._persist(result, dry_run)

        enter(EscalationState.DONE)
        return result

    def _standard_uninstall(
        self,
        target: RemovalTarget,
        result: EscalationResult,
        recurse: bool,
        dry_run: bool,
        force: bool,
    ) -> None:
        human_logger = logging_ext.get_human_logger()
        try:
            uninstall_result = self.uninstaller.uninstall(target, recurse=recurse, dry_run=dry_run, force=force)
        except PartialFailure as exc:
            human_logger.error("Standard uninstall of '%s' failed: %s", target.name, exc)
            uninstall_result = exc.result
            result.errors.extend(exc.result.failures)
        except Exception as exc:  # noqa: BLE001 - escalation continues past any standard-uninstall error
            human_logger.error("Standard uninstall of '%s' failed: %s", target.name, exc)
            result.errors.append(f"standard uninstall: {exc}")
            return

        for action in uninstall_result.actions:
            result.report.append(_ACTION_RECORD_KINDS[action.kind], action.detail, _status(action.outcome))

    def _gated(
        self,
        result: EscalationResult,
        kind: RecordKind,
        detail: str,
        description: str,
        operation: Callable[[], object],
        dry_run: bool,
        force: bool,
    ) -> None:
        try:
            outcome = self.gate.run(description, operation, dry_run=dry_run, force=force)
        except ExecutionFailure as exc:
            result.report.append(kind, detail, _status(exc.outcome))
            result.errors.append(f"{description}: {exc.outcome.reason}")
            return
        result.report.append(kind, detail, _status(outcome))

    def _kill_processes(self, name: str, result: EscalationResult, dry_run: bool, force: bool) -> None:
        human_logger = logging_ext.get_human_logger()
        try:
            matches = list(self._process_finder(name))
        except _LOOKUP_ERRORS as exc:
            human_logger.error("Process enumeration for '%s' failed: %s", name, exc)
            result.errors.append(f"process enumeration: {exc}")
            return

        if not matches:
            human_logger.info("No running processes match '%s'", name)
            return

        for proc in matches:
            pid = proc.pid
            self._gated(
                result,
                RecordKind.KILLED_PROCESS,
                proc.describe(),
                f"Terminate process {proc.describe()}",
                lambda: processes.terminate_process(pid),
                dry_run,
                force,
            )

    def _deep_clean(self, name: str, result: EscalationResult, dry_run: bool, force: bool) -> None:
        human_logger = logging_ext.get_human_logger()

        for folder in fs_tools.existing_paths(fs_tools.deep_clean_directories(name, environ=self._environ)):
            self._gated(
                result,
                RecordKind.REMOVED_FOLDER,
                str(folder),
                f"Remove folder {folder}",
                _bind(fs_tools.remove_path, folder),
                dry_run,
                force,
            )

        try:
            leftovers = list(self._record_scanner(name))
        except _LOOKUP_ERRORS as exc:
            human_logger.error("Registry re-scan for '%s' failed: %s", name, exc)
            result.errors.append(f"registry re-scan: {exc}")
            return

        for record in leftovers:
            handle = record.source_key_path
            self._gated(
                result,
                RecordKind.REMOVED_REGISTRY_KEY,
                handle,
                f"Remove registry key {handle} ({record.display_name})",
                _bind(registry_tools.delete_key, handle),
                dry_run,
                force,
            )

    def _persist(self, result: EscalationResult, dry_run: bool) -> None:
        human_logger = logging_ext.get_human_logger()
        directory = self.config.reports_directory
        path = directory / report_filename(result.target)
        metadata = {
            "dry_run": dry_run,
            "states": [state.value for state in result.states],
            "errors": list(result.errors),
            "version": version.__version__,
        }
        try:
            result.report_path = result.report.persist(path, metadata=metadata)
        except OSError as exc:
            human_logger.error("Could not write removal report %s: %s", path, exc)
            result.errors.append(f"persist report: {exc}")
            return
        human_logger.info("Removal report for '%s' written to %s", result.target, result.report_path)


def _bind(func: Callable[..., None], argument: object) -> Callable[[], None]:
    return lambda: func(argument)


__all__ = [
    "EscalationEngine",
    "EscalationFailure",
    "EscalationResult",
    "EscalationState",
    "report_filename",
]
