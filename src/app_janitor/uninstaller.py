"""!
@brief Single-target uninstall algorithm.
@details :class:`SingleTargetUninstaller` turns one :class:`RemovalTarget`
into gated removal actions:

- an exact product code goes straight to ``msiexec /x {CODE} /qn /norestart``
  without consulting the resolver;
- otherwise every candidate returned by :class:`CandidateResolver` is removed
  with the backend matching its shape, and ``recurse`` additionally sweeps the
  ``Program Files`` leftovers and the originating uninstall key.

One failing candidate never stops the others. When at least one action
failed, :class:`PartialFailure` is raised after the last candidate so batch
and escalation callers can record the target as failed.
"""
from __future__ import annotations

import enum
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Mapping, Set

from . import (
    appx,
    command_parser,
    command_runner,
    constants,
    fs_tools,
    logging_ext,
    package_manager,
    registry_tools,
)
from .config import JanitorConfig
from .gate import ActionGate, ActionOutcome, ExecutionFailure
from .models import (
    CandidateEntry,
    PackagedAppEntry,
    PackageManagerEntry,
    RegistryUninstallEntry,
    RemovalTarget,
    describe_candidate,
)
from .resolver import CandidateResolver


class ActionKind(str, enum.Enum):
    UNINSTALL = "uninstall"
    REMOVE_FOLDER = "remove-folder"
    REMOVE_REGISTRY_KEY = "remove-registry-key"


@dataclass(frozen=True)
class ActionRecord:
    kind: ActionKind
    detail: str
    outcome: ActionOutcome


@dataclass
class UninstallResult:
    """!
    @brief Everything one :meth:`SingleTargetUninstaller.uninstall` call did.
    @details ``matched`` is ``False`` for the warned no-match case. ``failures``
    lists human-readable descriptions of the actions that failed.
    """

    target: str
    matched: bool = False
    candidates: int = 0
    actions: List[ActionRecord] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.failures)


class PartialFailure(RuntimeError):
    """!
    @brief Raised when some or all removal actions for a target failed.
    @details Carries the complete :class:`UninstallResult` so callers can still
    report what did succeed.
    """

    def __init__(self, result: UninstallResult) -> None:
        super().__init__(
            f"{len(result.failures)} removal action(s) failed for '{result.target}': " + "; ".join(result.failures)
        )
        self.result = result


class SingleTargetUninstaller:
    """!
    @brief Drive the removal of one target's candidates through the gate.
    """

    def __init__(
        self,
        config: JanitorConfig,
        gate: ActionGate,
        resolver: CandidateResolver | None = None,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.gate = gate
        self.resolver = resolver or CandidateResolver(config)
        self._environ = environ

    def uninstall(
        self,
        target: RemovalTarget | str,
        *,
        recurse: bool = False,
        dry_run: bool | None = None,
        force: bool | None = None,
    ) -> UninstallResult:
        """!
        @brief Remove every candidate behind ``target``.
        @param target Target object, or a raw identifier parsed with :meth:`RemovalTarget.parse`.
        @param recurse Also remove leftover install folders and the source registry key.
        @param dry_run Overrides ``config.dry_run`` when not ``None``.
        @param force Overrides ``config.force`` when not ``None``.
        @returns The :class:`UninstallResult` when no action failed.
        @throws PartialFailure When at least one action failed.
        """

        human_logger = logging_ext.get_human_logger()
        removal_target = target if isinstance(target, RemovalTarget) else RemovalTarget.parse(target)
        dry_run = self.config.dry_run if dry_run is None else dry_run
        force = self.config.force if force is None else force
        result = UninstallResult(target=removal_target.identifier)

        if removal_target.is_exact:
            result.matched = True
            result.candidates = 1
            self._uninstall_product_code(removal_target.product_code or "", result, dry_run, force)
            return self._finish(result)

        name = removal_target.name
        if not name:
            human_logger.warning("No application name given; pass a name or a product code.")
            return result

        candidates = self.resolver.resolve(name)
        if not candidates:
            human_logger.warning("No match found for '%s'", name)
            return result

        result.matched = True
        result.candidates = len(candidates)
        human_logger.info("Removing %d candidate(s) for '%s'", len(candidates), name)

        handled_paths: Set[str] = set()
        for entry in candidates:
            self._remove_candidate(entry, result, dry_run, force)
            if recurse:
                self._remove_leftovers(name, entry, result, dry_run, force, handled_paths)

        return self._finish(result)

    def remove_packaged_apps(
        self,
        target: RemovalTarget | str,
        *,
        dry_run: bool | None = None,
        force: bool | None = None,
    ) -> UninstallResult:
        """!
        @brief Remove every packaged app whose name contains the target name.
        @throws PartialFailure When at least one removal failed.
        """

        human_logger = logging_ext.get_human_logger()
        removal_target = target if isinstance(target, RemovalTarget) else RemovalTarget.parse(target)
        dry_run = self.config.dry_run if dry_run is None else dry_run
        force = self.config.force if force is None else force
        result = UninstallResult(target=removal_target.identifier)

        if not removal_target.name:
            human_logger.warning("No package name given.")
            return result

        candidates = self.resolver.resolve_packaged_apps(removal_target.name)
        if not candidates:
            human_logger.warning("No match found for '%s'", removal_target.name)
            return result

        result.matched = True
        result.candidates = len(candidates)
        for entry in candidates:
            self._remove_candidate(entry, result, dry_run, force)
        return self._finish(result)

    def _finish(self, result: UninstallResult) -> UninstallResult:
        if result.failed:
            raise PartialFailure(result)
        return result

    def _gated(
        self,
        result: UninstallResult,
        kind: ActionKind,
        detail: str,
        description: str,
        operation: Callable[[], object],
        dry_run: bool,
        force: bool,
    ) -> None:
        try:
            outcome = self.gate.run(description, operation, dry_run=dry_run, force=force)
        except ExecutionFailure as exc:
            result.actions.append(ActionRecord(kind, detail, exc.outcome))
            result.failures.append(f"{description}: {exc.outcome.reason}")
            return
        result.actions.append(ActionRecord(kind, detail, outcome))

    def _uninstall_product_code(self, product_code: str, result: UninstallResult, dry_run: bool, force: bool) -> None:
        command = command_parser.msi_uninstall_command(product_code)
        timeout = self.config.command_timeout(constants.UNINSTALL_TIMEOUT)
        self._gated(
            result,
            ActionKind.UNINSTALL,
            product_code,
            f"Uninstall product {product_code} ({' '.join(command)})",
            lambda: command_runner.run_command(
                command,
                event="msi_uninstall",
                timeout=timeout,
                check=True,
                success_codes=constants.MSI_SUCCESS_CODES,
                extra={"product_code": product_code},
            ),
            dry_run,
            force,
        )

    def _remove_candidate(self, entry: CandidateEntry, result: UninstallResult, dry_run: bool, force: bool) -> None:
        human_logger = logging_ext.get_human_logger()
        timeout = self.config.command_timeout(constants.UNINSTALL_TIMEOUT)

        if isinstance(entry, PackagedAppEntry):
            all_users = self.config.all_users
            self._gated(
                result,
                ActionKind.UNINSTALL,
                entry.full_name,
                f"Remove packaged app {entry.full_name}",
                lambda: appx.remove_package(entry.full_name, all_users=all_users, timeout=timeout),
                dry_run,
                force,
            )
        elif isinstance(entry, RegistryUninstallEntry):
            self._run_registry_uninstall(entry, result, dry_run, force, timeout)
        elif isinstance(entry, PackageManagerEntry):
            self._gated(
                result,
                ActionKind.UNINSTALL,
                describe_candidate(entry),
                f"Uninstall package {describe_candidate(entry)}",
                lambda: package_manager.uninstall_package(entry, timeout=timeout),
                dry_run,
                force,
            )
        else:
            human_logger.warning("Skipping unrecognised candidate: %r", entry)

    def _run_registry_uninstall(
        self,
        entry: RegistryUninstallEntry,
        result: UninstallResult,
        dry_run: bool,
        force: bool,
        timeout: float,
    ) -> None:
        human_logger = logging_ext.get_human_logger()
        raw = entry.uninstall_command or entry.quiet_uninstall_command
        if not raw:
            human_logger.warning("'%s' has no uninstall command; skipping", entry.display_name)
            return

        try:
            parsed = command_parser.parse_uninstall_command(raw)
        except command_parser.CommandParseError as exc:
            human_logger.error("Cannot parse uninstall command for '%s': %s", entry.display_name, exc)
            result.failures.append(f"{entry.display_name}: {exc}")
            return

        if command_parser.is_msi_command(parsed):
            command: List[str] | str = command_parser.to_silent_msi_uninstall(parsed)
            shown = subprocess.list2cmdline(command)
            success_codes = constants.MSI_SUCCESS_CODES
        else:
            if entry.quiet_uninstall_command and entry.quiet_uninstall_command != raw:
                try:
                    parsed = command_parser.parse_uninstall_command(entry.quiet_uninstall_command)
                except command_parser.CommandParseError:
                    human_logger.debug("Ignoring malformed quiet uninstall command for '%s'", entry.display_name)
            command = parsed.command_line()
            shown = command
            success_codes = (0,)

        self._gated(
            result,
            ActionKind.UNINSTALL,
            entry.display_name,
            f"Uninstall {entry.display_name} ({shown})",
            lambda: command_runner.run_command(
                command,
                event="registry_uninstall",
                timeout=timeout,
                check=True,
                success_codes=success_codes,
                extra={"display_name": entry.display_name, "key": entry.source_key_path},
            ),
            dry_run,
            force,
        )

    def _remove_leftovers(
        self,
        name: str,
        entry: CandidateEntry,
        result: UninstallResult,
        dry_run: bool,
        force: bool,
        handled_paths: Set[str],
    ) -> None:
        human_logger = logging_ext.get_human_logger()

        for folder in fs_tools.leftover_directories(name, environ=self._environ):
            key = str(folder).lower()
            if key in handled_paths:
                continue
            if not folder.exists():
                human_logger.debug("Leftover folder %s does not exist", folder)
                continue
            handled_paths.add(key)
            self._gated(
                result,
                ActionKind.REMOVE_FOLDER,
                str(folder),
                f"Remove leftover folder {folder}",
                _bind_path(fs_tools.remove_path, folder),
                dry_run,
                force,
            )

        if isinstance(entry, RegistryUninstallEntry) and entry.source_key_path:
            handle = entry.source_key_path
            self._gated(
                result,
                ActionKind.REMOVE_REGISTRY_KEY,
                handle,
                f"Remove registry key {handle}",
                lambda: registry_tools.delete_key(handle),
                dry_run,
                force,
            )


def _bind_path(func: Callable[[Path], None], path: Path) -> Callable[[], None]:
    return lambda: func(path)


__all__ = [
    "ActionKind",
    "ActionRecord",
    "PartialFailure",
    "SingleTargetUninstaller",
    "UninstallResult",
]
