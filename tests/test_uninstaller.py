"""!
@brief Tests for :class:`app_janitor.uninstaller.SingleTargetUninstaller`.
@details External commands are captured by replacing
:func:`app_janitor.command_runner.run_command`; the resolver is an in-memory
stand-in that counts its queries.
"""
from __future__ import annotations

import pathlib
import subprocess
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from app_janitor import appx, command_runner, constants, logging_ext, package_manager
from app_janitor.gate import ActionGate
from app_janitor.models import PackagedAppEntry, PackageManagerEntry, RegistryUninstallEntry
from app_janitor.uninstaller import ActionKind, PartialFailure, SingleTargetUninstaller

from conftest import read_human_log

CODE = "{12345678-1234-1234-1234-123456789ABC}"
KEY = "HKLM\\SOFTWARE\\Microsoft\\Windows\\CurrentVersion\\Uninstall\\Foo"


class _Resolver:
    def __init__(self, candidates=()) -> None:
        self.candidates = list(candidates)
        self.queries = []

    def resolve(self, pattern: str):
        self.queries.append(pattern)
        return list(self.candidates)

    def resolve_packaged_apps(self, pattern: str):
        self.queries.append(pattern)
        return [entry for entry in self.candidates if isinstance(entry, PackagedAppEntry)]


class _Runner:
    def __init__(self, fail_when=None) -> None:
        self.calls = []
        self.fail_when = fail_when

    def __call__(self, command, *, event, timeout=None, check=False, success_codes=(0,), extra=None):
        self.calls.append({"command": command, "event": event, "success_codes": tuple(success_codes)})
        if self.fail_when is not None and self.fail_when(command):
            raise subprocess.CalledProcessError(1603, command)
        return command_runner.CommandResult(command, 0, "", "", 0.0)


def _no_commands(*args, **kwargs):
    raise AssertionError("no external command may run in this test")


def _entry(name: str = "Foo", command: str = '"C:\\Program Files\\Foo\\unins000.exe" /SILENT', **kwargs):
    return RegistryUninstallEntry(display_name=name, uninstall_command=command, source_key_path=KEY, **kwargs)


def _uninstaller(config, resolver, gate=None, environ=None) -> SingleTargetUninstaller:
    gate = gate or ActionGate(confirmer=lambda description: False)
    return SingleTargetUninstaller(config, gate, resolver, environ=environ or {})


def test_exact_product_code_bypasses_resolution(config, monkeypatch) -> None:
    """!
    @brief A product code goes straight to ``msiexec /x`` with zero resolver queries.
    """

    runner = _Runner()
    monkeypatch.setattr(command_runner, "run_command", runner)
    resolver = _Resolver([_entry()])

    result = _uninstaller(config, resolver).uninstall(CODE.lower(), force=True)

    assert resolver.queries == []
    assert result.matched
    assert runner.calls == [
        {
            "command": ["msiexec.exe", "/x", CODE, "/qn", "/norestart"],
            "event": "msi_uninstall",
            "success_codes": constants.MSI_SUCCESS_CODES,
        }
    ]


def test_no_match_warns_and_changes_nothing(config, tmp_path, monkeypatch) -> None:
    logging_ext.setup_logging(tmp_path)
    monkeypatch.setattr(command_runner, "run_command", _no_commands)
    gate = ActionGate(confirmer=lambda description: False)
    uninstaller = _uninstaller(config, _Resolver(), gate=gate)

    first = uninstaller.uninstall("Nonexistent", force=True)
    second = uninstaller.uninstall("Nonexistent", force=True)

    assert not first.matched and not second.matched
    assert first.actions == [] and second.actions == []
    assert gate.history == []
    assert read_human_log(tmp_path).count("[WARN] No match found for 'Nonexistent'") == 2


def test_empty_name_warns(config, tmp_path, monkeypatch) -> None:
    logging_ext.setup_logging(tmp_path)
    resolver = _Resolver([_entry()])

    result = _uninstaller(config, resolver).uninstall("  ", force=True)

    assert not result.matched
    assert resolver.queries == []
    assert "No application name given" in read_human_log(tmp_path)


def test_dry_run_has_no_side_effects(config, tmp_path, monkeypatch) -> None:
    """!
    @brief A recursive dry run logs every action and touches nothing.
    """

    logging_ext.setup_logging(tmp_path)
    monkeypatch.setattr(command_runner, "run_command", _no_commands)
    program_files = tmp_path / "pf"
    leftover = program_files / "Foo"
    leftover.mkdir(parents=True)
    (leftover / "app.dll").write_text("x", encoding="utf-8")
    environ = {"ProgramFiles": str(program_files), "ProgramFiles(x86)": str(tmp_path / "pf86")}
    gate = ActionGate(confirmer=lambda description: pytest.fail("no prompt during dry run"))

    result = _uninstaller(config, _Resolver([_entry()]), gate=gate, environ=environ).uninstall(
        "Foo", recurse=True, dry_run=True
    )

    assert leftover.exists()
    assert gate.executions == 0
    assert [action.kind for action in result.actions] == [
        ActionKind.UNINSTALL,
        ActionKind.REMOVE_FOLDER,
        ActionKind.REMOVE_REGISTRY_KEY,
    ]
    assert all(action.outcome.simulated for action in result.actions)
    log_text = read_human_log(tmp_path)
    assert "DRYRUN: Uninstall Foo" in log_text
    assert f"DRYRUN: Remove leftover folder {leftover}" in log_text
    assert f"DRYRUN: Remove registry key {KEY}" in log_text
    assert "SUCCESS" not in log_text


def test_recurse_skips_missing_folders(config, tmp_path, monkeypatch) -> None:
    runner = _Runner()
    monkeypatch.setattr(command_runner, "run_command", runner)
    present = tmp_path / "pf" / "Foo"
    present.mkdir(parents=True)
    environ = {"ProgramFiles": str(tmp_path / "pf"), "ProgramFiles(x86)": str(tmp_path / "pf86")}

    result = _uninstaller(config, _Resolver([_entry()]), environ=environ).uninstall("Foo", recurse=True, force=True)

    folders = [action.detail for action in result.actions if action.kind is ActionKind.REMOVE_FOLDER]
    assert folders == [str(present)]
    assert not present.exists()
    assert not (tmp_path / "pf86" / "Foo").exists()
    assert runner.calls[-1]["command"] == ["reg.exe", "delete", KEY, "/f"]


def test_without_recurse_leftovers_stay(config, tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(command_runner, "run_command", _Runner())
    present = tmp_path / "pf" / "Foo"
    present.mkdir(parents=True)

    result = _uninstaller(config, _Resolver([_entry()]), environ={"ProgramFiles": str(tmp_path / "pf")}).uninstall(
        "Foo", force=True
    )

    assert present.exists()
    assert [action.kind for action in result.actions] == [ActionKind.UNINSTALL]


def test_msi_uninstall_string_is_rewritten(config, monkeypatch) -> None:
    runner = _Runner()
    monkeypatch.setattr(command_runner, "run_command", runner)
    entry = _entry(command="MsiExec.exe /I" + CODE)

    _uninstaller(config, _Resolver([entry])).uninstall("Foo", force=True)

    assert runner.calls[0]["command"] == ["msiexec.exe", "/x", CODE, "/qn", "/norestart"]
    assert runner.calls[0]["success_codes"] == constants.MSI_SUCCESS_CODES


def test_quiet_uninstall_string_is_preferred(config, monkeypatch) -> None:
    runner = _Runner()
    monkeypatch.setattr(command_runner, "run_command", runner)
    entry = _entry(quiet_uninstall_command='"C:\\Program Files\\Foo\\unins000.exe" /VERYSILENT')

    _uninstaller(config, _Resolver([entry])).uninstall("Foo", force=True)

    assert runner.calls[0]["command"] == '"C:\\Program Files\\Foo\\unins000.exe" /VERYSILENT'
    assert runner.calls[0]["event"] == "registry_uninstall"


def test_one_failing_candidate_does_not_stop_the_rest(config, tmp_path, monkeypatch) -> None:
    logging_ext.setup_logging(tmp_path)
    runner = _Runner(fail_when=lambda command: "Broken" in str(command))
    monkeypatch.setattr(command_runner, "run_command", runner)
    broken = _entry("Foo Broken", '"C:\\Foo Broken\\u.exe" /S')
    healthy = _entry("Foo", '"C:\\Foo\\u.exe" /S')

    with pytest.raises(PartialFailure) as excinfo:
        _uninstaller(config, _Resolver([broken, healthy])).uninstall("Foo", force=True)

    result = excinfo.value.result
    assert len(runner.calls) == 2
    assert [action.outcome.ok for action in result.actions] == [False, True]
    assert len(result.failures) == 1
    log_text = read_human_log(tmp_path)
    assert "[ERROR] FAILED: Uninstall Foo Broken" in log_text
    assert "[INFO] SUCCESS: Uninstall Foo (" in log_text


def test_unparseable_command_is_a_failure(config, monkeypatch) -> None:
    monkeypatch.setattr(command_runner, "run_command", _no_commands)

    with pytest.raises(PartialFailure) as excinfo:
        _uninstaller(config, _Resolver([_entry(command='"C:\\Foo\\u.exe /S')])).uninstall("Foo", force=True)

    assert excinfo.value.result.actions == []
    assert "Unterminated quote" in excinfo.value.result.failures[0]


def test_declined_actions_are_not_failures(config, monkeypatch) -> None:
    monkeypatch.setattr(command_runner, "run_command", _no_commands)

    result = _uninstaller(config, _Resolver([_entry()])).uninstall("Foo")

    assert result.actions[0].outcome.declined
    assert not result.failed


def test_backend_specific_removal(config, monkeypatch) -> None:
    removed = []
    monkeypatch.setattr(appx, "remove_package", lambda full_name, **kwargs: removed.append(("appx", full_name)))
    monkeypatch.setattr(
        package_manager, "uninstall_package", lambda entry, **kwargs: removed.append(("package", entry.name))
    )
    candidates = [PackageManagerEntry("Foo", "Programs", "1.0"), PackagedAppEntry("Foo", "Foo_1.0_x64__abc")]

    result = _uninstaller(config, _Resolver(candidates)).uninstall("Foo", force=True)

    assert removed == [("package", "Foo"), ("appx", "Foo_1.0_x64__abc")]
    assert all(action.outcome.ok for action in result.actions)


def test_remove_packaged_apps_uses_only_packaged_candidates(config, monkeypatch) -> None:
    removed = []
    monkeypatch.setattr(appx, "remove_package", lambda full_name, **kwargs: removed.append(full_name))
    candidates = [_entry(), PackagedAppEntry("Foo", "Foo_1.0_x64__abc")]

    result = _uninstaller(config, _Resolver(candidates)).remove_packaged_apps("Foo", force=True)

    assert removed == ["Foo_1.0_x64__abc"]
    assert result.candidates == 1
