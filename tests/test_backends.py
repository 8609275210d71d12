"""!
@brief Tests for the inventory and removal backends.
@details PowerShell, ``reg.exe`` and ``taskkill.exe`` invocations are captured
through :mod:`app_janitor.command_runner`; registry enumeration is replaced by
in-memory fakes so the suite runs on any platform.
"""
from __future__ import annotations

import pathlib
import subprocess
import sys
from unittest import mock

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from app_janitor import (
    appx,
    command_runner,
    constants,
    fs_tools,
    package_manager,
    processes,
    registry_tools,
    uninstall_records,
)
from app_janitor.models import PackageManagerEntry


def _result(stdout: str = "", returncode: int = 0) -> command_runner.CommandResult:
    return command_runner.CommandResult(["powershell.exe"], returncode, stdout, "", 0.0)


class TestAppx:
    def test_single_object_output(self) -> None:
        raw = '{"Name":"Contoso.Foo","PackageFullName":"Contoso.Foo_1.0.0.0_x64__abc"}'

        entries = appx.parse_package_json(raw)

        assert [(entry.name, entry.full_name) for entry in entries] == [
            ("Contoso.Foo", "Contoso.Foo_1.0.0.0_x64__abc")
        ]

    def test_array_output_is_deduplicated(self) -> None:
        raw = (
            '[{"Name":"A","PackageFullName":"A_1"},{"Name":"A","PackageFullName":"A_1"},'
            '{"Name":"B","PackageFullName":"B_1"},{"Name":"C"}]'
        )

        assert [entry.full_name for entry in appx.parse_package_json(raw)] == ["A_1", "B_1"]

    def test_garbage_output_yields_nothing(self) -> None:
        assert appx.parse_package_json("not json") == []
        assert appx.parse_package_json("") == []

    def test_find_packages_builds_scoped_query(self) -> None:
        with mock.patch.object(command_runner, "run_powershell", return_value=_result("")) as run:
            appx.find_packages("Foo's", all_users=True)

        script = run.call_args.args[0]
        assert "Get-AppxPackage -Name '*Foo''s*' -AllUsers" in script
        assert run.call_args.kwargs["event"] == "appx_query"

    def test_find_packages_failure_is_empty(self) -> None:
        with mock.patch.object(command_runner, "run_powershell", return_value=_result("x", returncode=1)):
            assert appx.find_packages("Foo") == []

    def test_find_packages_timeout_is_empty(self) -> None:
        timeout = subprocess.TimeoutExpired("powershell.exe", 1)
        with mock.patch.object(command_runner, "run_powershell", side_effect=timeout):
            assert appx.find_packages("Foo") == []

    def test_remove_package_checks_result(self) -> None:
        with mock.patch.object(command_runner, "run_powershell", return_value=_result()) as run:
            appx.remove_package("Foo_1.0", all_users=False)

        assert run.call_args.args[0] == "Remove-AppxPackage -Package 'Foo_1.0' -ErrorAction Stop"
        assert run.call_args.kwargs["check"] is True


class TestPackageManager:
    def test_parse_entries(self) -> None:
        raw = (
            '[{"Name":"Foo","ProviderName":"Programs","Version":"1.2","FastPackageReference":"ref"},'
            '{"ProviderName":"msi"}]'
        )

        assert package_manager.parse_package_json(raw) == [PackageManagerEntry("Foo", "Programs", "1.2", "ref")]

    def test_uninstall_reselects_exact_package(self) -> None:
        with mock.patch.object(command_runner, "run_powershell", return_value=_result()) as run:
            package_manager.uninstall_package(PackageManagerEntry("Foo", "msi", "1.2"))

        script = run.call_args.args[0]
        assert script.startswith("Get-Package -Name 'Foo' -ProviderName 'msi' -RequiredVersion '1.2'")
        assert script.endswith("Uninstall-Package -Force -ErrorAction Stop")
        assert run.call_args.kwargs["check"] is True


class TestProcesses:
    def test_parse_and_match(self) -> None:
        raw = (
            '[{"Id":10,"ProcessName":"FooHelper","Path":"C:\\\\Program Files\\\\Foo\\\\helper.exe"},'
            '{"Id":11,"ProcessName":"svchost","Path":null},'
            '{"Id":12,"ProcessName":"agent","Path":"C:\\\\Tools\\\\foo\\\\agent.exe"},'
            '{"Id":"bad","ProcessName":"x"}]'
        )

        parsed = processes.parse_process_json(raw)
        matched = processes.match_processes(parsed, "foo", exclude_pids=(12,))

        assert [proc.pid for proc in parsed] == [10, 11, 12]
        assert [proc.pid for proc in matched] == [10]

    def test_blank_name_matches_nothing(self) -> None:
        assert processes.match_processes([processes.ProcessInfo(1, "foo")], "  ") == []

    def test_terminate_uses_taskkill_tree(self) -> None:
        with mock.patch.object(command_runner, "run_command", return_value=_result()) as run:
            processes.terminate_process(4242)

        assert run.call_args.args[0] == ["taskkill.exe", "/PID", "4242", "/F", "/T"]
        assert run.call_args.kwargs["check"] is True


class TestUninstallRecords:
    def test_query_reads_every_root_and_skips_unreadable(self, monkeypatch) -> None:
        hklm, hkcu = constants.HKLM, constants.HKCU
        base = r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"
        tree = {
            (hklm, base): ["{GUID}", "NoName"],
            (hkcu, base): ["FooUser"],
        }
        values = {
            (hklm, base + "\\{GUID}"): {"DisplayName": "Foo Suite", "UninstallString": "MsiExec.exe /X{GUID}"},
            (hklm, base + "\\NoName"): {"UninstallString": "x.exe"},
            (hkcu, base + "\\FooUser"): {
                "DisplayName": "Foo Portable ",
                "UninstallString": '"C:\\Users\\u\\Foo\\uninst.exe"',
                "QuietUninstallString": '"C:\\Users\\u\\Foo\\uninst.exe" /S',
            },
        }

        def _iter_subkeys(root, path):
            if (root, path) not in tree:
                raise FileNotFoundError(path)
            return iter(tree[(root, path)])

        monkeypatch.setattr(registry_tools, "iter_subkeys", _iter_subkeys)
        monkeypatch.setattr(registry_tools, "read_values", lambda root, path: values.get((root, path), {}))

        records = uninstall_records.query_uninstall_records()

        assert [record.display_name for record in records] == ["Foo Suite", "Foo Portable"]
        assert records[0].source_key_path == "HKLM\\" + base + "\\{GUID}"
        assert records[1].quiet_uninstall_command.endswith("/S")

    def test_match_is_case_insensitive_substring(self) -> None:
        records = [
            uninstall_records.RegistryUninstallEntry("Foo Suite", "", "HKLM\\a"),
            uninstall_records.RegistryUninstallEntry("Bar", "", "HKLM\\b"),
        ]

        assert [record.display_name for record in uninstall_records.match_records(records, "SUITE")] == ["Foo Suite"]
        assert uninstall_records.match_records(records, "") == []


class TestRegistryTools:
    def test_handles_round_trip(self) -> None:
        handle = registry_tools.compose_handle(constants.HKLM, "\\SOFTWARE\\Foo\\")

        assert handle == "HKLM\\SOFTWARE\\Foo"
        assert registry_tools.split_handle(handle) == (constants.HKLM, "SOFTWARE\\Foo")

    def test_split_rejects_unknown_hive(self) -> None:
        with pytest.raises(ValueError):
            registry_tools.split_handle("HKXX\\SOFTWARE\\Foo")

    def test_delete_key_uses_reg_exe(self) -> None:
        with mock.patch.object(command_runner, "run_command", return_value=_result()) as run:
            registry_tools.delete_key("HKCU\\SOFTWARE\\Foo")

        assert run.call_args.args[0] == ["reg.exe", "delete", "HKCU\\SOFTWARE\\Foo", "/f"]
        assert run.call_args.kwargs["event"] == "registry_delete"

    def test_delete_key_rejects_malformed_handle_before_running(self) -> None:
        with mock.patch.object(command_runner, "run_command") as run:
            with pytest.raises(ValueError):
                registry_tools.delete_key("SOFTWARE\\Foo")

        run.assert_not_called()


class TestFsTools:
    def test_leftover_directories_follow_environment(self, tmp_path) -> None:
        environ = {"ProgramFiles": str(tmp_path / "pf"), "ProgramFiles(x86)": str(tmp_path / "pf86")}

        assert fs_tools.leftover_directories("Foo", environ=environ) == [
            tmp_path / "pf" / "Foo",
            tmp_path / "pf86" / "Foo",
        ]

    def test_deep_clean_skips_unset_profile_roots(self, tmp_path) -> None:
        environ = {
            "ProgramFiles": str(tmp_path / "pf"),
            "ProgramFiles(x86)": str(tmp_path / "pf"),
            "LOCALAPPDATA": str(tmp_path / "local"),
            "ProgramData": str(tmp_path / "pd"),
        }

        assert fs_tools.deep_clean_directories("Foo", environ=environ) == [
            tmp_path / "pf" / "Foo",
            tmp_path / "local" / "Foo",
            tmp_path / "pd" / "Foo",
        ]

    @pytest.mark.parametrize("name", ["", "..", "Foo\\..\\..", "a/b"])
    def test_unsafe_names_produce_no_paths(self, name) -> None:
        assert fs_tools.leftover_directories(name, environ={"ProgramFiles": "C:\\PF"}) == []

    def test_remove_path_handles_trees_and_files(self, tmp_path) -> None:
        tree = tmp_path / "tree"
        (tree / "nested").mkdir(parents=True)
        (tree / "nested" / "file.txt").write_text("x", encoding="utf-8")
        single = tmp_path / "single.txt"
        single.write_text("x", encoding="utf-8")

        fs_tools.remove_path(tree)
        fs_tools.remove_path(single)

        assert not tree.exists()
        assert not single.exists()


class TestCommandRunner:
    def test_missing_executable_reports_127(self, monkeypatch) -> None:
        def _missing(*args, **kwargs):
            raise FileNotFoundError("no such file")

        monkeypatch.setattr(subprocess, "run", _missing)

        result = command_runner.run_command(["nope.exe"], event="sample")

        assert result.returncode == 127
        assert result.error == "no such file"

    def test_check_raises_outside_success_codes(self, monkeypatch) -> None:
        monkeypatch.setattr(
            subprocess, "run", lambda *args, **kwargs: subprocess.CompletedProcess(args[0], 1603, "", "boom")
        )

        with pytest.raises(subprocess.CalledProcessError) as excinfo:
            command_runner.run_command(["msiexec.exe", "/x", "{X}"], event="sample", check=True)

        assert excinfo.value.returncode == 1603

    def test_check_accepts_listed_codes(self, monkeypatch) -> None:
        monkeypatch.setattr(
            subprocess, "run", lambda *args, **kwargs: subprocess.CompletedProcess(args[0], 3010, "", "")
        )

        result = command_runner.run_command(
            ["msiexec.exe"], event="sample", check=True, success_codes=constants.MSI_SUCCESS_CODES
        )

        assert result.returncode == 3010

    def test_string_commands_are_passed_verbatim(self, monkeypatch) -> None:
        seen = {}

        def _run(argv, **kwargs):
            seen["argv"] = argv
            return subprocess.CompletedProcess(argv, 0, "", "")

        monkeypatch.setattr(subprocess, "run", _run)

        command_runner.run_command('"C:\\Program Files\\Foo\\u.exe" /S', event="sample")

        assert seen["argv"] == '"C:\\Program Files\\Foo\\u.exe" /S'

    def test_timeout_without_check_is_reported(self, monkeypatch) -> None:
        def _slow(argv, **kwargs):
            raise subprocess.TimeoutExpired(argv, kwargs.get("timeout"))

        monkeypatch.setattr(subprocess, "run", _slow)

        result = command_runner.run_command(["slow.exe"], event="sample", timeout=1)

        assert result.timed_out

    def test_powershell_quoting(self) -> None:
        assert command_runner.ps_quote("it's") == "'it''s'"

    def test_sanitized_environment_drops_interpreter_variables(self) -> None:
        env = command_runner.sanitize_environment(base_env={"PATH": "x", "PYTHONPATH": "y"})

        assert env == {"PATH": "x"}
