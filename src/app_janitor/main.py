"""!
@brief Primary entry point for the App Janitor CLI.
@details Parses the subcommand surface (``uninstall``, ``stubborn``, ``appx``,
``find``), builds the run configuration once, sets up logging, and wires the
gate, resolver, uninstaller, escalation engine and batch orchestrator
together. A single target is processed directly so its failure surfaces as the
exit code; several targets go through the batch orchestrator.
"""
from __future__ import annotations

import argparse
import ctypes
import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import Iterable, List, Optional

from . import batch, confirm, constants, guid_utils, logging_ext, version
from .config import ConfigError, JanitorConfig, build_config
from .escalation import EscalationEngine
from .gate import ActionGate
from .models import BatchSummary, RemovalTarget
from .resolver import CandidateResolver
from .uninstaller import PartialFailure, SingleTargetUninstaller

EXIT_OK = 0
EXIT_FAILURE = 1


@dataclass
class Runtime:
    """!
    @brief Components assembled for one CLI invocation.
    """

    config: JanitorConfig
    gate: ActionGate
    resolver: CandidateResolver
    uninstaller: SingleTargetUninstaller
    orchestrator: batch.BatchOrchestrator


def _concurrency(value: str) -> int:
    try:
        parsed = int(value)
        return batch.validate_concurrency(parsed)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _common_options() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    safety = common.add_argument_group("Safety")
    safety.add_argument("--dry-run", action="store_true", default=None, help="Log every action without executing it.")
    safety.add_argument("--force", action="store_true", default=None, help="Do not ask for confirmation.")

    execution = common.add_argument_group("Execution")
    execution.add_argument(
        "-c",
        "--concurrency",
        type=_concurrency,
        metavar="N",
        help=f"Targets processed in parallel ({constants.MIN_CONCURRENCY}-{constants.MAX_CONCURRENCY}, "
        f"default {constants.DEFAULT_CONCURRENCY}).",
    )
    execution.add_argument("--timeout", type=float, metavar="SEC", help="Ceiling for each external command.")
    execution.add_argument(
        "--all-users", action="store_true", default=None, help="Query and remove packaged apps machine-wide."
    )

    output = common.add_argument_group("Output")
    output.add_argument("--config", metavar="FILE", help="JSON configuration file.")
    output.add_argument("--logdir", metavar="DIR", help="Directory for the human and JSONL logs.")
    output.add_argument("--report-dir", metavar="DIR", help="Directory for stubborn-removal reports.")
    output.add_argument("-v", "--verbose", action="store_true", default=None, help="Include debug messages.")
    output.add_argument("-q", "--quiet", action="store_true", default=None, help="Console shows errors only.")
    output.add_argument("--json-log", action="store_true", default=None, help="Mirror JSONL events to stdout.")
    return common


def build_arg_parser() -> argparse.ArgumentParser:
    """!
    @brief Create the argument parser with every subcommand.
    """

    parser = argparse.ArgumentParser(
        prog="app-janitor",
        description="Resolve and remove Windows applications in bulk.",
    )
    metadata = version.build_info()
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"{metadata['version']} ({metadata['build']})",
    )
    common = _common_options()
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    uninstall = subparsers.add_parser(
        "uninstall", parents=[common], help="Uninstall applications by name or product code."
    )
    uninstall.add_argument("names", nargs="*", metavar="NAME", help="Fuzzy application name(s).")
    uninstall.add_argument(
        "-g",
        "--product-code",
        metavar="GUID",
        action="append",
        dest="product_codes",
        default=[],
        help="Exact MSI product code; skips name resolution (repeatable).",
    )
    uninstall.add_argument(
        "-r", "--recurse", action="store_true", help="Also remove leftover folders and uninstall keys."
    )

    stubborn = subparsers.add_parser(
        "stubborn", parents=[common], help="Uninstall, then kill processes and deep clean leftovers."
    )
    stubborn.add_argument("names", nargs="+", metavar="NAME", help="Application name(s).")
    stubborn.add_argument("-k", "--kill-processes", action="store_true", help="Terminate matching processes.")
    stubborn.add_argument(
        "-d", "--deep-clean", action="store_true", help="Remove data folders and leftover uninstall keys."
    )
    stubborn.add_argument("-r", "--recurse", action="store_true", help="Recurse during the standard uninstall.")

    appx_parser = subparsers.add_parser("appx", parents=[common], help="Remove packaged (Store) apps by name.")
    appx_parser.add_argument("names", nargs="+", metavar="NAME", help="Package name fragment(s).")

    find = subparsers.add_parser("find", parents=[common], help="List removal candidates without changing anything.")
    find.add_argument("names", nargs="+", metavar="NAME", help="Application name(s).")
    find.add_argument("--json", action="store_true", help="Print candidates as JSON.")

    return parser


def _current_process_is_admin() -> bool:
    if os.name != "nt":
        return False
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
    except Exception:
        return False


def _bootstrap_logging(config: JanitorConfig) -> None:
    """!
    @brief Initialise both log channels from ``config``.
    """

    level = logging.DEBUG if config.verbose else logging.INFO
    console_level = logging.ERROR if config.quiet else level
    logging_ext.setup_logging(
        config.log_dir,
        level=level,
        console=True,
        console_level=console_level,
        json_to_stdout=config.json_log,
    )


def build_runtime(config: JanitorConfig) -> Runtime:
    gate = ActionGate(confirm.make_confirmer(interactive=config.interactive))
    resolver = CandidateResolver(config)
    uninstaller = SingleTargetUninstaller(config, gate, resolver)
    return Runtime(
        config=config,
        gate=gate,
        resolver=resolver,
        uninstaller=uninstaller,
        orchestrator=batch.BatchOrchestrator(),
    )


def _print_summary(summary: BatchSummary) -> None:
    print(f"Processed: {', '.join(summary.processed) or '-'}")
    print(f"Failed ({summary.failure_count}): {', '.join(summary.failed) or '-'}")


def _run_targets(runtime: Runtime, targets: List[str], operation: batch.TargetOperation) -> int:
    config = runtime.config
    if len(targets) == 1:
        try:
            operation(targets[0], dry_run=config.dry_run, force=config.force)
        except PartialFailure:
            return EXIT_FAILURE
        except Exception as exc:  # noqa: BLE001 - reported through the exit code
            logging_ext.get_human_logger().error("'%s' failed: %s", targets[0], exc)
            return EXIT_FAILURE
        return EXIT_OK

    summary = runtime.orchestrator.run_batch(
        targets,
        config.concurrency,
        operation,
        dry_run=config.dry_run,
        force=config.force,
    )
    _print_summary(summary)
    return EXIT_OK if summary.succeeded else EXIT_FAILURE


def _command_uninstall(args: argparse.Namespace, runtime: Runtime, parser: argparse.ArgumentParser) -> int:
    targets: List[str] = []
    for code in args.product_codes:
        try:
            targets.append(RemovalTarget.from_product_code(code).identifier)
        except guid_utils.GuidError as exc:
            parser.error(str(exc))
    targets.extend(name for name in args.names if name.strip())
    if not targets:
        parser.error("uninstall needs at least one NAME or --product-code")
    return _run_targets(runtime, targets, batch.uninstall_operation(runtime.uninstaller, recurse=args.recurse))


def _command_stubborn(args: argparse.Namespace, runtime: Runtime, parser: argparse.ArgumentParser) -> int:
    engine = EscalationEngine(runtime.config, runtime.gate, runtime.uninstaller)
    operation = batch.escalation_operation(
        engine,
        kill_processes=args.kill_processes,
        deep_clean=args.deep_clean,
        recurse=args.recurse,
    )
    return _run_targets(runtime, list(args.names), operation)


def _command_appx(args: argparse.Namespace, runtime: Runtime, parser: argparse.ArgumentParser) -> int:
    return _run_targets(runtime, list(args.names), batch.packaged_app_operation(runtime.uninstaller))


def _command_find(args: argparse.Namespace, runtime: Runtime, parser: argparse.ArgumentParser) -> int:
    found = {name: [entry.to_dict() for entry in runtime.resolver.resolve(name)] for name in args.names}
    if args.json:
        print(json.dumps(found, indent=2, sort_keys=True))
        return EXIT_OK
    for name, entries in found.items():
        print(f"{name}: {len(entries)} candidate(s)")
        for entry in entries:
            label = entry.get("display_name") or entry.get("full_name") or entry.get("name")
            print(f"  [{entry['kind']}] {label}")
    return EXIT_OK


_COMMANDS = {
    "uninstall": _command_uninstall,
    "stubborn": _command_stubborn,
    "appx": _command_appx,
    "find": _command_find,
}


def main(argv: Optional[Iterable[str]] = None) -> int:
    """!
    @brief Entry point used by the ``app-janitor`` console script.
    @returns Process exit code integer.
    """

    parser = build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        config = build_config(args)
    except ConfigError as exc:
        parser.error(str(exc))

    _bootstrap_logging(config)
    human_logger = logging_ext.get_human_logger()
    logging_ext.get_machine_logger().info(
        "startup",
        extra={"event": "startup", "data": {"command": args.command, "dry_run": config.dry_run, "force": config.force}},
    )
    if os.name == "nt" and args.command != "find" and not config.dry_run and not _current_process_is_admin():
        human_logger.warning("Not running elevated; machine-wide removals are likely to fail.")

    runtime = build_runtime(config)
    try:
        return _COMMANDS[args.command](args, runtime, parser)
    finally:
        logging_ext.flush_loggers()


if __name__ == "__main__":  # pragma: no cover - manual invocation
    sys.exit(main())
