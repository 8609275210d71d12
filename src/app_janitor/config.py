"""!
@file config.py
@brief Run configuration for App Janitor.
@details A single :class:`JanitorConfig` value is built once per invocation
and handed to every component constructor. Options resolve with the following
precedence (highest first): explicit CLI arguments, a JSON configuration file
passed via ``--config``, built-in defaults.
"""

from __future__ import annotations

import dataclasses
import json
import os
import pathlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping

from . import constants

if TYPE_CHECKING:
    import argparse

__all__ = [
    "ConfigError",
    "JanitorConfig",
    "build_config",
    "default_log_directory",
    "load_config_file",
]


class ConfigError(ValueError):
    """!
    @brief Raised for unreadable configuration files or out-of-range values.
    """


def default_log_directory() -> pathlib.Path:
    """!
    @brief ``%ProgramData%\\AppJanitor\\logs``, or ``~/AppJanitor/logs`` without ProgramData.
    """

    base = os.environ.get("ProgramData")
    root = pathlib.Path(base) if base else pathlib.Path.home()
    return root.joinpath(*constants.DEFAULT_LOG_SUBDIRECTORY)


@dataclass(frozen=True)
class JanitorConfig:
    """!
    @brief Immutable settings threaded through the removal engine.
    @details ``dry_run`` and ``force`` are the defaults used by the CLI; every
    engine call still accepts them explicitly so a single config can drive
    both simulated and real runs in tests. ``interactive`` of ``None`` means
    "detect from stdin".
    """

    log_dir: pathlib.Path = dataclasses.field(default_factory=default_log_directory)
    report_dir: pathlib.Path | None = None
    dry_run: bool = False
    force: bool = False
    concurrency: int = constants.DEFAULT_CONCURRENCY
    timeout: float | None = None
    all_users: bool = False
    verbose: bool = False
    quiet: bool = False
    json_log: bool = False
    interactive: bool | None = None

    def __post_init__(self) -> None:
        if not constants.MIN_CONCURRENCY <= int(self.concurrency) <= constants.MAX_CONCURRENCY:
            raise ConfigError(
                f"concurrency must be between {constants.MIN_CONCURRENCY} and "
                f"{constants.MAX_CONCURRENCY}, got {self.concurrency}"
            )
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")

    @property
    def reports_directory(self) -> pathlib.Path:
        return self.report_dir if self.report_dir is not None else self.log_dir / "reports"

    def command_timeout(self, default: float) -> float:
        """!
        @brief Effective timeout for a command whose own ceiling is ``default``.
        """

        if self.timeout is None:
            return default
        return min(self.timeout, default)

    def replace(self, **changes: Any) -> "JanitorConfig":
        return dataclasses.replace(self, **changes)


def load_config_file(config_path: str | os.PathLike[str] | None) -> dict[str, object]:
    """!
    @brief Load and parse a JSON configuration file.
    @param config_path Path to the JSON config file, or None to skip.
    @returns Dictionary of configuration options, empty if no file specified.
    @raises ConfigError if the file cannot be read or parsed.
    """
    if not config_path:
        return {}

    path = pathlib.Path(config_path).expanduser().resolve()
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in configuration file: {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file: {path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"Configuration file must contain a JSON object: {path}")
    return config


def _coerce_path(value: object) -> pathlib.Path | None:
    if value in (None, ""):
        return None
    return pathlib.Path(str(value)).expanduser()


def build_config(args: "argparse.Namespace", *, file_values: Mapping[str, object] | None = None) -> JanitorConfig:
    """!
    @brief Translate parsed CLI arguments into a :class:`JanitorConfig`.
    @param args Parsed command-line arguments.
    @param file_values Pre-loaded config mapping; loaded from ``args.config`` when omitted.
    @raises ConfigError On invalid files or values.
    """
    config = dict(file_values) if file_values is not None else load_config_file(getattr(args, "config", None))

    def _get(attr: str, default: object = None, *, is_bool: bool = False) -> object:
        """Get option value with CLI > config > default precedence."""
        cli_val = getattr(args, attr, None)
        cfg_key = attr.replace("_", "-")

        if is_bool:
            if cli_val:
                return True
            if cfg_key in config:
                return bool(config[cfg_key])
            return bool(default)

        if cli_val is not None:
            return cli_val
        if cfg_key in config:
            return config[cfg_key]
        return default

    log_dir = _coerce_path(_get("logdir")) or default_log_directory()
    timeout = _get("timeout")
    try:
        concurrency = int(_get("concurrency", constants.DEFAULT_CONCURRENCY))  # type: ignore[arg-type]
        timeout_value = float(timeout) if timeout is not None else None  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid numeric option: {exc}") from exc

    return JanitorConfig(
        log_dir=log_dir,
        report_dir=_coerce_path(_get("report_dir")),
        dry_run=bool(_get("dry_run", False, is_bool=True)),
        force=bool(_get("force", False, is_bool=True)),
        concurrency=concurrency,
        timeout=timeout_value,
        all_users=bool(_get("all_users", False, is_bool=True)),
        verbose=bool(_get("verbose", False, is_bool=True)),
        quiet=bool(_get("quiet", False, is_bool=True)),
        json_log=bool(_get("json_log", False, is_bool=True)),
    )
