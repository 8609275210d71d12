"""!
@brief Structured logging helpers for App Janitor.
@details Sets up two channels: a human-readable log whose lines read
``{timestamp} [{LEVEL}] {message}`` and a JSONL event stream for automation.
Both use rotating file handlers opened lazily, so the files appear on first
write. ``logging`` handlers serialise ``emit`` through a per-handler lock,
which keeps lines intact when batch workers log concurrently.
"""
from __future__ import annotations

import datetime as _dt
import json
import logging
import sys
import uuid
from logging import handlers
from pathlib import Path
from typing import Dict, Iterable, Mapping, Tuple

from . import version

HUMAN_LOGGER_NAME = "app_janitor.human"
"""!
@brief Logger name for human-readable output.
"""

MACHINE_LOGGER_NAME = "app_janitor.machine"
"""!
@brief Logger name for JSONL telemetry output.
"""

HUMAN_LOG_FILENAME = "app-janitor.log"
MACHINE_LOG_FILENAME = "app-janitor.jsonl"

_LEVEL_LABELS: Dict[str, str] = {
    "WARNING": "WARN",
    "CRITICAL": "ERROR",
}

_STANDARD_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "asctime",
        "taskName",
    }
)

_CURRENT_LOG_DIRECTORY: Path | None = None
_RUN_METADATA: Dict[str, object] | None = None


class _LineFormatter(logging.Formatter):
    """!
    @brief Render ``{timestamp} [{LEVEL}] {message}`` lines.
    @details ``WARNING`` is shortened to ``WARN`` and ``CRITICAL`` folded into
    ``ERROR`` so the log only ever carries the four documented levels.
    """

    def __init__(self) -> None:
        super().__init__("%(asctime)s [%(level_label)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        record.level_label = _LEVEL_LABELS.get(record.levelname, record.levelname)
        return super().format(record)


class _JsonLineFormatter(logging.Formatter):
    """!
    @brief Format ``LogRecord`` instances as single-line JSON objects.
    @details Values that are not JSON serialisable are coerced to ``repr``.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - concise override
        moment = _dt.datetime.fromtimestamp(record.created, tz=_dt.timezone.utc)
        payload: Dict[str, object] = {
            "timestamp": moment.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": _LEVEL_LABELS.get(record.levelname, record.levelname),
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }
        payload.update(_extract_extras(record))
        try:
            return json.dumps(payload, ensure_ascii=False)
        except TypeError:
            sanitized = {key: _coerce_json(value) for key, value in payload.items()}
            return json.dumps(sanitized, ensure_ascii=False)


def _extract_extras(record: logging.LogRecord) -> Dict[str, object]:
    """!
    @brief Collect non-standard attributes from a log record.
    """

    return {key: value for key, value in record.__dict__.items() if key not in _STANDARD_RECORD_KEYS and key != "level_label"}


def _coerce_json(value: object) -> object:
    try:
        json.dumps(value)
    except TypeError:
        return repr(value)
    return value


def _configure_logger(logger: logging.Logger, formatter: logging.Formatter, handlers_to_add: Iterable[logging.Handler]) -> None:
    """!
    @brief Reset a logger and attach the supplied handlers.
    """

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers_to_add:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False


def setup_logging(
    root_dir: Path,
    *,
    level: int = logging.INFO,
    console: bool = False,
    console_level: int | None = None,
    json_to_stdout: bool = False,
) -> Tuple[logging.Logger, logging.Logger]:
    """!
    @brief Set up the human and machine loggers.
    @details ``root_dir`` is created when missing; the log files themselves are
    only created by the first record written to them.
    @param root_dir Directory receiving ``app-janitor.log`` and ``app-janitor.jsonl``.
    @param level Minimum level recorded in the files.
    @param console Mirror the human channel to ``stderr``.
    @param console_level Optional separate threshold for the console mirror.
    @param json_to_stdout Mirror the JSONL channel to ``stdout``.
    @returns The ``(human, machine)`` logger pair.
    """

    global _CURRENT_LOG_DIRECTORY

    root_dir = Path(root_dir)
    root_dir.mkdir(parents=True, exist_ok=True)
    _CURRENT_LOG_DIRECTORY = root_dir

    human_logger = logging.getLogger(HUMAN_LOGGER_NAME)
    machine_logger = logging.getLogger(MACHINE_LOGGER_NAME)
    human_logger.setLevel(min(level, console_level) if console and console_level is not None else level)
    machine_logger.setLevel(level)

    human_file = handlers.RotatingFileHandler(
        root_dir / HUMAN_LOG_FILENAME,
        maxBytes=1_048_576,
        backupCount=5,
        encoding="utf-8",
        delay=True,
    )
    human_file.setLevel(level)
    machine_file = handlers.RotatingFileHandler(
        root_dir / MACHINE_LOG_FILENAME,
        maxBytes=1_048_576,
        backupCount=5,
        encoding="utf-8",
        delay=True,
    )

    human_handlers: list[logging.Handler] = [human_file]
    if console:
        stream = logging.StreamHandler(stream=sys.stderr)
        stream.setLevel(console_level if console_level is not None else level)
        human_handlers.append(stream)

    machine_handlers: list[logging.Handler] = [machine_file]
    if json_to_stdout:
        machine_handlers.append(logging.StreamHandler(stream=sys.stdout))

    _configure_logger(human_logger, _LineFormatter(), human_handlers)
    _configure_logger(machine_logger, _JsonLineFormatter(), machine_handlers)

    _emit_run_metadata(human_logger, machine_logger)

    return human_logger, machine_logger


def get_human_logger() -> logging.Logger:
    """!
    @brief Retrieve the configured human-readable logger.
    """

    return logging.getLogger(HUMAN_LOGGER_NAME)


def get_machine_logger() -> logging.Logger:
    """!
    @brief Retrieve the configured machine/JSON logger.
    """

    return logging.getLogger(MACHINE_LOGGER_NAME)


def get_log_directory() -> Path | None:
    return _CURRENT_LOG_DIRECTORY


def get_run_metadata() -> Mapping[str, object] | None:
    """!
    @brief Return the most recent run metadata payload.
    @details Contains ``run_id`` (UUID4 hex), an ISO-8601 UTC ``timestamp`` and
    the version/build identifiers from :mod:`app_janitor.version`.
    """

    return dict(_RUN_METADATA) if _RUN_METADATA is not None else None


def flush_loggers() -> None:
    """!
    @brief Flush every handler attached to both channels.
    """

    for name in (HUMAN_LOGGER_NAME, MACHINE_LOGGER_NAME):
        for handler in logging.getLogger(name).handlers:
            handler.flush()


def _emit_run_metadata(human_logger: logging.Logger, machine_logger: logging.Logger) -> None:
    global _RUN_METADATA

    moment = _dt.datetime.now(tz=_dt.timezone.utc)
    _RUN_METADATA = {
        "run_id": uuid.uuid4().hex,
        "timestamp": moment.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "version": version.__version__,
        "build": version.__build__,
        "python": sys.version.split()[0],
        "logdir": str(_CURRENT_LOG_DIRECTORY) if _CURRENT_LOG_DIRECTORY else None,
    }

    human_logger.debug(
        "App Janitor %s (%s) starting, run %s",
        version.__version__,
        version.__build__,
        _RUN_METADATA["run_id"],
    )
    machine_logger.info("run_start", extra={"event": "run_start", "run": dict(_RUN_METADATA)})


__all__ = [
    "HUMAN_LOGGER_NAME",
    "HUMAN_LOG_FILENAME",
    "MACHINE_LOGGER_NAME",
    "MACHINE_LOG_FILENAME",
    "flush_loggers",
    "get_human_logger",
    "get_log_directory",
    "get_machine_logger",
    "get_run_metadata",
    "setup_logging",
]
