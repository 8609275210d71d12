"""!
@brief Shared pytest fixtures for the App Janitor suite.
"""
from __future__ import annotations

import logging
import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from app_janitor import logging_ext
from app_janitor.config import JanitorConfig


@pytest.fixture(autouse=True)
def _reset_logging_state():
    """!
    @brief Reset logging between tests to avoid handler leakage.
    """

    yield
    for name in (logging_ext.HUMAN_LOGGER_NAME, logging_ext.MACHINE_LOGGER_NAME):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def config(tmp_path) -> JanitorConfig:
    """!
    @brief Non-interactive configuration rooted in ``tmp_path``.
    """

    return JanitorConfig(log_dir=tmp_path / "logs", interactive=False)


def read_human_log(log_dir: pathlib.Path) -> str:
    """!
    @brief Flush the loggers and return the human log text (empty when never written).
    """

    logging_ext.flush_loggers()
    path = log_dir / logging_ext.HUMAN_LOG_FILENAME
    return path.read_text(encoding="utf-8") if path.exists() else ""
