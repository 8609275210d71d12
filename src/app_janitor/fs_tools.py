"""!
@brief Filesystem utilities for leftover cleanup.
@details Computes the canonical install locations keyed by a target name and
removes them recursively, clearing read-only attributes that would otherwise
stop :func:`shutil.rmtree` on Windows.
"""
from __future__ import annotations

import os
import shutil
import stat
import sys
from pathlib import Path
from typing import List, Mapping, Sequence, Tuple

from . import constants


def _handle_readonly(function, path: str, exc: BaseException) -> None:  # pragma: no cover - Windows attribute handling
    """!
    @brief Clear read-only attributes before retrying removal.
    """

    if isinstance(exc, PermissionError):
        os.chmod(path, stat.S_IWRITE)
        function(path)
    else:
        raise exc


def _roots(variables: Sequence[Tuple[str, str]], environ: Mapping[str, str] | None) -> List[Path]:
    env = os.environ if environ is None else environ
    roots: List[Path] = []
    for variable, fallback in variables:
        value = env.get(variable) or fallback
        if not value:
            continue
        root = Path(value)
        if root not in roots:
            roots.append(root)
    return roots


def _safe_component(name: str) -> str | None:
    """!
    @brief Reject names that would escape the root they are joined with.
    """

    component = name.strip().strip("\\/")
    if not component or component in (".", "..") or any(sep in component for sep in ("\\", "/")):
        return None
    return component


def leftover_directories(name: str, *, environ: Mapping[str, str] | None = None) -> List[Path]:
    """!
    @brief ``Program Files`` and ``Program Files (x86)`` candidates for ``name``.
    """

    component = _safe_component(name)
    if component is None:
        return []
    return [root / component for root in _roots(constants.LEFTOVER_ROOT_VARIABLES, environ)]


def deep_clean_directories(name: str, *, environ: Mapping[str, str] | None = None) -> List[Path]:
    """!
    @brief Program Files, per-user and shared application data candidates for ``name``.
    """

    component = _safe_component(name)
    if component is None:
        return []
    return [root / component for root in _roots(constants.DEEP_CLEAN_ROOT_VARIABLES, environ)]


def existing_paths(paths: Sequence[Path]) -> List[Path]:
    return [path for path in paths if path.exists()]


def remove_path(target: Path) -> None:
    """!
    @brief Delete ``target`` recursively.
    @throws OSError When the path cannot be removed.
    """

    target = Path(target)
    if target.is_dir() and not target.is_symlink():
        if sys.version_info >= (3, 12):
            shutil.rmtree(target, onexc=_handle_readonly)
        else:  # pragma: no cover - older interpreters
            shutil.rmtree(target, onerror=_legacy_handler)
        return
    try:
        target.unlink()
    except PermissionError:
        os.chmod(target, stat.S_IWRITE)
        target.unlink()


def _legacy_handler(function, path: str, exc_info) -> None:  # pragma: no cover - Python < 3.12
    _handle_readonly(function, path, exc_info[1])


__all__ = [
    "deep_clean_directories",
    "existing_paths",
    "leftover_directories",
    "remove_path",
]
