"""!
@brief Registry access helpers.
@details Read access goes through ``winreg``; key deletion shells out to
``reg.exe delete /f`` so it behaves the same for 32- and 64-bit views and
reports failures through :mod:`app_janitor.command_runner`.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Tuple

from . import command_runner, constants

try:  # pragma: no cover - exercised through mocks on non-Windows platforms.
    import winreg
except ImportError:  # pragma: no cover - handled gracefully during tests.
    winreg = None  # type: ignore[assignment]

REG_TIMEOUT = 60


def _ensure_winreg() -> None:
    """!
    @brief Raise an informative error when ``winreg`` is unavailable.
    """

    if winreg is None:  # pragma: no cover - simplifies non-Windows test runs.
        raise FileNotFoundError("Windows registry APIs are unavailable on this platform")


@contextmanager
def open_key(root: int, path: str, access: int | None = None) -> Iterator[Any]:
    """!
    @brief Context manager mirroring ``winreg.OpenKey`` that always closes the handle.
    """

    _ensure_winreg()
    access_mask = access if access is not None else winreg.KEY_READ  # type: ignore[union-attr]
    handle = winreg.OpenKey(root, path, 0, access_mask)  # type: ignore[union-attr]
    try:
        yield handle
    finally:
        winreg.CloseKey(handle)  # type: ignore[union-attr]


def iter_subkeys(root: int, path: str) -> Iterator[str]:
    _ensure_winreg()
    with open_key(root, path) as handle:
        subkey_count, _, _ = winreg.QueryInfoKey(handle)  # type: ignore[union-attr]
        for index in range(subkey_count):
            yield winreg.EnumKey(handle, index)  # type: ignore[union-attr]


def iter_values(root: int, path: str) -> Iterator[Tuple[str, Any]]:
    _ensure_winreg()
    with open_key(root, path) as handle:
        _, value_count, _ = winreg.QueryInfoKey(handle)  # type: ignore[union-attr]
        for index in range(value_count):
            name, value, _ = winreg.EnumValue(handle, index)  # type: ignore[union-attr]
            yield name, value


def read_values(root: int, path: str) -> Dict[str, Any]:
    """!
    @brief Read all values beneath ``root``/``path``; missing keys yield ``{}``.
    """

    try:
        return dict(iter_values(root, path))
    except OSError:
        return {}


def key_exists(root: int, path: str) -> bool:
    try:
        with open_key(root, path):
            return True
    except OSError:
        return False


def hive_name(root: int) -> str:
    """!
    @brief Provide the short ``HKLM``-style identifier for a hive handle.
    """

    for name, value in constants.REGISTRY_ROOTS.items():
        if value == root:
            return name
    return hex(root)


def compose_handle(root: int, path: str) -> str:
    """!
    @brief Build a ``HKLM\\...`` handle usable by ``reg.exe``.
    """

    clean = path.strip("\\")
    return f"{hive_name(root)}\\{clean}"


def split_handle(handle: str) -> Tuple[int, str]:
    """!
    @brief Inverse of :func:`compose_handle`.
    @throws ValueError For handles without a recognised hive prefix.
    """

    hive, _, path = handle.partition("\\")
    root = constants.REGISTRY_ROOTS.get(hive.upper())
    if root is None or not path:
        raise ValueError(f"Unrecognised registry handle: {handle}")
    return root, path


def delete_key(handle: str, *, timeout: float | None = REG_TIMEOUT) -> None:
    """!
    @brief Delete ``handle`` and everything beneath it.
    @throws ValueError For malformed handles.
    @throws subprocess.CalledProcessError When ``reg.exe`` reports a failure.
    """

    split_handle(handle)
    command_runner.run_command(
        ["reg.exe", "delete", handle, "/f"],
        event="registry_delete",
        timeout=timeout,
        check=True,
        extra={"key": handle},
    )


__all__ = [
    "compose_handle",
    "delete_key",
    "hive_name",
    "iter_subkeys",
    "iter_values",
    "key_exists",
    "open_key",
    "read_values",
    "split_handle",
]
