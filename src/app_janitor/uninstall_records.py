"""!
@brief Classic uninstall-record inventory.
@details Enumerates the ``...\\CurrentVersion\\Uninstall`` subkeys of every root
in :data:`app_janitor.constants.UNINSTALL_ROOTS` and turns each record that
carries a display name into a :class:`~app_janitor.models.RegistryUninstallEntry`.
Unreadable roots are skipped so a missing WOW6432Node view or an absent
``winreg`` module simply yields fewer records.
"""
from __future__ import annotations

from typing import Iterable, List, Tuple

from . import constants, logging_ext, registry_tools
from .models import RegistryUninstallEntry


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip().strip("\0")


def query_uninstall_records(
    roots: Iterable[Tuple[int, str]] = constants.UNINSTALL_ROOTS,
) -> List[RegistryUninstallEntry]:
    """!
    @brief Return every uninstall record beneath ``roots`` that has a ``DisplayName``.
    """

    human_logger = logging_ext.get_human_logger()
    records: List[RegistryUninstallEntry] = []
    seen: set[str] = set()

    for hive, base in roots:
        try:
            subkeys = list(registry_tools.iter_subkeys(hive, base))
        except OSError as exc:
            human_logger.debug("Skipping uninstall root %s: %s", registry_tools.compose_handle(hive, base), exc)
            continue

        for subkey in subkeys:
            key_path = f"{base}\\{subkey}"
            values = registry_tools.read_values(hive, key_path)
            display_name = _text(values.get("DisplayName"))
            if not display_name:
                continue
            handle = registry_tools.compose_handle(hive, key_path)
            if handle.lower() in seen:
                continue
            seen.add(handle.lower())
            records.append(
                RegistryUninstallEntry(
                    display_name=display_name,
                    uninstall_command=_text(values.get("UninstallString")),
                    source_key_path=handle,
                    quiet_uninstall_command=_text(values.get("QuietUninstallString")),
                    display_version=_text(values.get("DisplayVersion")),
                    publisher=_text(values.get("Publisher")),
                )
            )

    return records


def match_records(records: Iterable[RegistryUninstallEntry], name_pattern: str) -> List[RegistryUninstallEntry]:
    """!
    @brief Case-insensitive substring match of ``name_pattern`` against display names.
    """

    needle = name_pattern.strip().casefold()
    if not needle:
        return []
    return [record for record in records if needle in record.display_name.casefold()]


def find_uninstall_records(name_pattern: str) -> List[RegistryUninstallEntry]:
    return match_records(query_uninstall_records(), name_pattern)


__all__ = ["find_uninstall_records", "match_records", "query_uninstall_records"]
