"""!
@brief Multi-backend candidate resolution.
@details Maps a fuzzy target name onto removal candidates by querying, in
order, the classic uninstall records, the PackageManagement providers, and the
packaged-app inventory. Later backends only run when every earlier one came
back empty. Within a backend every match is returned; a warning lists them
whenever a name fans out to more than one candidate.
"""
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Callable, List, Sequence

from . import appx, constants, logging_ext, package_manager, uninstall_records
from .config import JanitorConfig
from .models import CandidateEntry, PackagedAppEntry, PackageManagerEntry, RegistryUninstallEntry, describe_candidate

RegistryBackend = Callable[[str], Sequence[RegistryUninstallEntry]]
PackageManagerBackend = Callable[[str], Sequence[PackageManagerEntry]]
PackagedAppBackend = Callable[[str], Sequence[PackagedAppEntry]]


@dataclass(frozen=True)
class Backend:
    """!
    @brief Named query callable consulted by :class:`CandidateResolver`.
    """

    name: str
    query: Callable[[str], Sequence[CandidateEntry]]


class CandidateResolver:
    """!
    @brief Resolve name patterns to :data:`~app_janitor.models.CandidateEntry` lists.
    @details Backends default to the live Windows implementations configured
    from ``config``; tests pass their own callables.
    """

    def __init__(
        self,
        config: JanitorConfig | None = None,
        *,
        registry_backend: RegistryBackend | None = None,
        package_backend: PackageManagerBackend | None = None,
        appx_backend: PackagedAppBackend | None = None,
    ) -> None:
        self.config = config or JanitorConfig()
        query_timeout = self.config.command_timeout(constants.QUERY_TIMEOUT)

        def _packages(pattern: str) -> Sequence[PackageManagerEntry]:
            return package_manager.find_packages(pattern, timeout=query_timeout)

        def _apps(pattern: str) -> Sequence[PackagedAppEntry]:
            return appx.find_packages(pattern, all_users=self.config.all_users, timeout=query_timeout)

        self.backends: List[Backend] = [
            Backend("registry", registry_backend or uninstall_records.find_uninstall_records),
            Backend("package-manager", package_backend or _packages),
            Backend("packaged-app", appx_backend or _apps),
        ]

    def resolve(self, name_pattern: str) -> List[CandidateEntry]:
        """!
        @brief Return every candidate for ``name_pattern`` from the first backend that has any.
        """

        human_logger = logging_ext.get_human_logger()
        machine_logger = logging_ext.get_machine_logger()

        pattern = (name_pattern or "").strip()
        if not pattern:
            return []

        candidates: List[CandidateEntry] = []
        for backend in self.backends:
            found = self._query(backend, pattern)
            machine_logger.info(
                "resolver_backend",
                extra={"event": "resolver_backend", "backend": backend.name, "pattern": pattern, "matches": len(found)},
            )
            candidates.extend(found)
            if candidates:
                break

        if len(candidates) > 1:
            human_logger.warning(
                "'%s' matched %d candidates; all of them will be processed: %s",
                pattern,
                len(candidates),
                "; ".join(describe_candidate(entry) for entry in candidates),
            )
        return candidates

    def resolve_packaged_apps(self, name_pattern: str) -> List[CandidateEntry]:
        """!
        @brief Query only the packaged-app backend.
        """

        pattern = (name_pattern or "").strip()
        if not pattern:
            return []
        return self._query(self.backends[-1], pattern)

    def _query(self, backend: Backend, pattern: str) -> List[CandidateEntry]:
        try:
            return list(backend.query(pattern))
        except (OSError, subprocess.SubprocessError) as exc:
            logging_ext.get_human_logger().warning("%s lookup for '%s' failed: %s", backend.name, pattern, exc)
            return []


__all__ = ["Backend", "CandidateResolver"]
