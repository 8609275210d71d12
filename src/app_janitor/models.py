"""!
@brief Data model shared by the removal engine.
@details Defines the removal target, the candidate variants discovered by the
resolver, the removal report accumulated by escalation runs, and the batch job
records owned by the orchestrator. Candidate and target records are frozen;
reports and jobs are mutable only through their own methods.
"""
from __future__ import annotations

import datetime as _dt
import enum
import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Union

from . import guid_utils


@dataclass(frozen=True)
class RemovalTarget:
    """!
    @brief Identifier for one removal request.
    @details ``product_code`` is populated when ``identifier`` is an exact
    Windows Installer product code; resolution is bypassed for such targets.
    """

    identifier: str
    product_code: str | None = None

    @classmethod
    def parse(cls, identifier: str | None) -> "RemovalTarget":
        """!
        @brief Build a target, recognising GUID-like product codes.
        """

        text = (identifier or "").strip()
        if text and guid_utils.is_valid_guid(text):
            return cls(identifier=text, product_code=guid_utils.normalize_guid(text))
        return cls(identifier=text)

    @classmethod
    def from_product_code(cls, code: str) -> "RemovalTarget":
        """!
        @brief Build an exact-code target, rejecting malformed codes.
        @throws guid_utils.GuidError When ``code`` is not a valid GUID.
        """

        normalized = guid_utils.normalize_guid(code)
        return cls(identifier=normalized, product_code=normalized)

    @property
    def is_exact(self) -> bool:
        return self.product_code is not None

    @property
    def name(self) -> str:
        return self.identifier

    def __str__(self) -> str:
        return self.identifier


@dataclass(frozen=True)
class RegistryUninstallEntry:
    """!
    @brief Classic uninstall record found beneath an ``Uninstall`` hive root.
    """

    display_name: str
    uninstall_command: str
    source_key_path: str
    quiet_uninstall_command: str = ""
    display_version: str = ""
    publisher: str = ""

    kind = "registry"

    def to_dict(self) -> Dict[str, object]:
        return {
            "kind": self.kind,
            "display_name": self.display_name,
            "uninstall_command": self.uninstall_command,
            "source_key_path": self.source_key_path,
            "display_version": self.display_version,
            "publisher": self.publisher,
        }


@dataclass(frozen=True)
class PackageManagerEntry:
    """!
    @brief Package reported by ``Get-Package``.
    """

    name: str
    provider: str
    version: str
    handle: str = ""

    kind = "package-manager"

    def to_dict(self) -> Dict[str, object]:
        return {
            "kind": self.kind,
            "name": self.name,
            "provider": self.provider,
            "version": self.version,
            "handle": self.handle,
        }


@dataclass(frozen=True)
class PackagedAppEntry:
    """!
    @brief AppX/MSIX package reported by ``Get-AppxPackage``.
    """

    name: str
    full_name: str

    kind = "packaged-app"

    def to_dict(self) -> Dict[str, object]:
        return {"kind": self.kind, "name": self.name, "full_name": self.full_name}


CandidateEntry = Union[RegistryUninstallEntry, PackageManagerEntry, PackagedAppEntry]
"""!
@brief Tagged union of everything the resolver can return.
"""


def describe_candidate(entry: object) -> str:
    """!
    @brief Human-friendly label for a candidate of any shape.
    """

    if isinstance(entry, RegistryUninstallEntry):
        return entry.display_name
    if isinstance(entry, PackageManagerEntry):
        label = " ".join(part for part in (entry.name, entry.version) if part)
        return f"{label} ({entry.provider})" if entry.provider else label
    if isinstance(entry, PackagedAppEntry):
        return entry.full_name or entry.name
    return repr(entry)


class RecordKind(str, enum.Enum):
    """!
    @brief Categories of actions recorded in a :class:`RemovalReport`.
    """

    KILLED_PROCESS = "KilledProcess"
    REMOVED_FOLDER = "RemovedFolder"
    REMOVED_REGISTRY_KEY = "RemovedRegistryKey"
    UNINSTALLED = "Uninstalled"


@dataclass(frozen=True)
class ReportRecord:
    kind: RecordKind
    detail: str
    status: str

    def to_dict(self) -> Dict[str, object]:
        return {"kind": self.kind.value, "detail": self.detail, "status": self.status}


class RemovalReport:
    """!
    @brief Ordered action log for one escalation run.
    @details Records are appended while the run progresses. :meth:`persist`
    writes the report exactly once to a file that must not exist yet; any later
    mutation raises ``RuntimeError``.
    """

    def __init__(self, target: str) -> None:
        self.target = target
        self.started_at = _dt.datetime.now(tz=_dt.timezone.utc)
        self._records: List[ReportRecord] = []
        self._lock = threading.Lock()
        self._path: Path | None = None

    @property
    def records(self) -> List[ReportRecord]:
        with self._lock:
            return list(self._records)

    @property
    def persisted(self) -> bool:
        return self._path is not None

    @property
    def path(self) -> Path | None:
        return self._path

    def append(self, kind: RecordKind, detail: str, status: str) -> ReportRecord:
        record = ReportRecord(kind=kind, detail=detail, status=status)
        with self._lock:
            if self._path is not None:
                raise RuntimeError(f"Report for {self.target!r} was already persisted to {self._path}")
            self._records.append(record)
        return record

    def to_dict(self) -> Dict[str, object]:
        with self._lock:
            return self._payload()

    def _payload(self) -> Dict[str, object]:
        # caller holds _lock
        return {
            "target": self.target,
            "started_at": self.started_at.isoformat(timespec="seconds"),
            "records": [record.to_dict() for record in self._records],
        }

    def persist(self, path: Path, *, metadata: Dict[str, object] | None = None) -> Path:
        """!
        @brief Write the report to ``path`` and freeze it.
        @throws FileExistsError When ``path`` already exists.
        @throws RuntimeError When the report was already persisted.
        """

        with self._lock:
            if self._path is not None:
                raise RuntimeError(f"Report for {self.target!r} was already persisted to {self._path}")
            payload = self._payload()
            if metadata:
                payload["metadata"] = dict(metadata)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "x", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            self._path = path
        return path


class JobState(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BatchJob:
    """!
    @brief One unit of per-target work inside a batch.
    @details State transitions are performed by the orchestrator only:
    ``QUEUED -> RUNNING -> COMPLETED | FAILED``.
    """

    target: str
    state: JobState = JobState.QUEUED
    error: str | None = None
    result: object | None = None
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def terminal(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"target": self.target, "state": self.state.value}
        if self.error:
            payload["error"] = self.error
        if self.started_at is not None and self.finished_at is not None:
            payload["duration"] = round(self.finished_at - self.started_at, 3)
        return payload


@dataclass
class BatchSummary:
    """!
    @brief Aggregate outcome of a batch run.
    """

    processed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    jobs: List[BatchJob] = field(default_factory=list)
    peak_running: int = 0

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def succeeded(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, object]:
        return {
            "processed": list(self.processed),
            "failed": list(self.failed),
            "failure_count": self.failure_count,
            "peak_running": self.peak_running,
            "jobs": [job.to_dict() for job in self.jobs],
        }


__all__ = [
    "BatchJob",
    "BatchSummary",
    "CandidateEntry",
    "JobState",
    "PackageManagerEntry",
    "PackagedAppEntry",
    "RecordKind",
    "RegistryUninstallEntry",
    "RemovalReport",
    "RemovalTarget",
    "ReportRecord",
    "describe_candidate",
]
