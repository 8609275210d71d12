"""!
@brief Bounded-concurrency batch orchestration.
@details :class:`BatchOrchestrator` runs one per-target operation for each
identifier on a :class:`concurrent.futures.ThreadPoolExecutor` sized to the
requested concurrency, so at most ``concurrency`` jobs are ever ``RUNNING``.
Completions are consumed through :func:`concurrent.futures.as_completed`.
Each job is isolated: an exception marks that job ``FAILED`` and is logged,
while its siblings keep running. There is no cancellation; the summary is
assembled once every job is terminal.

The same orchestrator drives plain removal, stubborn removal and bulk
packaged-app removal; only the operation callable differs (see
:func:`uninstall_operation`, :func:`escalation_operation` and
:func:`packaged_app_operation`).
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Dict, Protocol, Sequence

from . import constants, logging_ext
from .escalation import EscalationEngine, EscalationFailure, EscalationResult
from .models import BatchJob, BatchSummary, JobState
from .uninstaller import SingleTargetUninstaller, UninstallResult


class TargetOperation(Protocol):
    def __call__(self, target: str, *, dry_run: bool, force: bool) -> object:  # pragma: no cover - protocol
        ...


def validate_concurrency(concurrency: int) -> int:
    """!
    @brief Reject pool sizes outside ``[1, 16]``.
    @throws ValueError For out-of-range or non-integer values.
    """

    if isinstance(concurrency, bool) or not isinstance(concurrency, int):
        raise ValueError(f"concurrency must be an integer, got {concurrency!r}")
    if not constants.MIN_CONCURRENCY <= concurrency <= constants.MAX_CONCURRENCY:
        raise ValueError(
            f"concurrency must be between {constants.MIN_CONCURRENCY} and {constants.MAX_CONCURRENCY}, got {concurrency}"
        )
    return concurrency


class _RunState:
    """!
    @brief Occupancy counters owned by a single ``run_batch`` call.
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.running = 0
        self.peak = 0

    def enter(self) -> None:
        with self.lock:
            self.running += 1
            self.peak = max(self.peak, self.running)

    def leave(self) -> None:
        with self.lock:
            self.running -= 1


class BatchOrchestrator:
    """!
    @brief Fan a per-target operation out over many identifiers.
    @details Holds no per-run state, so one instance may serve overlapping batches.
    """

    def run_batch(
        self,
        targets: Sequence[str],
        concurrency: int,
        operation: TargetOperation,
        *,
        dry_run: bool = False,
        force: bool = False,
    ) -> BatchSummary:
        """!
        @brief Run ``operation`` once per target with at most ``concurrency`` in flight.
        @param targets Identifiers in submission order.
        @param concurrency Pool size in ``[1, 16]``.
        @param operation Callable invoked as ``operation(target, dry_run=..., force=...)``.
        @param dry_run Forwarded to every invocation.
        @param force Forwarded to every invocation.
        @returns :class:`BatchSummary` naming processed and failed targets.
        @throws ValueError When ``concurrency`` is out of range.
        """

        human_logger = logging_ext.get_human_logger()
        machine_logger = logging_ext.get_machine_logger()

        validate_concurrency(concurrency)
        jobs = [BatchJob(target=str(target)) for target in targets]
        occupancy = _RunState()

        human_logger.info("Batch started: %d target(s), concurrency %d", len(jobs), concurrency)
        machine_logger.info(
            "batch_start",
            extra={
                "event": "batch_start",
                "targets": [job.target for job in jobs],
                "concurrency": concurrency,
                "dry_run": dry_run,
            },
        )

        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="app-janitor") as pool:
            futures: Dict[Future[None], BatchJob] = {
                pool.submit(self._run_job, occupancy, job, operation, dry_run, force): job for job in jobs
            }
            for future in as_completed(futures):
                job = futures[future]
                # _run_job records failures itself; a raise here is a bug in the job wrapper
                future.result()
                machine_logger.info("batch_job_done", extra={"event": "batch_job_done", "job": job.to_dict()})

        summary = BatchSummary(
            processed=[job.target for job in jobs],
            failed=[job.target for job in jobs if job.state is JobState.FAILED],
            jobs=jobs,
            peak_running=occupancy.peak,
        )

        if summary.failed:
            human_logger.error(
                "Batch complete: %d processed, %d failed (%s)",
                len(summary.processed),
                summary.failure_count,
                ", ".join(summary.failed),
            )
        else:
            human_logger.info("Batch complete: %d processed, 0 failed", len(summary.processed))
        machine_logger.info("batch_summary", extra={"event": "batch_summary", "summary": summary.to_dict()})
        return summary

    def _run_job(
        self, occupancy: _RunState, job: BatchJob, operation: TargetOperation, dry_run: bool, force: bool
    ) -> None:
        human_logger = logging_ext.get_human_logger()

        occupancy.enter()
        with occupancy.lock:
            job.state = JobState.RUNNING
            job.started_at = time.monotonic()
        try:
            job.result = operation(job.target, dry_run=dry_run, force=force)
        except Exception as exc:  # noqa: BLE001 - per-target isolation
            human_logger.error("Target '%s' failed: %s", job.target, exc)
            with occupancy.lock:
                job.error = str(exc) or exc.__class__.__name__
                job.state = JobState.FAILED
        else:
            with occupancy.lock:
                job.state = JobState.COMPLETED
        finally:
            with occupancy.lock:
                job.finished_at = time.monotonic()
            occupancy.leave()


def uninstall_operation(uninstaller: SingleTargetUninstaller, *, recurse: bool = False) -> TargetOperation:
    """!
    @brief Adapt :meth:`SingleTargetUninstaller.uninstall` to the batch signature.
    """

    def _operation(target: str, *, dry_run: bool, force: bool) -> UninstallResult:
        return uninstaller.uninstall(target, recurse=recurse, dry_run=dry_run, force=force)

    return _operation


def escalation_operation(
    engine: EscalationEngine,
    *,
    kill_processes: bool = False,
    deep_clean: bool = False,
    recurse: bool = False,
) -> TargetOperation:
    """!
    @brief Adapt :meth:`EscalationEngine.run`; runs with recorded errors count as failed jobs.
    """

    def _operation(target: str, *, dry_run: bool, force: bool) -> EscalationResult:
        result = engine.run(
            target,
            kill_processes=kill_processes,
            deep_clean=deep_clean,
            recurse=recurse,
            dry_run=dry_run,
            force=force,
        )
        if result.failed:
            raise EscalationFailure(result)
        return result

    return _operation


def packaged_app_operation(uninstaller: SingleTargetUninstaller) -> TargetOperation:
    """!
    @brief Adapt :meth:`SingleTargetUninstaller.remove_packaged_apps` for bulk AppX removal.
    """

    def _operation(target: str, *, dry_run: bool, force: bool) -> UninstallResult:
        return uninstaller.remove_packaged_apps(target, dry_run=dry_run, force=force)

    return _operation


__all__ = [
    "BatchOrchestrator",
    "TargetOperation",
    "escalation_operation",
    "packaged_app_operation",
    "uninstall_operation",
    "validate_concurrency",
]
