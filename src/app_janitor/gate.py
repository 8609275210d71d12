"""!
@brief Action execution gate.
@details Every destructive operation in App Janitor is wrapped in an
:class:`ActionRequest` and handed to :meth:`ActionGate.execute`, which applies
the dry-run, force and confirmation rules in that order and logs exactly one
outcome line per request:

- ``DRYRUN: {description}`` when the request is a dry run,
- ``SUCCESS: {description}`` when the operation returned,
- ``FAILED: {description} - {error}`` when the operation raised,
- ``SKIPPED: {description} (user declined)`` when confirmation was refused.

Failures are re-raised as :class:`ExecutionFailure` so the immediate caller
decides whether to continue with sibling work.
"""
from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from typing import Callable, List, Tuple

from . import confirm, logging_ext


class ActionStatus(str, enum.Enum):
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


DRY_RUN_REASON = "dry-run"
DECLINED_REASON = "user declined"


@dataclass(frozen=True)
class ActionRequest:
    """!
    @brief One destructive operation awaiting a gate decision.
    @details ``operation`` is only ever called by the gate, and at most once.
    """

    description: str
    operation: Callable[[], object]
    dry_run: bool = False
    force: bool = False


@dataclass(frozen=True)
class ActionOutcome:
    """!
    @brief Result of a gate decision.
    @details Dry runs are reported as ``SKIPPED`` with reason ``"dry-run"``;
    :attr:`ok` treats them as simulated successes so callers can count them
    alongside real ones.
    """

    status: ActionStatus
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status is ActionStatus.SUCCEEDED or self.simulated

    @property
    def simulated(self) -> bool:
        return self.status is ActionStatus.SKIPPED and self.reason == DRY_RUN_REASON

    @property
    def declined(self) -> bool:
        return self.status is ActionStatus.SKIPPED and self.reason == DECLINED_REASON


class ExecutionFailure(RuntimeError):
    """!
    @brief Raised by :meth:`ActionGate.execute` when a gated operation throws.
    @details The original exception is chained as ``__cause__``.
    """

    def __init__(self, description: str, outcome: ActionOutcome) -> None:
        super().__init__(f"{description} - {outcome.reason}")
        self.description = description
        self.outcome = outcome


class ActionGate:
    """!
    @brief Single choke point for dry-run, confirmation and outcome logging.
    @details Safe to share between batch worker threads. Confirmation prompts
    are serialised so concurrent jobs never interleave questions on the
    console.
    """

    def __init__(self, confirmer: Callable[[str], bool] | None = None) -> None:
        self._confirmer = confirmer or confirm.make_confirmer()
        self._prompt_lock = threading.Lock()
        self._history_lock = threading.Lock()
        self._history: List[Tuple[ActionRequest, ActionOutcome]] = []
        self._executions = 0

    @property
    def history(self) -> List[Tuple[ActionRequest, ActionOutcome]]:
        with self._history_lock:
            return list(self._history)

    @property
    def executions(self) -> int:
        """!
        @brief Number of operations actually invoked (dry runs and declines excluded).
        """

        with self._history_lock:
            return self._executions

    def execute(self, request: ActionRequest) -> ActionOutcome:
        """!
        @brief Decide, run, and log ``request``.
        @returns The :class:`ActionOutcome` for skipped or successful requests.
        @throws ExecutionFailure When the operation raised.
        """

        human_logger = logging_ext.get_human_logger()

        if request.dry_run:
            human_logger.info("DRYRUN: %s", request.description)
            return self._record(request, ActionOutcome(ActionStatus.SKIPPED, DRY_RUN_REASON))

        if not request.force and not self._confirm(request.description):
            human_logger.warning("SKIPPED: %s (user declined)", request.description)
            return self._record(request, ActionOutcome(ActionStatus.SKIPPED, DECLINED_REASON))

        with self._history_lock:
            self._executions += 1
        try:
            request.operation()
        except Exception as exc:
            outcome = ActionOutcome(ActionStatus.FAILED, str(exc) or exc.__class__.__name__)
            human_logger.error("FAILED: %s - %s", request.description, outcome.reason)
            self._record(request, outcome)
            raise ExecutionFailure(request.description, outcome) from exc

        human_logger.info("SUCCESS: %s", request.description)
        return self._record(request, ActionOutcome(ActionStatus.SUCCEEDED))

    def run(
        self,
        description: str,
        operation: Callable[[], object],
        *,
        dry_run: bool,
        force: bool,
    ) -> ActionOutcome:
        """!
        @brief Convenience wrapper building the :class:`ActionRequest` inline.
        """

        return self.execute(ActionRequest(description=description, operation=operation, dry_run=dry_run, force=force))

    def _confirm(self, description: str) -> bool:
        with self._prompt_lock:
            return bool(self._confirmer(description))

    def _record(self, request: ActionRequest, outcome: ActionOutcome) -> ActionOutcome:
        with self._history_lock:
            self._history.append((request, outcome))
        logging_ext.get_machine_logger().info(
            "gate_decision",
            extra={
                "event": "gate_decision",
                "description": request.description,
                "status": outcome.status.value,
                "reason": outcome.reason,
                "dry_run": request.dry_run,
                "force": request.force,
            },
        )
        return outcome


__all__ = [
    "ActionGate",
    "ActionOutcome",
    "ActionRequest",
    "ActionStatus",
    "DECLINED_REASON",
    "DRY_RUN_REASON",
    "ExecutionFailure",
]
