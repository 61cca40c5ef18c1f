"""Per-run agent state machine and cooperative cancellation."""

import asyncio
from enum import Enum

from hopeit.dataobjects import dataclass, dataobject, field

__all__ = ["AgentSession", "CancellationToken", "RunState", "TerminationReason"]


class RunState(str, Enum):
    """Lifecycle of one agent run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class TerminationReason(str, Enum):
    """Why a run left the running state."""

    TASK_COMPLETED = "task completed"
    DIRECT_ANSWER = "direct answer"
    ITERATION_CAP = "iteration cap reached"
    CONSECUTIVE_ERRORS = "consecutive error limit reached"
    ABORTED = "aborted by user"
    MODEL_ERROR = "model invocation failed"


_TERMINAL = frozenset({RunState.COMPLETED, RunState.FAILED, RunState.ABORTED})


@dataobject
@dataclass
class AgentSession:
    """
    Counters and state of one run.

    ``iteration_count`` grows once per tool round, failed or not.
    ``consecutive_error_count`` grows on a failed round and resets on a
    successful one. When both limits are reached on the same round the
    consecutive error reason is reported.
    """

    max_iterations: int = 25
    max_consecutive_errors: int = 3
    iteration_count: int = 0
    consecutive_error_count: int = 0
    state: RunState = RunState.IDLE
    reason: TerminationReason | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.state is RunState.COMPLETED

    @property
    def finished(self) -> bool:
        return self.state in _TERMINAL

    def start(self) -> None:
        if self.state is not RunState.IDLE:
            raise RuntimeError(f"Cannot start a run in state '{self.state.value}'")
        self.state = RunState.RUNNING

    def record_success(self) -> TerminationReason | None:
        self._require_running()
        self.iteration_count += 1
        self.consecutive_error_count = 0
        return self._check_limits()

    def record_failure(self) -> TerminationReason | None:
        self._require_running()
        self.iteration_count += 1
        self.consecutive_error_count += 1
        return self._check_limits()

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def complete(self, reason: TerminationReason = TerminationReason.TASK_COMPLETED) -> None:
        self._finish(RunState.COMPLETED, reason)

    def fail(self, reason: TerminationReason) -> None:
        self._finish(RunState.FAILED, reason)

    def abort(self) -> None:
        self._finish(RunState.ABORTED, TerminationReason.ABORTED)

    def _check_limits(self) -> TerminationReason | None:
        if self.consecutive_error_count >= self.max_consecutive_errors:
            self.fail(TerminationReason.CONSECUTIVE_ERRORS)
        elif self.iteration_count >= self.max_iterations:
            self.fail(TerminationReason.ITERATION_CAP)
        return self.reason if self.finished else None

    def _finish(self, state: RunState, reason: TerminationReason) -> None:
        self._require_running()
        self.state = state
        self.reason = reason

    def _require_running(self) -> None:
        if self.state is not RunState.RUNNING:
            raise RuntimeError(f"Run is not running (state '{self.state.value}')")


class CancellationToken:
    """Flag checked by the loop between iterations."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
