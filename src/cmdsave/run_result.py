# cmdsave/run_result.py
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .exceptions import ExecutionError, StepCancelledError, StepTimeoutError

logger = logging.getLogger(__name__)


class RunState(Enum):
    """Possible states of a single command execution."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class RunResult:
    """
    Represents a single execution of a stored command.

    Created and driven by StepExecutor; ChainRunner reads it to seed the next
    step's ExecutionContext and to decide on success/failure branching.
    """

    command_id: int
    """ID of the stored command being executed."""

    command: str = ""
    """Command text passed to the shell."""

    output: str = ""
    """Captured stdout + stderr."""

    exit_code: int | None = None
    """Process exit code (None if the process never started or was killed)."""

    success: bool | None = None
    """True = success, False = failed/timed out, None = cancelled/pending."""

    error: str | None = None
    """Human-readable failure reason."""

    state: RunState = RunState.PENDING

    timeout_secs: float | None = None
    """Deadline that applied to this run, if any."""

    start_time: datetime.datetime | None = None
    end_time: datetime.datetime | None = None
    duration: datetime.timedelta | None = field(default=None, repr=False)

    # ------------------------------------------------------------------ #
    # State transitions
    # ------------------------------------------------------------------ #
    def mark_running(self) -> None:
        """Transition to RUNNING and record start time."""
        if self.state is not RunState.PENDING:
            logger.warning(f"Run of command {self.command_id} marked running from state {self.state}")
        self.state = RunState.RUNNING
        self.start_time = datetime.datetime.now()
        logger.debug(f"Command {self.command_id} started")

    def mark_success(self) -> None:
        self.state = RunState.SUCCESS
        self.success = True
        self._finalize()
        logger.debug(f"Command {self.command_id} succeeded in {self.duration_str}")

    def mark_failed(self, error: str | Exception) -> None:
        self.state = RunState.FAILED
        self.success = False
        self.error = str(error)
        self._finalize()
        logger.debug(f"Command {self.command_id} failed: {self.error}")

    def mark_timed_out(self) -> None:
        self.state = RunState.TIMED_OUT
        self.success = False
        self.error = f"Command timed out after {self.timeout_secs:g} seconds"
        self._finalize()
        logger.debug(f"Command {self.command_id} timed out")

    def mark_cancelled(self, reason: str | None = None) -> None:
        self.state = RunState.CANCELLED
        self.success = None
        self.error = reason or "Command was cancelled"
        self._finalize()
        logger.debug(f"Command {self.command_id} cancelled")

    def _finalize(self) -> None:
        self.end_time = datetime.datetime.now()
        if self.start_time:
            self.duration = self.end_time - self.start_time
        else:
            self.duration = datetime.timedelta(0)

    # ------------------------------------------------------------------ #
    # Outcome helpers
    # ------------------------------------------------------------------ #
    @property
    def is_finished(self) -> bool:
        return self.state not in {RunState.PENDING, RunState.RUNNING}

    def raise_for_state(self) -> None:
        """Raise the matching ExecutionError unless the run succeeded."""
        if self.state is RunState.SUCCESS:
            return
        if self.state is RunState.TIMED_OUT:
            raise StepTimeoutError(self.command_id, self.timeout_secs or 0, self.output)
        if self.state is RunState.CANCELLED:
            raise StepCancelledError(self.command_id, self.output)
        raise ExecutionError(self.command_id, self.error or f"run is {self.state.value}", self.output)

    # ------------------------------------------------------------------ #
    # Timing properties
    # ------------------------------------------------------------------ #
    @property
    def duration_secs(self) -> float | None:
        return self.duration.total_seconds() if self.duration else None

    @property
    def duration_str(self) -> str:
        """Human-readable duration (e.g. '452ms', '2.4s', '1m 23s', '2h 5m')."""
        secs = self.duration_secs
        if secs is None:
            return "-"
        if secs < 1:
            return f"{secs * 1000:.0f}ms"
        if secs < 60:
            return f"{secs:.1f}s"
        mins, secs = divmod(secs, 60)
        if mins < 60:
            return f"{int(mins)}m {secs:.0f}s"
        hrs, mins = divmod(mins, 60)
        return f"{int(hrs)}h {int(mins)}m"

    # ------------------------------------------------------------------ #
    # Representation & serialization
    # ------------------------------------------------------------------ #
    def __repr__(self) -> str:
        return (
            f"RunResult(cmd={self.command_id}, state={self.state.value}, "
            f"exit={self.exit_code}, dur={self.duration_str})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "command_id": self.command_id,
            "command": self.command,
            "output": self.output,
            "exit_code": self.exit_code,
            "success": self.success,
            "error": self.error,
            "state": self.state.value,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_str": self.duration_str,
            "timeout_secs": self.timeout_secs,
        }
