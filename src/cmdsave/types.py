# cmdsave/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .run_result import RunResult


@dataclass
class ExecutionContext:
    """
    Transient state handed to condition evaluation.

    ChainRunner seeds it from the previous executed step's primary command;
    the first step sees exit code 0 and empty output. Never persisted.
    """

    last_exit_code: int = 0
    last_output: str = ""
    last_error: str | None = None

    @classmethod
    def from_result(cls, result: RunResult) -> ExecutionContext:
        """
        Build the context a following step will see.

        A process that never produced an exit code (spawn failure, kill)
        reports -1, mirroring what a shell shows for an abnormal exit.
        """
        exit_code = result.exit_code if result.exit_code is not None else -1
        return cls(last_exit_code=exit_code, last_output=result.output, last_error=result.error)


class ChainState(Enum):
    """States of one chain invocation."""

    RESOLVING_DEPENDENCIES = "resolving_dependencies"
    RUNNING_STEPS = "running_steps"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class StepOutcome:
    """
    What happened to one chain step.

    skipped=True means its conditions evaluated false and nothing ran.
    """

    step_index: int
    command_id: int
    skipped: bool = False
    primary: RunResult | None = None
    peers: list[RunResult] = field(default_factory=list)
    handlers: list[RunResult] = field(default_factory=list)
    """on_success / on_failure runs, in execution order."""

    @property
    def succeeded(self) -> bool:
        return self.skipped or bool(self.primary and self.primary.success)

    @property
    def failed_peers(self) -> list[int]:
        """Peer command IDs that did not succeed (tracked, never fatal)."""
        return [r.command_id for r in self.peers if not r.success]
