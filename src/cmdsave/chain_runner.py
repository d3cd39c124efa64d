# cmdsave/chain_runner.py
"""
ChainRunner - executes a stored chain.

One invocation moves through
    RESOLVING_DEPENDENCIES → RUNNING_STEPS → SUCCEEDED | FAILED

Dependency chains run first, strictly one after another, each through a full
recursive invocation. Then the chain's own steps run in declaration order:
conditions are checked against the previous executed step's outcome, the
primary (plus any parallel peers) runs, and on_success / on_failure handlers
follow the primary's outcome. Any failure aborts the invocation with an
exception naming the command or chain responsible.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from .command_chain import ChainStep, CommandChain, WaitPolicy
from .condition_evaluator import evaluate
from .exceptions import CmdsaveError, CyclicDependencyError, DependencyFailure, StepCancelledError
from .record_store import RecordStore
from .run_result import RunResult, RunState
from .step_executor import StepExecutor
from .types import ChainState, ExecutionContext, StepOutcome

logger = logging.getLogger(__name__)


@dataclass
class ChainRunResult:
    """Record of one chain invocation, including the dependency runs it triggered."""

    chain_id: int
    state: ChainState = ChainState.RESOLVING_DEPENDENCIES
    steps: list[StepOutcome] = field(default_factory=list)
    dependencies: list[ChainRunResult] = field(default_factory=list)
    error: CmdsaveError | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is ChainState.SUCCEEDED

    @property
    def skipped_steps(self) -> list[int]:
        return [s.step_index for s in self.steps if s.skipped]


class ChainRunner:
    """
    Runs chains from a RecordStore through a StepExecutor.

    Chain statistics (run_count, success_rate, last_run) are written back to
    the store at the end of every invocation, dependency runs included.
    """

    def __init__(
        self,
        store: RecordStore,
        executor: StepExecutor | None = None,
        *,
        clock: Callable[[], datetime.datetime] | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        """
        Args:
            store: Where chains and commands are read from and stats written to
            executor: Step executor (a default one is built from store.config)
            clock: Time source for time_window conditions
            environ: Environment for env_var conditions (defaults to os.environ)
        """
        self._store = store
        self._executor = executor or StepExecutor(store)
        self._clock = clock
        self._environ = environ

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    async def run_chain(
        self,
        chain_id: int,
        *,
        timeout_secs: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ChainRunResult:
        """
        Run a chain and everything it depends on.

        Args:
            chain_id: Chain to run
            timeout_secs: Per-command deadline override for this run
            cancel_event: Set it to stop the run; running children are terminated

        Returns:
            ChainRunResult in state SUCCEEDED

        Raises:
            ChainNotFoundError: Chain (or a dependency) does not exist
            CyclicDependencyError: The dependency graph loops back on itself
            DependencyFailure: A dependency chain failed
            ExecutionError: A primary command or handler failed, timed out or was cancelled
            CommandNotFoundError: A step references a missing command
        """
        return await self._run(chain_id, [], timeout_secs, cancel_event)

    # ------------------------------------------------------------------ #
    # Invocation
    # ------------------------------------------------------------------ #
    async def _run(
        self,
        chain_id: int,
        path: list[int],
        timeout_secs: float | None,
        cancel_event: asyncio.Event | None,
    ) -> ChainRunResult:
        if chain_id in path:
            logger.error(f"Dependency cycle detected at chain {chain_id} (path {path})")
            raise CyclicDependencyError(chain_id, list(path))

        chain = self._store.get_chain(chain_id)
        run = ChainRunResult(chain_id=chain_id)
        logger.info(f"Running chain {chain_id} '{chain.name}'")

        try:
            await self._resolve_dependencies(chain, [*path, chain_id], run, timeout_secs, cancel_event)
            run.state = ChainState.RUNNING_STEPS
            await self._run_steps(chain, run, timeout_secs, cancel_event)
        except CmdsaveError as e:
            run.state = ChainState.FAILED
            run.error = e
            logger.info(f"Chain {chain_id} '{chain.name}' failed: {e}")
            self._store.record_chain_run(chain_id, succeeded=False)
            raise

        run.state = ChainState.SUCCEEDED
        logger.info(f"Chain {chain_id} '{chain.name}' succeeded")
        self._store.record_chain_run(chain_id, succeeded=True)
        return run

    async def _resolve_dependencies(
        self,
        chain: CommandChain,
        path: list[int],
        run: ChainRunResult,
        timeout_secs: float | None,
        cancel_event: asyncio.Event | None,
    ) -> None:
        for dep in chain.dependencies:
            if dep.wait_policy is WaitPolicy.ALL:
                # Fail fast on the first failing dependency
                for dep_id in dep.depends_on:
                    try:
                        run.dependencies.append(
                            await self._run(dep_id, path, timeout_secs, cancel_event)
                        )
                    except CyclicDependencyError:
                        raise
                    except CmdsaveError as e:
                        raise DependencyFailure(chain.id, dep_id, e, policy="all") from e

            elif dep.wait_policy is WaitPolicy.ANY:
                last_error: CmdsaveError | None = None
                last_id = 0
                for dep_id in dep.depends_on:
                    try:
                        run.dependencies.append(
                            await self._run(dep_id, path, timeout_secs, cancel_event)
                        )
                        break
                    except CyclicDependencyError:
                        raise
                    except CmdsaveError as e:
                        logger.info(f"Chain {chain.id}: dependency {dep_id} failed, trying next")
                        last_error, last_id = e, dep_id
                else:
                    if last_error is not None:
                        raise DependencyFailure(chain.id, last_id, last_error, policy="any") from last_error

    async def _run_steps(
        self,
        chain: CommandChain,
        run: ChainRunResult,
        timeout_secs: float | None,
        cancel_event: asyncio.Event | None,
    ) -> None:
        context = ExecutionContext()

        for index, step in enumerate(chain.steps):
            if cancel_event is not None and cancel_event.is_set():
                raise StepCancelledError(step.command_id)

            outcome = StepOutcome(step_index=index, command_id=step.command_id)
            run.steps.append(outcome)

            now = self._clock() if self._clock else None
            if not evaluate(step.conditions, context, now=now, environ=self._environ):
                logger.info(f"Chain {chain.id}: skipping step {index + 1} (conditions not met)")
                outcome.skipped = True
                continue

            primary = await self._run_primary(step, outcome, timeout_secs, cancel_event)
            context = ExecutionContext.from_result(primary)

            if primary.state is RunState.CANCELLED:
                logger.info(f"Chain {chain.id}: step {index + 1} cancelled, skipping handlers")
                primary.raise_for_state()

            if not primary.success:
                await self._run_handlers(step.on_failure, outcome, timeout_secs, cancel_event)
                logger.debug(f"Chain {chain.id}: step {index + 1} primary command failed")
                primary.raise_for_state()

            await self._run_handlers(step.on_success, outcome, timeout_secs, cancel_event)

    async def _run_primary(
        self,
        step: ChainStep,
        outcome: StepOutcome,
        timeout_secs: float | None,
        cancel_event: asyncio.Event | None,
    ) -> RunResult:
        if step.parallel_with:
            primary, peers = await self._executor.run_group(
                step.command_id,
                step.parallel_with,
                timeout_secs=timeout_secs,
                cancel_event=cancel_event,
            )
            outcome.peers = peers
            if outcome.failed_peers:
                logger.warning(
                    f"Parallel commands {outcome.failed_peers} failed alongside "
                    f"command {step.command_id}"
                )
        else:
            primary = await self._executor.run(
                step.command_id, timeout_secs=timeout_secs, cancel_event=cancel_event
            )
        outcome.primary = primary
        return primary

    async def _run_handlers(
        self,
        handler_ids: list[int],
        outcome: StepOutcome,
        timeout_secs: float | None,
        cancel_event: asyncio.Event | None,
    ) -> None:
        """Run on_success / on_failure commands in order; the first failure aborts."""
        for handler_id in handler_ids:
            result = await self._executor.run(
                handler_id, timeout_secs=timeout_secs, cancel_event=cancel_event
            )
            outcome.handlers.append(result)
            if not result.success:
                logger.debug(f"Handler command {handler_id} failed")
                result.raise_for_state()
