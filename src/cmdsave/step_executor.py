# cmdsave/step_executor.py
"""
StepExecutor - runs stored commands as local subprocesses using asyncio.

Executes commands with:
- Output capture (stdout + stderr merged)
- Optional per-step deadline
- Cooperative cancellation through an asyncio.Event token
- Graceful termination (SIGTERM → SIGKILL after a grace period)
- Fan-out of a primary command and its peers, joined over a results channel
"""

from __future__ import annotations

import asyncio
import logging
import os

from .command_record import Command
from .exceptions import ConfigValidationError
from .record_store import RecordStore
from .run_result import RunResult, RunState

logger = logging.getLogger(__name__)


def _check_timeout(timeout_secs: float | None) -> None:
    if timeout_secs is not None and timeout_secs <= 0:
        logger.warning(f"Invalid timeout_secs {timeout_secs}: must be positive")
        raise ConfigValidationError("timeout_secs must be positive")


class StepExecutor:
    """
    Executes commands from a RecordStore by ID.

    A hung child only stops when the deadline expires or the cancellation
    token is set; without either, the executor waits for it indefinitely.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        shell: str | None = None,
        timeout_secs: float | None = None,
        cancel_grace_period: float | None = None,
    ):
        """
        Initialize the executor.

        Args:
            store: Source of command text
            shell: Shell executable (defaults to store.config.shell, then /bin/sh)
            timeout_secs: Default per-command deadline (defaults to store.config.step_timeout_secs)
            cancel_grace_period: Seconds to wait for SIGTERM before SIGKILL
        """
        _check_timeout(timeout_secs)
        self._store = store
        self._shell = shell if shell is not None else store.config.shell
        self._timeout_secs = (
            timeout_secs if timeout_secs is not None else store.config.step_timeout_secs
        )
        self._cancel_grace_period = (
            cancel_grace_period
            if cancel_grace_period is not None
            else store.config.cancel_grace_period
        )

        logger.debug(
            f"Initialized StepExecutor (shell={self._shell or 'default'}, "
            f"timeout_secs={self._timeout_secs}, "
            f"cancel_grace_period={self._cancel_grace_period}s)"
        )

    @property
    def timeout_secs(self) -> float | None:
        return self._timeout_secs

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    async def run(
        self,
        command_id: int,
        *,
        timeout_secs: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        """
        Run one stored command and wait for it.

        Returns:
            The finished RunResult (SUCCESS, FAILED, TIMED_OUT or CANCELLED)

        Raises:
            CommandNotFoundError: If command_id is not in the store
        """
        command = self._store.get_command(command_id)
        result = self._new_result(command, timeout_secs)
        await self._execute(command, result, cancel_event)
        return result

    async def run_checked(
        self,
        command_id: int,
        *,
        timeout_secs: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        """Like run(), but raises ExecutionError (or a subclass) unless the command succeeded."""
        result = await self.run(command_id, timeout_secs=timeout_secs, cancel_event=cancel_event)
        result.raise_for_state()
        return result

    async def run_group(
        self,
        primary_id: int,
        peer_ids: list[int],
        *,
        timeout_secs: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> tuple[RunResult, list[RunResult]]:
        """
        Run a primary command and its peers concurrently, then join.

        Each task reports (command_id, RunResult) on a channel; the join is
        complete once 1 + len(peer_ids) messages have arrived. Every lookup
        happens before anything is launched, so an unknown ID starts nothing.

        Returns:
            (primary_result, peer_results) with peers in declaration order

        Raises:
            CommandNotFoundError: If any ID is not in the store
        """
        commands = [self._store.get_command(cid) for cid in [primary_id, *peer_ids]]
        results = [self._new_result(cmd, timeout_secs) for cmd in commands]
        channel: asyncio.Queue[tuple[int, RunResult]] = asyncio.Queue()

        async def _worker(command: Command, result: RunResult) -> None:
            try:
                await self._execute(command, result, cancel_event)
            finally:
                channel.put_nowait((command.id, result))

        tasks = [
            asyncio.create_task(_worker(cmd, res), name=f"step_{cmd.id}_{i}")
            for i, (cmd, res) in enumerate(zip(commands, results))
        ]
        logger.debug(f"Launched command {primary_id} with peers {peer_ids}")

        try:
            for _ in range(len(tasks)):
                command_id, result = await channel.get()
                logger.debug(f"Joined command {command_id} ({result.state.value})")
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return results[0], results[1:]

    # ------------------------------------------------------------------ #
    # Process lifecycle
    # ------------------------------------------------------------------ #
    def _new_result(self, command: Command, timeout_secs: float | None) -> RunResult:
        _check_timeout(timeout_secs)
        return RunResult(
            command_id=command.id,
            command=command.raw,
            timeout_secs=timeout_secs if timeout_secs is not None else self._timeout_secs,
        )

    async def _execute(
        self,
        command: Command,
        result: RunResult,
        cancel_event: asyncio.Event | None,
    ) -> None:
        """
        Drive a subprocess from launch to a final RunResult state.

        Never raises for command failures; outer task cancellation kills the
        child and propagates.
        """
        process = None
        communicate = None
        cancel_wait = None

        try:
            logger.debug(f"Launching command {command.id}: {command.raw}")
            result.mark_running()
            process = await asyncio.create_subprocess_shell(
                command.raw,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,  # Merge stderr into stdout
                executable=self._shell,
                # Start in new process group for better signal handling
                preexec_fn=os.setpgrp if os.name != "nt" else None,
            )

            communicate = asyncio.ensure_future(process.communicate())
            waiters = {communicate}
            if cancel_event is not None:
                cancel_wait = asyncio.ensure_future(cancel_event.wait())
                waiters.add(cancel_wait)

            done, _ = await asyncio.wait(
                waiters, timeout=result.timeout_secs, return_when=asyncio.FIRST_COMPLETED
            )

            if communicate in done:
                stdout, _ = communicate.result()
                result.output = stdout.decode("utf-8", errors="replace") if stdout else ""
                result.exit_code = process.returncode
                if process.returncode == 0:
                    result.mark_success()
                else:
                    result.mark_failed(f"Command exited with code {process.returncode}")
                return

            if cancel_wait is not None and cancel_wait in done:
                logger.info(f"Cancelling command {command.id}")
                await self._terminate(process)
                result.output = await self._read_partial_output(communicate)
                result.mark_cancelled("Command cancelled")
            else:
                logger.warning(f"Command {command.id} timed out after {result.timeout_secs}s")
                await self._terminate(process)
                result.output = await self._read_partial_output(communicate)
                result.mark_timed_out()

        except asyncio.CancelledError:
            logger.debug(f"Execution of command {command.id} was cancelled")
            if process is not None and process.returncode is None:
                await self._kill_process(process)
            if not result.is_finished:
                result.mark_cancelled()
            raise

        except Exception as e:
            logger.error(f"Command {command.id} could not be run: {e}")
            result.mark_failed(f"failed to start: {e}")

        finally:
            for waiter in (cancel_wait, communicate):
                if waiter is not None and not waiter.done():
                    waiter.cancel()
            if result.state is RunState.FAILED and result.output.strip():
                logger.debug(f"Error output from command {command.id}:\n{result.output}")

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """
        Stop a running subprocess.

        Strategy:
        1. Send SIGTERM (graceful)
        2. Wait for grace period
        3. Send SIGKILL if still running (forceful)
        """
        if process.returncode is not None:
            return
        try:
            process.terminate()  # SIGTERM
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self._cancel_grace_period)
        except asyncio.TimeoutError:
            logger.warning("Process didn't terminate, sending SIGKILL")
            await self._kill_process(process)

    async def _kill_process(self, process: asyncio.subprocess.Process) -> None:
        """Forcefully kill a process with SIGKILL."""
        try:
            process.kill()  # SIGKILL
            await process.wait()
        except ProcessLookupError:
            # Already dead
            pass

    async def _read_partial_output(self, communicate: asyncio.Future | None) -> str:
        """Collect whatever output the killed process left in its pipe."""
        if communicate is None:
            return ""
        done, _ = await asyncio.wait({communicate}, timeout=0.5)
        if not done or communicate.cancelled():
            return ""
        if communicate.exception() is not None:
            logger.debug(f"Could not capture partial output: {communicate.exception()}")
            return ""
        stdout, _ = communicate.result()
        return stdout.decode("utf-8", errors="replace") if stdout else ""

    def __repr__(self) -> str:
        return (
            f"StepExecutor(shell={self._shell!r}, timeout_secs={self._timeout_secs}, "
            f"cancel_grace_period={self._cancel_grace_period}s)"
        )
