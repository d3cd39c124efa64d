# cmdsave/recorder.py
"""
Execute a command interactively and record it in the history.

Unlike StepExecutor, output is not captured: the child inherits the
terminal's stdin/stdout/stderr so it behaves exactly as if typed directly.
"""

from __future__ import annotations

import asyncio
import logging
import os

from .command_record import Command
from .exceptions import ExecutionError, ValidationError
from .record_store import RecordStore

logger = logging.getLogger(__name__)


async def run_interactive(
    text: str,
    *,
    shell: str | None = None,
    cwd: str | None = None,
    command_id: int = 0,
) -> int:
    """
    Run text through the shell with inherited stdio and return its exit code.

    Raises:
        ExecutionError: If the process could not be started
    """
    logger.debug(f"Running interactively: {text!r} (cwd={cwd or os.getcwd()})")
    try:
        process = await asyncio.create_subprocess_shell(text, executable=shell, cwd=cwd)
    except OSError as e:
        raise ExecutionError(command_id, f"failed to start: {e}") from e
    returncode = await process.wait()
    logger.debug(f"Interactive command exited with code {returncode}")
    return returncode


async def execute_and_record(
    store: RecordStore,
    text: str,
    *,
    save_dir: bool = False,
    tags: list[str] | None = None,
    description: str = "",
) -> Command:
    """
    Run a new command and add it to the history.

    The command is recorded whatever its exit code; run_count starts at 1
    and success_count at 1 only if it exited 0.

    Raises:
        ValidationError: If text is empty
        ExecutionError: If the process could not be started
    """
    if not text.strip():
        raise ValidationError("Command cannot be empty")

    working_dir = os.getcwd() if save_dir else None
    exit_code = await run_interactive(text, shell=store.config.shell)

    command = Command(
        raw=text,
        working_dir=working_dir,
        exit_code=exit_code,
        tags=[t.strip() for t in tags or [] if t.strip()],
        description=description,
        run_count=1,
        success_count=1 if exit_code == 0 else 0,
    )
    return store.add_command(command)


async def rerun(store: RecordStore, command_id: int) -> Command:
    """
    Re-execute a stored command and count the run.

    Runs in the command's saved working directory when it still exists,
    otherwise in the current directory.

    Raises:
        CommandNotFoundError: If command_id is not in the store
        ExecutionError: If the process could not be started
    """
    command = store.get_command(command_id)
    cwd = command.working_dir if command.working_dir and os.path.isdir(command.working_dir) else None
    exit_code = await run_interactive(
        command.raw, shell=store.config.shell, cwd=cwd, command_id=command_id
    )
    return store.record_run(command_id, exit_code)
