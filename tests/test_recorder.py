# tests/test_recorder.py
import os
from unittest.mock import patch

import pytest

from cmdsave.command_record import Command
from cmdsave.exceptions import CommandNotFoundError, ExecutionError, ValidationError
from cmdsave.recorder import execute_and_record, rerun


@pytest.mark.asyncio
async def test_successful_command_recorded(store, create_proc):
    with patch("asyncio.create_subprocess_shell", return_value=create_proc(returncode=0)) as spawn:
        cmd = await execute_and_record(store, "make test", tags=["build", " "], description="tests")

    assert spawn.call_args.args[0] == "make test"
    assert cmd.id == 1
    assert (cmd.run_count, cmd.success_count, cmd.exit_code) == (1, 1, 0)
    assert cmd.tags == ["build"]
    assert cmd.working_dir is None
    assert store.get_command(1).description == "tests"


@pytest.mark.asyncio
async def test_failed_command_still_recorded(store, create_proc):
    with patch("asyncio.create_subprocess_shell", return_value=create_proc(returncode=2)):
        cmd = await execute_and_record(store, "make lint", save_dir=True)

    assert (cmd.run_count, cmd.success_count, cmd.exit_code) == (1, 0, 2)
    assert cmd.working_dir == os.getcwd()


@pytest.mark.asyncio
async def test_empty_command_rejected(store):
    with patch("asyncio.create_subprocess_shell") as spawn:
        with pytest.raises(ValidationError):
            await execute_and_record(store, "   ")
    spawn.assert_not_called()


@pytest.mark.asyncio
async def test_spawn_failure_records_nothing(store):
    with patch("asyncio.create_subprocess_shell", side_effect=FileNotFoundError("no /bin/zsh")):
        with pytest.raises(ExecutionError, match="failed to start"):
            await execute_and_record(store, "ls")
    assert store.commands == []


@pytest.mark.asyncio
async def test_rerun_uses_saved_directory(store, create_proc, tmp_path):
    cmd = store.add_command(Command(raw="ls", working_dir=str(tmp_path), run_count=1, success_count=1))
    with patch("asyncio.create_subprocess_shell", return_value=create_proc(returncode=1)) as spawn:
        updated = await rerun(store, cmd.id)

    assert spawn.call_args.kwargs["cwd"] == str(tmp_path)
    assert (updated.run_count, updated.success_count, updated.exit_code) == (2, 1, 1)


@pytest.mark.asyncio
async def test_rerun_falls_back_when_directory_gone(store, create_proc, tmp_path):
    cmd = store.add_command(Command(raw="ls", working_dir=str(tmp_path / "deleted")))
    with patch("asyncio.create_subprocess_shell", return_value=create_proc(returncode=0)) as spawn:
        await rerun(store, cmd.id)
    assert spawn.call_args.kwargs["cwd"] is None


@pytest.mark.asyncio
async def test_rerun_unknown_command(store):
    with pytest.raises(CommandNotFoundError):
        await rerun(store, 5)
