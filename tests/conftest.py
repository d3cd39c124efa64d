# tests/conftest.py
import asyncio
import logging
from unittest.mock import AsyncMock, Mock

import pytest

from cmdsave.command_record import Command
from cmdsave.record_store import RecordStore
from cmdsave.store_config import StoreConfig

logging.getLogger("cmdsave").setLevel(logging.DEBUG)


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "history.json"


@pytest.fixture
def store(store_path):
    s = RecordStore(StoreConfig(path=store_path, cancel_grace_period=0.1))
    s.load()
    return s


@pytest.fixture
def add_commands(store):
    """
    Factory that stores one Command per text and returns their IDs.
        a, b = add_commands("echo a", "echo b")
    """

    def _add(*texts):
        return [store.add_command(Command(raw=text)).id for text in texts]

    return _add


@pytest.fixture
def create_proc():
    """
    Factory fixture that returns asyncio subprocess mocks.

        proc = create_proc(stdout=b"hello\n", returncode=0)
        with patch("asyncio.create_subprocess_shell", return_value=proc):
            ...

    With hang=True the process never finishes on its own: communicate() and
    wait() block until terminate() or kill() is called.
    """

    def _make(stdout=b"", returncode=0, delay=0.0, hang=False, ignore_sigterm=False):
        proc = AsyncMock()
        proc.returncode = None if hang else returncode
        stopped = asyncio.Event()

        async def communicate():
            if hang:
                await stopped.wait()
            elif delay:
                await asyncio.sleep(delay)
            return stdout, None

        async def wait():
            if hang:
                await stopped.wait()
            return proc.returncode

        def terminate():
            if ignore_sigterm:
                return
            proc.returncode = -15
            stopped.set()

        def kill():
            proc.returncode = -9
            stopped.set()

        proc.communicate = communicate
        proc.wait = wait
        proc.terminate = Mock(side_effect=terminate)
        proc.kill = Mock(side_effect=kill)
        return proc

    return _make


@pytest.fixture
def procs_by_command():
    """
    Build a create_subprocess_shell side effect that picks a mock by command text.

        side_effect = procs_by_command({"echo a": proc_a, "echo b": proc_b})
    """

    def _make(mapping):
        def _spawn(cmd, *args, **kwargs):
            return mapping[cmd]

        return _spawn

    return _make
