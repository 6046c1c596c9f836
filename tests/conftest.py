from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from relayci.cache import CacheResolver, MemoryCacheBackend
from relayci.executor import CommandResult
from relayci.model import RunContext
from relayci.ui.console import Console


class FakeRunner:
    """
    Scripted stand-in for SubprocessCommandRunner.

    script maps a command line to an exit code, a CommandResult, or a
    callable(cwd, env) returning either. Unknown commands use `default`.
    """

    def __init__(self, script=None, default: int = 0, delays=None):
        self.script = dict(script or {})
        self.default = default
        self.delays = dict(delays or {})
        self.calls: list[str] = []
        self.envs: dict[str, dict] = {}
        self._lock = threading.Lock()

    def run(self, command, *, cwd, env, timeout=None):
        with self._lock:
            self.calls.append(command)
            self.envs[command] = dict(env)
        if command in self.delays:
            time.sleep(self.delays[command])
        outcome = self.script.get(command, self.default)
        if callable(outcome):
            outcome = outcome(Path(cwd), env)
        if isinstance(outcome, CommandResult):
            return outcome
        return CommandResult(exit_code=outcome, stdout=f"ran {command}")


@pytest.fixture
def fake_runner():
    return FakeRunner


@pytest.fixture
def quiet_console():
    return Console(quiet=True)


@pytest.fixture
def ctx(tmp_path, quiet_console):
    return RunContext(workspace=tmp_path, namespace="test", console=quiet_console)


@pytest.fixture
def memory_cache(quiet_console):
    return CacheResolver(MemoryCacheBackend(), "test", console=quiet_console)
