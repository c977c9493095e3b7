#!/usr/bin/env python3
"""
Command Gateway Tests

Spawn failures, non-zero exits and timeouts all surface as ExecError. The
subprocess is replaced by a scripted process object.
"""

import asyncio

import pytest

from ironterm.errors import ExecError
from ironterm.services import gateway as gateway_module
from ironterm.services.gateway import CommandGateway


class ScriptedProcess:
    """Stand-in for asyncio.subprocess.Process."""

    def __init__(self, stdout=b"", stderr=b"", returncode=0, hang=False, already_exited=False):
        self._stdout = stdout
        self._stderr = stderr
        self.returncode = returncode
        self.hang = hang
        self.already_exited = already_exited
        self.killed = False
        self.waited = False

    async def communicate(self):
        if self.hang:
            await asyncio.sleep(10)
        return self._stdout, self._stderr

    def kill(self):
        if self.already_exited:
            raise ProcessLookupError()
        self.killed = True

    async def wait(self):
        self.waited = True
        return self.returncode


def spawn_returning(monkeypatch, process):
    spawned = []

    async def fake_exec(command, *args, **kwargs):
        spawned.append([command, *args])
        return process

    monkeypatch.setattr(gateway_module.asyncio, "create_subprocess_exec", fake_exec)
    return spawned


async def test_successful_command_returns_output(monkeypatch):
    spawned = spawn_returning(monkeypatch, ScriptedProcess(stdout=b"main\n"))

    result = await CommandGateway().run("tmux", ["list-sessions", 3])

    assert result.stdout == "main\n"
    assert spawned == [["tmux", "list-sessions", "3"]]


async def test_nonzero_exit_raises_with_stderr(monkeypatch):
    spawn_returning(monkeypatch, ScriptedProcess(stderr=b"no server running\n", returncode=1))

    with pytest.raises(ExecError) as excinfo:
        await CommandGateway().run("tmux", ["list-sessions"])

    assert excinfo.value.command == "tmux"
    assert excinfo.value.message == "no server running"


async def test_timeout_kills_child(monkeypatch):
    process = ScriptedProcess(hang=True)
    spawn_returning(monkeypatch, process)

    with pytest.raises(ExecError, match="timed out"):
        await CommandGateway().run("screencapture", ["-x"], timeout=0.01)

    assert process.killed and process.waited


async def test_timeout_after_child_exited_still_raises_exec_error(monkeypatch):
    process = ScriptedProcess(hang=True, already_exited=True)
    spawn_returning(monkeypatch, process)

    with pytest.raises(ExecError, match="timed out"):
        await CommandGateway().run("screencapture", ["-x"], timeout=0.01)

    assert process.waited


async def test_missing_binary_raises_exec_error():
    with pytest.raises(ExecError):
        await CommandGateway().run("ironterm-no-such-binary-xyz")
