"""
Shared test doubles for the Iron-Term control core.

FakeGateway stands in for every external command (screencapture, tmux,
osascript, the window-list helper) so tests never touch the real OS.
"""

import asyncio
import os
import sys
import tempfile
from io import BytesIO
from typing import Callable, List, Optional, Sequence, Tuple

import pytest
from PIL import Image

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

# Keep controller imports from writing logs into the working tree
os.environ.setdefault("IRONTERM_LOG_DIR", tempfile.mkdtemp(prefix="ironterm-logs-"))

from ironterm.config_manager import ConfigManager
from ironterm.errors import ExecError
from ironterm.services.gateway import CommandResult
from ironterm.services.sse_manager import SSEManager


def make_png(size=(4, 3)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, (30, 200, 90)).save(buffer, format="PNG")
    return buffer.getvalue()


PNG_BYTES = make_png()


class FakeGateway:
    """Records every command and answers through a handler.

    The handler receives (command, args) and returns stdout, a CommandResult,
    or raises ExecError. Without a handler every command succeeds silently.
    """

    def __init__(self, handler: Optional[Callable[[str, List[str]], object]] = None):
        self.handler = handler
        self.calls: List[Tuple[str, List[str]]] = []

    async def run(self, command: str, args: Sequence[str] = (), *, timeout=None) -> CommandResult:
        argv = [str(a) for a in args]
        self.calls.append((command, argv))
        await asyncio.sleep(0)
        result = self.handler(command, argv) if self.handler else ""
        if isinstance(result, CommandResult):
            return result
        return CommandResult(stdout=result or "", stderr="")

    def commands(self, command: str) -> List[List[str]]:
        return [args for cmd, args in self.calls if cmd == command]


def screencapture_writer(fail_handle: bool = False, fail_rect: bool = False):
    """Handler that emulates screencapture by writing a PNG to the output path."""

    def handler(command: str, args: List[str]):
        if command != "screencapture":
            return ""
        if fail_handle and "-l" in args:
            raise ExecError(command, "could not create image from window")
        if fail_rect and "-R" in args:
            raise ExecError(command, "could not create image from rect")
        with open(args[-1], "wb") as f:
            f.write(PNG_BYTES)
        return ""

    return handler


def events_of(events: SSEManager, event_type) -> list:
    return [e.data for e in events.history if e.event == event_type]


@pytest.fixture
def events() -> SSEManager:
    return SSEManager()


@pytest.fixture
def config(tmp_path, monkeypatch) -> ConfigManager:
    for name in ConfigManager.ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("IRONTERM_DATA_DIR", str(tmp_path / "data"))
    return ConfigManager(config_dir=str(tmp_path / "config"))
