"""
External Command Gateway

Thin supervised wrapper around spawning OS commands (screencapture, the
window-list helper, osascript, tmux). Commands are always argument vectors,
never shell strings. Retry and fallback policy belongs to the callers.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..config_manager import DEFAULT_SYSTEM_PATH
from ..errors import ExecError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Captured output of a command that exited zero."""
    stdout: str
    stderr: str


class CommandGateway:
    """Spawns external commands and normalises success and failure."""

    def __init__(self, default_timeout: Optional[float] = 30.0, env: Optional[Dict[str, str]] = None):
        self.default_timeout = default_timeout
        self._env = env

    def _child_env(self) -> Dict[str, str]:
        env = dict(os.environ if self._env is None else self._env)
        env.setdefault("PATH", DEFAULT_SYSTEM_PATH)
        return env

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Run a command to completion.

        Args:
            command: Executable name or path
            args: Argument vector
            timeout: Seconds before the child is killed (defaults to default_timeout)

        Returns:
            CommandResult with decoded stdout/stderr

        Raises:
            ExecError: spawn failure, non-zero exit or timeout
        """
        argv: List[str] = [str(a) for a in args]
        limit = self.default_timeout if timeout is None else timeout
        logger.debug(f"exec {command} {' '.join(argv)}")

        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._child_env(),
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.warning(f"exec {command} failed to spawn: {e}")
            raise ExecError(command, str(e)) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=limit)
        except asyncio.TimeoutError as e:
            try:
                process.kill()
            except ProcessLookupError:
                logger.debug(f"exec {command} exited before kill")
            await process.wait()
            logger.warning(f"exec {command} timed out after {limit}s")
            raise ExecError(command, f"timed out after {limit}s") from e

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if process.returncode != 0:
            detail = err.strip() or f"exited with status {process.returncode}"
            logger.warning(f"exec {command} failed ({process.returncode}): {detail}")
            raise ExecError(command, detail)

        return CommandResult(stdout=out, stderr=err)
