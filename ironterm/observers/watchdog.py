from __future__ import annotations
###############################################################################
# Imports                                                                     #
###############################################################################

# — Standard library —
import asyncio
import logging
from typing import List, Optional

# — Local —
from .observer import Observer
from ..errors import ExecError
from ..event_models import (
    AlertRaisedData,
    SSEEventType,
    StatusChangedData,
    StreamLinesData,
    WatchdogDebugData,
)
from ..schemas import LogsResult, TmuxTarget, WatchdogStatus
from ..services.gateway import CommandGateway
from ..services.sse_manager import SSEManager

logger = logging.getLogger(__name__)

ALERT_MARKERS = ("ERROR", "WARN")
SCROLLBACK_LINES = 120
DEFAULT_LOG_LINES = 200

###############################################################################
# Scrollback helpers                                                          #
###############################################################################


def clean_lines(output: str, limit: int) -> List[str]:
    """Trim every line, drop blanks and keep the last *limit* lines."""
    lines = [line.strip() for line in output.split("\n")]
    lines = [line for line in lines if line]
    return lines[-limit:] if limit > 0 else []


def find_alert(lines: List[str]) -> Optional[str]:
    """Return the *last* line carrying a warning/error marker."""
    for line in reversed(lines):
        if any(marker in line for marker in ALERT_MARKERS):
            return line
    return None

###############################################################################
# tmux watchdog                                                               #
###############################################################################


class TmuxWatchdog(Observer):
    """Observer that tails a tmux pane and raises deduplicated alerts.

    Every ``poll_interval_ms`` one cycle resolves the session, captures the
    last 120 lines of ``session:window.pane``, pushes them to the overlay and
    raises an alert when the last ERROR/WARN line changes. Only one cycle runs
    at a time because cycles are awaited back to back by a single task.

    Args:
        gateway (CommandGateway): Runs the tmux client.
        events (SSEManager): Push-event hub.
        tmux_path (str): tmux executable.
        session (str, optional): Configured session; empty means first available.
        window (str, optional): Default window index. Defaults to "0".
        pane (str, optional): Default pane index. Defaults to "0".
        poll_interval_ms (int, optional): Cycle cadence. Defaults to 1500.
        enabled (bool, optional): Whether cycles do anything. Defaults to True.
    """

    def __init__(
        self,
        gateway: CommandGateway,
        events: SSEManager,
        tmux_path: str = "tmux",
        session: str = "",
        window: str = "0",
        pane: str = "0",
        poll_interval_ms: int = 1500,
        enabled: bool = True,
    ) -> None:
        self.gateway = gateway
        self.events = events
        self.tmux_path = tmux_path
        self.configured_session = session
        self.default_window = window or "0"
        self.default_pane = pane or "0"
        self.poll_interval_ms = poll_interval_ms
        self.enabled = enabled

        # explicit retarget; an empty session falls back to auto-resolution
        self.target = TmuxTarget(session="", window=self.default_window, pane=self.default_pane)
        self.last_alert_line: Optional[str] = None

        super().__init__("TmuxWatchdog")

    # ─────────────────────────────── tmux plumbing
    async def _tmux(self, *args: str) -> str:
        result = await self.gateway.run(self.tmux_path, list(args))
        return result.stdout

    async def _debug(self, message: str) -> None:
        logger.debug(message)
        await self.events.broadcast_event(SSEEventType.WATCHDOG_DEBUG, WatchdogDebugData(message=message))

    async def _status(self, status: str, session: Optional[str] = None) -> None:
        await self.events.broadcast_event(
            SSEEventType.STATUS_CHANGED, StatusChangedData(status=status, session=session)
        )

    def _pane_target(self, session: str) -> str:
        window = self.target.window or self.default_window
        pane = self.target.pane or self.default_pane
        return f"{session}:{window}.{pane}"

    # ─────────────────────────────── enumeration (pass-through)
    async def list_sessions(self) -> List[str]:
        try:
            return clean_lines(await self._tmux("list-sessions", "-F", "#S"), limit=10_000)
        except ExecError as e:
            await self._debug(f"list-sessions error: {e.message}")
            return []

    async def list_windows(self, session: str) -> List[str]:
        try:
            return clean_lines(await self._tmux("list-windows", "-t", session, "-F", "#I"), limit=10_000)
        except ExecError as e:
            await self._debug(f"list-windows error: {e.message}")
            return []

    async def list_panes(self, session: str, window: str) -> List[str]:
        try:
            return clean_lines(
                await self._tmux("list-panes", "-t", f"{session}:{window}", "-F", "#P"), limit=10_000
            )
        except ExecError as e:
            await self._debug(f"list-panes error: {e.message}")
            return []

    async def resolve_session(self) -> Optional[str]:
        """Explicit target, then configured session, then the first listed one."""
        if self.target.session:
            return self.target.session
        if self.configured_session:
            return self.configured_session
        sessions = await self.list_sessions()
        return sessions[0] if sessions else None

    # ─────────────────────────────── control
    def retarget(self, session: str, window: str, pane: str) -> TmuxTarget:
        """Point the watchdog at another pane; applies from the next cycle."""
        self.target = TmuxTarget(
            session=session or "",
            window=window or self.default_window,
            pane=pane or self.default_pane,
        )
        logger.info(f"Watchdog retargeted to {self.target.session or '<auto>'}:{self.target.window}.{self.target.pane}")
        return self.target

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        logger.info(f"Watchdog {'enabled' if enabled else 'disabled'}")

    async def check(self) -> WatchdogStatus:
        if not self.enabled:
            return WatchdogStatus(status="offline", message="tmux disabled")
        session = await self.resolve_session()
        if not session:
            return WatchdogStatus(status="offline", message="no sessions found")
        return WatchdogStatus(status="monitoring", message=f"monitoring {session}", session=session)

    async def fetch_logs(self, lines: int = DEFAULT_LOG_LINES) -> LogsResult:
        """Deep scrollback fetch for "view full logs". Never raises."""
        lines = max(1, int(lines))
        session = await self.resolve_session()
        if not session:
            return LogsResult(ok=False, message="no sessions found")
        try:
            output = await self._tmux("capture-pane", "-p", "-t", self._pane_target(session), "-S", f"-{lines}")
        except ExecError as e:
            return LogsResult(ok=False, message=e.message)
        return LogsResult(ok=True, logs=clean_lines(output, lines))

    async def send_keys(self, keys: List[str], special: Optional[str] = None) -> bool:
        """Type keys (or one named key such as Enter) into the watched pane."""
        session = await self.resolve_session()
        if not session:
            return False
        target = self._pane_target(session)
        if special:
            args = ["send-keys", "-t", target, special]
        elif keys:
            args = ["send-keys", "-t", target, *keys]
        else:
            return True
        try:
            await self._tmux(*args)
        except ExecError as e:
            await self._debug(f"send-keys error: {e.message}")
            return False
        return True

    # ─────────────────────────────── one polling cycle
    async def poll_once(self) -> None:
        """Run a single watchdog cycle."""
        if not self.enabled:
            return

        session = await self.resolve_session()
        if not session:
            await self._status("offline")
            await self._debug("no sessions found")
            return

        try:
            output = await self._tmux(
                "capture-pane", "-p", "-t", self._pane_target(session), "-S", f"-{SCROLLBACK_LINES}"
            )
        except ExecError as e:
            await self._status("error", session)
            await self._debug(f"capture-pane error: {e.message}")
            return

        await self._status("monitoring", session)

        lines = clean_lines(output, SCROLLBACK_LINES)
        await self.events.broadcast_event(SSEEventType.STREAM_LINES, StreamLinesData(lines=lines))

        hit = find_alert(lines)
        if hit and hit != self.last_alert_line:
            self.last_alert_line = hit
            logger.warning(f"tmux alert in {session}: {hit}")
            await self.events.broadcast_event(
                SSEEventType.ALERT_RAISED, AlertRaisedData(message=hit, session=session)
            )

    # ─────────────────────────────── main async worker
    async def _worker(self) -> None:          # overrides base class
        logger.info(f"Watchdog polling via {self.tmux_path} every {self.poll_interval_ms}ms")
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Watchdog cycle failed: {e}")
            await asyncio.sleep(self.poll_interval_ms / 1000.0)
