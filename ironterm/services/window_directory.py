"""
Window/Display Directory

Enumerates running apps, on-screen windows and displays through the
window_list helper process, assigns every window to the display holding its
center point, and issues fire-and-forget activate/move commands.
"""

import json
import logging
import sys
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..errors import ExecError
from ..schemas import AppRecord, DirectorySnapshot, DisplayRecord, Rect, WindowRecord
from .gateway import CommandGateway

logger = logging.getLogger(__name__)

HELPER_MODULE = "ironterm.scripts.window_list"
OSASCRIPT = "/usr/bin/osascript"

# Frame assumed for the app's front window when centering it in a region
NOMINAL_WINDOW_W = 900
NOMINAL_WINDOW_H = 600


def _overlap(a_x: float, a_y: float, a_w: float, a_h: float, d: DisplayRecord) -> float:
    w = min(a_x + a_w, d.x + d.w) - max(a_x, d.x)
    h = min(a_y + a_h, d.y + d.h) - max(a_y, d.y)
    return max(0.0, w) * max(0.0, h)


def assign_display(x: float, y: float, w: float, h: float, displays: List[DisplayRecord]) -> Optional[DisplayRecord]:
    """Pick the display containing the window's center point.

    When overlapping displays both contain the center, the one sharing the
    most area with the window wins. Falls back to the first display.
    """
    if not displays:
        return None
    cx, cy = x + w / 2.0, y + h / 2.0
    containing = [d for d in displays if d.contains(cx, cy)]
    if not containing:
        return displays[0]
    best = containing[0]
    best_area = _overlap(x, y, w, h, best)
    for display in containing[1:]:
        area = _overlap(x, y, w, h, display)
        if area > best_area:
            best, best_area = display, area
    return best


def _parse_records(model, items: Any) -> List:
    records = []
    for item in items if isinstance(items, list) else []:
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            logger.debug(f"Skipping malformed {model.__name__}: {e}")
    return records


def build_snapshot(payload: Dict[str, Any]) -> DirectorySnapshot:
    """Filter raw helper output into a directory snapshot.

    Windows survive only with a non-empty owner that is a regular app, a
    non-zero handle and layer 0 (decoration/overlay layers are dropped).
    """
    apps = [a for a in _parse_records(AppRecord, payload.get("apps")) if a.name]
    displays = _parse_records(DisplayRecord, payload.get("displays"))
    regular_names = {a.name for a in apps}

    windows: List[WindowRecord] = []
    for raw in payload.get("windows") or []:
        if not isinstance(raw, dict):
            continue
        owner = str(raw.get("appName") or "")
        handle = str(raw.get("id") or "")
        try:
            layer = int(raw.get("layer") or 0)
            x, y = int(float(raw.get("x") or 0)), int(float(raw.get("y") or 0))
            w, h = int(float(raw.get("w") or 0)), int(float(raw.get("h") or 0))
        except (TypeError, ValueError):
            continue
        if not owner or handle in ("", "0") or layer != 0:
            continue
        if owner not in regular_names:
            continue

        display = assign_display(x, y, w, h, displays)
        windows.append(WindowRecord(
            app_name=owner,
            title=str(raw.get("title") or ""),
            id=handle,
            x=x, y=y, w=w, h=h,
            display_index=display.index if display else None,
            display_x=display.x if display else None,
            display_y=display.y if display else None,
            display_w=display.w if display else None,
            display_h=display.h if display else None,
        ))

    return DirectorySnapshot(apps=apps, windows=windows, displays=displays)


def centered_position(region: Rect) -> tuple:
    """Top-left corner that centers the nominal window frame inside region."""
    target_x = int(region.x) + max(0, (int(region.w) - NOMINAL_WINDOW_W) // 2)
    target_y = int(region.y) + max(0, (int(region.h) - NOMINAL_WINDOW_H) // 2)
    return target_x, target_y


def _applescript_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class WindowDirectory:
    """Queries and manipulates on-screen windows via external helpers."""

    def __init__(
        self,
        gateway: CommandGateway,
        hud_display_index: Optional[int] = None,
        python_executable: Optional[str] = None,
    ):
        self.gateway = gateway
        self.hud_display_index = hud_display_index
        self.python_executable = python_executable or sys.executable

    async def snapshot(self) -> DirectorySnapshot:
        """Fresh apps/windows/displays listing. Failures yield an empty snapshot."""
        try:
            result = await self.gateway.run(self.python_executable, ["-m", HELPER_MODULE])
            payload = json.loads(result.stdout)
        except ExecError as e:
            logger.error(f"Window list failed: {e.message}")
            return DirectorySnapshot()
        except json.JSONDecodeError as e:
            logger.error(f"Window list returned invalid JSON: {e}")
            return DirectorySnapshot()

        snapshot = build_snapshot(payload if isinstance(payload, dict) else {})
        logger.info(
            f"Window list: {len(snapshot.apps)} apps, {len(snapshot.windows)} windows, "
            f"{len(snapshot.displays)} displays"
        )
        return snapshot

    async def activate(self, bundle_id: str) -> bool:
        try:
            await self.gateway.run(self.python_executable, ["-m", HELPER_MODULE, "activate", bundle_id])
            return True
        except ExecError as e:
            logger.error(f"App activate failed for {bundle_id}: {e.message}")
            return False

    def hud_display(self, displays: Iterable[DisplayRecord]) -> Optional[DisplayRecord]:
        """Configured HUD display, else the first external display, else the main one."""
        displays = list(displays)
        if not displays:
            return None
        if self.hud_display_index is not None:
            for display in displays:
                if display.index == self.hud_display_index:
                    return display
        external = [d for d in displays if d.index != 1]
        return external[0] if external else displays[0]

    async def move_to_region(self, bundle_id: str, region: Optional[Rect] = None) -> bool:
        """Best-effort move of the app's front window to the center of region.

        Args:
            bundle_id: Bundle identifier of the app to move
            region: Target rectangle; defaults to the HUD display bounds

        Returns:
            True if the scripting call ran, False otherwise
        """
        snapshot = await self.snapshot()
        if region is None:
            display = self.hud_display(snapshot.displays)
            if display is None:
                logger.error(f"App move failed for {bundle_id}: no displays")
                return False
            region = Rect(x=display.x, y=display.y, w=display.w, h=display.h)

        app_name = next((a.name for a in snapshot.apps if a.bundle_id == bundle_id), bundle_id)
        target_x, target_y = centered_position(region)
        script = "\n".join([
            'tell application "System Events"',
            f'  tell application process "{_applescript_string(app_name)}"',
            "    try",
            "      set frontmost to true",
            f"      set position of front window to {{{target_x}, {target_y}}}",
            "    end try",
            "  end tell",
            "end tell",
        ])
        try:
            await self.gateway.run(OSASCRIPT, ["-e", script])
        except ExecError as e:
            logger.error(f"App move failed for {bundle_id}: {e.message}")
            return False
        logger.info(f"Moved {app_name} to ({target_x}, {target_y})")
        return True

    async def display_at(self, x: float, y: float) -> Optional[DisplayRecord]:
        """Display containing the point, else the one whose center is nearest."""
        displays = (await self.snapshot()).displays
        if not displays:
            return None
        for display in displays:
            if display.contains(x, y):
                return display

        def distance(d: DisplayRecord) -> float:
            return (d.x + d.w / 2.0 - x) ** 2 + (d.y + d.h / 2.0 - y) ** 2

        return min(displays, key=distance)
