# schemas.py

from __future__ import annotations
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, ConfigDict

CARD_POSITION_RECT = (80, 120)
CARD_POSITION_WINDOW = (120, 140)


class Rect(BaseModel):
    """Absolute screen rectangle in top-left-origin global coordinates."""
    x: float = Field(..., description="Left edge")
    y: float = Field(..., description="Top edge")
    w: float = Field(..., ge=0, description="Width")
    h: float = Field(..., ge=0, description="Height")


class DisplayRect(BaseModel):
    """Display a capture rectangle lives on, as reported by the directory."""
    index: int = Field(..., ge=1, description="1-based display number used by screencapture -D")
    x: float
    y: float
    w: float
    h: float


class Card(BaseModel):
    """
    A captured image pinned to the HUD.

    Persisted with camelCase keys so the overlay can read cards.json as-is.
    """
    id: str = Field(..., description="Opaque unique id")
    file_path: str = Field(..., alias="filePath", description="Absolute path of the PNG")
    file_url: str = Field(..., alias="fileUrl", description="file:// URL derived from file_path")
    timestamp: str = Field(..., description="ISO-8601 creation time (UTC)")
    label: str = ""
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0
    locked: bool = Field(False, description="Excluded from automatic re-layout")
    size: Literal["small", "large"] = "small"

    model_config = ConfigDict(populate_by_name=True)


class AppProxy(BaseModel):
    """Transient window snapshot; never stored in the card list."""
    id: str
    file_url: str = Field(..., alias="fileUrl")
    file_path: str = Field(..., alias="filePath")
    label: str = ""

    model_config = ConfigDict(populate_by_name=True)


class AppRecord(BaseModel):
    name: str
    bundle_id: str = Field("", alias="bundleId")

    model_config = ConfigDict(populate_by_name=True)


class DisplayRecord(BaseModel):
    index: int
    x: int
    y: int
    w: int
    h: int

    def contains(self, px: float, py: float) -> bool:
        return self.x <= px < self.x + self.w and self.y <= py < self.y + self.h


class WindowRecord(BaseModel):
    """On-screen window with the display holding its center point."""
    app_name: str = Field(..., alias="appName")
    title: str = ""
    id: str = Field(..., description="Numeric window handle, as a string")
    x: int = 0
    y: int = 0
    w: int = 0
    h: int = 0
    display_index: Optional[int] = Field(None, alias="displayIndex")
    display_x: Optional[int] = Field(None, alias="displayX")
    display_y: Optional[int] = Field(None, alias="displayY")
    display_w: Optional[int] = Field(None, alias="displayW")
    display_h: Optional[int] = Field(None, alias="displayH")

    model_config = ConfigDict(populate_by_name=True)


class DirectorySnapshot(BaseModel):
    apps: List[AppRecord] = Field(default_factory=list)
    windows: List[WindowRecord] = Field(default_factory=list)
    displays: List[DisplayRecord] = Field(default_factory=list)


class TmuxTarget(BaseModel):
    """(session, window, pane) being watched. Empty session means auto-resolve."""
    session: str = ""
    window: str = "0"
    pane: str = "0"


class WatchdogStatus(BaseModel):
    status: Literal["offline", "error", "monitoring"]
    message: Optional[str] = None
    session: Optional[str] = None


class LogsResult(BaseModel):
    ok: bool
    logs: Optional[List[str]] = None
    message: Optional[str] = None


class Telemetry(BaseModel):
    cpu: int = Field(..., ge=0, le=100, description="CPU busy percent")
    mem: int = Field(..., ge=0, le=100, description="Memory used percent")
    load: float = Field(..., description="1-minute load average")
