"""
Push Event Models

Pydantic models for the events the control core pushes to the overlay.
Events are delivered as Server-Sent Events on the /events stream.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict


class SSEEventType(str, Enum):
    """Server-Sent Event types delivered to the overlay."""
    STREAM_LINES = "stream-lines"
    STATUS_CHANGED = "status-changed"
    ALERT_RAISED = "alert-raised"
    TELEMETRY_TICK = "telemetry-tick"
    TRANSCRIPT_FRAGMENT = "transcript-fragment"
    TRANSCRIPT_ERROR = "transcript-error"
    WATCHDOG_DEBUG = "watchdog-debug"
    HEARTBEAT = "heartbeat"


class StreamLinesData(BaseModel):
    """Most recent scrollback of the watched pane."""
    lines: List[str] = Field(default_factory=list)


class StatusChangedData(BaseModel):
    status: str = Field(..., description="offline, error or monitoring")
    session: Optional[str] = None


class AlertRaisedData(BaseModel):
    message: str = Field(..., description="The scrollback line that triggered the alert")
    session: Optional[str] = None


class WatchdogDebugData(BaseModel):
    message: str


class TranscriptFragmentData(BaseModel):
    """Interim preview or accumulated final transcript."""
    text: str
    is_final: bool = Field(..., alias="isFinal")

    model_config = ConfigDict(populate_by_name=True)


class TranscriptErrorData(BaseModel):
    message: str


class HeartbeatSSEData(BaseModel):
    """Heartbeat event data."""
    timestamp: datetime
    connections_active: int = Field(..., ge=0)


class SSEEvent(BaseModel):
    """Server-Sent Event wrapper."""
    event: SSEEventType
    data: Dict[str, Any]
    id: Optional[str] = None
    retry: Optional[int] = None  # Milliseconds

    def to_sse_format(self) -> str:
        """Convert to Server-Sent Events format."""
        lines = []

        if self.id:
            lines.append(f"id: {self.id}")
        if self.retry:
            lines.append(f"retry: {self.retry}")

        lines.append(f"event: {self.event.value}")
        lines.append(f"data: {json.dumps(self.data, default=str)}")

        # Blank line terminates the event
        lines.append("")
        lines.append("")

        return "\n".join(lines)
