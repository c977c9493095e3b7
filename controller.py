#!/usr/bin/env python3
"""
Iron-Term REST API Controller

A FastAPI-based API that exposes the Iron-Term control core to the overlay:
screen capture into cards, window/display directory, tmux watchdog,
telemetry and live transcription. Push events are streamed over SSE.
"""

import argparse
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from ironterm import __version__
from ironterm.config_manager import get_config_manager
from ironterm.context import ControlContext
from ironterm.errors import AuthFailed, CaptureFailed, ExecError, InvalidImage, IronTermError, MissingRect
from ironterm.schemas import (
    AppProxy,
    Card,
    DirectorySnapshot,
    DisplayRecord,
    DisplayRect,
    LogsResult,
    Rect,
    Telemetry,
    TmuxTarget,
    WatchdogStatus,
)

# Load environment variables
load_dotenv(override=True)  # Ensure .env takes precedence

LOG_DIR = Path(os.getenv("IRONTERM_LOG_DIR", "logs"))
LOG_FILE_NAME = "iron-term.log"


def configure_logging(level: int = logging.INFO) -> None:
    """Console plus file logging with a short, user-friendly format."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format='%(asctime)s | %(message)s',
        datefmt='%H:%M:%S',  # Just time, not full date
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(LOG_DIR / LOG_FILE_NAME, encoding="utf-8"),
        ],
        force=True,
    )


configure_logging()
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Iron-Term Control API",
    description="Control core for the Iron-Term heads-up overlay",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

# The overlay renderer is served from file:// or a dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global control context, built on startup
control_context: Optional[ControlContext] = None


def ensure_control_context() -> ControlContext:
    """Get the control context, building it from the saved configuration."""
    global control_context
    if control_context is None:
        logger.info("Building control context")
        control_context = ControlContext.from_config(get_config_manager())
    return control_context


# === Pydantic Models ===

class CaptureRequest(BaseModel):
    """Request model for window/region capture."""
    window_id: Optional[str] = Field(None, alias="windowId", description="Window handle to try first")
    rect: Optional[Rect] = Field(None, description="Absolute rectangle (fallback or primary)")
    display: Optional[DisplayRect] = Field(None, description="Display holding rect")
    label: str = Field("", description="Card label")
    width: float = Field(320, gt=0, description="Card width on the HUD")
    height: float = Field(200, gt=0, description="Card height on the HUD")

    model_config = ConfigDict(populate_by_name=True)


class SaveCardRequest(BaseModel):
    """Request model for storing an overlay-rendered image."""
    data_url: str = Field(..., alias="dataUrl", description="base64 data: URL")
    label: str = ""
    width: float = Field(320, gt=0)
    height: float = Field(200, gt=0)

    model_config = ConfigDict(populate_by_name=True)


class AppCaptureRequest(BaseModel):
    """Request model for app switcher proxies."""
    window_id: str = Field(..., alias="windowId")
    label: str = ""
    rect: Optional[Rect] = None
    display: Optional[DisplayRect] = None

    model_config = ConfigDict(populate_by_name=True)


class AppDeleteRequest(BaseModel):
    file_path: Optional[str] = Field(None, alias="filePath")

    model_config = ConfigDict(populate_by_name=True)


class ActivateRequest(BaseModel):
    bundle_id: str = Field(..., alias="bundleId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class MoveRequest(BaseModel):
    bundle_id: str = Field(..., alias="bundleId", min_length=1)
    region: Optional[Rect] = Field(None, description="Target region; defaults to the HUD display")

    model_config = ConfigDict(populate_by_name=True)


class TargetRequest(BaseModel):
    session: str = ""
    window: str = "0"
    pane: str = "0"


class KeysRequest(BaseModel):
    keys: List[str] = Field(default_factory=list, description="Literal keys to type")
    special: Optional[str] = Field(None, description="Single named key, e.g. Enter")


class EnabledRequest(BaseModel):
    enabled: bool


class TranscriptionStartRequest(BaseModel):
    sample_rate: int = Field(16000, alias="sampleRate", gt=0)

    model_config = ConfigDict(populate_by_name=True)


class OkResponse(BaseModel):
    ok: bool


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    watchdog_running: bool
    telemetry_running: bool
    transcription_state: str
    sse_connections: int


class ErrorResponse(BaseModel):
    """Response model for errors."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    timestamp: datetime = Field(..., description="Error timestamp")


def error_response(status_code: int, error: str, detail: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail, timestamp=datetime.now()).model_dump(mode="json"),
    )


# === API Endpoints ===

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    ctx = ensure_control_context()
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(),
        version=__version__,
        watchdog_running=ctx.watchdog.is_running(),
        telemetry_running=ctx.telemetry.is_running(),
        transcription_state=ctx.transcription.state.value,
        sse_connections=ctx.events.connection_count,
    )


# --- Cards ---

@app.post("/cards/capture", response_model=List[Card])
async def capture_card(request: CaptureRequest):
    """Capture a window (by handle, falling back to rect) or a region into a new card."""
    ctx = ensure_control_context()
    return await ctx.capture.capture(
        label=request.label,
        width=request.width,
        height=request.height,
        window_id=request.window_id,
        rect=request.rect,
        display=request.display,
    )


@app.post("/cards/save", response_model=List[Card])
async def save_card(request: SaveCardRequest):
    ctx = ensure_control_context()
    return await ctx.capture.save_data_url(request.data_url, request.label, request.width, request.height)


@app.get("/cards", response_model=List[Card])
async def list_cards():
    return await ensure_control_context().cards.load()


@app.put("/cards", response_model=OkResponse)
async def update_cards(cards: List[Card]):
    """Persist the overlay's card list (positions, sizes, locks)."""
    await ensure_control_context().cards.update(cards)
    return OkResponse(ok=True)


@app.delete("/cards/{card_id}", response_model=List[Card])
async def delete_card(card_id: str):
    return await ensure_control_context().cards.delete(card_id)


# --- App proxies ---

@app.post("/app-cards/capture", response_model=AppProxy)
async def capture_app_proxy(request: AppCaptureRequest):
    ctx = ensure_control_context()
    return await ctx.capture.capture_proxy(
        window_id=request.window_id,
        label=request.label,
        rect=request.rect,
        display=request.display,
    )


@app.delete("/app-cards", response_model=dict)
async def clear_app_proxies():
    removed = await ensure_control_context().capture.clear_proxies()
    return {"ok": True, "removed": removed}


@app.post("/app-cards/delete", response_model=OkResponse)
async def delete_app_proxy(request: AppDeleteRequest):
    if not request.file_path:
        return OkResponse(ok=False)
    return OkResponse(ok=await ensure_control_context().capture.delete_proxy(request.file_path))


# --- Window directory ---

@app.get("/windows", response_model=DirectorySnapshot)
async def list_windows():
    return await ensure_control_context().directory.snapshot()


@app.get("/displays/at", response_model=Optional[DisplayRecord])
async def display_at(x: float = Query(...), y: float = Query(...)):
    return await ensure_control_context().directory.display_at(x, y)


@app.post("/apps/activate", response_model=OkResponse)
async def activate_app(request: ActivateRequest):
    return OkResponse(ok=await ensure_control_context().directory.activate(request.bundle_id))


@app.post("/apps/move-to-region", response_model=OkResponse)
async def move_app_to_region(request: MoveRequest):
    ctx = ensure_control_context()
    return OkResponse(ok=await ctx.directory.move_to_region(request.bundle_id, request.region))


# --- Watchdog ---

@app.get("/watchdog/check", response_model=WatchdogStatus)
async def watchdog_check():
    return await ensure_control_context().watchdog.check()


@app.post("/watchdog/target", response_model=TmuxTarget)
async def watchdog_retarget(request: TargetRequest):
    return ensure_control_context().watchdog.retarget(request.session, request.window, request.pane)


@app.get("/watchdog/logs", response_model=LogsResult)
async def watchdog_logs(lines: int = Query(200, ge=1, le=10000)):
    return await ensure_control_context().watchdog.fetch_logs(lines)


@app.get("/watchdog/sessions", response_model=List[str])
async def watchdog_sessions():
    return await ensure_control_context().watchdog.list_sessions()


@app.get("/watchdog/sessions/{session}/windows", response_model=List[str])
async def watchdog_windows(session: str):
    return await ensure_control_context().watchdog.list_windows(session)


@app.get("/watchdog/sessions/{session}/windows/{window}/panes", response_model=List[str])
async def watchdog_panes(session: str, window: str):
    return await ensure_control_context().watchdog.list_panes(session, window)


@app.post("/watchdog/keys", response_model=OkResponse)
async def watchdog_send_keys(request: KeysRequest):
    return OkResponse(ok=await ensure_control_context().watchdog.send_keys(request.keys, request.special))


@app.post("/watchdog/enabled", response_model=OkResponse)
async def watchdog_set_enabled(request: EnabledRequest):
    ensure_control_context().watchdog.set_enabled(request.enabled)
    return OkResponse(ok=True)


# --- Transcription ---

@app.post("/transcription/start", response_model=OkResponse)
async def transcription_start(request: TranscriptionStartRequest):
    return OkResponse(ok=await ensure_control_context().transcription.start(request.sample_rate))


@app.post("/transcription/audio", response_model=OkResponse)
async def transcription_audio(request: Request):
    """Accept one raw PCM frame as the request body."""
    frame = await request.body()
    await ensure_control_context().transcription.push_audio(frame)
    return OkResponse(ok=True)


@app.websocket("/transcription/audio")
async def transcription_audio_stream(websocket: WebSocket):
    """Binary PCM frames, one per websocket message."""
    ctx = ensure_control_context()
    await websocket.accept()
    try:
        while True:
            frame = await websocket.receive_bytes()
            await ctx.transcription.push_audio(frame)
    except WebSocketDisconnect:
        logger.info("Audio stream disconnected")


@app.post("/transcription/stop", response_model=OkResponse)
async def transcription_stop():
    return OkResponse(ok=await ensure_control_context().transcription.stop())


# --- Telemetry and push events ---

@app.get("/telemetry", response_model=Telemetry)
async def telemetry():
    return ensure_control_context().telemetry.read()


@app.get("/events")
async def events_stream():
    """Server-Sent Events stream of overlay push events."""
    ctx = ensure_control_context()
    queue = ctx.events.subscribe()
    return StreamingResponse(
        ctx.events.stream(queue),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# === Exception Handlers ===

@app.exception_handler(MissingRect)
async def missing_rect_handler(request, exc: MissingRect):
    logger.warning(f"Capture rejected: {exc}")
    return error_response(status.HTTP_400_BAD_REQUEST, "MissingRect", str(exc))


@app.exception_handler(InvalidImage)
async def invalid_image_handler(request, exc: InvalidImage):
    return error_response(status.HTTP_400_BAD_REQUEST, "InvalidImage", str(exc))


@app.exception_handler(CaptureFailed)
async def capture_failed_handler(request, exc: CaptureFailed):
    return error_response(status.HTTP_502_BAD_GATEWAY, "CaptureFailed", str(exc))


@app.exception_handler(ExecError)
async def exec_error_handler(request, exc: ExecError):
    return error_response(status.HTTP_502_BAD_GATEWAY, "ExecError", str(exc))


@app.exception_handler(AuthFailed)
async def auth_failed_handler(request, exc: AuthFailed):
    return error_response(status.HTTP_401_UNAUTHORIZED, "AuthFailed", str(exc))


@app.exception_handler(IronTermError)
async def ironterm_error_handler(request, exc: IronTermError):
    logger.error(f"{type(exc).__name__}: {exc}")
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, type(exc).__name__, str(exc))


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}")
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", str(exc))


# === Main Entry Point ===

async def startup_event():
    """Startup event handler."""
    logger.info("Starting Iron-Term control core...")
    ctx = ensure_control_context()
    missing = ctx.config.get_missing_config()
    if missing:
        logger.warning(f"Transcription not configured, missing: {', '.join(missing)}")
    await ctx.start()
    logger.info("Iron-Term control core started successfully")


async def shutdown_event():
    """Shutdown event handler."""
    if control_context is not None:
        await control_context.stop()
    logger.info("Iron-Term control core stopped")


app.add_event_handler("startup", startup_event)
app.add_event_handler("shutdown", shutdown_event)


def run_server(host: str = "127.0.0.1", port: int = 8765, reload: bool = False, debug: bool = False):
    """Run the FastAPI server."""
    if debug:
        configure_logging(logging.DEBUG)

    logger.info("=" * 60)
    logger.info(" Iron-Term Control Core Starting Up")
    logger.info("=" * 60)
    logger.info(f" Server: {host}:{port}")
    logger.info(f" Reload mode: {'Enabled' if reload else 'Disabled'}")
    logger.info(f" Log level: {'DEBUG' if debug else 'INFO'}")
    logger.info(f" Log file: {LOG_DIR / LOG_FILE_NAME}")
    logger.info("=" * 60)

    uvicorn.run(
        "controller:app",
        host=host,
        port=port,
        reload=reload,
        log_level="debug" if debug else "info"
    )


def main():
    parser = argparse.ArgumentParser(description="Iron-Term control core")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8765, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    args = parser.parse_args()
    run_server(host=args.host, port=args.port, reload=args.reload, debug=args.debug)


if __name__ == "__main__":
    main()
