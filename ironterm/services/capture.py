"""
Capture Pipeline

Turns a capture request (window handle and/or rectangle) into a PNG on disk
plus a Card in the persisted list, or a transient app proxy.

Fallback order is handle -> rectangle: handle capture is exact but not
available for every window type, rectangle capture works whenever geometry
is known.
"""

import asyncio
import base64
import binascii
import logging
import uuid
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from ..errors import CaptureFailed, ExecError, InvalidImage, MissingRect
from ..schemas import (
    AppProxy,
    Card,
    DisplayRect,
    Rect,
    CARD_POSITION_RECT,
    CARD_POSITION_WINDOW,
)
from .card_store import CardStore
from .gateway import CommandGateway

logger = logging.getLogger(__name__)

SCREENCAPTURE = "screencapture"


def to_display_local(rect: Rect, display: DisplayRect) -> Tuple[int, int, int, int]:
    """Map a top-left-origin global rect into screencapture's per-display space.

    screencapture -D addresses a display with a bottom-left origin, while
    window and display geometry are reported top-left-origin.
    """
    x, y, w, h = _rounded(rect)
    local_x = x - round(display.x)
    local_y = round(display.h) - (y - round(display.y)) - h
    return local_x, local_y, w, h


def _rounded(rect: Rect) -> Tuple[int, int, int, int]:
    return round(rect.x), round(rect.y), round(rect.w), round(rect.h)


def _new_capture_path(directory: Path) -> Tuple[str, str, Path]:
    card_id = uuid.uuid4().hex
    timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    safe_stamp = timestamp.replace(":", "-").replace(".", "-")
    return card_id, timestamp, directory / f"{safe_stamp}-{card_id}.png"


def validate_image(file_content: bytes) -> bool:
    """Validate that bytes decode as an image."""
    try:
        with Image.open(BytesIO(file_content)) as image:
            image.verify()
        return True
    except (UnidentifiedImageError, OSError, SyntaxError):
        return False


class CapturePipeline:
    """Screenshots windows or regions and records them as cards."""

    def __init__(self, gateway: CommandGateway, store: CardStore, app_cards_dir: Path):
        self.gateway = gateway
        self.store = store
        self.app_cards_dir = Path(app_cards_dir)

    @property
    def cards_dir(self) -> Path:
        return self.store.cards_dir

    # ------------------------------------------------------------------
    # Capture strategies
    # ------------------------------------------------------------------

    async def _run_screencapture(self, args: List[str], output: Path) -> None:
        await self.gateway.run(SCREENCAPTURE, args + [str(output)])
        # screencapture exits 0 without writing when screen recording is denied
        if not output.exists() or output.stat().st_size == 0:
            raise ExecError(SCREENCAPTURE, f"no image written to {output}")

    async def _capture_by_handle(self, window_id: str, output: Path) -> None:
        await self._run_screencapture(["-x", "-l", str(window_id)], output)

    async def _capture_by_rect(self, rect: Rect, display: Optional[DisplayRect], output: Path) -> None:
        args = ["-x"]
        if display is not None:
            x, y, w, h = to_display_local(rect, display)
            args += ["-D", str(display.index)]
        else:
            x, y, w, h = _rounded(rect)
        args += ["-R", f"{x},{y},{w},{h}"]
        await self._run_screencapture(args, output)

    async def _capture(
        self,
        output: Path,
        window_id: Optional[str],
        rect: Optional[Rect],
        display: Optional[DisplayRect],
    ) -> None:
        """Run the handle -> rectangle fallback chain into output."""
        await asyncio.to_thread(output.parent.mkdir, parents=True, exist_ok=True)

        if window_id:
            try:
                await self._capture_by_handle(window_id, output)
                return
            except ExecError as e:
                logger.info(f"Window capture by id {window_id} failed, falling back to rect: {e.message}")

        if rect is None:
            raise MissingRect()

        try:
            await self._capture_by_rect(rect, display, output)
        except ExecError as e:
            logger.error(f"Rect capture failed for {output.name}: {e.message}")
            raise CaptureFailed(e) from e

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def capture(
        self,
        *,
        label: str,
        width: float,
        height: float,
        window_id: Optional[str] = None,
        rect: Optional[Rect] = None,
        display: Optional[DisplayRect] = None,
    ) -> List[Card]:
        """
        Capture a window or region into a new card.

        Args:
            label: User-visible label
            width: Card width on the HUD
            height: Card height on the HUD
            window_id: Window handle to try first
            rect: Absolute rectangle used directly or as the fallback
            display: Display holding rect, enables the per-display transform

        Returns:
            The updated card list, newest first

        Raises:
            MissingRect: no handle succeeded and no rect was given
            CaptureFailed: rectangle capture failed too
        """
        card_id, timestamp, output = _new_capture_path(self.cards_dir)
        logger.info(f"Capture {card_id} start (window={window_id}, rect={rect.model_dump() if rect else None})")

        await self._capture(output, window_id, rect, display)

        x, y = CARD_POSITION_WINDOW if window_id else CARD_POSITION_RECT
        card = Card(
            id=card_id,
            file_path=str(output),
            file_url=output.resolve().as_uri(),
            timestamp=timestamp,
            label=label,
            x=x,
            y=y,
            width=width,
            height=height,
        )
        cards = await self.store.prepend(card)
        logger.info(f"Capture {card_id} ok: {output} ({len(cards)} cards)")
        return cards

    async def save_data_url(self, data_url: str, label: str, width: float, height: float) -> List[Card]:
        """Store an image the overlay rendered itself (base64 data URL) as a card."""
        encoded = data_url.split(",", 1)[1] if "," in data_url else ""
        try:
            content = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidImage(f"data URL is not valid base64: {e}") from e
        if not content or not validate_image(content):
            raise InvalidImage("data URL does not contain an image")

        card_id, timestamp, output = _new_capture_path(self.cards_dir)
        await asyncio.to_thread(output.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(output.write_bytes, content)

        x, y = CARD_POSITION_RECT
        card = Card(
            id=card_id,
            file_path=str(output),
            file_url=output.resolve().as_uri(),
            timestamp=timestamp,
            label=label,
            x=x,
            y=y,
            width=width,
            height=height,
        )
        cards = await self.store.prepend(card)
        logger.info(f"Card {card_id} saved from data URL ({len(content)} bytes)")
        return cards

    async def capture_proxy(
        self,
        *,
        window_id: Optional[str],
        label: str,
        rect: Optional[Rect] = None,
        display: Optional[DisplayRect] = None,
    ) -> AppProxy:
        """Snapshot a window for the app switcher without touching the card list."""
        proxy_id, _timestamp, output = _new_capture_path(self.app_cards_dir)
        await self._capture(output, window_id, rect, display)
        logger.info(f"App proxy {proxy_id} captured: {output}")
        return AppProxy(id=proxy_id, file_url=output.resolve().as_uri(), file_path=str(output), label=label)

    async def clear_proxies(self) -> int:
        """Remove every app proxy image. Returns how many files were deleted."""

        def _clear() -> int:
            removed = 0
            if not self.app_cards_dir.is_dir():
                return removed
            for path in self.app_cards_dir.iterdir():
                try:
                    path.unlink()
                    removed += 1
                except OSError as e:
                    logger.debug(f"App proxy {path} not removed: {e}")
            return removed

        removed = await asyncio.to_thread(_clear)
        logger.info(f"Cleared {removed} app proxies")
        return removed

    async def delete_proxy(self, file_path: str) -> bool:
        """Delete one proxy image. Paths outside the proxy directory are ignored."""
        target = Path(file_path).resolve()
        if self.app_cards_dir.resolve() not in target.parents:
            logger.warning(f"Refusing to delete {file_path}: not an app proxy")
            return False
        try:
            await asyncio.to_thread(target.unlink)
        except OSError as e:
            logger.debug(f"App proxy {file_path} not removed: {e}")
        return True
