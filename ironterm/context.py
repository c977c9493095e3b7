"""
Session context

ControlContext owns every subsystem of the control core. The controller
builds exactly one at startup and hands it to the route handlers.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config_manager import ConfigManager
from .observers.telemetry import TelemetryObserver
from .observers.watchdog import TmuxWatchdog
from .services.capture import CapturePipeline
from .services.card_store import CardStore
from .services.gateway import CommandGateway
from .services.sse_manager import SSEManager
from .services.transcription import TranscriptionSession
from .services.window_directory import WindowDirectory

logger = logging.getLogger(__name__)


@dataclass
class ControlContext:
    config: ConfigManager
    gateway: CommandGateway
    events: SSEManager
    cards: CardStore
    capture: CapturePipeline
    directory: WindowDirectory
    watchdog: TmuxWatchdog
    telemetry: TelemetryObserver
    transcription: TranscriptionSession

    @classmethod
    def from_config(
        cls,
        config: ConfigManager,
        gateway: Optional[CommandGateway] = None,
        events: Optional[SSEManager] = None,
    ) -> "ControlContext":
        """Wire every subsystem from the persisted configuration."""
        gateway = gateway or CommandGateway()
        events = events or SSEManager()
        app_settings = config.get_app_settings()
        tmux = config.get_tmux_settings()

        cards = CardStore(config.cards_dir, cap=app_settings["cards_cap"])
        return cls(
            config=config,
            gateway=gateway,
            events=events,
            cards=cards,
            capture=CapturePipeline(gateway, cards, config.app_cards_dir),
            directory=WindowDirectory(gateway, hud_display_index=app_settings["hud_display_index"]),
            watchdog=TmuxWatchdog(
                gateway,
                events,
                tmux_path=tmux["path"],
                session=tmux.get("session") or "",
                window=str(tmux.get("window") or "0"),
                pane=str(tmux.get("pane") or "0"),
                poll_interval_ms=tmux["poll_ms"],
                enabled=tmux["enabled"],
            ),
            telemetry=TelemetryObserver(events, interval_ms=app_settings["telemetry_ms"]),
            transcription=TranscriptionSession(config.get_transcription_settings(), events),
        )

    async def start(self) -> None:
        logger.info(f"Card storage: {self.cards.cards_dir}")
        await self.watchdog.start()
        await self.telemetry.start()

    async def stop(self) -> None:
        await self.watchdog.stop()
        await self.telemetry.stop()
        await self.transcription.close()
