"""
Telemetry observer.

Samples host CPU, memory and load average and pushes a telemetry-tick event
every interval.
"""

import asyncio
import logging
import os

import psutil

from .observer import Observer
from ..event_models import SSEEventType
from ..schemas import Telemetry
from ..services.sse_manager import SSEManager

logger = logging.getLogger(__name__)


def read_telemetry() -> Telemetry:
    cpu = psutil.cpu_percent(interval=None)
    mem = psutil.virtual_memory().percent
    try:
        load = os.getloadavg()[0]
    except (AttributeError, OSError):
        load = 0.0
    return Telemetry(
        cpu=max(0, min(100, round(cpu))),
        mem=max(0, min(100, round(mem))),
        load=round(load, 2),
    )


class TelemetryObserver(Observer):
    """Periodic host telemetry."""

    def __init__(self, events: SSEManager, interval_ms: int = 1000):
        self.events = events
        self.interval_ms = interval_ms
        super().__init__("TelemetryObserver")

    def read(self) -> Telemetry:
        return read_telemetry()

    async def _worker(self) -> None:
        # first cpu_percent(None) call only primes the counters
        psutil.cpu_percent(interval=None)
        while self._running:
            await asyncio.sleep(self.interval_ms / 1000.0)
            try:
                sample = self.read()
            except psutil.Error as e:
                logger.error(f"Telemetry sample failed: {e}")
                continue
            await self.events.broadcast_event(SSEEventType.TELEMETRY_TICK, sample)
