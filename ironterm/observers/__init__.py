from .observer import Observer
from .telemetry import TelemetryObserver
from .watchdog import TmuxWatchdog

__all__ = ["Observer", "TelemetryObserver", "TmuxWatchdog"]
