"""
Iron-Term control core

Privileged control process behind the Iron-Term heads-up overlay: screen
capture into cards, window/display directory, tmux watchdog and live
speech transcription.
"""

__version__ = "0.1.0"
