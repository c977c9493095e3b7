"""
Iron-Term Services Package

Subprocess gateway, card storage, capture pipeline, window directory,
push-event hub and the streaming transcription session.
"""

__all__ = [
    "gateway",
    "card_store",
    "capture",
    "window_directory",
    "sse_manager",
    "nls_auth",
    "transcription",
]
