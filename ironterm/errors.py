"""
Error taxonomy for the Iron-Term control core.

Every failure raised by a subsystem derives from IronTermError so the
controller can map it onto an HTTP response without knowing the details.
None of these are fatal to the control process.
"""

from typing import Optional


class IronTermError(Exception):
    """Base class for control-core failures."""


class ExecError(IronTermError):
    """An external command could not be spawned or exited non-zero."""

    def __init__(self, command: str, message: str):
        self.command = command
        self.message = message
        super().__init__(f"{command}: {message}")


class MissingRect(IronTermError):
    """Rectangle capture was required but no rectangle was supplied."""

    def __init__(self, message: str = "missing rect"):
        self.message = message
        super().__init__(message)


class CaptureFailed(IronTermError):
    """Both handle and rectangle capture paths were exhausted."""

    def __init__(self, cause: Optional[BaseException] = None):
        self.cause = cause
        detail = str(cause) if cause else "capture failed"
        super().__init__(f"capture failed: {detail}")


class InvalidImage(IronTermError):
    """Image data handed over by the UI could not be decoded."""


class AuthFailed(IronTermError):
    """No usable token or app key for the transcription provider."""


class TransportError(IronTermError):
    """The streaming transcription connection faulted."""
