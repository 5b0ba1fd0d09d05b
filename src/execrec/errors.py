"""Error taxonomy for a recorded session."""

from __future__ import annotations


class ExecrecError(Exception):
    """Base class for all execrec failures."""


class PreparationError(ExecrecError):
    """The log directory or log file could not be created."""


class SpawnError(ExecrecError):
    """The remote-exec command or its PTY could not be started."""


class TerminalError(ExecrecError):
    """Raw-mode entry failed, usually because stdin is not a TTY."""


class TranscriptWriteError(ExecrecError):
    """Writing to the transcript failed."""


class UploadError(ExecrecError):
    """Shipping the finished transcript to object storage failed."""

    def __init__(self, message: str, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr
