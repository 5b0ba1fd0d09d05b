"""Transcript recorder. Owns the session log file.

Layout of a transcript::

    [command] kubectl execrec <args...>
    [session] start=<RFC3339> user=<username> version=<semver>
    ================================================================================
    <raw session bytes>
    ================================================================================
    [session] end=<RFC3339>

Every write is fsync'ed before returning, so a crash mid-session keeps
everything up to the last relayed chunk.
"""

from __future__ import annotations

import logging
import os
import pwd
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO

from execrec import __version__
from execrec.errors import PreparationError, TranscriptWriteError

logger = logging.getLogger(__name__)

SEPARATOR = "=" * 80
COMMAND_NAME = "kubectl execrec"


def now() -> datetime:
    return datetime.now().astimezone()


def rfc3339(dt: datetime) -> str:
    """Second-precision RFC 3339, with ``Z`` for UTC."""
    text = dt.isoformat(timespec="seconds")
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text


def whoami() -> str:
    """Name of the invoking user: passwd entry, then $USER, then 'unknown'."""
    try:
        name = pwd.getpwuid(os.getuid()).pw_name
    except KeyError:
        name = ""
    return name or os.environ.get("USER") or "unknown"


@dataclass
class SessionMeta:
    """One execution of the wrapper."""

    args: list[str] = field(default_factory=list)
    username: str = field(default_factory=whoami)
    version: str = __version__
    started_at: datetime = field(default_factory=now)
    ended_at: datetime | None = None
    log_path: str | None = None

    @property
    def log_name(self) -> str:
        return f"{self.username}_{rfc3339(self.started_at)}.log"


class TranscriptRecorder:
    """Header, raw bytes and footer of one session, in that order.

    The recorder is the only owner of the log file. The relay's output
    loop feeds it through :meth:`append`; the supervisor calls
    :meth:`prepare` before the child is spawned and :meth:`finish` after
    the child has exited and the relay has been drained.
    """

    def __init__(self, log_dir: str) -> None:
        self.log_dir = log_dir
        self.meta: SessionMeta | None = None
        self.write_errors = 0
        self.bytes_written = 0
        self._file: BinaryIO | None = None
        self._finished = False

    @property
    def path(self) -> str | None:
        return self.meta.log_path if self.meta else None

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def prepare(self, meta: SessionMeta) -> str:
        """Create the log directory and file and write the header.

        Returns:
            The path of the new log file.

        Raises:
            PreparationError: the directory or file could not be created,
                or the header could not be written.
        """
        try:
            os.makedirs(self.log_dir, mode=0o755, exist_ok=True)
        except OSError as e:
            raise PreparationError(f"failed to create log directory: {e}") from e

        path = os.path.join(self.log_dir, meta.log_name)
        try:
            self._file = open(path, "wb", buffering=0)
        except OSError as e:
            raise PreparationError(f"failed to create log file: {e}") from e

        self.meta = meta
        meta.log_path = path

        header = (
            f"[command] {COMMAND_NAME} {' '.join(meta.args)}\n"
            f"[session] start={rfc3339(meta.started_at)} "
            f"user={meta.username} version={meta.version}\n"
            f"{SEPARATOR}\n"
        )
        try:
            self._write(header.encode("utf-8"))
        except OSError as e:
            self.close()
            raise PreparationError(f"failed to write log header: {e}") from e

        logger.info("Transcript opened at %s", path)
        return path

    def append(self, data: bytes) -> None:
        """Append raw session bytes. Best effort: failures are counted, not raised."""
        if not data:
            return
        if self._file is None:
            self.write_errors += 1
            logger.debug("Dropped %d bytes: transcript not open", len(data))
            return
        try:
            self._write(data)
        except OSError as e:
            self.write_errors += 1
            # First failure is worth a warning; the rest would flood.
            level = logging.WARNING if self.write_errors == 1 else logging.DEBUG
            logger.log(level, "Transcript write failed (%d so far): %s", self.write_errors, e)
            return
        self.bytes_written += len(data)

    def finish(self) -> None:
        """Write the footer. Must be called exactly once per session.

        Raises:
            RuntimeError: called a second time.
            TranscriptWriteError: the log is not open or the footer write failed.
        """
        if self._finished:
            raise RuntimeError("transcript already finished")
        self._finished = True

        ended_at = now()
        if self.meta is not None:
            self.meta.ended_at = ended_at
        if self._file is None:
            raise TranscriptWriteError("transcript is not open")

        footer = f"{SEPARATOR}\n[session] end={rfc3339(ended_at)}\n"
        try:
            self._write(footer.encode("utf-8"))
        except OSError as e:
            raise TranscriptWriteError(f"failed to write log footer: {e}") from e

        if self.write_errors:
            logger.warning(
                "Transcript %s is missing data: %d writes failed",
                self.path,
                self.write_errors,
            )

    def close(self) -> None:
        """Release the file handle. No-op if already closed."""
        f, self._file = self._file, None
        if f is None:
            return
        try:
            f.close()
        except OSError as e:
            logger.warning("Failed to close transcript: %s", e)

    def _write(self, data: bytes) -> None:
        assert self._file is not None
        view = memoryview(data)
        while view:
            written = self._file.write(view)
            view = view[written:]
        os.fsync(self._file.fileno())
