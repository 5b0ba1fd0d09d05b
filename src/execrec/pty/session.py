"""PTY session: the remote-exec child attached to a pseudo-terminal."""

from __future__ import annotations

import asyncio
import enum
import fcntl
import logging
import os
import pty
import signal
import subprocess
import termios
from dataclasses import dataclass, field

from execrec.errors import SpawnError

logger = logging.getLogger(__name__)


class PTYStatus(enum.Enum):
    """Lifecycle states for a PTY session."""

    PENDING = "pending"
    RUNNING = "running"
    EXITED = "exited"  # Child reaped, master still open
    CLOSED = "closed"  # Master fd released


def _make_controlling_tty() -> None:
    # Runs in the child after setsid(); stdin is already the slave.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


def copy_window_size(src_fd: int, dst_fd: int) -> None:
    """Copy the rows/columns of ``src_fd`` onto ``dst_fd``."""
    winsize = fcntl.ioctl(src_fd, termios.TIOCGWINSZ, b"\x00" * 8)
    fcntl.ioctl(dst_fd, termios.TIOCSWINSZ, winsize)


def returncode_to_exit_status(returncode: int) -> int:
    """Translate a Popen return code into a shell-style exit status.

    A child killed by signal N reports ``-N``; shells report ``128 + N``.
    """
    if returncode < 0:
        return 128 - returncode
    return returncode


@dataclass
class PTYSession:
    """A child process running on the slave side of a fresh PTY.

    The child runs in its own session with the slave as its controlling
    terminal, so Ctrl-C typed by the operator (relayed as a raw ``\\x03``
    byte) is turned into SIGINT by the slave's line discipline, exactly
    as if ``kubectl exec`` had been run directly.

    Uses subprocess.Popen (not os.fork) so spawning is safe from inside
    a running asyncio event loop.
    """

    command: list[str] = field(default_factory=list)
    size_source_fd: int = pty.STDIN_FILENO

    _master_fd: int = field(default=-1, init=False)
    _proc: subprocess.Popen | None = field(default=None, init=False)
    _status: PTYStatus = field(default=PTYStatus.PENDING, init=False)
    _exit_status: int | None = field(default=None, init=False)

    def start(self) -> int:
        """Allocate the PTY, spawn the child and mirror the window size.

        Returns:
            The master fd.

        Raises:
            SpawnError: PTY allocation failed, the executable could not be
                started, or the terminal size could not be mirrored.
        """
        if self._status is not PTYStatus.PENDING:
            raise SpawnError("PTY session already started")

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(f"failed to allocate PTY: {e}") from e

        try:
            # Mirror before spawn so the first frame renders at full size.
            copy_window_size(self.size_source_fd, master_fd)
        except OSError as e:
            os.close(master_fd)
            os.close(slave_fd)
            raise SpawnError(f"failed to inherit terminal size: {e}") from e

        try:
            self._proc = subprocess.Popen(
                self.command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                preexec_fn=_make_controlling_tty,
                close_fds=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise SpawnError(f"failed to start {self.command[0]!r}: {e}") from e
        finally:
            # Parent always closes slave fd; EOF on the master depends on it.
            os.close(slave_fd)

        self._master_fd = master_fd
        self._status = PTYStatus.RUNNING
        logger.info(
            "PTY session started: pid=%d master_fd=%d cmd=%s",
            self._proc.pid,
            master_fd,
            " ".join(self.command),
        )
        return master_fd

    @property
    def master_fd(self) -> int:
        return self._master_fd

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def status(self) -> PTYStatus:
        return self._status

    @property
    def exit_status(self) -> int | None:
        return self._exit_status

    def sync_size(self) -> None:
        """Re-copy the operator's window size onto the PTY (after SIGWINCH)."""
        if self._status is not PTYStatus.RUNNING:
            return
        try:
            copy_window_size(self.size_source_fd, self._master_fd)
        except OSError as e:
            logger.debug("Window size sync failed: %s", e)

    def send_signal(self, sig: int = signal.SIGTERM) -> None:
        """Deliver ``sig`` to the child. No-op once it has been reaped."""
        if self._proc is None or self._proc.returncode is not None:
            return
        try:
            self._proc.send_signal(sig)
            logger.info("Forwarded signal %d to pid %d", sig, self._proc.pid)
        except ProcessLookupError:
            logger.debug("Child %d already gone", self._proc.pid)

    async def wait(self) -> int:
        """Wait for the child to exit and return its shell-style exit status."""
        if self._proc is None:
            raise SpawnError("PTY session was never started")
        loop = asyncio.get_running_loop()
        returncode = await loop.run_in_executor(None, self._proc.wait)
        self._exit_status = returncode_to_exit_status(returncode)
        if self._status is PTYStatus.RUNNING:
            self._status = PTYStatus.EXITED
        logger.info(
            "PTY child %d exited (returncode=%d status=%d)",
            self._proc.pid,
            returncode,
            self._exit_status,
        )
        return self._exit_status

    def close(self) -> None:
        """Release the master fd. Safe to call more than once."""
        if self._master_fd < 0:
            return
        try:
            os.close(self._master_fd)
        except OSError:
            logger.debug("Master fd %d already closed", self._master_fd)
        self._master_fd = -1
        self._status = PTYStatus.CLOSED
