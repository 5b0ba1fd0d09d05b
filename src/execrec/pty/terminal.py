"""Raw-mode control of the operator's terminal."""

from __future__ import annotations

import logging
import pty
import termios
import tty
from typing import Any, Callable

from execrec.errors import TerminalError

logger = logging.getLogger(__name__)


class RawTerminal:
    """Puts a terminal fd into raw mode and hands back a restore callback.

    Raw mode lets every keystroke (Ctrl-C, Tab, arrow keys, escape
    sequences) reach the remote shell untouched; the local line
    discipline stops echoing and stops generating signals.

    At most one raw-mode transition is active per instance. The restore
    callback puts back the attributes captured on entry and is safe to
    call any number of times; only the first call touches the terminal.
    """

    def __init__(self, fd: int | None = None) -> None:
        self._fd = pty.STDIN_FILENO if fd is None else fd
        self._saved: list[Any] | None = None
        self.restore_count = 0

    @property
    def fd(self) -> int:
        return self._fd

    @property
    def is_raw(self) -> bool:
        return self._saved is not None

    def enter_raw(self) -> Callable[[], None]:
        """Switch the terminal to raw mode.

        Returns:
            A restore callback. It never raises; failures are logged so
            that teardown can continue.

        Raises:
            TerminalError: the fd is not a TTY, raw mode is already
                active, or a termios call failed.
        """
        if self._saved is not None:
            raise TerminalError("terminal is already in raw mode")

        try:
            saved = termios.tcgetattr(self._fd)
            tty.setraw(self._fd)
        except (termios.error, OSError) as e:
            raise TerminalError(f"failed to put terminal in raw mode: {e}") from e

        self._saved = saved
        logger.debug("Terminal fd=%d switched to raw mode", self._fd)
        return self.restore

    def restore(self) -> None:
        """Restore the attributes captured by :meth:`enter_raw`."""
        saved, self._saved = self._saved, None
        if saved is None:
            return
        self.restore_count += 1
        try:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, saved)
            logger.debug("Terminal fd=%d restored", self._fd)
        except (termios.error, OSError) as e:
            logger.warning("Failed to restore terminal fd=%d: %s", self._fd, e)
