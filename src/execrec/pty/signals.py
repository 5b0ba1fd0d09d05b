"""Signal forwarding from the wrapper to the remote-exec child."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from execrec.pty.session import PTYSession

logger = logging.getLogger(__name__)

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SignalForwarder:
    """Scoped registration of process-wide signal handlers.

    ``attach()`` installs handlers on the running event loop and returns
    a detach callback; handler lifetime is therefore explicit. SIGINT and
    SIGTERM delivered to the wrapper become SIGTERM for the child. With
    ``forward_resize`` the wrapper's SIGWINCH re-syncs the PTY size.
    """

    def __init__(self, forward_resize: bool = True) -> None:
        self._forward_resize = forward_resize
        self._installed: list[int] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self.forwarded = 0

    @property
    def attached(self) -> bool:
        return bool(self._installed)

    def attach(self, session: PTYSession) -> Callable[[], None]:
        if self._installed:
            raise RuntimeError("signal forwarder already attached")
        self._loop = asyncio.get_running_loop()

        try:
            for sig in INTERRUPT_SIGNALS:
                self._loop.add_signal_handler(sig, self._forward, session, sig)
                self._installed.append(sig)

            if self._forward_resize:
                self._loop.add_signal_handler(signal.SIGWINCH, session.sync_size)
                self._installed.append(signal.SIGWINCH)
        except (RuntimeError, ValueError, OSError):
            # Leave no half-installed set behind.
            self.detach()
            raise

        logger.debug("Signal handlers attached: %s", self._installed)
        return self.detach

    def detach(self) -> None:
        """Remove the handlers installed by :meth:`attach`. Idempotent."""
        installed, self._installed = self._installed, []
        if self._loop is None:
            return
        for sig in installed:
            self._loop.remove_signal_handler(sig)
        if installed:
            logger.debug("Signal handlers detached: %s", installed)

    def _forward(self, session: PTYSession, received: int) -> None:
        self.forwarded += 1
        logger.info("Received signal %d, terminating child", received)
        session.send_signal(signal.SIGTERM)
