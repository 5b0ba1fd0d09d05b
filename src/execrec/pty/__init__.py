"""PTY plumbing for recorded sessions.

The remote-exec child runs on a fresh pseudo-terminal; the operator's
terminal is switched to raw mode and relayed to it byte for byte, with
interrupt signals forwarded and the transcript fed from the output side.
"""

from execrec.pty.relay import StreamRelay
from execrec.pty.session import PTYSession, PTYStatus
from execrec.pty.signals import SignalForwarder
from execrec.pty.terminal import RawTerminal

__all__ = [
    "PTYSession",
    "PTYStatus",
    "RawTerminal",
    "SignalForwarder",
    "StreamRelay",
]
