"""execrec -- recorded ``kubectl exec`` sessions.

Wraps ``kubectl exec`` in a pseudo-terminal, relays the operator's
terminal to it in raw mode, and writes a byte-for-byte transcript of
everything the remote shell printed.
"""

__version__ = "1.0.0"
