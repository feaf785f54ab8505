"""
Error Kinds
===========
Exceptions raised by the link core. Recoverable conditions
(a single malformed frame, a single failed send) are absorbed
inside the core; only ConnectError and ConnectionLost reach
collaborators as fatal events.
"""

from typing import Optional


class LinkError(Exception):
    """Base class for all link core errors."""


class ConnectError(LinkError):
    """Bind or connect failure. Reported, never retried automatically."""


class SendError(LinkError):
    """Transient socket failure while sending a frame."""


class MalformedFrame(LinkError, ValueError):
    """Inbound buffer of the wrong length. Dropped, session stays alive."""

    def __init__(self, length: int, expected: int):
        super().__init__(f"expected {expected} bytes, got {length}")
        self.length = length
        self.expected = expected


class ConnectionLost(LinkError):
    """Session torn down after transport closure or repeated send failures."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class NotConnectedError(LinkError):
    """Operation requires a Connected session."""
