"""Custom exception hierarchy for spreadsync."""

from __future__ import annotations


class SpreadError(Exception):
    """Base exception for all spreadsync errors."""


class SpreadConfigError(SpreadError):
    """Invalid configuration or relay URL."""


class SpreadConnectionError(SpreadError):
    """Connecting to the relay, or writing to it, failed at the transport level."""

    def __init__(self, message: str, *, url: str = "") -> None:
        self.url = url
        super().__init__(message)


class SpreadTimeoutError(SpreadConnectionError):
    """The websocket handshake did not complete within the configured timeout."""


class SpreadClosedError(SpreadError):
    """Operation attempted on a connection that was explicitly closed."""


class SpreadInvalidMessageError(SpreadError):
    """A frame or message payload does not follow the wire format.

    ``raw`` holds (a truncated copy of) the offending frame when the error
    was raised while decoding.
    """

    def __init__(self, message: str, *, raw: str = "") -> None:
        self.raw = raw
        super().__init__(message)


class SpreadSyncError(SpreadError):
    """A local mutation was applied but could not be broadcast to peers.

    The local tree is *not* rolled back; the store has diverged from
    what peers have seen until the next state sync.
    """
