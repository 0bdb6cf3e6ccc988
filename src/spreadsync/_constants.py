"""Internal constants shared across the library."""

SUPPORTED_SCHEMES: frozenset[str] = frozenset({"ws", "wss"})

# Websocket close codes (RFC 6455).
NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

DEFAULT_TIMEOUT: float = 10.0
DEFAULT_RECONNECT_DELAY: float = 1.0
DEFAULT_POLL_INTERVAL: float = 0.1

# How long a user close waits for the peer to answer the close frame.
CLOSE_HANDSHAKE_TIMEOUT: float = 1.0

# How long close() waits for the transport thread to wind down.
TRANSPORT_JOIN_TIMEOUT: float = 2.0

# Upper bound on frame text kept on exceptions / in debug logs.
MAX_LOGGED_FRAME = 512
