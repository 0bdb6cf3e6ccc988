"""spreadsync - peer-replicated key/value store over a websocket relay."""

from importlib.metadata import PackageNotFoundError, version
from typing import Any

try:
    __version__ = version("spreadsync")
except PackageNotFoundError:
    __version__ = "0+local"
from spreadsync.client import SpreadClient
from spreadsync.config import SpreadConfig
from spreadsync.connection import Connection
from spreadsync.events import ChangeOperation, ConnectionState
from spreadsync.exceptions import (
    SpreadClosedError,
    SpreadConfigError,
    SpreadConnectionError,
    SpreadError,
    SpreadInvalidMessageError,
    SpreadSyncError,
    SpreadTimeoutError,
)
from spreadsync.message import Message, MessageType, decode, encode
from spreadsync.store import Store


def connect(url: str, config: SpreadConfig | None = None, **overrides: Any) -> Store:
    """Connect a new :class:`SpreadClient` and return its store.

    Keyword arguments build a :class:`SpreadConfig` when *config* is omitted.
    Call ``store.connection.close()`` to disconnect.
    """
    if config is None:
        config = SpreadConfig(**overrides)
    elif overrides:
        raise TypeError("pass either config or keyword overrides, not both")
    return SpreadClient(url, config).store


__all__ = [
    "__version__",
    "ChangeOperation",
    "Connection",
    "ConnectionState",
    "Message",
    "MessageType",
    "SpreadClient",
    "SpreadClosedError",
    "SpreadConfig",
    "SpreadConfigError",
    "SpreadConnectionError",
    "SpreadError",
    "SpreadInvalidMessageError",
    "SpreadSyncError",
    "SpreadTimeoutError",
    "Store",
    "connect",
    "decode",
    "encode",
]
