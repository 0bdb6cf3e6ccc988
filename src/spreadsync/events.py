"""Lifecycle and change-notification vocabulary.

Handlers are plain callables kept in per-instance ordered lists; the
aliases below document their signatures.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from spreadsync.message import Message


class ChangeOperation(StrEnum):
    SET = "set"
    DELETE = "delete"
    CLEAR = "clear"
    STATE_SYNC = "state_sync"


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


#: ``(operation, key, value)``. ``key`` is a string for top-level keys, a
#: tuple of strings for deeper paths and ``None`` for clear/state sync.
ChangeHandler = Callable[[ChangeOperation, str | tuple[str, ...] | None, Any], None]
MessageHandler = Callable[["Message"], None]
#: ``(code, reason)`` as reported by the websocket close frame.
CloseHandler = Callable[[int, str], None]
ErrorHandler = Callable[[BaseException], None]
OpenHandler = Callable[[], None]
