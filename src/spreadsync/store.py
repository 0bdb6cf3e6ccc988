"""Replicated in-memory key/value store.

The store holds one nested ``dict``.  Local writes mutate it, broadcast a
``set``/``delete`` message through the bound :class:`Connection`, and then
notify change handlers.  Messages arriving from peers are applied to the
same tree without being re-broadcast.

Every mutation, local or remote, runs under a single re-entrant lock that
also covers the broadcast and the notification.  Tree mutation order,
wire order and notification order are therefore the same.  Concurrent
writers on *different* clients are not ordered: each replica keeps the
last message it happened to apply.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from typing import TYPE_CHECKING, Any

from spreadsync._normalize import Path, normalize_key, normalize_path, normalize_value
from spreadsync.events import ChangeHandler, ChangeOperation
from spreadsync.exceptions import SpreadSyncError
from spreadsync.message import Message, MessageType

if TYPE_CHECKING:
    from spreadsync.connection import Connection

_logger = logging.getLogger(__name__)

_MISSING = object()


def _change_key(path: Path) -> str | Path:
    return path[0] if len(path) == 1 else path


class Store:
    """Dict-like view of the replicated tree.

    Usage::

        store = Store(connection)
        store["config"] = {"name": "Peter"}
        store.set_in(["config", "database", "host"], "localhost")
        store.get_in(["config", "database", "host"])  # "localhost"

    Values returned by :meth:`get`/:meth:`get_in` are the live containers of
    the tree; mutate them through the store so peers see the change.
    """

    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        self._data: dict[str, Any] = {}
        self._change_handlers: list[ChangeHandler] = []
        self._lock = threading.RLock()
        connection.on_message(self.apply_message)

    @property
    def connection(self) -> Connection:
        return self._connection

    # ------------------------------------------------------------------
    # Top-level keys
    # ------------------------------------------------------------------

    def get(self, key: Any, default: Any = None) -> Any:
        return self._data.get(normalize_key(key), default)

    def set(self, key: Any, value: Any) -> Any:
        """Write *value* at *key*, broadcast it, then notify handlers."""
        normalized_key = normalize_key(key)
        normalized_value = normalize_value(value)
        with self._lock:
            self._data[normalized_key] = normalized_value
            self._broadcast(Message.set, (normalized_key,), normalized_value)
            self._notify_change(ChangeOperation.SET, normalized_key, normalized_value)
        return normalized_value

    def delete(self, key: Any) -> Any:
        """Remove *key*, broadcast the removal and return the removed value."""
        normalized_key = normalize_key(key)
        with self._lock:
            value = self._data.pop(normalized_key, None)
            self._broadcast(Message.delete, (normalized_key,))
            self._notify_change(ChangeOperation.DELETE, normalized_key, value)
        return value

    def has_key(self, key: Any) -> bool:
        return normalize_key(key) in self._data

    # ------------------------------------------------------------------
    # Nested paths
    # ------------------------------------------------------------------

    def get_in(self, path: Iterable[Any]) -> Any:
        """Return the value at *path* or ``None`` if any segment is missing."""
        current: Any = self._data
        for segment in normalize_path(path):
            if not isinstance(current, dict):
                return None
            current = current.get(segment)
            if current is None:
                return None
        return current

    def set_in(self, path: Iterable[Any], value: Any) -> Any:
        """Write *value* at *path*, creating (or overwriting) intermediate dicts."""
        normalized_path = normalize_path(path)
        if len(normalized_path) == 1:
            return self.set(normalized_path[0], value)

        normalized_value = normalize_value(value)
        with self._lock:
            parent = self._ensure_path(normalized_path[:-1])
            parent[normalized_path[-1]] = normalized_value
            self._broadcast(Message.set, normalized_path, normalized_value)
            self._notify_change(ChangeOperation.SET, normalized_path, normalized_value)
        return normalized_value

    def delete_in(self, path: Iterable[Any]) -> Any:
        """Remove the value at *path*.

        When the parent of *path* does not resolve to a dict nothing is
        removed, no message is sent and ``None`` is returned.
        """
        normalized_path = normalize_path(path)
        if len(normalized_path) == 1:
            return self.delete(normalized_path[0])

        with self._lock:
            parent = self.get_in(normalized_path[:-1])
            if not isinstance(parent, dict):
                return None
            value = parent.pop(normalized_path[-1], None)
            self._broadcast(Message.delete, normalized_path)
            self._notify_change(ChangeOperation.DELETE, normalized_path, value)
        return value

    # ------------------------------------------------------------------
    # Whole-tree operations
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Empty the local tree.

        There is no wire message for this; peers keep their data and a later
        state sync may bring the keys back.
        """
        with self._lock:
            self._data.clear()
            self._notify_change(ChangeOperation.CLEAR, None, None)

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def values(self) -> list[Any]:
        return list(self._data.values())

    def items(self) -> list[tuple[str, Any]]:
        return list(self._data.items())

    def size(self) -> int:
        return len(self._data)

    def is_empty(self) -> bool:
        return not self._data

    def to_dict(self) -> dict[str, Any]:
        """Deep-copied snapshot of the whole tree."""
        with self._lock:
            return copy.deepcopy(self._data)

    state = to_dict

    # ------------------------------------------------------------------
    # Mapping protocol
    # ------------------------------------------------------------------

    def __getitem__(self, key: Any) -> Any:
        value = self._data.get(normalize_key(key), _MISSING)
        if value is _MISSING:
            raise KeyError(key)
        return value

    def __setitem__(self, key: Any, value: Any) -> None:
        self.set(key, value)

    def __delitem__(self, key: Any) -> None:
        if not self.has_key(key):
            raise KeyError(key)
        self.delete(key)

    def __contains__(self, key: object) -> bool:
        return self.has_key(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Store({self._data!r})"

    # ------------------------------------------------------------------
    # Replication
    # ------------------------------------------------------------------

    def on_change(self, handler: ChangeHandler) -> ChangeHandler:
        """Register *handler* for every local and remote mutation.

        Handlers receive ``(operation, key, value)``; exceptions they raise
        are logged and do not affect other handlers.
        """
        self._change_handlers.append(handler)
        return handler

    def request_state(self) -> None:
        """Ask peers for their full state; replies arrive as ``state`` messages."""
        self._connection.send(Message.request_state())

    def apply_message(self, message: Message) -> None:
        """Apply a message received from the relay.

        Malformed set/delete/state payloads raise
        :class:`~spreadsync.exceptions.SpreadInvalidMessageError`; the
        connection routes that to its error handlers.
        """
        kind = message.kind
        if kind is MessageType.SET:
            self._apply_remote_set(message.path, message.value)
        elif kind is MessageType.DELETE:
            self._apply_remote_delete(message.path)
        elif kind is MessageType.STATE:
            self._apply_remote_state(message.state_data)
        elif kind is MessageType.REQUEST_STATE:
            self._send_state()
        elif kind is MessageType.PING:
            self._connection.send(Message.pong())
        else:
            _logger.debug("Ignoring %s message", message.type)

    def _apply_remote_set(self, path: Path, value: Any) -> None:
        value = copy.deepcopy(value)
        with self._lock:
            if len(path) == 1:
                self._data[path[0]] = value
            else:
                parent = self._ensure_path(path[:-1])
                parent[path[-1]] = value
            self._notify_change(ChangeOperation.SET, _change_key(path), value)

    def _apply_remote_delete(self, path: Path) -> None:
        with self._lock:
            if len(path) == 1:
                value = self._data.pop(path[0], None)
            else:
                parent = self.get_in(path[:-1])
                if not isinstance(parent, dict):
                    return
                value = parent.pop(path[-1], None)
            self._notify_change(ChangeOperation.DELETE, _change_key(path), value)

    def _apply_remote_state(self, state: dict[str, Any]) -> None:
        with self._lock:
            self._data = copy.deepcopy(state)
            self._notify_change(ChangeOperation.STATE_SYNC, None, copy.deepcopy(state))

    def _send_state(self) -> None:
        with self._lock:
            self._connection.send(Message.state(self._data))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_path(self, path: Path) -> dict[str, Any]:
        current = self._data
        for segment in path:
            child = current.get(segment)
            if not isinstance(child, dict):
                child = {}
                current[segment] = child
            current = child
        return current

    def _broadcast(self, factory: Callable[..., Message], *args: Any) -> None:
        try:
            self._connection.send(factory(*args))
        except Exception as exc:
            raise SpreadSyncError(f"Failed to broadcast {factory.__name__}: {exc}") from exc

    def _notify_change(self, operation: ChangeOperation, key: str | Path | None, value: Any) -> None:
        for handler in list(self._change_handlers):
            try:
                handler(operation, key, value)
            except Exception:
                _logger.warning("Change handler failed for %s %s", operation, key, exc_info=True)
