"""High-level client composing a Connection and its replicated Store."""

from __future__ import annotations

import logging
from typing import Any

from spreadsync._redact import redact_url
from spreadsync._transport import TransportFactory
from spreadsync.config import SpreadConfig
from spreadsync.connection import Connection
from spreadsync.events import CloseHandler, ErrorHandler
from spreadsync.exceptions import SpreadConnectionError
from spreadsync.message import Message
from spreadsync.store import Store

_logger = logging.getLogger(__name__)


class SpreadClient:
    """Client for a spreadsync relay.

    Construction connects immediately (unless ``autoconnect=False``) and,
    unless ``config.request_state`` is off, asks peers for the current state
    after every successful open, including automatic reconnects.

    Usage::

        with SpreadClient("ws://localhost:8080") as client:
            client.store["config"] = {"name": "Peter"}
    """

    def __init__(
        self,
        url: str,
        config: SpreadConfig | None = None,
        *,
        transport_factory: TransportFactory | None = None,
        autoconnect: bool = True,
    ) -> None:
        self._url = url
        self._config = config or SpreadConfig()
        self._connection = Connection(url, self._config, transport_factory=transport_factory)
        self._store = Store(self._connection)
        self._connected = False

        self._connection.on_open(self._handle_open)
        self._connection.on_close(self._handle_disconnect)
        self._connection.on_error(self._handle_error)

        if autoconnect:
            self.connect()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> SpreadClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.disconnect()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def config(self) -> SpreadConfig:
        return self._config

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def store(self) -> Store:
        return self._store

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Connect to the relay; a no-op when already connected."""
        if self._connected and self._connection.is_open():
            return
        try:
            self._connection.connect()
        except SpreadConnectionError:
            _logger.debug("Failed to initialize client for %s", redact_url(self._url), exc_info=True)
            raise

    def disconnect(self) -> None:
        """Close the connection; no further reconnects are attempted."""
        self._connection.close()
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected and self._connection.is_open()

    def on_disconnect(self, handler: CloseHandler) -> CloseHandler:
        """Register *handler* for ``(code, reason)`` close events."""
        return self._connection.on_close(handler)

    def on_error(self, handler: ErrorHandler) -> ErrorHandler:
        """Register *handler* for transport and protocol errors."""
        return self._connection.on_error(handler)

    def ping(self) -> None:
        """Send a protocol-level ping; peers answer with ``pong``."""
        self._connection.send(Message.ping())

    # ------------------------------------------------------------------
    # Internal handlers
    # ------------------------------------------------------------------

    def _handle_open(self) -> None:
        self._connected = True
        if self._config.request_state:
            self._store.request_state()

    def _handle_disconnect(self, code: int, reason: str) -> None:
        self._connected = False
        if self._connection.closed:
            _logger.debug("Disconnected from %s: %s (code: %s)", redact_url(self._url), reason, code)
            return
        _logger.warning("Disconnected from %s: %s (code: %s)", redact_url(self._url), reason, code)

    def _handle_error(self, error: BaseException) -> None:
        _logger.warning("Connection error on %s: %s", redact_url(self._url), error)
