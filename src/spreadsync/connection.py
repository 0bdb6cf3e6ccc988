"""Relay connection lifecycle: connect, send, close and auto-reconnect."""

from __future__ import annotations

import logging
import threading
import time
from urllib.parse import urlsplit

from spreadsync._constants import SUPPORTED_SCHEMES
from spreadsync._redact import redact_url
from spreadsync._transport import Transport, TransportFactory, WebSocketTransport
from spreadsync.config import SpreadConfig
from spreadsync.events import CloseHandler, ConnectionState, ErrorHandler, MessageHandler, OpenHandler
from spreadsync.exceptions import (
    SpreadClosedError,
    SpreadConfigError,
    SpreadConnectionError,
    SpreadInvalidMessageError,
    SpreadTimeoutError,
)
from spreadsync.message import Message, decode, encode

_logger = logging.getLogger(__name__)


def _validate_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme not in SUPPORTED_SCHEMES:
        raise SpreadConfigError(f"Relay URL must use ws:// or wss://, got {redact_url(url)!r}")
    if not parts.hostname:
        raise SpreadConfigError(f"Relay URL has no host: {redact_url(url)!r}")
    return url


class Connection:
    """A single websocket connection to the relay.

    Handlers registered with :meth:`on_message`, :meth:`on_close`,
    :meth:`on_error` and :meth:`on_open` are kept in registration order and
    survive reconnects.  Message, close and error handlers run on the
    transport's I/O thread; open handlers run on whichever thread completed
    :meth:`connect` (the caller, or the reconnect timer).

    When ``config.auto_reconnect`` is set, a close that was not requested
    through :meth:`close` schedules a new :meth:`connect` after
    ``config.reconnect_delay`` seconds, retrying until it succeeds or the
    connection is closed.
    """

    def __init__(
        self,
        url: str,
        config: SpreadConfig | None = None,
        *,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._url = _validate_url(url)
        self._config = config or SpreadConfig()
        self._transport_factory: TransportFactory = transport_factory or WebSocketTransport
        self._transport: Transport | None = None
        self._generation = 0
        self._state = ConnectionState.DISCONNECTED
        self._closed = False
        self._lock = threading.RLock()
        self._connect_lock = threading.Lock()
        self._reconnect_timer: threading.Timer | None = None
        self._message_handlers: list[MessageHandler] = []
        self._close_handlers: list[CloseHandler] = []
        self._error_handlers: list[ErrorHandler] = []
        self._open_handlers: list[OpenHandler] = []

    @property
    def url(self) -> str:
        return self._url

    @property
    def config(self) -> SpreadConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def closed(self) -> bool:
        """Whether :meth:`close` has been called."""
        return self._closed

    def is_open(self) -> bool:
        """True only while connected and not explicitly closed."""
        return self._state is ConnectionState.CONNECTED and not self._closed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open the websocket, blocking until the handshake completes.

        Raises
        ------
        SpreadTimeoutError
            The handshake did not finish within ``config.timeout`` seconds.
        SpreadConnectionError
            The transport failed to connect.
        SpreadClosedError
            The connection was explicitly closed.
        """
        with self._connect_lock:
            with self._lock:
                if self._closed:
                    raise SpreadClosedError("Connection is closed")
                if self._state is ConnectionState.CONNECTED:
                    return
                self._cancel_reconnect()
                self._generation += 1
                generation = self._generation
                transport = self._transport_factory(
                    self._url,
                    on_message=lambda text: self._handle_frame(generation, text),
                    on_close=lambda code, reason: self._handle_close(generation, code, reason),
                    on_error=lambda exc: self._handle_transport_error(generation, exc),
                    heartbeat=self._config.heartbeat,
                )
                self._transport = transport
                self._state = ConnectionState.CONNECTING

            _logger.debug("Connecting to %s", redact_url(self._url))
            try:
                transport.open()
                self._wait_for_open(transport)
            except BaseException:
                self._abandon(generation, transport)
                raise

            with self._lock:
                if self._closed or generation != self._generation:
                    self._abandon(generation, transport)
                    raise SpreadClosedError("Connection is closed")
                self._state = ConnectionState.CONNECTED
            _logger.debug("Connected to %s", redact_url(self._url))

        self._dispatch_open()

    def close(self) -> None:
        """Close the connection for good; pending reconnects are cancelled.

        Close handlers are not called from here; they fire when the
        transport reports the socket closed.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._cancel_reconnect()
            transport = self._transport
            self._transport = None
            self._state = ConnectionState.CLOSING
        _logger.debug("Closing connection to %s", redact_url(self._url))
        if transport is not None:
            transport.close()
        self._state = ConnectionState.CLOSED

    def send(self, message: Message | str) -> None:
        """Encode and hand *message* to the transport without waiting for delivery.

        Raises
        ------
        SpreadClosedError
            The connection was explicitly closed.
        SpreadConnectionError
            The connection is not (or no longer) open.
        """
        if self._closed:
            raise SpreadClosedError("Connection is closed")
        transport = self._transport
        if self._state is not ConnectionState.CONNECTED or transport is None:
            raise SpreadConnectionError("Not connected", url=self._url)
        text = message if isinstance(message, str) else encode(message)
        transport.send(text)

    # ------------------------------------------------------------------
    # Handler registration
    # ------------------------------------------------------------------

    def on_message(self, handler: MessageHandler) -> MessageHandler:
        self._message_handlers.append(handler)
        return handler

    def on_close(self, handler: CloseHandler) -> CloseHandler:
        self._close_handlers.append(handler)
        return handler

    def on_error(self, handler: ErrorHandler) -> ErrorHandler:
        self._error_handlers.append(handler)
        return handler

    def on_open(self, handler: OpenHandler) -> OpenHandler:
        self._open_handlers.append(handler)
        return handler

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _wait_for_open(self, transport: Transport) -> None:
        deadline = time.monotonic() + self._config.timeout
        while not transport.is_open:
            failure = transport.failure
            if failure is not None:
                raise SpreadConnectionError(
                    f"Failed to connect to {redact_url(self._url)}: {failure}",
                    url=self._url,
                ) from failure
            if self._closed:
                raise SpreadClosedError("Connection closed while connecting")
            if self._transport is not transport:
                raise SpreadConnectionError(
                    f"Connection to {redact_url(self._url)} closed during handshake",
                    url=self._url,
                )
            if time.monotonic() >= deadline:
                raise SpreadTimeoutError(
                    f"Connection to {redact_url(self._url)} timed out after {self._config.timeout}s",
                    url=self._url,
                )
            time.sleep(self._config.poll_interval)

    def _abandon(self, generation: int, transport: Transport) -> None:
        with self._lock:
            if generation == self._generation:
                # Late events from a handshake we gave up on must not trigger reconnects.
                self._generation += 1
                if self._transport is transport:
                    self._transport = None
                if not self._closed:
                    self._state = ConnectionState.DISCONNECTED
        transport.close()

    def _cancel_reconnect(self) -> None:
        timer = self._reconnect_timer
        self._reconnect_timer = None
        if timer is not None:
            timer.cancel()

    def _schedule_reconnect(self) -> None:
        with self._lock:
            if self._closed or not self._config.auto_reconnect:
                return
            self._cancel_reconnect()
            timer = threading.Timer(self._config.reconnect_delay, self._reconnect)
            timer.daemon = True
            self._reconnect_timer = timer
        _logger.debug("Reconnect to %s scheduled in %ss", redact_url(self._url), self._config.reconnect_delay)
        timer.start()

    def _reconnect(self) -> None:
        if self._closed:
            return
        try:
            self.connect()
        except SpreadClosedError:
            return
        except SpreadConnectionError as exc:
            _logger.warning("Reconnect to %s failed: %s", redact_url(self._url), exc)
            self._schedule_reconnect()
        except Exception:
            _logger.exception("Unexpected error while reconnecting to %s", redact_url(self._url))
            self._schedule_reconnect()

    def _handle_frame(self, generation: int, text: str) -> None:
        if generation != self._generation:
            return
        try:
            message = decode(text)
        except SpreadInvalidMessageError as exc:
            _logger.debug("Dropping malformed frame: %s", exc)
            self._dispatch_error(exc)
            return
        for handler in list(self._message_handlers):
            try:
                handler(message)
            except Exception as exc:
                _logger.warning("Message handler failed for %s message", message.type, exc_info=True)
                self._dispatch_error(exc)

    def _handle_close(self, generation: int, code: int, reason: str) -> None:
        with self._lock:
            if generation != self._generation:
                return
            # A close racing the handshake is reported by connect() itself.
            was_connected = self._state is ConnectionState.CONNECTED
            self._transport = None
            self._state = ConnectionState.CLOSED
            user_closed = self._closed
        _logger.debug("Connection to %s closed code=%s reason=%s", redact_url(self._url), code, reason)
        for handler in list(self._close_handlers):
            try:
                handler(code, reason)
            except Exception:
                _logger.warning("Close handler failed", exc_info=True)
        if was_connected and not user_closed:
            self._schedule_reconnect()

    def _handle_transport_error(self, generation: int, exc: BaseException) -> None:
        if generation != self._generation:
            return
        self._dispatch_error(exc)

    def _dispatch_error(self, exc: BaseException) -> None:
        for handler in list(self._error_handlers):
            try:
                handler(exc)
            except Exception:
                _logger.warning("Error handler failed", exc_info=True)

    def _dispatch_open(self) -> None:
        for handler in list(self._open_handlers):
            try:
                handler()
            except Exception:
                _logger.warning("Open handler failed", exc_info=True)
