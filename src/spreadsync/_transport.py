"""Websocket transport running aiohttp on a private event-loop thread."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Callable
from typing import Protocol

import aiohttp

from spreadsync._constants import (
    ABNORMAL_CLOSURE,
    CLOSE_HANDSHAKE_TIMEOUT,
    NORMAL_CLOSURE,
    TRANSPORT_JOIN_TIMEOUT,
)
from spreadsync._redact import redact_url, truncate_for_log
from spreadsync.exceptions import SpreadConnectionError

_logger = logging.getLogger(__name__)

FrameCallback = Callable[[str], None]
CloseCallback = Callable[[int, str], None]
ErrorCallback = Callable[[BaseException], None]


class Transport(Protocol):
    """Structural transport interface used by :class:`~spreadsync.connection.Connection`.

    ``open`` only starts the handshake; the connection polls ``is_open`` and
    ``failure`` until one of them flips.  Callbacks may fire from any thread.
    """

    @property
    def is_open(self) -> bool: ...

    @property
    def failure(self) -> BaseException | None: ...

    def open(self) -> None: ...

    def send(self, text: str) -> None: ...

    def close(self) -> None: ...


class TransportFactory(Protocol):
    def __call__(
        self,
        url: str,
        *,
        on_message: FrameCallback,
        on_close: CloseCallback,
        on_error: ErrorCallback,
        heartbeat: float | None = None,
    ) -> Transport: ...


class WebSocketTransport:
    """Threaded aiohttp websocket client.

    All socket I/O happens on one daemon thread owning its own event loop.
    Outbound frames go through an :class:`asyncio.Queue` drained by a single
    writer task, so they hit the wire in submission order.  A user
    :meth:`close` is queued behind pending frames and performs the close
    handshake, so the peer sees a normal closure.  ``on_close`` is
    only reported for sockets that actually completed the handshake; a
    failed handshake is exposed through :attr:`failure` instead.
    """

    def __init__(
        self,
        url: str,
        *,
        on_message: FrameCallback,
        on_close: CloseCallback,
        on_error: ErrorCallback,
        heartbeat: float | None = None,
    ) -> None:
        self._url = url
        self._on_message = on_message
        self._on_close = on_close
        self._on_error = on_error
        self._heartbeat = heartbeat
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._main_task: asyncio.Task[None] | None = None
        self._outbox: asyncio.Queue[str | None] | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._opened = threading.Event()
        self._failure: BaseException | None = None
        self._closing = False

    @property
    def is_open(self) -> bool:
        """Whether the handshake completed and the socket has not closed yet."""
        return self._opened.is_set() and not self._closing

    @property
    def failure(self) -> BaseException | None:
        """Error that prevented the handshake from completing, if any."""
        return self._failure

    def open(self) -> None:
        """Start the I/O thread and begin the websocket handshake."""
        if self._thread is not None:
            return
        loop = asyncio.new_event_loop()
        self._loop = loop
        self._thread = threading.Thread(
            target=self._run,
            args=(loop,),
            name="spreadsync-transport",
            daemon=True,
        )
        self._thread.start()

    def send(self, text: str) -> None:
        """Queue *text* for delivery; does not wait for the write."""
        loop = self._loop
        outbox = self._outbox
        if loop is None or outbox is None or not self.is_open:
            raise SpreadConnectionError("Websocket is not open", url=self._url)
        try:
            loop.call_soon_threadsafe(outbox.put_nowait, text)
        except RuntimeError as exc:
            # Loop already shut down underneath us.
            raise SpreadConnectionError(f"Websocket is not open: {exc}", url=self._url) from exc

    def close(self) -> None:
        """Close the socket (or abort the handshake) and stop the I/O thread."""
        self._closing = True
        loop = self._loop
        thread = self._thread
        if loop is None or thread is None:
            return
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(self._begin_shutdown)
        if threading.current_thread() is not thread:
            thread.join(TRANSPORT_JOIN_TIMEOUT)

    # ------------------------------------------------------------------
    # I/O thread
    # ------------------------------------------------------------------

    def _run(self, loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            self._main_task = loop.create_task(self._main())
            loop.run_until_complete(self._main_task)
        except asyncio.CancelledError:
            pass
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            _logger.debug("Websocket I/O thread stopped url=%s", redact_url(self._url))

    def _begin_shutdown(self) -> None:
        outbox = self._outbox
        if outbox is not None:
            # Sentinel: the writer flushes earlier frames, then closes the socket.
            outbox.put_nowait(None)
            return
        task = self._main_task
        if task is not None and not task.done():
            task.cancel()

    async def _main(self) -> None:
        if self._closing:
            return
        code = NORMAL_CLOSURE
        reason = "Connection closed"
        _logger.debug("Websocket handshake started url=%s", redact_url(self._url))
        try:
            async with aiohttp.ClientSession() as http:
                try:
                    ws = await http.ws_connect(self._url, heartbeat=self._heartbeat)
                except (aiohttp.ClientError, OSError) as exc:
                    _logger.debug("Websocket handshake failed url=%s", redact_url(self._url), exc_info=True)
                    self._failure = exc
                    return

                self._ws = ws
                self._outbox = asyncio.Queue()
                self._opened.set()
                _logger.debug("Websocket open url=%s", redact_url(self._url))
                writer = asyncio.create_task(self._write_loop(ws, self._outbox))
                try:
                    await self._read_loop(ws)
                finally:
                    if self._closing and not writer.done():
                        await asyncio.wait({writer}, timeout=CLOSE_HANDSHAKE_TIMEOUT)
                    writer.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await writer
                    if not ws.closed:
                        await ws.close()
                    if not self._closing:
                        if ws.close_code is not None:
                            code = ws.close_code
                        else:
                            code = ABNORMAL_CLOSURE
                            reason = "Connection lost"
        finally:
            was_open = self._opened.is_set()
            self._closing = True
            self._ws = None
            if was_open:
                _logger.debug("Websocket closed url=%s code=%s", redact_url(self._url), code)
                self._notify_close(code, reason)

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._deliver(msg.data)
            elif msg.type == aiohttp.WSMsgType.BINARY:
                self._deliver(msg.data.decode("utf-8", errors="replace"))
            elif msg.type == aiohttp.WSMsgType.ERROR:
                exc = ws.exception()
                if exc is not None:
                    self._notify_error(exc)
                break

    async def _write_loop(self, ws: aiohttp.ClientWebSocketResponse, outbox: asyncio.Queue[str | None]) -> None:
        while True:
            text = await outbox.get()
            if text is None:
                _logger.debug("Websocket close requested url=%s", redact_url(self._url))
                await ws.close(code=NORMAL_CLOSURE)
                return
            try:
                await ws.send_str(text)
            except (aiohttp.ClientError, ConnectionError) as exc:
                self._notify_error(SpreadConnectionError(f"Failed to write frame: {exc}", url=self._url))
                return
            _logger.debug("Websocket sent frame=%s", truncate_for_log(text))

    def _deliver(self, text: str) -> None:
        _logger.debug("Websocket received frame=%s", truncate_for_log(text))
        try:
            self._on_message(text)
        except Exception:
            _logger.exception("Unhandled error in websocket frame callback")

    def _notify_close(self, code: int, reason: str) -> None:
        try:
            self._on_close(code, reason)
        except Exception:
            _logger.exception("Unhandled error in websocket close callback")

    def _notify_error(self, exc: BaseException) -> None:
        try:
            self._on_error(exc)
        except Exception:
            _logger.exception("Unhandled error in websocket error callback")
