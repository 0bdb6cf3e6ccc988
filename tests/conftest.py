from __future__ import annotations

import time
from collections.abc import Callable

import pytest

from spreadsync.exceptions import SpreadConnectionError


class FakeTransport:
    """In-memory stand-in for the websocket transport.

    ``mode`` decides what ``open()`` does: ``"open"`` completes the
    handshake, ``"fail"`` records a failure, ``"hang"`` never finishes and
    ``"explode"`` raises an unexpected error.
    """

    def __init__(
        self,
        url: str,
        *,
        on_message: Callable[[str], None],
        on_close: Callable[[int, str], None],
        on_error: Callable[[BaseException], None],
        heartbeat: float | None = None,
        mode: str = "open",
    ) -> None:
        self.url = url
        self.on_message = on_message
        self.on_close = on_close
        self.on_error = on_error
        self.heartbeat = heartbeat
        self.mode = mode
        self.sent: list[str] = []
        self.failure: BaseException | None = None
        self.close_calls = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        if self.mode == "open":
            self._open = True
        elif self.mode == "fail":
            self.failure = ConnectionRefusedError("connection refused")
        elif self.mode == "explode":
            raise RuntimeError("transport blew up")

    def send(self, text: str) -> None:
        if not self._open:
            raise SpreadConnectionError("Websocket is not open")
        self.sent.append(text)

    def close(self) -> None:
        self.close_calls += 1
        if self._open:
            self._open = False
            self.on_close(1000, "Connection closed")

    # Test helpers -----------------------------------------------------

    def receive(self, text: str) -> None:
        self.on_message(text)

    def drop(self, code: int = 1006, reason: str = "Connection lost") -> None:
        self._open = False
        self.on_close(code, reason)


class FakeTransportFactory:
    """Creates :class:`FakeTransport` objects, one per connect attempt.

    ``modes`` is consumed in order; once empty every transport opens.
    """

    def __init__(self, *modes: str) -> None:
        self.modes = list(modes)
        self.transports: list[FakeTransport] = []

    def __call__(self, url: str, **kwargs: object) -> FakeTransport:
        mode = self.modes.pop(0) if self.modes else "open"
        transport = FakeTransport(url, mode=mode, **kwargs)  # type: ignore[arg-type]
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()
