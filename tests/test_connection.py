from __future__ import annotations

import logging
from typing import Any

import pytest
from conftest import FakeTransportFactory, wait_until

from spreadsync.config import SpreadConfig
from spreadsync.connection import Connection
from spreadsync.events import ConnectionState
from spreadsync.exceptions import (
    SpreadClosedError,
    SpreadConfigError,
    SpreadConnectionError,
    SpreadInvalidMessageError,
    SpreadTimeoutError,
)
from spreadsync.message import Message, MessageType

URL = "ws://relay.test:8080"


def _fast_config(**overrides: Any) -> SpreadConfig:
    options: dict[str, Any] = {"timeout": 0.2, "poll_interval": 0.01, "reconnect_delay": 0.01}
    options.update(overrides)
    return SpreadConfig(**options)


def _connection(factory: FakeTransportFactory, **overrides: Any) -> Connection:
    return Connection(URL, _fast_config(**overrides), transport_factory=factory)


@pytest.mark.parametrize("url", ["http://relay.test", "relay.test:8080", "ws://"])
def test_rejects_non_websocket_urls(url: str) -> None:
    with pytest.raises(SpreadConfigError):
        Connection(url)


def test_connect_opens_transport(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory, heartbeat=15.0)
    assert connection.state is ConnectionState.DISCONNECTED

    connection.connect()

    assert connection.state is ConnectionState.CONNECTED
    assert connection.is_open()
    assert transport_factory.last.url == URL
    assert transport_factory.last.heartbeat == 15.0


def test_connect_is_idempotent(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)

    connection.connect()
    connection.connect()

    assert len(transport_factory.transports) == 1


def test_connect_failure_wraps_cause() -> None:
    factory = FakeTransportFactory("fail")
    connection = _connection(factory, auto_reconnect=False)

    with pytest.raises(SpreadConnectionError) as excinfo:
        connection.connect()

    assert not isinstance(excinfo.value, SpreadTimeoutError)
    assert isinstance(excinfo.value.__cause__, ConnectionRefusedError)
    assert excinfo.value.url == URL
    assert connection.state is ConnectionState.DISCONNECTED


def test_connect_times_out_when_handshake_never_completes() -> None:
    factory = FakeTransportFactory("hang")
    connection = _connection(factory, timeout=0.05)

    with pytest.raises(SpreadTimeoutError):
        connection.connect()

    assert factory.last.close_calls == 1
    assert not connection.is_open()


def test_connect_after_close_raises(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)
    connection.close()

    with pytest.raises(SpreadClosedError):
        connection.connect()


def test_send_requires_open_connection(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)

    with pytest.raises(SpreadConnectionError, match="Not connected"):
        connection.send(Message.ping())


def test_send_after_close_raises_closed(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)
    connection.connect()
    connection.close()

    with pytest.raises(SpreadClosedError):
        connection.send(Message.ping())


def test_send_encodes_messages_in_order(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)
    connection.connect()

    connection.send(Message.set(["a"], 1))
    connection.send('{"type":"pong","data":{}}')

    assert transport_factory.last.sent == [
        '{"type":"set","data":{"path":["a"],"value":1}}',
        '{"type":"pong","data":{}}',
    ]


def test_frames_fan_out_to_message_handlers_in_order(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)
    received: list[tuple[str, Any]] = []
    connection.on_message(lambda m: received.append(("first", m.kind)))
    connection.on_message(lambda m: received.append(("second", m.kind)))
    connection.connect()

    transport_factory.last.receive('{"type":"ping"}')

    assert received == [("first", MessageType.PING), ("second", MessageType.PING)]


def test_malformed_frames_go_to_error_handlers(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)
    messages: list[Message] = []
    errors: list[BaseException] = []
    connection.on_message(messages.append)
    connection.on_error(errors.append)
    connection.connect()

    transport_factory.last.receive("invalid json")
    transport_factory.last.receive('{"data":{}}')
    transport_factory.last.receive('{"type":"ping"}')

    assert len(messages) == 1
    assert len(errors) == 2
    assert all(isinstance(e, SpreadInvalidMessageError) for e in errors)


def test_deeply_nested_frame_goes_to_error_handlers(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)
    messages: list[Message] = []
    errors: list[BaseException] = []
    connection.on_message(messages.append)
    connection.on_error(errors.append)
    connection.connect()

    depth = 100_000
    transport_factory.last.receive('{"type":"set","data":{"path":["a"],"value":' + "[" * depth + "]" * depth + "}}")

    assert messages == []
    assert len(errors) == 1
    assert isinstance(errors[0], SpreadInvalidMessageError)
    assert connection.is_open()


def test_failing_message_handler_is_isolated(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)
    received: list[Message] = []
    errors: list[BaseException] = []

    def broken(_message: Message) -> None:
        raise RuntimeError("boom")

    connection.on_message(broken)
    connection.on_message(received.append)
    connection.on_error(errors.append)
    connection.connect()

    transport_factory.last.receive('{"type":"ping"}')

    assert len(received) == 1
    assert [str(e) for e in errors] == ["boom"]


def test_transport_errors_reach_error_handlers(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)
    errors: list[BaseException] = []
    connection.on_error(errors.append)
    connection.connect()

    failure = OSError("reset")
    transport_factory.last.on_error(failure)

    assert errors == [failure]


def test_open_handlers_run_after_connect(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)
    seen: list[bool] = []
    connection.on_open(lambda: seen.append(connection.is_open()))

    connection.connect()

    assert seen == [True]


def test_close_is_idempotent_and_close_handlers_fire_once(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)
    closes: list[tuple[int, str]] = []
    connection.on_close(lambda code, reason: closes.append((code, reason)))
    connection.connect()

    connection.close()
    connection.close()

    assert closes == [(1000, "Connection closed")]
    assert transport_factory.last.close_calls == 1
    assert connection.state is ConnectionState.CLOSED
    assert not connection.is_open()


def test_user_close_does_not_reconnect(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)
    connection.connect()

    connection.close()

    assert not wait_until(lambda: len(transport_factory.transports) > 1, timeout=0.1)


def test_remote_close_triggers_reconnect(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)
    closes: list[tuple[int, str]] = []
    opens: list[int] = []
    connection.on_close(lambda code, reason: closes.append((code, reason)))
    connection.on_open(lambda: opens.append(len(transport_factory.transports)))
    connection.connect()

    transport_factory.last.drop()

    assert closes == [(1006, "Connection lost")]
    assert wait_until(lambda: len(opens) == 2)
    assert connection.is_open()
    assert len(transport_factory.transports) == 2
    assert opens == [1, 2]
    connection.close()


def test_reconnect_keeps_retrying_until_success() -> None:
    factory = FakeTransportFactory("open", "fail", "hang", "open")
    connection = _connection(factory, timeout=0.05)
    connection.connect()

    factory.last.drop()

    assert wait_until(lambda: len(factory.transports) == 4 and connection.is_open())
    connection.close()


def test_reconnect_survives_unexpected_errors(caplog: pytest.LogCaptureFixture) -> None:
    factory = FakeTransportFactory("open", "explode", "open")
    connection = _connection(factory)
    connection.connect()

    with caplog.at_level(logging.ERROR, logger="spreadsync.connection"):
        factory.last.drop()

        assert wait_until(lambda: len(factory.transports) == 3 and connection.is_open())
    assert any("Unexpected error while reconnecting" in r.getMessage() for r in caplog.records)
    connection.close()


def test_reconnect_disabled(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory, auto_reconnect=False)
    connection.connect()

    transport_factory.last.drop()

    assert connection.state is ConnectionState.CLOSED
    assert not wait_until(lambda: len(transport_factory.transports) > 1, timeout=0.1)


def test_close_cancels_pending_reconnect(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory, reconnect_delay=0.2)
    connection.connect()

    transport_factory.last.drop()
    connection.close()

    assert not wait_until(lambda: len(transport_factory.transports) > 1, timeout=0.4)


def test_events_from_superseded_transport_are_ignored(transport_factory: FakeTransportFactory) -> None:
    connection = _connection(transport_factory)
    received: list[Message] = []
    connection.on_message(received.append)
    connection.connect()
    stale = transport_factory.last
    stale.drop()
    assert wait_until(connection.is_open)

    stale.receive('{"type":"ping"}')
    stale.on_close(1006, "late")

    assert received == []
    assert connection.is_open()
    connection.close()
