"""Wire messages exchanged through the relay.

Every frame is one JSON object ``{"type": <kind>, "data": <payload>}``:

========================  =================================
type                      data
========================  =================================
``set``                   ``{"path": [str, ...], "value": Value}``
``delete``                ``{"path": [str, ...]}``
``request_state``         ``{}``
``state``                 ``{"state": {...}}``
``ping`` / ``pong``       ``{}``
========================  =================================

Unknown ``type`` values decode fine and are simply ignored by the store.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, JsonValue

from spreadsync._normalize import Path, normalize_path, normalize_value
from spreadsync._redact import truncate_for_log
from spreadsync.exceptions import SpreadInvalidMessageError


class MessageType(StrEnum):
    SET = "set"
    DELETE = "delete"
    REQUEST_STATE = "request_state"
    STATE = "state"
    PING = "ping"
    PONG = "pong"


class Message(BaseModel):
    """A single protocol message."""

    model_config = ConfigDict(frozen=True)

    type: str
    data: dict[str, JsonValue] = Field(default_factory=dict)

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def set(cls, path: Iterable[Any], value: Any) -> Message:
        return cls(
            type=MessageType.SET.value,
            data={"path": list(normalize_path(path)), "value": normalize_value(value)},
        )

    @classmethod
    def delete(cls, path: Iterable[Any]) -> Message:
        return cls(type=MessageType.DELETE.value, data={"path": list(normalize_path(path))})

    @classmethod
    def request_state(cls) -> Message:
        return cls(type=MessageType.REQUEST_STATE.value)

    @classmethod
    def state(cls, state: Mapping[str, Any]) -> Message:
        return cls(type=MessageType.STATE.value, data={"state": normalize_value(state)})

    @classmethod
    def ping(cls) -> Message:
        return cls(type=MessageType.PING.value)

    @classmethod
    def pong(cls) -> Message:
        return cls(type=MessageType.PONG.value)

    # ------------------------------------------------------------------
    # Payload accessors
    # ------------------------------------------------------------------

    @property
    def kind(self) -> MessageType | None:
        """The known message kind, or ``None`` for an unrecognised ``type``."""
        try:
            return MessageType(self.type)
        except ValueError:
            return None

    @property
    def path(self) -> Path:
        """Normalized ``data.path`` of a set/delete message."""
        raw = self.data.get("path")
        if not isinstance(raw, list) or not raw:
            raise SpreadInvalidMessageError(f"{self.type} message has no usable path: {raw!r}")
        if any(isinstance(segment, (dict, list)) for segment in raw):
            raise SpreadInvalidMessageError(f"{self.type} message path has non-scalar segments: {raw!r}")
        return normalize_path(raw)

    @property
    def value(self) -> Any:
        """``data.value`` of a set message (``None`` when absent)."""
        return self.data.get("value")

    @property
    def state_data(self) -> dict[str, Any]:
        """``data.state`` of a state message."""
        raw = self.data.get("state")
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise SpreadInvalidMessageError(f"state message payload is not an object: {type(raw).__name__}")
        return raw

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_json(self) -> str:
        return encode(self)

    @classmethod
    def parse(cls, text: str | bytes) -> Message:
        return decode(text)


def encode(message: Message) -> str:
    """Serialize *message* to its compact JSON frame."""
    return json.dumps({"type": message.type, "data": message.data}, separators=(",", ":"))


def decode(text: str | bytes) -> Message:
    """Parse a JSON frame into a :class:`Message`.

    Raises :class:`SpreadInvalidMessageError` when the frame is not JSON,
    not an object, lacks a ``type`` or carries a non-object ``data``.
    A missing or ``null`` ``data`` field decodes as ``{}``.
    """
    try:
        parsed = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise SpreadInvalidMessageError(f"Invalid JSON: {exc}", raw=truncate_for_log(text)) from exc

    if not isinstance(parsed, dict):
        raise SpreadInvalidMessageError(
            f"Message must be a JSON object, got {type(parsed).__name__}",
            raw=truncate_for_log(text),
        )

    msg_type = parsed.get("type")
    if not msg_type:
        raise SpreadInvalidMessageError("Missing type field", raw=truncate_for_log(text))
    if not isinstance(msg_type, str):
        raise SpreadInvalidMessageError(
            f"type field must be a string, got {type(msg_type).__name__}",
            raw=truncate_for_log(text),
        )

    data = parsed.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise SpreadInvalidMessageError(
            f"data field must be an object, got {type(data).__name__}",
            raw=truncate_for_log(text),
        )

    return Message(type=msg_type, data=data)
