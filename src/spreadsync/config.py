"""Client configuration for spreadsync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from spreadsync._constants import DEFAULT_POLL_INTERVAL, DEFAULT_RECONNECT_DELAY, DEFAULT_TIMEOUT
from spreadsync.exceptions import SpreadConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise SpreadConfigError(f"{name} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class SpreadConfig:
    """Connection and replication options.

    Parameters
    ----------
    timeout : float
        Seconds ``connect()`` waits for the websocket handshake before
        raising :class:`~spreadsync.exceptions.SpreadTimeoutError`.
    auto_reconnect : bool
        Re-open the connection after a close that was not requested by
        the user.
    request_state : bool
        Ask peers for the full state right after every successful open.
    reconnect_delay : float
        Back-off in seconds between reconnect attempts.
    poll_interval : float
        How often ``connect()`` checks whether the handshake finished.
    heartbeat : float or None
        Websocket ping interval handed to aiohttp.  ``None`` disables
        transport-level heartbeats (the protocol's own ping/pong messages
        are unaffected).
    """

    timeout: float = DEFAULT_TIMEOUT
    auto_reconnect: bool = True
    request_state: bool = True
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    poll_interval: float = DEFAULT_POLL_INTERVAL
    heartbeat: float | None = None

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise SpreadConfigError(f"timeout must be positive, got {self.timeout}")
        if self.reconnect_delay < 0:
            raise SpreadConfigError(f"reconnect_delay must not be negative, got {self.reconnect_delay}")
        if self.poll_interval <= 0:
            raise SpreadConfigError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.heartbeat is not None and self.heartbeat <= 0:
            raise SpreadConfigError(f"heartbeat must be positive or None, got {self.heartbeat}")

    @classmethod
    def from_env(cls, **overrides: Any) -> SpreadConfig:
        """Create configuration from ``SPREAD_*`` environment variables.

        Explicit keyword arguments take precedence over the environment.

        Parameters
        ----------
        **overrides
            Explicit field values.

        Returns
        -------
        SpreadConfig
            Populated configuration.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_FLOAT_MAP = {
            "SPREAD_TIMEOUT": "timeout",
            "SPREAD_RECONNECT_DELAY": "reconnect_delay",
            "SPREAD_POLL_INTERVAL": "poll_interval",
            "SPREAD_HEARTBEAT": "heartbeat",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_float(env_key, val)

        if "auto_reconnect" not in overrides:
            config_kwargs["auto_reconnect"] = _env_bool(env.get("SPREAD_AUTO_RECONNECT"), True)
        if "request_state" not in overrides:
            config_kwargs["request_state"] = _env_bool(env.get("SPREAD_REQUEST_STATE"), True)

        config_kwargs.update(overrides)
        return cls(**config_kwargs)
