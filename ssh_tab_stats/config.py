"""Runtime configuration for the stats engine."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import voluptuous as vol

from .models import TransportKind

_LOGGER = logging.getLogger(__name__)

DEFAULT_POLLING_INTERVAL_MS = 3000
MIN_POLLING_INTERVAL_MS = 1000
MAX_POLLING_INTERVAL_MS = 20000
DEFAULT_POLLING_INTERVAL_SEC = 3

DEFAULT_MQTT_PREFIX = "ssh_tab_stats"
DEFAULT_WS_PORT = 8098


class StatsConfig:
    """Process wide settings shared with a scheduler.

    Holds the active connection id and the polling interval. An instance is
    passed to each :class:`~ssh_tab_stats.scheduler.StatsScheduler` so several
    independent schedulers can coexist.
    """

    def __init__(
        self,
        polling_interval_ms: int = DEFAULT_POLLING_INTERVAL_MS,
        active_connection: Optional[str] = None,
    ) -> None:
        self._active_connection = active_connection
        self._polling_interval_ms = DEFAULT_POLLING_INTERVAL_MS
        self.set_polling_interval_ms(polling_interval_ms)

    def set_active_connection(self, connection_id: Optional[str]) -> None:
        self._active_connection = None if connection_id is None else str(connection_id)

    def get_active_connection(self) -> Optional[str]:
        return self._active_connection

    def is_active(self, connection_id: str) -> bool:
        return self._active_connection == str(connection_id)

    def set_polling_interval_ms(self, interval_ms: int) -> None:
        """Store *interval_ms* clamped to the supported range."""
        self._polling_interval_ms = max(
            MIN_POLLING_INTERVAL_MS, min(MAX_POLLING_INTERVAL_MS, int(interval_ms))
        )

    def get_polling_interval_ms(self) -> int:
        return self._polling_interval_ms

    def set_polling_interval_seconds(self, value: Any) -> None:
        """Set the interval from a status bar setting given in whole seconds."""
        try:
            seconds = int(value)
        except (TypeError, ValueError):
            seconds = 0
        seconds = seconds or DEFAULT_POLLING_INTERVAL_SEC
        seconds = max(1, min(20, seconds))
        self.set_polling_interval_ms(seconds * 1000)


CONNECTION_SCHEMA = vol.Schema(
    {
        vol.Required("name"): vol.Coerce(str),
        vol.Required("host"): str,
        vol.Required("username"): str,
        vol.Optional("password"): vol.Any(None, str),
        vol.Optional("key"): vol.Any(None, str),
        vol.Optional("port", default=22): vol.All(vol.Coerce(int), vol.Range(min=1, max=65535)),
        vol.Optional("transport", default=TransportKind.DIRECT.value): vol.In(
            [kind.value for kind in TransportKind]
        ),
    },
    extra=vol.REMOVE_EXTRA,
)


@dataclass
class Settings:
    """Service settings read from the environment."""

    connections: List[Dict[str, Any]] = field(default_factory=list)
    polling_interval_ms: int = DEFAULT_POLLING_INTERVAL_MS
    active_connection: Optional[str] = None
    mqtt_host: Optional[str] = None
    mqtt_port: int = 1883
    mqtt_user: Optional[str] = None
    mqtt_pass: Optional[str] = None
    mqtt_prefix: str = DEFAULT_MQTT_PREFIX
    ws_host: Optional[str] = None
    ws_port: int = DEFAULT_WS_PORT

    def stats_config(self) -> StatsConfig:
        return StatsConfig(self.polling_interval_ms, self.active_connection)


def parse_connections(raw: str) -> List[Dict[str, Any]]:
    """Validate the ``CONNECTIONS_JSON`` payload.

    Invalid entries are skipped with a warning so one typo does not stop the
    remaining connections from being monitored.
    """
    try:
        entries = json.loads(raw or "[]")
    except ValueError as err:
        _LOGGER.error("CONNECTIONS_JSON is not valid JSON: %s", err)
        return []
    if not isinstance(entries, list):
        _LOGGER.error("CONNECTIONS_JSON must be a list, got %s", type(entries).__name__)
        return []
    connections: List[Dict[str, Any]] = []
    for entry in entries:
        try:
            connections.append(CONNECTION_SCHEMA(entry))
        except vol.Invalid as err:
            _LOGGER.warning("Skipping invalid connection %s: %s", entry, err)
    return connections


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from *env* (defaults to ``os.environ``)."""
    env = os.environ if env is None else env
    mqtt_host = env.get("MQTT_HOST") or None
    connections = parse_connections(env.get("CONNECTIONS_JSON", "[]"))
    active = env.get("ACTIVE_CONNECTION") or None
    if active is None and connections:
        active = connections[0]["name"]
    return Settings(
        connections=connections,
        polling_interval_ms=int(env.get("POLL_INTERVAL_MS", DEFAULT_POLLING_INTERVAL_MS)),
        active_connection=active,
        mqtt_host=mqtt_host,
        mqtt_port=int(env.get("MQTT_PORT", "1883")),
        mqtt_user=env.get("MQTT_USER") or None,
        mqtt_pass=env.get("MQTT_PASS") or None,
        mqtt_prefix=env.get("MQTT_PREFIX") or DEFAULT_MQTT_PREFIX,
        ws_host=env.get("WS_HOST") or None,
        ws_port=int(env.get("WS_PORT", DEFAULT_WS_PORT)),
    )
