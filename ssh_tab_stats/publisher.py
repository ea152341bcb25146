"""Hand snapshots over to whatever renders them."""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, Optional

import paho.mqtt.client as mqtt

from .models import MetricsSnapshot

_LOGGER = logging.getLogger(__name__)

EVENT_PREFIX = "stats-update"


def event_name(connection_id: str) -> str:
    """Return the event a snapshot for *connection_id* is published under."""
    return f"{EVENT_PREFIX}:{connection_id}"


class SnapshotPublisher:
    """Base class for snapshot sinks."""

    def publish(self, connection_id: str, snapshot: MetricsSnapshot) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release resources held by the publisher."""


class LogPublisher(SnapshotPublisher):
    """Write snapshots to the log; used when no broker is configured."""

    def publish(self, connection_id: str, snapshot: MetricsSnapshot) -> None:
        _LOGGER.info("Stats for %s: %s", connection_id, snapshot.as_dict())


class CallbackPublisher(SnapshotPublisher):
    """Forward ``(event, payload)`` to a plain callable."""

    def __init__(self, callback: Callable[[str, Dict[str, Any]], None]) -> None:
        self._callback = callback

    def publish(self, connection_id: str, snapshot: MetricsSnapshot) -> None:
        self._callback(event_name(connection_id), snapshot.as_dict())


class MultiPublisher(SnapshotPublisher):
    """Fan a snapshot out to several publishers.

    A failing publisher is logged and skipped; it never stops the others.
    """

    def __init__(self, publishers: Iterable[SnapshotPublisher]) -> None:
        self.publishers = list(publishers)

    def publish(self, connection_id: str, snapshot: MetricsSnapshot) -> None:
        for publisher in self.publishers:
            try:
                publisher.publish(connection_id, snapshot)
            except Exception as err:  # pragma: no cover - sink specific
                _LOGGER.error(
                    "%s failed for %s: %s", type(publisher).__name__, connection_id, err
                )

    def close(self) -> None:
        for publisher in self.publishers:
            publisher.close()


class MqttPublisher(SnapshotPublisher):
    """Publish snapshots as JSON to ``<prefix>/<connection>/state``."""

    def __init__(self, client: mqtt.Client, prefix: str) -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def connect(
        cls,
        host: str,
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        prefix: str = "ssh_tab_stats",
    ) -> Optional["MqttPublisher"]:
        """Connect to the broker, returning ``None`` if that is not possible."""
        client = mqtt.Client(callback_api_version=mqtt.CallbackAPIVersion.VERSION2)
        if username:
            client.username_pw_set(username, password)
        try:
            rc = client.connect(host, port, 60)
        except Exception as exc:  # pragma: no cover - connection best effort
            _LOGGER.error("MQTT connection failed: %s", exc)
            return None

        if rc == mqtt.MQTT_ERR_SUCCESS:
            _LOGGER.info("Connected to MQTT broker at %s:%s", host, port)
            client.loop_start()
            return cls(client, prefix)

        _LOGGER.error("Failed to connect to MQTT broker: %s", mqtt.error_string(rc))
        return None

    def topic(self, connection_id: str) -> str:
        return f"{self._prefix}/{connection_id}/state"

    def publish(self, connection_id: str, snapshot: MetricsSnapshot) -> None:
        payload = {"event": event_name(connection_id), **snapshot.as_dict()}
        info = self._client.publish(self.topic(connection_id), json.dumps(payload), retain=False)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            _LOGGER.error(
                "Failed to publish stats for %s: %s",
                connection_id,
                mqtt.error_string(info.rc),
            )
        else:
            _LOGGER.debug("Published stats for %s", connection_id)

    def close(self) -> None:
        self._client.loop_stop()
        self._client.disconnect()
