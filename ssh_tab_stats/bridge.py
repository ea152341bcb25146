import asyncio
import json
import logging
from typing import Any, Optional, Set

import websockets

from .models import MetricsSnapshot
from .publisher import SnapshotPublisher, event_name

_LOGGER = logging.getLogger(__name__)


class StatsBridge(SnapshotPublisher):
    """Websocket bridge between the stats loops and the presentation layer.

    Every snapshot is broadcast to all connected clients as
    ``{"event": "stats-update:<id>", "data": {...}}``. Clients steer the
    scheduler with JSON messages:

    * ``{"action": "set_active", "connection": "<id>"}`` switches the tab
      whose stats are polled.
    * ``{"action": "set_interval", "seconds": 5}`` changes the cadence.
    """

    def __init__(self, scheduler: Any = None) -> None:
        self.scheduler = scheduler
        self.clients: Set[Any] = set()

    def publish(self, connection_id: str, snapshot: MetricsSnapshot) -> None:
        if not self.clients:
            return
        message = json.dumps({"event": event_name(connection_id), "data": snapshot.as_dict()})
        websockets.broadcast(self.clients, message)

    def handle_message(self, raw: str) -> Optional[str]:
        """Apply a control message, returning an error text when it is invalid."""
        try:
            message = json.loads(raw)
        except ValueError:
            return "Invalid message"
        if not isinstance(message, dict) or self.scheduler is None:
            return "Invalid message"

        action = message.get("action")
        if action == "set_active":
            connection_id = message.get("connection")
            if connection_id is None:
                return "Missing connection"
            self.scheduler.activate(str(connection_id))
            _LOGGER.debug("Active stats connection is now %s", connection_id)
            return None
        if action == "set_interval":
            self.scheduler.config.set_polling_interval_seconds(message.get("seconds"))
            return None
        return f"Unknown action: {action}"

    async def _handler(self, websocket) -> None:
        self.clients.add(websocket)
        try:
            async for raw in websocket:
                error = self.handle_message(raw)
                if error:
                    await websocket.send(json.dumps({"error": error}))
        except websockets.ConnectionClosed as exc:  # pragma: no cover - client went away
            _LOGGER.debug("Bridge client disconnected: %s", exc)
        finally:
            self.clients.discard(websocket)

    async def serve(self, host: str = "0.0.0.0", port: int = 8098) -> None:
        """Serve the bridge until cancelled."""
        async with websockets.serve(self._handler, host, port):
            _LOGGER.info("Stats bridge listening on %s:%s", host, port)
            await asyncio.Future()
