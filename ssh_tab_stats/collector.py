import asyncio
import logging
from typing import Any, Dict, List, Optional

from .bridge import StatsBridge
from .config import Settings, load_settings
from .models import TransportKind
from .publisher import LogPublisher, MqttPublisher, MultiPublisher, SnapshotPublisher
from .scheduler import StatsScheduler
from .transport import BastionTransport, DirectTransport

_LOGGER = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure module wide logging."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


def _setup_publishers(settings: Settings, bridge: Optional[StatsBridge]) -> MultiPublisher:
    """Create the snapshot sinks described by *settings*."""
    publishers: List[SnapshotPublisher] = []
    if settings.mqtt_host:
        mqtt_publisher = MqttPublisher.connect(
            settings.mqtt_host,
            settings.mqtt_port,
            settings.mqtt_user,
            settings.mqtt_pass,
            settings.mqtt_prefix,
        )
        if mqtt_publisher:
            publishers.append(mqtt_publisher)
    if bridge is not None:
        publishers.append(bridge)
    if not publishers:
        logging.info("MQTT and bridge disabled; stats will be printed to log")
        publishers.append(LogPublisher())
    return MultiPublisher(publishers)


async def _open_transport(conn: Dict[str, Any]) -> Any:
    kind = TransportKind(conn["transport"])
    args = (
        conn["host"],
        conn["username"],
        conn.get("password"),
        conn.get("key"),
        int(conn.get("port", 22)),
    )
    if kind is TransportKind.BASTION:
        return await asyncio.to_thread(BastionTransport.connect, *args)
    return await DirectTransport.connect(*args)


async def run(settings: Settings) -> None:
    """Open every configured connection and keep the stats loops running."""
    if not settings.connections:
        logging.warning("No connections configured; exiting")
        return
    logging.info("Configured connections: %s", [c["name"] for c in settings.connections])

    bridge = StatsBridge() if settings.ws_host else None
    publisher = _setup_publishers(settings, bridge)
    scheduler = StatsScheduler(settings.stats_config(), publisher)
    if bridge is not None:
        bridge.scheduler = scheduler

    transports = []
    for conn in settings.connections:
        try:
            transport = await _open_transport(conn)
        except Exception as exc:
            logging.warning("Failed to connect to %s: %s", conn["name"], exc)
            continue
        transports.append(transport)
        await scheduler.monitor(conn["name"], conn["transport"], transport, conn["host"])

    try:
        if bridge is not None:
            await bridge.serve(settings.ws_host, settings.ws_port)
        else:
            await asyncio.Future()
    finally:
        await scheduler.shutdown()
        for transport in transports:
            transport.close()
        publisher.close()


def main() -> None:
    _setup_logging()
    try:
        asyncio.run(run(load_settings()))
    except KeyboardInterrupt:
        logging.info("Stopped")


if __name__ == "__main__":
    main()
