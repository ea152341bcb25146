"""Per-connection polling loops.

Every monitored connection gets its own timer driven loop. Only the active
connection keeps rescheduling itself: switching the active connection does
not cancel anything, each tick checks whether it is still wanted and stops
quietly when it is not. A tick that is already executing when the active
connection changes still completes and publishes once more.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

from .config import StatsConfig
from .models import (
    BASTION_HOSTNAME,
    DEFAULT_DISTRO,
    ConnectionContext,
    MetricsSnapshot,
    TransportKind,
    fallback_snapshot,
)
from .parsers import parser_for, split_lines
from .publisher import SnapshotPublisher
from .rates import RateCalculator
from .transport import probe_identity

_LOGGER = logging.getLogger(__name__)

DIRECT_CPU_COMMAND = "grep 'cpu ' /proc/stat"
DIRECT_STATS_COMMAND = (
    "free -b && df -P && uptime && cat /proc/net/dev && "
    "hostname -I 2>/dev/null || hostname -i 2>/dev/null || echo ''"
)
BASTION_STATS_COMMAND = (
    'grep "cpu " /proc/stat && free -b && df -P && uptime && cat /proc/net/dev && '
    'hostname && hostname -I 2>/dev/null || hostname -i 2>/dev/null || echo "" && '
    "cat /etc/os-release"
)

BASTION_SUCCESS_DELAY_MS = 2000
BASTION_FAILURE_DELAY_MS = 5000


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class StatsScheduler:
    """Run the stats loops of all monitored connections on one event loop."""

    def __init__(
        self,
        config: StatsConfig,
        publisher: SnapshotPublisher,
        calculator: Optional[RateCalculator] = None,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self.config = config
        self.publisher = publisher
        self.calculator = calculator or RateCalculator()
        self._clock = clock
        self.connections: Dict[str, ConnectionContext] = {}

    # ---------- configuration surface ----------
    def set_active_connection(self, connection_id: Optional[str]) -> None:
        self.config.set_active_connection(connection_id)

    def get_active_connection(self) -> Optional[str]:
        return self.config.get_active_connection()

    def set_polling_interval_ms(self, interval_ms: int) -> None:
        self.config.set_polling_interval_ms(interval_ms)

    def get_polling_interval_ms(self) -> int:
        return self.config.get_polling_interval_ms()

    # ---------- lifecycle ----------
    def register(
        self,
        connection_id: str,
        kind: TransportKind,
        transport: Any,
        host: str,
        hostname: str = "unknown",
        distro_id: str = DEFAULT_DISTRO,
    ) -> ConnectionContext:
        """Create the polling state for a newly opened connection."""
        connection_id = str(connection_id)
        previous = self.connections.get(connection_id)
        if previous is not None:
            self.stop_loop(connection_id)
        context = ConnectionContext(
            connection_id=connection_id,
            kind=TransportKind(kind),
            transport=transport,
            host=host,
            hostname=hostname,
            distro_id=distro_id,
        )
        self.connections[connection_id] = context
        _LOGGER.debug("Registered %s connection %s (%s)", context.kind.value, connection_id, host)
        return context

    async def monitor(
        self,
        connection_id: str,
        kind: TransportKind,
        transport: Any,
        host: str,
    ) -> ConnectionContext:
        """Register a connection and start polling it if it is active.

        Direct sessions are probed once for their hostname and distro, which
        seed the snapshots.
        """
        hostname, distro_id = "unknown", DEFAULT_DISTRO
        if TransportKind(kind) is TransportKind.DIRECT:
            hostname, distro_id = await probe_identity(transport)
        context = self.register(connection_id, kind, transport, host, hostname, distro_id)
        if self.config.is_active(context.connection_id):
            self.start(context.connection_id)
        return context

    def unregister(self, connection_id: str) -> None:
        """Forget a connection whose transport was torn down."""
        context = self.connections.get(str(connection_id))
        if context is not None:
            self._discard(context)

    def start(self, connection_id: str) -> Optional[asyncio.Task]:
        """Run a tick now unless the loop is already scheduled or executing."""
        context = self.connections.get(str(connection_id))
        if context is None or context.timer is not None or context.running:
            return None
        if self._in_flight(context):
            return None
        return self._launch(context)

    def activate(self, connection_id: str) -> Optional[asyncio.Task]:
        """Make *connection_id* the active connection and (re)start its loop."""
        self.set_active_connection(connection_id)
        self.stop_all_except(connection_id)
        return self.start(connection_id)

    def stop_loop(self, connection_id: str) -> None:
        context = self.connections.get(str(connection_id))
        if context is None:
            return
        if context.timer is not None:
            context.timer.cancel()
            context.timer = None
        # The guard of an executing tick is released when that tick finishes.
        if not self._in_flight(context):
            context.running = False

    def stop_all_except(self, active_id: Optional[str]) -> None:
        for connection_id in list(self.connections):
            if connection_id != str(active_id):
                self.stop_loop(connection_id)

    async def shutdown(self) -> None:
        """Stop every loop and wait for ticks still in flight."""
        tasks = []
        for connection_id, context in list(self.connections.items()):
            self.stop_loop(connection_id)
            tasks.extend(context.tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ---------- ticks ----------
    async def poll(self, connection_id: str) -> None:
        """Run one tick for *connection_id*."""
        context = self.connections.get(str(connection_id))
        if context is None:
            return
        if context.kind is TransportKind.BASTION:
            await self._bastion_tick(context)
        else:
            await self._direct_tick(context)

    @staticmethod
    def _in_flight(context: ConnectionContext) -> bool:
        return any(not task.done() for task in context.tasks)

    def _is_current(self, context: ConnectionContext) -> bool:
        return self.connections.get(context.connection_id) is context

    def _launch(self, context: ConnectionContext) -> Optional[asyncio.Task]:
        if not self._is_current(context):
            return None
        task = asyncio.ensure_future(self.poll(context.connection_id))
        context.tasks.add(task)
        task.add_done_callback(context.tasks.discard)
        return task

    def _fire(self, context: ConnectionContext) -> None:
        context.timer = None
        self._launch(context)

    def _schedule(self, context: ConnectionContext, delay_ms: int) -> None:
        if context.timer is not None:
            context.timer.cancel()
        loop = asyncio.get_running_loop()
        context.timer = loop.call_later(delay_ms / 1000, self._fire, context)

    def _discard(self, context: ConnectionContext) -> None:
        """Drop a context whose transport is gone."""
        if context.timer is not None:
            context.timer.cancel()
            context.timer = None
        context.running = False
        if self._is_current(context):
            del self.connections[context.connection_id]
            _LOGGER.debug("Transport of %s is gone; monitoring stopped", context.connection_id)

    def _reschedule(self, context: ConnectionContext, delay_ms: int) -> bool:
        """Queue the next tick if the connection is still registered, alive and active."""
        context.running = False
        if not self._is_current(context):
            return False
        if not context.transport_alive:
            self._discard(context)
            return False
        if not self.config.is_active(context.connection_id):
            context.timer = None
            _LOGGER.debug("Stats loop for %s stopped", context.connection_id)
            return False
        self._schedule(context, delay_ms)
        return True

    def _still_wanted(self, context: ConnectionContext) -> bool:
        if not self.config.is_active(context.connection_id):
            context.timer = None
            context.running = False
            return False
        if not context.transport_alive:
            self._discard(context)
            return False
        return True

    def _publish(self, context: ConnectionContext, snapshot: MetricsSnapshot) -> None:
        context.snapshots += 1
        try:
            self.publisher.publish(context.connection_id, snapshot)
        except Exception as err:  # pragma: no cover - sink specific
            _LOGGER.error("Publishing stats for %s failed: %s", context.connection_id, err)

    def build_snapshot(
        self,
        context: ConnectionContext,
        output: str,
        cpu_output: Optional[str] = None,
        now_ms: Optional[float] = None,
    ) -> MetricsSnapshot:
        """Parse raw output into a snapshot, updating the context's samples."""
        parser = parser_for(context.kind)
        lines = split_lines(output)
        cpu_lines = lines if cpu_output is None else split_lines(cpu_output)

        cpu_load = self.calculator.update_cpu(context, parser.cpu(cpu_lines))
        memory = parser.memory(lines)
        disks = parser.disks(lines)
        uptime = parser.uptime(lines)
        network = self.calculator.update_network(
            context, parser.network(lines), self._clock() if now_ms is None else now_ms
        )
        hostname, ip = parser.identity(lines, context.host, context.hostname)
        distro_id, version_id = parser.distro(lines, context.distro_id)
        context.distro_id = distro_id

        return MetricsSnapshot(
            cpu_load_percent=cpu_load,
            memory=memory,
            disks=tuple(disks),
            uptime=uptime,
            network=network,
            hostname=hostname,
            distro_id=distro_id,
            distro_version_id=version_id,
            ip=ip,
        )

    async def _direct_tick(self, context: ConnectionContext) -> None:
        if not self._still_wanted(context):
            return
        connection_id = context.connection_id
        try:
            cpu_output = await context.transport.exec(DIRECT_CPU_COMMAND)
            output = await context.transport.exec(DIRECT_STATS_COMMAND)
            snapshot = self.build_snapshot(context, output, cpu_output=cpu_output)
        except Exception as err:
            # Direct loops stay quiet on failure and simply try again later.
            _LOGGER.debug("Collecting stats for %s failed: %s", connection_id, err)
        else:
            if self._is_current(context):
                self._publish(context, snapshot)
        finally:
            self._reschedule(context, self.config.get_polling_interval_ms())

    async def _bastion_tick(self, context: ConnectionContext) -> None:
        if not self._still_wanted(context) or context.running:
            return
        context.running = True
        connection_id = context.connection_id

        exec_command = getattr(context.transport, "exec_command", None)
        if exec_command is None:
            _LOGGER.warning("Transport of %s cannot run commands", connection_id)
            self._publish(context, self._bastion_fallback(context))
            context.running = False
            return

        loop = asyncio.get_running_loop()
        done = loop.create_future()

        def _on_result(err: Optional[BaseException], result: Optional[Dict[str, str]]) -> None:
            loop.call_soon_threadsafe(self._bastion_done, context, err, result, done)

        try:
            exec_command(BASTION_STATS_COMMAND, _on_result)
        except Exception as err:
            _LOGGER.debug("Bastion stats command for %s failed: %s", connection_id, err)
            self._publish(context, self._bastion_fallback(context))
            self._reschedule(context, BASTION_FAILURE_DELAY_MS)
            return
        await done

    @staticmethod
    def _bastion_fallback(context: ConnectionContext) -> MetricsSnapshot:
        return fallback_snapshot(BASTION_HOSTNAME, DEFAULT_DISTRO, context.host)

    def _bastion_done(
        self,
        context: ConnectionContext,
        err: Optional[BaseException],
        result: Optional[Dict[str, str]],
        done: "asyncio.Future[None]",
    ) -> None:
        connection_id = context.connection_id
        try:
            if not self._is_current(context):
                context.running = False
                return
            stdout = (result or {}).get("stdout") or ""
            if err is not None or not stdout.strip():
                _LOGGER.debug("Bastion stats for %s unavailable: %s", connection_id, err)
                self._publish(context, self._bastion_fallback(context))
                self._reschedule(context, BASTION_FAILURE_DELAY_MS)
                return
            try:
                snapshot = self.build_snapshot(context, stdout)
            except Exception:
                _LOGGER.exception("Parsing bastion stats for %s failed", connection_id)
                snapshot = self._bastion_fallback(context)
            self._publish(context, snapshot)
            self._reschedule(context, BASTION_SUCCESS_DELAY_MS)
        finally:
            if not done.done():
                done.set_result(None)
