"""Derive CPU load and network throughput from consecutive samples."""
from __future__ import annotations

from typing import Optional, Tuple

from .models import ConnectionContext, CPUSample, NetworkRates, NetworkSample


class RateCalculator:
    """Compute rates from the previous sample kept on each connection.

    The calculator itself is stateless: the previous samples live on the
    :class:`ConnectionContext` owned by the scheduler, one per connection.
    """

    @staticmethod
    def cpu_load(previous: Optional[CPUSample], current: CPUSample) -> str:
        """Return the busy share between two samples as ``"xx.xx"``."""
        if previous is None:
            return "0.00"
        total_diff = current.total - previous.total
        idle_diff = current.idle_all - previous.idle_all
        if total_diff <= 0:
            return "0.00"
        return f"{(total_diff - idle_diff) * 100 / total_diff:.2f}"

    @staticmethod
    def network_rates(
        previous: Optional[NetworkSample],
        previous_ms: Optional[float],
        current: NetworkSample,
        now_ms: float,
    ) -> Tuple[float, float]:
        """Return (rx, tx) in bytes/s, clamped at 0 on counter resets."""
        if previous is None or previous_ms is None:
            return 0.0, 0.0
        elapsed = (now_ms - previous_ms) / 1000
        if elapsed <= 0:
            return 0.0, 0.0
        rx = max(0.0, (current.rx - previous.rx) / elapsed)
        tx = max(0.0, (current.tx - previous.tx) / elapsed)
        return rx, tx

    def update_cpu(self, context: ConnectionContext, current: Optional[CPUSample]) -> str:
        """Return the CPU load for *context* and store *current* as baseline."""
        if current is None:
            return "0.00"
        load = self.cpu_load(context.previous_cpu, current)
        context.previous_cpu = current
        return load

    def update_network(
        self,
        context: ConnectionContext,
        current: Optional[NetworkSample],
        now_ms: float,
    ) -> NetworkRates:
        """Return throughput for *context* and store *current* with its timestamp."""
        if current is None:
            return NetworkRates()
        rx, tx = self.network_rates(
            context.previous_net, context.previous_time_ms, current, now_ms
        )
        context.previous_net = current
        context.previous_time_ms = now_ms
        return NetworkRates(rx_bytes_per_sec=rx, tx_bytes_per_sec=tx)
