"""Data model shared by the parsers, the rate calculator and the scheduler."""
from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set, Tuple

BASTION_HOSTNAME = "Bastión"
DEFAULT_DISTRO = "linux"


class TransportKind(str, enum.Enum):
    """How commands reach the monitored host."""

    DIRECT = "direct"
    BASTION = "bastion"


@dataclass(frozen=True)
class CPUSample:
    """Cumulative jiffies from the aggregate ``cpu`` line of /proc/stat."""

    user: int
    nice: int
    system: int
    idle: int
    iowait: int
    irq: int
    softirq: int
    steal: int

    @property
    def total(self) -> int:
        return (
            self.user
            + self.nice
            + self.system
            + self.idle
            + self.iowait
            + self.irq
            + self.softirq
            + self.steal
        )

    @property
    def idle_all(self) -> int:
        return self.idle + self.iowait


@dataclass(frozen=True)
class NetworkSample:
    """Aggregate byte counters at one point in time."""

    rx: int
    tx: int


@dataclass(frozen=True)
class DiskEntry:
    filesystem: str
    used_percent: int

    def as_dict(self) -> Dict[str, Any]:
        return {"fs": self.filesystem, "use": self.used_percent}


@dataclass(frozen=True)
class MemoryInfo:
    total: int = 0
    used: int = 0


@dataclass(frozen=True)
class NetworkRates:
    rx_bytes_per_sec: float = 0.0
    tx_bytes_per_sec: float = 0.0


@dataclass(frozen=True)
class MetricsSnapshot:
    """One normalized telemetry result for one connection."""

    cpu_load_percent: str
    memory: MemoryInfo
    disks: Tuple[DiskEntry, ...]
    uptime: str
    network: NetworkRates
    hostname: str
    distro_id: str
    distro_version_id: str
    ip: str

    def as_dict(self) -> Dict[str, Any]:
        """Return the payload sent to the presentation layer."""
        return {
            "cpu": self.cpu_load_percent,
            "mem": {"total": self.memory.total, "used": self.memory.used},
            "disk": [disk.as_dict() for disk in self.disks],
            "uptime": self.uptime,
            "network": {
                "rx_speed": self.network.rx_bytes_per_sec,
                "tx_speed": self.network.tx_bytes_per_sec,
            },
            "hostname": self.hostname,
            "distro": self.distro_id,
            "versionId": self.distro_version_id,
            "ip": self.ip,
        }


def fallback_snapshot(
    hostname: str = "Unknown", distro_id: str = DEFAULT_DISTRO, host: str = ""
) -> MetricsSnapshot:
    """Snapshot published when the remote command could not be executed."""
    return MetricsSnapshot(
        cpu_load_percent="0.00",
        memory=MemoryInfo(),
        disks=(),
        uptime="Error",
        network=NetworkRates(),
        hostname=hostname,
        distro_id=distro_id,
        distro_version_id="",
        ip=host,
    )


@dataclass
class ConnectionContext:
    """Polling state for one monitored connection (one terminal tab)."""

    connection_id: str
    kind: TransportKind
    transport: Any
    host: str
    hostname: str = "unknown"
    distro_id: str = DEFAULT_DISTRO
    previous_cpu: Optional[CPUSample] = None
    previous_net: Optional[NetworkSample] = None
    previous_time_ms: Optional[float] = None
    running: bool = False
    timer: Optional[asyncio.TimerHandle] = None
    snapshots: int = 0
    tasks: Set[asyncio.Task] = field(default_factory=set, repr=False)

    @property
    def transport_alive(self) -> bool:
        """Return True while the underlying session can still run commands."""
        return self.transport is not None and not getattr(self.transport, "closed", False)
