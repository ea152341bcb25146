"""Live system stats for SSH terminal tabs, over direct and bastion sessions."""
from __future__ import annotations

from .config import StatsConfig
from .models import (
    ConnectionContext,
    CPUSample,
    DiskEntry,
    MetricsSnapshot,
    NetworkSample,
    TransportKind,
)
from .publisher import SnapshotPublisher, event_name
from .scheduler import StatsScheduler

__all__ = [
    "ConnectionContext",
    "CPUSample",
    "DiskEntry",
    "MetricsSnapshot",
    "NetworkSample",
    "SnapshotPublisher",
    "StatsConfig",
    "StatsScheduler",
    "TransportKind",
    "event_name",
]
