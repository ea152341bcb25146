"""Shared fixtures: captured command output and fake transports."""
from typing import Any, Dict, List, Optional, Tuple

import pytest

from ssh_tab_stats.models import MetricsSnapshot
from ssh_tab_stats.publisher import SnapshotPublisher

DIRECT_CPU_OUTPUT = "cpu  100 0 50 800 10 0 0 0 0 0\n"

NET_DEV = """Inter-|   Receive                                                |  Transmit
 face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed
    lo:  123456     100    0    0    0     0          0         0   123456     100    0    0    0     0       0          0
  eth0: 9876543    5000    0    0    0     0          0         0  1234567    4000    0    0    0     0       0          0"""

DIRECT_OUTPUT = f"""              total        used        free      shared  buff/cache   available
Mem:     8232423424  2123456512  4123456512    12345678  1985510400  5812345678
Swap:    2147479552           0  2147479552
Filesystem     1024-blocks     Used Available Capacity Mounted on
/dev/sda1         41152736 18123456  20911872      47% /
tmpfs              4019740        0   4019740       0% /dev/shm
/dev/sdb1        103081248 70000000  27817056      72% /data
/dev/sda15          106858     6186    100672       6% /boot/efi
 10:15:01 up 12 days,  3:04,  2 users,  load average: 0.15, 0.10, 0.05
{NET_DEV}
127.0.0.1 10.0.0.5 ::1
"""

BASTION_OUTPUT = f"""cpu  100 0 50 800 10 0 0 0 0 0
              total        used        free      shared  buff/cache   available
Mem:     4116211712  1061158912  2061158912     6172839   993755136  2906172839
Swap:             0           0           0
Filesystem     1024-blocks     Used Available Capacity Mounted on
/dev/sda1         41152736 18123456  20911872      47% /
/dev/sdb1        103081248 70000000  27817056      72% /data
tmpfs               812345        4    812341       1% /run
 10:15:01 up 3:04,  1 user,  load average: 0.00, 0.01, 0.05
{NET_DEV}
web-01
10.0.0.7
NAME="Ubuntu"
VERSION="22.04.3 LTS (Jammy Jellyfish)"
ID=ubuntu
ID_LIKE=debian
VERSION_ID="22.04"
PRETTY_NAME="Ubuntu 22.04.3 LTS"
"""


class RecordingPublisher(SnapshotPublisher):
    def __init__(self) -> None:
        self.events: List[Tuple[str, MetricsSnapshot]] = []

    def publish(self, connection_id: str, snapshot: MetricsSnapshot) -> None:
        self.events.append((connection_id, snapshot))

    def for_connection(self, connection_id: str) -> List[MetricsSnapshot]:
        return [snap for cid, snap in self.events if cid == connection_id]


class FakeDirectTransport:
    """Answers ``exec`` from a command -> output(s) table."""

    def __init__(self, outputs: Dict[str, Any]) -> None:
        self.outputs = outputs
        self.commands: List[str] = []
        self.closed = False

    async def exec(self, cmd: str) -> str:
        self.commands.append(cmd)
        value = self.outputs[cmd]
        if isinstance(value, list):
            value = value.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    def close(self) -> None:
        self.closed = True


class FakeBastionTransport:
    """Calls back immediately, or keeps the callback when *deferred*."""

    def __init__(
        self,
        stdout: str = "",
        err: Optional[Exception] = None,
        deferred: bool = False,
    ) -> None:
        self.stdout = stdout
        self.err = err
        self.deferred = deferred
        self.callbacks: List[Any] = []
        self.commands: List[str] = []
        self.closed = False

    def exec_command(self, cmd: str, callback) -> None:
        self.commands.append(cmd)
        if self.deferred:
            self.callbacks.append(callback)
            return
        if self.err is not None:
            callback(self.err, None)
        else:
            callback(None, {"stdout": self.stdout})

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def direct_output() -> str:
    return DIRECT_OUTPUT


@pytest.fixture
def direct_cpu_output() -> str:
    return DIRECT_CPU_OUTPUT


@pytest.fixture
def bastion_output() -> str:
    return BASTION_OUTPUT


@pytest.fixture
def recorder() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def direct_transport_factory():
    return FakeDirectTransport


@pytest.fixture
def bastion_transport_factory():
    return FakeBastionTransport


@pytest.fixture
def net_dev() -> str:
    return NET_DEV
