"""Parse raw command output into typed samples.

Two strategies share the same output shapes. :class:`DirectParser` reads the
output of commands run on a plain SSH session, where every section arrives in
a predictable order. :class:`BastionParser` reads the single combined dump
returned through a jump host, which carries no reliable delimiters, so a few
values are located by the shape of the line instead of its position.
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence, Tuple

from .distro import parse_distro
from .models import (
    BASTION_HOSTNAME,
    DEFAULT_DISTRO,
    CPUSample,
    DiskEntry,
    MemoryInfo,
    NetworkSample,
    TransportKind,
)

_LOGGER = logging.getLogger(__name__)

DF_HEADER = "Filesystem"
NET_DEV_HEADER = "Inter-|   Receive"
LOOPBACK_ADDRESSES = ("127.0.0.1", "::1")
EXCLUDED_MOUNT_PREFIXES = ("/sys", "/opt", "/run", "/dev", "/var")
EXCLUDED_MOUNTS = ("/boot/efi",)

_UPTIME_RE = re.compile(r"up (.*?),")


def split_lines(output: str) -> List[str]:
    """Split command output the way every parser expects it."""
    return (output or "").strip().split("\n")


def _safe_int(value: str) -> Optional[int]:
    """Return *value* as int or ``None`` when conversion fails."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_cpu_line(line: str) -> Optional[CPUSample]:
    """Return the jiffies of a ``cpu  ...`` line, or ``None`` if unusable."""
    fields = (line or "").strip().split()[1:]
    if len(fields) < 8:
        return None
    values = [_safe_int(value) for value in fields[:8]]
    if any(value is None or value < 0 for value in values):
        _LOGGER.debug("Ignoring malformed cpu line: %s", line)
        return None
    return CPUSample(*values)


def parse_memory(lines: Sequence[str]) -> MemoryInfo:
    """Return total/used bytes from the ``Mem:`` row of ``free -b``."""
    mem_line = next((line for line in lines if line.startswith("Mem:")), "")
    parts = mem_line.split()
    total = _safe_int(parts[1]) if len(parts) > 1 else None
    used = _safe_int(parts[2]) if len(parts) > 2 else None
    return MemoryInfo(total=total or 0, used=used or 0)


def parse_uptime(lines: Sequence[str]) -> str:
    """Return the human readable duration printed by ``uptime``."""
    uptime_line = next((line for line in lines if " up " in line), None)
    if uptime_line is None:
        return "N/A"
    match = _UPTIME_RE.search(uptime_line)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return "N/A"


def _is_reported_mount(mount: str) -> bool:
    return (
        mount.startswith("/")
        and not mount.startswith(EXCLUDED_MOUNT_PREFIXES)
        and mount not in EXCLUDED_MOUNTS
    )


def _disk_entry(line: str, min_fields: int = 6) -> Optional[DiskEntry]:
    parts = line.strip().split()
    if len(parts) < min_fields:
        return None
    used = _safe_int(parts[-2].rstrip("%"))
    mount = parts[-1]
    if used is None or not _is_reported_mount(mount):
        return None
    return DiskEntry(filesystem=mount, used_percent=used)


def parse_df_table(df_output: str) -> List[DiskEntry]:
    """Parse a ``df -P`` table (header included) into disk entries."""
    rows = df_output.strip().split("\n")[1:]
    return [entry for entry in map(_disk_entry, rows) if entry is not None]


def parse_net_dev_table(net_dev_output: str) -> NetworkSample:
    """Sum received/transmitted bytes of a ``/proc/net/dev`` dump.

    The two header lines are skipped and the loopback interface is ignored.
    """
    total_rx = total_tx = 0
    for line in net_dev_output.strip().split("\n")[2:]:
        parts = line.strip().split()
        if not parts or parts[0] == "lo:" or len(parts) < 10:
            continue
        rx = _safe_int(parts[1])
        tx = _safe_int(parts[9])
        if rx is not None:
            total_rx += rx
        if tx is not None:
            total_tx += tx
    return NetworkSample(rx=total_rx, tx=total_tx)


def _pick_ip(line: str) -> Optional[str]:
    candidates = [c for c in line.strip().split() if c not in LOOPBACK_ADDRESSES]
    return candidates[-1] if candidates else None


def _find_index(lines: Sequence[str], needle: str, startswith: bool = False) -> int:
    for index, line in enumerate(lines):
        stripped = line.strip()
        if (stripped.startswith(needle) if startswith else needle in stripped):
            return index
    return -1


class StatsParser:
    """Capability turning raw output into typed samples for one transport."""

    kind: TransportKind

    def cpu(self, lines: Sequence[str]) -> Optional[CPUSample]:
        raise NotImplementedError

    def memory(self, lines: Sequence[str]) -> MemoryInfo:
        return parse_memory(lines)

    def disks(self, lines: Sequence[str]) -> List[DiskEntry]:
        raise NotImplementedError

    def uptime(self, lines: Sequence[str]) -> str:
        return parse_uptime(lines)

    def network(self, lines: Sequence[str]) -> Optional[NetworkSample]:
        raise NotImplementedError

    def identity(self, lines: Sequence[str], host: str, hostname: str) -> Tuple[str, str]:
        """Return ``(hostname, ip)``."""
        raise NotImplementedError

    def distro(self, lines: Sequence[str], fallback: str = DEFAULT_DISTRO) -> Tuple[str, str]:
        return parse_distro(lines, fallback)


class DirectParser(StatsParser):
    """Parser for output collected over a direct SSH session."""

    kind = TransportKind.DIRECT

    def cpu(self, lines: Sequence[str]) -> Optional[CPUSample]:
        # ``grep 'cpu ' /proc/stat`` prints exactly the aggregate line
        return parse_cpu_line(lines[0] if lines else "")

    def disks(self, lines: Sequence[str]) -> List[DiskEntry]:
        index = _find_index(lines, DF_HEADER, startswith=True)
        if index < 0:
            return []
        return parse_df_table("\n".join(lines[index:]))

    def network(self, lines: Sequence[str]) -> Optional[NetworkSample]:
        index = _find_index(lines, NET_DEV_HEADER)
        if index < 0:
            return None
        return parse_net_dev_table("\n".join(lines[index:]))

    def ip(self, lines: Sequence[str], host: str) -> str:
        if not lines:
            return host
        return _pick_ip(lines[-1]) or host

    def identity(self, lines: Sequence[str], host: str, hostname: str) -> Tuple[str, str]:
        return hostname, self.ip(lines, host)


class BastionParser(StatsParser):
    """Heuristic parser for the combined dump returned through a bastion."""

    kind = TransportKind.BASTION
    _HOSTNAME_BLOCKLIST = ("cpu", "Mem", "total", "Filesystem")

    def cpu(self, lines: Sequence[str]) -> Optional[CPUSample]:
        index = _find_index(lines, "cpu ", startswith=True)
        if index < 0:
            return None
        return parse_cpu_line(lines[index])

    def disks(self, lines: Sequence[str]) -> List[DiskEntry]:
        index = _find_index(lines, DF_HEADER, startswith=True)
        if index < 0:
            return []
        rows = [line for line in lines[index:] if line.strip()][1:]
        entries = (_disk_entry(row, min_fields=2) for row in rows)
        return [entry for entry in entries if entry is not None]

    def network(self, lines: Sequence[str]) -> Optional[NetworkSample]:
        index = _find_index(lines, NET_DEV_HEADER)
        if index < 0:
            return None
        # Only the first two interfaces (usually lo + one NIC) are read.
        total_rx = total_tx = 0
        for line in lines[index + 2 : index + 4]:
            parts = line.strip().split()
            if len(parts) >= 10:
                total_rx += _safe_int(parts[1]) or 0
                total_tx += _safe_int(parts[9]) or 0
        return NetworkSample(rx=total_rx, tx=total_tx)

    def _looks_like_hostname(self, line: str) -> bool:
        stripped = line.strip()
        if not 0 < len(stripped) < 50:
            return False
        if any(char in line for char in "=:/$"):
            return False
        return not any(word in line for word in self._HOSTNAME_BLOCKLIST)

    def _hostname_index(self, lines: Sequence[str]) -> int:
        return next(
            (index for index, line in enumerate(lines) if self._looks_like_hostname(line)),
            -1,
        )

    def hostname(self, lines: Sequence[str]) -> str:
        index = self._hostname_index(lines)
        if 0 <= index < len(lines) - 5:
            return lines[index].strip()
        return BASTION_HOSTNAME

    def ip(self, lines: Sequence[str], host: str) -> str:
        index = self._hostname_index(lines)
        if 0 <= index < len(lines) - 4:
            return _pick_ip(lines[index + 1]) or host
        return host

    def identity(self, lines: Sequence[str], host: str, hostname: str) -> Tuple[str, str]:
        return self.hostname(lines), self.ip(lines, host)


_PARSERS = {
    TransportKind.DIRECT: DirectParser(),
    TransportKind.BASTION: BastionParser(),
}


def parser_for(kind: TransportKind) -> StatsParser:
    """Return the parser strategy matching the transport *kind*."""
    return _PARSERS[TransportKind(kind)]
