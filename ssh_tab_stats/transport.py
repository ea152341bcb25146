"""Command execution channels used by the stats loops."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple

import asyncssh
import paramiko

from .distro import distro_from_os_release
from .models import DEFAULT_DISTRO

_LOGGER = logging.getLogger(__name__)

ExecCallback = Callable[[Optional[BaseException], Optional[Dict[str, str]]], None]


class ExecFailed(RuntimeError):
    """The remote command could not be run."""


class TransportClosed(ExecFailed):
    """The session behind a transport is gone."""


class _SessionWatcher(asyncssh.SSHClient):
    """Track whether the asyncssh connection is still open."""

    def __init__(self) -> None:
        self.closed = False

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.closed = True
        if exc:
            _LOGGER.debug("SSH connection lost: %s", exc)


class DirectTransport:
    """Awaitable ``exec`` over a direct asyncssh session."""

    def __init__(self, conn: asyncssh.SSHClientConnection, watcher: _SessionWatcher) -> None:
        self._conn = conn
        self._watcher = watcher

    @classmethod
    async def connect(
        cls,
        host: str,
        username: str,
        password: Optional[str] = None,
        key: Optional[str] = None,
        port: int = 22,
    ) -> "DirectTransport":
        conn, watcher = await asyncssh.create_connection(
            _SessionWatcher,
            host,
            port=port,
            username=username,
            password=password or None,
            client_keys=[key] if key else None,
            known_hosts=None,
            connect_timeout=10,
        )
        return cls(conn, watcher)

    @property
    def closed(self) -> bool:
        return self._watcher.closed

    async def exec(self, cmd: str) -> str:
        if self.closed:
            raise TransportClosed("SSH session is closed")
        try:
            result = await self._conn.run(cmd, check=False)
        except (OSError, asyncssh.Error) as err:
            raise ExecFailed(str(err)) from err
        out = result.stdout or ""
        err = result.stderr or ""
        if isinstance(out, bytes):
            out = out.decode("utf-8", "ignore")
        if isinstance(err, bytes):
            err = err.decode("utf-8", "ignore")
        if err and not out:
            raise ExecFailed(err.strip())
        return out

    def close(self) -> None:
        self._conn.close()


class BastionTransport:
    """Callback style ``exec_command`` over a paramiko session to a bastion.

    The bastion proxies the session to the target host; commands are run in a
    worker thread and *callback* is invoked from that thread with
    ``(err, {"stdout": ...})``.
    """

    def __init__(self, client: paramiko.SSHClient) -> None:
        self._client = client

    @classmethod
    def connect(
        cls,
        host: str,
        username: str,
        password: Optional[str] = None,
        key: Optional[str] = None,
        port: int = 22,
    ) -> "BastionTransport":
        ssh = paramiko.SSHClient()
        ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        ssh.connect(
            hostname=host,
            port=port,
            username=username,
            password=password,
            key_filename=key,
            timeout=10,
            banner_timeout=10,
            auth_timeout=10,
        )
        return cls(ssh)

    @property
    def closed(self) -> bool:
        transport = self._client.get_transport()
        return transport is None or not transport.is_active()

    def _run(self, cmd: str) -> str:
        _, stdout, stderr = self._client.exec_command(cmd)
        out = stdout.read().decode("utf-8", "ignore")
        err = stderr.read().decode("utf-8", "ignore")
        if err and not out:
            raise ExecFailed(err.strip())
        return out

    def exec_command(self, cmd: str, callback: ExecCallback) -> None:
        if self.closed:
            raise TransportClosed("Bastion session is closed")

        def _worker() -> None:
            try:
                out = self._run(cmd)
            except Exception as err:  # reported through the callback
                callback(err, None)
                return
            callback(None, {"stdout": out})

        loop = asyncio.get_running_loop()
        loop.run_in_executor(None, _worker)

    def close(self) -> None:
        self._client.close()


async def probe_identity(transport: Any) -> Tuple[str, str]:
    """Return ``(hostname, distro_id)`` read once when monitoring starts."""
    hostname = "unknown"
    try:
        hostname = (await transport.exec("hostname")).strip() or "unknown"
    except Exception as err:
        _LOGGER.debug("hostname probe failed: %s", err)
    try:
        os_release = await transport.exec("cat /etc/os-release")
    except Exception as err:
        _LOGGER.debug("os-release probe failed: %s", err)
        os_release = f"ID={DEFAULT_DISTRO}"
    return hostname, distro_from_os_release(os_release)
