"""
RouterClient — session-scoped command execution on a RouterOS device.

Wraps a connected ``paramiko.SSHClient``.  Each call to
:meth:`RouterClient.session` opens a fresh SSH channel that runs exactly one
command and is always closed when the ``async with`` block exits, including
on errors::

    async with RouterClient(ssh) as router:
        async with router.session() as session:
            await session.run("/ppp secret print")

paramiko is blocking, so channel operations run in a worker thread via
``asyncio.to_thread``.  Cancelling the awaiting task does not abort a
command that is already running on the router; the only bound on a stuck
command is the channel timeout.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Tuple

import paramiko

from updater.errors import RemoteCommandError, SessionError

logger = logging.getLogger("updater.router_client")

_DEFAULT_SSH_PORT = 22


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


def split_address(address: str, default_port: int = _DEFAULT_SSH_PORT) -> Tuple[str, int]:
    """Split ``host[:port]`` into its parts.

    Bracketed IPv6 literals (``[::1]:22``) are accepted.
    """
    address = address.strip()
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port = rest.lstrip(":")
        return host, int(port) if port else default_port
    if address.count(":") == 1:
        host, port = address.split(":")
        return host, int(port)
    return address, default_port


def open_ssh_client(
    address: str,
    user: str,
    password: str,
    *,
    port: Optional[int] = None,
    timeout: float = 5.0,
    verify_host_key: bool = False,
) -> paramiko.SSHClient:
    """Connect to the router with password authentication.

    Args:
        address: ``host`` or ``host:port``.
        user: Router login.
        password: Router password.
        port: Overrides any port given in *address*.
        timeout: TCP connect, banner and auth timeout in seconds.
        verify_host_key: When true, only hosts in the system
            ``known_hosts`` are accepted.

    Raises:
        paramiko.SSHException, OSError: If the connection fails.
    """
    host, parsed_port = split_address(address)
    client = paramiko.SSHClient()
    if verify_host_key:
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.RejectPolicy())
    else:
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    try:
        client.connect(
            host,
            port=port or parsed_port,
            username=user,
            password=password,
            timeout=timeout,
            banner_timeout=timeout,
            auth_timeout=timeout,
            look_for_keys=False,
            allow_agent=False,
        )
    except Exception:
        client.close()
        raise

    logger.info("SSH connected to %s:%d as %s", host, port or parsed_port, user)
    return client


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class RouterSession:
    """One SSH channel; runs a single command."""

    def __init__(self, channel: paramiko.Channel) -> None:
        self._channel = channel
        self._used = False

    def _run_blocking(self, command: str) -> str:
        try:
            # stderr shares the stdout stream so neither can fill its window
            # while the other is being drained.
            self._channel.set_combine_stderr(True)
            self._channel.exec_command(command)
            output = self._channel.makefile("rb").read()
            status = self._channel.recv_exit_status()
        except Exception as exc:
            raise RemoteCommandError("run cmd", exc) from exc

        if status != 0:
            raise RemoteCommandError(
                "run cmd",
                exit_status=status,
                stderr=output.decode("utf-8", errors="replace"),
            )
        return output.decode("utf-8", errors="replace")

    async def run(self, command: str) -> str:
        """Run *command* to completion and return its output.

        stdout and stderr arrive interleaved on one stream.

        Raises:
            RemoteCommandError: If the command could not be executed or
                exited with a non-zero status.
        """
        if self._used:
            raise RemoteCommandError(
                "run cmd", RuntimeError("session already ran a command")
            )
        self._used = True
        logger.debug("Running %d-byte command on router", len(command))
        return await asyncio.to_thread(self._run_blocking, command)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RouterClient:
    """Hands out one-shot SSH sessions on a shared connection.

    Args:
        client: A connected ``paramiko.SSHClient`` (see
                :func:`open_ssh_client`).  Owned by this wrapper once
                entered as a context manager.
        command_timeout: Per-channel read timeout in seconds, or ``None`` to
                block until the router finishes.
    """

    def __init__(
        self,
        client: paramiko.SSHClient,
        command_timeout: Optional[float] = None,
    ) -> None:
        self._client = client
        self._command_timeout = command_timeout

    async def __aenter__(self) -> "RouterClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await asyncio.to_thread(self._client.close)
        logger.info("SSH connection closed.")

    def _open_channel(self) -> paramiko.Channel:
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise SessionError(
                "new session", ConnectionError("SSH transport is not connected")
            )
        try:
            channel = transport.open_session(timeout=self._command_timeout)
            channel.settimeout(self._command_timeout)
        except Exception as exc:
            raise SessionError("new session", exc) from exc
        return channel

    @staticmethod
    def _close_channel(channel: paramiko.Channel) -> None:
        try:
            channel.close()
        except Exception as exc:
            raise SessionError("close session", exc) from exc

    @asynccontextmanager
    async def session(self) -> AsyncIterator[RouterSession]:
        """Open a channel, yield a :class:`RouterSession`, always close it.

        Raises:
            SessionError: If the channel cannot be opened or closed.
        """
        channel = await asyncio.to_thread(self._open_channel)
        try:
            yield RouterSession(channel)
        except BaseException:
            try:
                await asyncio.to_thread(self._close_channel, channel)
            except SessionError:
                # The original failure is what the caller needs to see.
                logger.warning("Failed to close SSH channel", exc_info=True)
            raise
        await asyncio.to_thread(self._close_channel, channel)
