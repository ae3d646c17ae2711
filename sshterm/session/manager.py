"""
Session manager - one place to connect, open channels and disconnect,
everything keyed by session id.
"""

from __future__ import annotations
import logging
import socket
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Callable, Union

import paramiko

from ..config import AppSettings
from ..connection.profile import HostProfile, ForwardType, PortForwardRule
from ..errors import ChannelError, SessionNotFound, SessionIOError
from ..vault.store import CredentialStore, CredentialKind
from .base import EventSink
from .forward import (
    ForwardTunnel, RemoteForward, FileTransferChannel,
    open_local_forward, open_remote_forward, open_file_transfer,
)
from .registry import SessionRegistry
from .shell import ShellPump
from .ssh import Connector, Session

logger = logging.getLogger(__name__)

Forward = Union[ForwardTunnel, RemoteForward]

# How long disconnect waits for each read loop to let go of its channel
PUMP_JOIN_TIMEOUT = ShellPump.POLL_INTERVAL * 5


@dataclass
class CommandResult:
    """Result of a one-shot remote command."""
    command: str
    exit_code: int
    stdout: str
    stderr: str
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def __repr__(self) -> str:
        return f"<CommandResult '{self.command}' exit={self.exit_code}>"


@dataclass
class _SessionResources:
    """Channels opened on one session, torn down with it."""
    pumps: list[ShellPump] = field(default_factory=list)
    forwards: list[Forward] = field(default_factory=list)
    file_channels: list[FileTransferChannel] = field(default_factory=list)


class SessionManager:
    """
    Process-scoped entry point for the connection layer.

    Usage:
        manager = SessionManager(credentials=KeyringCredentialStore())
        session = manager.connect(profile).result()

        events = EventQueue()
        shell = manager.open_shell(session.id, events)
        shell.write(b"uptime\\n")

        manager.disconnect(session.id)
    """

    def __init__(
        self,
        registry: Optional[SessionRegistry] = None,
        connector: Optional[Connector] = None,
        credentials: Optional[CredentialStore] = None,
        settings: Optional[AppSettings] = None,
    ):
        self.settings = settings or AppSettings()
        if registry is None:
            registry = connector.registry if connector else SessionRegistry()
        self.registry = registry
        self.connector = connector or Connector(self.registry, self.settings)
        self.credentials = credentials

        self._resources: dict[str, _SessionResources] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    def connect(
        self,
        profile: HostProfile,
        callback: Optional[Callable[[Future], None]] = None,
    ) -> Future:
        """Connect in the background. See Connector.connect."""
        if self.credentials is not None:
            profile = self._with_stored_credentials(profile)
        return self.connector.connect(profile, callback)

    def _with_stored_credentials(self, profile: HostProfile) -> HostProfile:
        """
        Copy of profile where hops with no secret of their own pick up
        whatever the credential store has for them.
        """
        resolved = profile.snapshot()
        hop: Optional[HostProfile] = resolved
        depth = 0
        while hop is not None and depth <= self.settings.max_jump_depth:
            if hop.auth_strategy is None:
                key = self.credentials.fetch(CredentialKind.PRIVATE_KEY, hop.hostname, hop.username)
                password = self.credentials.fetch(CredentialKind.PASSWORD, hop.hostname, hop.username)
                if key:
                    hop.private_key = key
                elif password:
                    hop.password = password
                if key or password:
                    logger.debug(f"Using stored credential for {hop.username}@{hop.hostname}")
            hop = hop.jump_host
            depth += 1
        return resolved

    def disconnect(self, session_id: str) -> bool:
        """
        Tear a session down.

        Pumps are stopped and joined before the transport is closed, so no
        read loop has its channel pulled out from under it. Returns False
        for an unknown id.
        """
        session = self.registry.remove(session_id)
        with self._lock:
            resources = self._resources.pop(session_id, None)

        if session is None:
            logger.debug(f"Disconnect of unknown session {session_id}")
            return False

        logger.info(f"Disconnecting session {session_id}")
        if resources:
            for pump in resources.pumps:
                pump.stop()
            for pump in resources.pumps:
                if not pump.join(PUMP_JOIN_TIMEOUT):
                    logger.warning(f"Shell read loop on {session_id} did not exit in time")
            for forward in resources.forwards:
                forward.stop()
            for sftp in resources.file_channels:
                try:
                    sftp.close()
                except Exception as e:
                    logger.debug(f"SFTP close error: {e}")

        session.close()
        return True

    def disconnect_all(self) -> None:
        for session in self.registry.all():
            self.disconnect(session.id)

    def get(self, session_id: str) -> Optional[Session]:
        return self.registry.get(session_id)

    def sessions(self) -> list[Session]:
        return self.registry.all()

    def _require(self, session_id: str) -> Session:
        session = self.registry.get(session_id)
        if session is None or not session.is_open:
            raise SessionNotFound(session_id)
        return session

    def _track(self, session_id: str, kind: str, resource) -> None:
        """
        Record a channel opened on session_id so disconnect tears it down.

        A disconnect that ran while the channel was being opened has
        already collected the session's resources; the late channel is
        released here and SessionNotFound raised.
        """
        with self._lock:
            if session_id in self.registry:
                resources = self._resources.setdefault(session_id, _SessionResources())
                getattr(resources, kind).append(resource)
                return

        logger.debug(f"Session {session_id} went away while opening a channel")
        if isinstance(resource, FileTransferChannel):
            resource.close()
        else:
            resource.stop()
        raise SessionNotFound(session_id)

    # -------------------------------------------------------------------------
    # Channels
    # -------------------------------------------------------------------------

    def open_shell(
        self,
        session_id: str,
        sink: EventSink,
        cols: Optional[int] = None,
        rows: Optional[int] = None,
    ) -> ShellPump:
        """Open an interactive shell and start pumping its output to sink."""
        session = self._require(session_id)
        pump = ShellPump(
            session, sink, cols=cols, rows=rows,
            buffer_size=self.settings.read_buffer_size,
        )
        pump.start()
        self._track(session_id, "pumps", pump)
        return pump

    def open_local_forward(
        self,
        session_id: str,
        local_port: int,
        remote_host: str,
        remote_port: int,
    ) -> ForwardTunnel:
        session = self._require(session_id)
        tunnel = open_local_forward(session, local_port, remote_host, remote_port)
        self._track(session_id, "forwards", tunnel)
        return tunnel

    def open_remote_forward(
        self,
        session_id: str,
        remote_port: int,
        local_host: str,
        local_port: int,
    ) -> RemoteForward:
        session = self._require(session_id)
        forward = open_remote_forward(session, remote_port, local_host, local_port)
        self._track(session_id, "forwards", forward)
        return forward

    def open_forward(self, session_id: str, rule: PortForwardRule) -> Forward:
        """Open one declared forward rule."""
        if rule.type is ForwardType.LOCAL:
            return self.open_local_forward(session_id, rule.local_port, rule.remote_host, rule.remote_port)
        if rule.type is ForwardType.REMOTE:
            return self.open_remote_forward(session_id, rule.remote_port, rule.remote_host, rule.local_port)
        raise ChannelError(f"{rule.type.value} forwarding is not supported")

    def apply_declared_forwards(self, session_id: str) -> list[Forward]:
        """Open every forward rule on the session's profile. Dynamic rules are skipped."""
        session = self._require(session_id)
        opened = []
        for rule in session.profile.forwards:
            if rule.type is ForwardType.DYNAMIC:
                logger.warning(f"Skipping dynamic forward on port {rule.local_port}: not supported")
                continue
            opened.append(self.open_forward(session_id, rule))
        return opened

    def open_file_transfer(self, session_id: str) -> FileTransferChannel:
        session = self._require(session_id)
        sftp = open_file_transfer(session)
        self._track(session_id, "file_channels", sftp)
        return sftp

    def execute(self, session_id: str, command: str, timeout: Optional[float] = None) -> CommandResult:
        """
        Run a command on its own exec channel and collect the output.

        Raises:
            ChannelError: the exec channel could not be opened
            SessionIOError: reading failed or timeout expired
        """
        session = self._require(session_id)
        channel = None
        try:
            channel = session.transport.open_session()
            channel.settimeout(timeout)
            channel.exec_command(command)
        except (paramiko.SSHException, EOFError, OSError) as e:
            if channel is not None:
                _close_quietly(channel)
            raise ChannelError(f"Cannot run command: {e}", host=session.profile.address) from e

        try:
            stdout = _read_all(channel.recv, timeout)
            stderr = _read_all(channel.recv_stderr, timeout)
            exit_code = channel.recv_exit_status()
        except socket.timeout as e:
            raise SessionIOError(f"Command timed out after {timeout}s: {command}") from e
        except OSError as e:
            raise SessionIOError(f"Error reading command output: {e}") from e
        finally:
            channel.close()

        encoding = session.profile.encoding or "utf-8"
        return CommandResult(
            command=command,
            exit_code=exit_code,
            stdout=stdout.decode(encoding, errors="replace"),
            stderr=stderr.decode(encoding, errors="replace"),
        )


def _close_quietly(channel: paramiko.Channel) -> None:
    try:
        channel.close()
    except Exception as e:
        logger.debug(f"Channel close error: {e}")


def _read_all(recv: Callable[[int], bytes], timeout: Optional[float]) -> bytes:
    """Drain one stream of an exec channel until EOF."""
    chunks = []
    deadline = time.monotonic() + timeout if timeout else None
    while True:
        data = recv(65536)
        if not data:
            break
        chunks.append(data)
        if deadline and time.monotonic() > deadline:
            raise socket.timeout()
    return b"".join(chunks)
