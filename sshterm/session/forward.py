"""
Port forwards and file-transfer subchannels on an authenticated transport.

Every forwarded connection and every SFTP client gets its own channel,
so none of them share a read loop with the interactive shell.
"""

from __future__ import annotations
import logging
import select
import socket
import socketserver
import threading
from typing import Optional, TYPE_CHECKING

import paramiko

from ..errors import ChannelError

if TYPE_CHECKING:
    from .ssh import Session

logger = logging.getLogger(__name__)

RELAY_BUFFER_SIZE = 16384


def _bidirectional_forward(sock: socket.socket, chan: paramiko.Channel, stop_event: threading.Event) -> None:
    """Relay between a socket and an SSH channel until either side closes."""
    while not stop_event.is_set():
        r, _, _ = select.select([sock, chan], [], [], 1.0)
        if sock in r:
            data = sock.recv(RELAY_BUFFER_SIZE)
            if not data:
                break
            chan.sendall(data)
        if chan in r:
            data = chan.recv(RELAY_BUFFER_SIZE)
            if not data:
                break
            sock.sendall(data)


class ForwardTunnel:
    """
    Local port forward: bind_address:local_port -> remote_host:remote_port.

    Pass local_port=0 to let the OS pick a free port; the assigned port is
    available as local_port once the tunnel is constructed.
    """

    def __init__(
        self,
        transport: paramiko.Transport,
        remote_host: str,
        remote_port: int,
        local_port: int = 0,
        bind_address: str = "127.0.0.1",
    ):
        self.remote_host = remote_host
        self.remote_port = remote_port
        self.local_port = local_port
        self.bind_address = bind_address
        self._transport = transport
        self._stop_event = threading.Event()
        self._server: Optional[socketserver.TCPServer] = None
        self._acceptor_thread: Optional[threading.Thread] = None

        self._start()

    @property
    def active(self) -> bool:
        return not self._stop_event.is_set() and self._server is not None

    def _start(self) -> None:
        tunnel = self

        class ForwardHandler(socketserver.BaseRequestHandler):
            def handle(self):
                try:
                    chan = tunnel._transport.open_channel(
                        "direct-tcpip",
                        (tunnel.remote_host, tunnel.remote_port),
                        self.request.getpeername(),
                    )
                except Exception as e:
                    logger.error(
                        f"Forward channel to {tunnel.remote_host}:{tunnel.remote_port} failed: {e}"
                    )
                    return

                try:
                    _bidirectional_forward(self.request, chan, tunnel._stop_event)
                except OSError as e:
                    logger.debug(f"Forward relay ended: {e}")
                finally:
                    chan.close()

        class ThreadedTCPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
            daemon_threads = True
            allow_reuse_address = True

        try:
            self._server = ThreadedTCPServer((self.bind_address, self.local_port), ForwardHandler)
        except OSError as e:
            raise ChannelError(
                f"Cannot bind {self.bind_address}:{self.local_port}: {e}"
            ) from e

        # 0 means OS-assigned, read back what we got
        self.local_port = self._server.server_address[1]

        self._acceptor_thread = threading.Thread(
            target=self._server.serve_forever,
            name=f"sshterm-forward-{self.local_port}",
            daemon=True,
        )
        self._acceptor_thread.start()
        logger.info(
            f"Forward listening on {self.bind_address}:{self.local_port} "
            f"-> {self.remote_host}:{self.remote_port}"
        )

    def stop(self) -> None:
        """Stop accepting and release the listening port. Idempotent."""
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        if self._server:
            self._server.shutdown()
            self._server.server_close()
        if self._acceptor_thread:
            self._acceptor_thread.join(timeout=3.0)
        logger.info(f"Forward on port {self.local_port} stopped")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.stop()

    def __repr__(self):
        state = "active" if self.active else "stopped"
        return (
            f"ForwardTunnel({self.bind_address}:{self.local_port} -> "
            f"{self.remote_host}:{self.remote_port}, {state})"
        )


class RemoteForward:
    """
    Remote port forward: server-side remote_port -> local_host:local_port.

    The server listens; each connection it accepts arrives as a channel
    that we relay to a local socket.
    """

    def __init__(
        self,
        transport: paramiko.Transport,
        remote_port: int,
        local_host: str,
        local_port: int,
        bind_address: str = "",
    ):
        self.local_host = local_host
        self.local_port = local_port
        self.bind_address = bind_address
        self._transport = transport
        self._stop_event = threading.Event()

        try:
            self.remote_port = transport.request_port_forward(
                bind_address, remote_port, handler=self._on_channel
            )
        except paramiko.SSHException as e:
            raise ChannelError(f"Server refused remote forward on port {remote_port}: {e}") from e

        logger.info(
            f"Remote forward {bind_address or '*'}:{self.remote_port} "
            f"-> {local_host}:{local_port}"
        )

    @property
    def active(self) -> bool:
        return not self._stop_event.is_set()

    def _on_channel(self, chan: paramiko.Channel, origin, server) -> None:
        thread = threading.Thread(target=self._relay, args=(chan,), daemon=True)
        thread.start()

    def _relay(self, chan: paramiko.Channel) -> None:
        try:
            sock = socket.create_connection((self.local_host, self.local_port), timeout=10)
        except OSError as e:
            logger.error(f"Remote forward target {self.local_host}:{self.local_port} unreachable: {e}")
            chan.close()
            return

        try:
            _bidirectional_forward(sock, chan, self._stop_event)
        except OSError as e:
            logger.debug(f"Remote forward relay ended: {e}")
        finally:
            chan.close()
            sock.close()

    def stop(self) -> None:
        """Cancel the forward on the server. Idempotent."""
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        if self._transport.is_active():
            try:
                self._transport.cancel_port_forward(self.bind_address, self.remote_port)
            except paramiko.SSHException as e:
                logger.warning(f"Cancel of remote forward {self.remote_port} failed: {e}")
        logger.info(f"Remote forward on port {self.remote_port} stopped")

    def __repr__(self):
        state = "active" if self.active else "stopped"
        return (
            f"RemoteForward(remote:{self.remote_port} -> "
            f"{self.local_host}:{self.local_port}, {state})"
        )


class FileTransferChannel:
    """Thin wrapper around paramiko.SFTPClient with context manager support."""

    def __init__(self, sftp_client: paramiko.SFTPClient):
        self._sftp = sftp_client
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, remote_path: str, local_path: str) -> None:
        self._sftp.get(remote_path, local_path)

    def put(self, local_path: str, remote_path: str) -> None:
        self._sftp.put(local_path, remote_path)

    def listdir(self, path: str = ".") -> list[str]:
        return self._sftp.listdir(path)

    def stat(self, path: str) -> paramiko.SFTPAttributes:
        return self._sftp.stat(path)

    def mkdir(self, path: str, mode: int = 0o755) -> None:
        self._sftp.mkdir(path, mode)

    def remove(self, path: str) -> None:
        self._sftp.remove(path)

    def rename(self, old_path: str, new_path: str) -> None:
        self._sftp.rename(old_path, new_path)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._sftp.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def open_local_forward(session: Session, local_port: int, remote_host: str, remote_port: int) -> ForwardTunnel:
    """Bind a local listener relaying to remote_host:remote_port through session."""
    _require_active(session)
    return ForwardTunnel(session.transport, remote_host, remote_port, local_port=local_port)


def open_remote_forward(session: Session, remote_port: int, local_host: str, local_port: int) -> RemoteForward:
    """Ask the server to listen on remote_port and relay back to local_host:local_port."""
    _require_active(session)
    return RemoteForward(session.transport, remote_port, local_host, local_port)


def open_file_transfer(session: Session) -> FileTransferChannel:
    """Open an SFTP subchannel on the session's transport."""
    _require_active(session)
    try:
        sftp = paramiko.SFTPClient.from_transport(session.transport)
    except (paramiko.SSHException, EOFError, OSError) as e:
        raise ChannelError(f"Cannot open SFTP channel: {e}", host=session.profile.address) from e
    if sftp is None:
        raise ChannelError("Cannot open SFTP channel", host=session.profile.address)
    logger.info(f"Opened SFTP channel on session {session.id}")
    return FileTransferChannel(sftp)


def _require_active(session: Session) -> None:
    if not session.is_open or not session.transport.is_active():
        raise ChannelError("Session transport is closed", host=session.profile.address)
