"""
SSH connection establishment using Paramiko.

Connector opens authenticated transports, directly or through a chain of
jump hosts, and registers the resulting Session.
"""

from __future__ import annotations
import logging
import socket
import threading
import uuid
import warnings
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Callable

import paramiko

from ..config import AppSettings
from ..connection.profile import HostProfile
from ..errors import SSHTermError, NetworkError
from .auth import Authenticator
from .forward import ForwardTunnel
from .hostkeys import HostKeyVerifier, HostKeyPolicy
from .registry import SessionRegistry

logger = logging.getLogger(__name__)


# =============================================================================
# Legacy Device Support - Algorithm Configuration
# =============================================================================
# Broad compatibility with older servers while still preferring modern
# algorithms.

PREFERRED_CIPHERS = (
    "aes128-ctr",
    "aes192-ctr",
    "aes256-ctr",
    "aes128-gcm@openssh.com",
    "aes256-gcm@openssh.com",
    "chacha20-poly1305@openssh.com",
    "aes128-cbc",
    "aes192-cbc",
    "aes256-cbc",
    "3des-cbc",
)

PREFERRED_KEX = (
    "curve25519-sha256",
    "curve25519-sha256@libssh.org",
    "ecdh-sha2-nistp256",
    "ecdh-sha2-nistp384",
    "ecdh-sha2-nistp521",
    "diffie-hellman-group14-sha256",
    "diffie-hellman-group16-sha512",
    "diffie-hellman-group-exchange-sha256",
    "diffie-hellman-group14-sha1",
    "diffie-hellman-group-exchange-sha1",
    "diffie-hellman-group1-sha1",
)

PREFERRED_KEYS = (
    "rsa-sha2-512",
    "rsa-sha2-256",
    "ssh-rsa",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "ssh-ed25519",
)

# Flag to track if we've applied global transport settings
_transport_configured = False
_transport_lock = threading.Lock()


def _apply_global_transport_settings() -> None:
    """
    Apply algorithm preferences globally to Paramiko's Transport class.

    Must run before the first transport is created.
    """
    global _transport_configured

    with _transport_lock:
        if _transport_configured:
            return

        warnings.filterwarnings('ignore', category=DeprecationWarning, module='paramiko')

        try:
            available_ciphers = set(paramiko.Transport._cipher_info.keys())
            available_kex = set(paramiko.Transport._kex_info.keys())
            available_keys = set(paramiko.Transport._key_info.keys())

            ciphers = tuple(c for c in PREFERRED_CIPHERS if c in available_ciphers)
            kex = tuple(k for k in PREFERRED_KEX if k in available_kex)
            keys = tuple(k for k in PREFERRED_KEYS if k in available_keys)

            paramiko.Transport._preferred_ciphers = ciphers
            paramiko.Transport._preferred_kex = kex
            paramiko.Transport._preferred_keys = keys

            logger.info(
                f"Applied global transport settings: "
                f"{len(ciphers)} ciphers, {len(kex)} kex, {len(keys)} keys"
            )
        except Exception as e:
            logger.warning(f"Could not apply global transport settings: {e}")

        _transport_configured = True


class Session:
    """
    A live, authenticated connection.

    Holds the target transport and, when reached through a jump host,
    the jump Session and the local forward carrying the connection.
    Closing closes all of them, innermost first.
    """

    def __init__(
        self,
        transport: paramiko.Transport,
        profile: HostProfile,
        jump: Optional[Session] = None,
        tunnel: Optional[ForwardTunnel] = None,
    ):
        self.id = uuid.uuid4().hex
        self.transport = transport
        self.profile = profile
        self.jump = jump
        self.tunnel = tunnel

        self._open = True
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._open

    @property
    def is_connected(self) -> bool:
        """Open and the transport is still alive."""
        return self.is_open and self.transport.is_active()

    def close(self) -> None:
        """Close target transport, then tunnel, then jump session. Idempotent."""
        with self._lock:
            if not self._open:
                return
            self._open = False

        logger.info(f"Closing session {self.id} ({self.profile.address})")
        try:
            self.transport.close()
        except Exception as e:
            logger.debug(f"Transport close error: {e}")

        if self.tunnel:
            self.tunnel.stop()

        if self.jump:
            self.jump.close()

    def __repr__(self) -> str:
        status = "open" if self.is_open else "closed"
        via = f" via {self.jump.profile.hostname}" if self.jump else ""
        return f"<Session {self.id[:8]} {self.profile.username}@{self.profile.address}{via} {status}>"


class Connector:
    """
    Establishes sessions.

    connect() returns immediately with a Future; the network and auth
    round-trips happen on a worker thread. Nothing is registered unless
    every hop succeeds.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        settings: Optional[AppSettings] = None,
        host_keys: Optional[HostKeyVerifier] = None,
        authenticator: Optional[Authenticator] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        _apply_global_transport_settings()

        self.registry = registry
        self.settings = settings or AppSettings()
        self.host_keys = host_keys or HostKeyVerifier(
            HostKeyPolicy(self.settings.host_key_policy),
            self.settings.known_hosts_file,
        )
        self.authenticator = authenticator or Authenticator()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=8, thread_name_prefix="sshterm-connect"
        )

    def connect(
        self,
        profile: HostProfile,
        callback: Optional[Callable[[Future], None]] = None,
    ) -> Future:
        """
        Connect in the background.

        The returned future resolves to the registered Session, or raises
        NetworkError, HostKeyError, AuthError, ChannelError or ProfileError.
        """
        future = self._executor.submit(self.connect_blocking, profile)
        if callback:
            future.add_done_callback(callback)
        return future

    def connect_blocking(self, profile: HostProfile) -> Session:
        """Connect on the calling thread."""
        hops = profile.jump_chain(self.settings.max_jump_depth)
        for hop in hops + [profile]:
            hop.validate()

        snapshot = profile.snapshot()
        if hops:
            logger.info(
                f"Connecting to {snapshot.address} via "
                f"{' -> '.join(h.address for h in hops)}"
            )
        else:
            logger.info(f"Connecting to {snapshot.address}")

        session = self._establish(snapshot)
        self.registry.add(session)
        logger.info(f"Session {session.id} connected to {snapshot.address}")
        return session

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    def _establish(self, profile: HostProfile) -> Session:
        """Connect one hop, recursing into its jump host first."""
        if profile.jump_host is None:
            transport = self._open_transport(profile.hostname, profile.port, profile)
            return Session(transport, profile)

        jump = self._establish(profile.jump_host)
        tunnel = None
        try:
            tunnel = ForwardTunnel(jump.transport, profile.hostname, profile.port, local_port=0)
            logger.debug(
                f"Jump forward 127.0.0.1:{tunnel.local_port} -> {profile.address} "
                f"via {jump.profile.address}"
            )
            transport = self._open_transport("127.0.0.1", tunnel.local_port, profile)
        except Exception:
            if tunnel:
                tunnel.stop()
            jump.close()
            raise

        return Session(transport, profile, jump=jump, tunnel=tunnel)

    def _open_transport(self, address: str, port: int, profile: HostProfile) -> paramiko.Transport:
        """
        TCP connect to address:port, negotiate, verify the host key and
        authenticate as profile. The transport is closed on any failure.
        """
        try:
            sock = socket.create_connection((address, port), timeout=profile.connect_timeout)
        except OSError as e:
            raise NetworkError(f"Connection failed: {e}", host=profile.address) from e

        try:
            transport = paramiko.Transport(sock)
        except Exception as e:
            sock.close()
            raise NetworkError(f"Could not create transport: {e}", host=profile.address) from e

        try:
            transport.start_client(timeout=profile.connect_timeout)
            logger.debug(
                f"Negotiated with {profile.address}: "
                f"cipher={transport.remote_cipher}, mac={transport.remote_mac}"
            )
            self.host_keys.verify(transport, profile.hostname, profile.port)
            self.authenticator.authenticate(transport, profile)
            if profile.keepalive_interval:
                transport.set_keepalive(profile.keepalive_interval)
            return transport

        except SSHTermError:
            transport.close()
            raise
        except (paramiko.SSHException, EOFError, OSError) as e:
            transport.close()
            raise NetworkError(f"SSH negotiation failed: {e}", host=profile.address) from e
        except Exception:
            transport.close()
            raise
