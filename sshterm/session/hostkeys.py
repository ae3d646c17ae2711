"""
Host key verification.

Checked against ~/.ssh/known_hosts plus sshterm's own known_hosts file.
Unknown keys are rejected unless the policy says otherwise.
"""

from __future__ import annotations
import logging
import os
import threading
from enum import Enum
from pathlib import Path
from typing import Optional

import paramiko

from ..errors import HostKeyError

logger = logging.getLogger(__name__)

SYSTEM_KNOWN_HOSTS = Path("~/.ssh/known_hosts").expanduser()


class HostKeyPolicy(Enum):
    """What to do with a host key we've never seen."""
    REJECT = "reject"
    WARN = "warn"            # accept, log, don't remember
    AUTO_ADD = "auto_add"    # accept and save to the app known_hosts


def known_hosts_name(hostname: str, port: int) -> str:
    """known_hosts entry name - bare host on 22, [host]:port otherwise."""
    if port == 22:
        return hostname
    return f"[{hostname}]:{port}"


class HostKeyVerifier:
    """
    Verifies the key a server presents during negotiation.

    A key that *differs* from a known one is always rejected, whatever
    the policy.
    """

    def __init__(
        self,
        policy: HostKeyPolicy = HostKeyPolicy.REJECT,
        known_hosts_file: Optional[str] = None,
        load_system: bool = True,
    ):
        self.policy = HostKeyPolicy(policy)
        self._app_file = Path(known_hosts_file).expanduser() if known_hosts_file else None
        self._lock = threading.Lock()

        self._system_keys = paramiko.HostKeys()
        if load_system and SYSTEM_KNOWN_HOSTS.exists():
            try:
                self._system_keys.load(str(SYSTEM_KNOWN_HOSTS))
            except IOError as e:
                logger.warning(f"Could not read {SYSTEM_KNOWN_HOSTS}: {e}")

        self._app_keys = paramiko.HostKeys()
        if self._app_file and self._app_file.exists():
            try:
                self._app_keys.load(str(self._app_file))
            except IOError as e:
                logger.warning(f"Could not read {self._app_file}: {e}")

    def add(self, hostname: str, port: int, key: paramiko.PKey) -> None:
        """Trust a key and persist it to the app known_hosts file."""
        name = known_hosts_name(hostname, port)
        with self._lock:
            self._app_keys.add(name, key.get_name(), key)
            if self._app_file:
                self._app_file.parent.mkdir(parents=True, exist_ok=True)
                self._app_keys.save(str(self._app_file))
                os.chmod(self._app_file, 0o600)
        logger.info(f"Added {key.get_name()} host key for {name}")

    def lookup(self, hostname: str, port: int) -> Optional[dict]:
        name = known_hosts_name(hostname, port)
        with self._lock:
            return self._app_keys.lookup(name) or self._system_keys.lookup(name)

    def verify(self, transport: paramiko.Transport, hostname: str, port: int) -> None:
        """
        Check the server key on a negotiated transport.

        hostname/port are the logical target, which for a jump-host hop
        differs from the 127.0.0.1 address the socket is connected to.

        Raises:
            HostKeyError: key mismatch, or unknown key under REJECT
        """
        key = transport.get_remote_server_key()
        key_type = key.get_name()
        fingerprint = key.get_fingerprint().hex()
        address = f"{hostname}:{port}"

        known = self.lookup(hostname, port)
        if known and key_type in known:
            if known[key_type] != key:
                raise HostKeyError(
                    f"Host key for {address} has changed ({key_type} {fingerprint})",
                    host=address,
                )
            logger.debug(f"Host key for {address} verified ({key_type})")
            return

        if self.policy is HostKeyPolicy.REJECT:
            raise HostKeyError(
                f"Unknown {key_type} host key {fingerprint}",
                host=address,
            )

        if self.policy is HostKeyPolicy.WARN:
            logger.warning(f"Accepting unknown {key_type} host key {fingerprint} for {address}")
            return

        self.add(hostname, port, key)
