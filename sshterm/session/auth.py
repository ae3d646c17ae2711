"""
Authenticator - turns a HostProfile's credentials into a handshake.

Exactly one strategy is attempted, in this order:

1. private key (staged to an owner-only temp file for the attempt)
2. password
3. ssh-agent
4. nothing configured -> AuthError

There is no fallback from one strategy to the next. A profile with both
a key and a password that fails key auth does not retry with the password.
"""

from __future__ import annotations
import logging
import os
import tempfile
from typing import Callable

import paramiko

from ..connection.profile import HostProfile, AuthStrategy
from ..errors import AuthError

logger = logging.getLogger(__name__)

# Tried in order when loading key material
KEY_CLASSES = (
    paramiko.RSAKey,
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
)


class Authenticator:
    """Runs the single configured auth strategy against a transport."""

    def __init__(self, agent_factory: Callable[[], paramiko.Agent] = paramiko.Agent):
        self._agent_factory = agent_factory

    def authenticate(self, transport: paramiko.Transport, profile: HostProfile) -> None:
        """
        Authenticate an already negotiated transport.

        Raises:
            AuthError: nothing configured, key unreadable, or server rejected
        """
        strategy = profile.auth_strategy
        logger.info(
            f"Authenticating {profile.username}@{profile.address} "
            f"with {strategy.value if strategy else 'nothing'}"
        )

        if strategy is AuthStrategy.KEY:
            self._auth_key(transport, profile)
        elif strategy is AuthStrategy.PASSWORD:
            self._auth_password(transport, profile)
        elif strategy is AuthStrategy.AGENT:
            self._auth_agent(transport, profile)
        else:
            raise AuthError(
                "No authentication method provided",
                reason=AuthError.NO_METHOD_CONFIGURED,
                host=profile.address,
            )

        if not transport.is_authenticated():
            raise AuthError("Server did not accept authentication", host=profile.address)

    def _auth_key(self, transport: paramiko.Transport, profile: HostProfile) -> None:
        fd, key_path = tempfile.mkstemp(prefix="sshterm_key_")
        try:
            # mkstemp already creates the file 0600
            with os.fdopen(fd, "w") as f:
                f.write(profile.private_key)
            pkey = load_private_key(key_path, profile.passphrase or None, host=profile.address)
            try:
                transport.auth_publickey(profile.username, pkey)
            except paramiko.AuthenticationException as e:
                raise AuthError(f"Key authentication rejected: {e}", host=profile.address) from e
        finally:
            try:
                os.remove(key_path)
            except FileNotFoundError:
                pass
            logger.debug(f"Removed staged key file {key_path}")

    def _auth_password(self, transport: paramiko.Transport, profile: HostProfile) -> None:
        try:
            transport.auth_password(profile.username, profile.password)
        except paramiko.AuthenticationException as e:
            raise AuthError(f"Password authentication rejected: {e}", host=profile.address) from e

    def _auth_agent(self, transport: paramiko.Transport, profile: HostProfile) -> None:
        agent = self._agent_factory()
        try:
            keys = agent.get_keys()
            if not keys:
                raise AuthError(
                    "SSH agent has no keys (is SSH_AUTH_SOCK set?)",
                    reason=AuthError.AGENT_UNAVAILABLE,
                    host=profile.address,
                )

            last_error = None
            for key in keys:
                try:
                    logger.debug(f"Trying agent key {key.get_name()}")
                    transport.auth_publickey(profile.username, key)
                    return
                except paramiko.AuthenticationException as e:
                    last_error = e
                    continue

            raise AuthError(
                f"All {len(keys)} agent keys rejected. Last error: {last_error}",
                host=profile.address,
            )
        finally:
            agent.close()


def load_private_key(path: str, passphrase: str = None, host: str = None) -> paramiko.PKey:
    """Load a private key file, trying each supported key type."""
    for key_class in KEY_CLASSES:
        try:
            return key_class.from_private_key_file(path, password=passphrase)
        except paramiko.PasswordRequiredException as e:
            raise AuthError(
                "Private key is encrypted and no passphrase was given",
                reason=AuthError.INVALID_KEY,
                host=host,
            ) from e
        except (paramiko.SSHException, ValueError):
            continue

    raise AuthError("Unable to parse private key", reason=AuthError.INVALID_KEY, host=host)
