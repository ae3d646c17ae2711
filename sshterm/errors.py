"""
Exception hierarchy for sshterm.

Every failure surfaced by the connection layer derives from SSHTermError,
so callers can catch broadly or by category.
"""

from __future__ import annotations
from typing import Optional


class SSHTermError(Exception):
    """Base class for all sshterm errors."""

    def __init__(self, message: str, host: Optional[str] = None):
        self.host = host
        if host:
            message = f"{message} [{host}]"
        super().__init__(message)


class ProfileError(SSHTermError):
    """Host profile is invalid (missing hostname, bad port, ...)."""


class JumpChainError(ProfileError):
    """Jump host chain is cyclic or deeper than allowed."""


class NetworkError(SSHTermError):
    """DNS, TCP connect, timeout or SSH negotiation failure."""


class HostKeyError(SSHTermError):
    """Remote host key is unknown or does not match known_hosts."""


class AuthError(SSHTermError):
    """
    Authentication failed.

    reason tells apart a profile with nothing to try from a server
    that rejected the method that was tried.
    """

    NO_METHOD_CONFIGURED = "no_method_configured"
    REJECTED = "rejected"
    INVALID_KEY = "invalid_key"
    AGENT_UNAVAILABLE = "agent_unavailable"

    def __init__(self, message: str, reason: str = REJECTED, host: Optional[str] = None):
        self.reason = reason
        super().__init__(message, host=host)


class ChannelError(SSHTermError):
    """Opening a shell, forward or subchannel failed on a live transport."""


class SessionNotFound(ChannelError):
    """No live session is registered under the given id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found or not connected: {session_id}")


class SessionIOError(SSHTermError):
    """Read or write failed mid-session on a single channel."""
