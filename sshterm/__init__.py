"""
sshterm - SSH session management for terminal front ends.

Clean architecture with:
- Host profiles (fully serializable, jump host chains)
- Connector with jump host support via local port forwarding
- Strict single-strategy auth (key, password, or agent)
- Shell I/O pump with a dedicated read thread per shell
- Local/remote port forwards and SFTP subchannels
- Host key verification on by default
"""

__version__ = "0.1.0"

from .connection.profile import (
    HostProfile,
    PortForwardRule,
    ForwardType,
    AuthStrategy,
)
from .errors import (
    SSHTermError,
    ProfileError,
    JumpChainError,
    NetworkError,
    HostKeyError,
    AuthError,
    ChannelError,
    SessionNotFound,
    SessionIOError,
)
from .session import (
    SessionManager,
    SessionRegistry,
    Connector,
    Session,
    ShellPump,
    EventQueue,
    PumpState,
    DataReceived,
    EndOfStream,
    StreamError,
)
from .vault import CredentialKind, KeyringCredentialStore, MemoryCredentialStore

__all__ = [
    # Profiles
    "HostProfile",
    "PortForwardRule",
    "ForwardType",
    "AuthStrategy",
    # Errors
    "SSHTermError",
    "ProfileError",
    "JumpChainError",
    "NetworkError",
    "HostKeyError",
    "AuthError",
    "ChannelError",
    "SessionNotFound",
    "SessionIOError",
    # Sessions
    "SessionManager",
    "SessionRegistry",
    "Connector",
    "Session",
    "ShellPump",
    "EventQueue",
    "PumpState",
    "DataReceived",
    "EndOfStream",
    "StreamError",
    # Credentials
    "CredentialKind",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
]
