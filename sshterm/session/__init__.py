"""
Session management - connection establishment, live session tracking
and the channels opened on top of a session.

- Connector: authenticated connections, direct or through jump hosts
- SessionRegistry: thread-safe map of live sessions
- ShellPump: interactive shell with a dedicated read thread
- ForwardTunnel / RemoteForward / FileTransferChannel: secondary channels
- SessionManager: all of the above behind one session-id keyed API
"""

from .base import (
    PumpState,
    SessionEvent,
    DataReceived,
    EndOfStream,
    StreamError,
    StateChanged,
    ShellHandle,
)
from .auth import Authenticator
from .hostkeys import HostKeyVerifier, HostKeyPolicy
from .registry import SessionRegistry
from .ssh import Connector, Session
from .shell import ShellPump, EventQueue
from .forward import ForwardTunnel, RemoteForward, FileTransferChannel
from .manager import SessionManager, CommandResult

__all__ = [
    # Events and states
    "PumpState",
    "SessionEvent",
    "DataReceived",
    "EndOfStream",
    "StreamError",
    "StateChanged",
    "ShellHandle",
    # Connection
    "Authenticator",
    "HostKeyVerifier",
    "HostKeyPolicy",
    "SessionRegistry",
    "Connector",
    "Session",
    # Channels
    "ShellPump",
    "EventQueue",
    "ForwardTunnel",
    "RemoteForward",
    "FileTransferChannel",
    "SessionManager",
    "CommandResult",
]
