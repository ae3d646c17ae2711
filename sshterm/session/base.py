"""
Pump states, events and the abstract shell handle.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from enum import Enum, auto
from dataclasses import dataclass
from typing import Callable


class PumpState(Enum):
    """Shell I/O pump states."""
    IDLE = auto()
    READING = auto()
    CLOSED = auto()


@dataclass
class SessionEvent:
    """Base class for session events."""
    pass


@dataclass
class DataReceived(SessionEvent):
    """Data received from remote."""
    data: bytes


@dataclass
class EndOfStream(SessionEvent):
    """Remote closed the shell cleanly."""
    message: str = "Connection closed"


@dataclass
class StreamError(SessionEvent):
    """Read or write failed; the channel is gone."""
    message: str


@dataclass
class StateChanged(SessionEvent):
    """Pump or session state changed."""
    old_state: Enum
    new_state: Enum
    message: str = ""


# Anything that accepts events - a callback, an EventQueue, a Qt bridge
EventSink = Callable[[SessionEvent], None]


class ShellHandle(ABC):
    """
    Abstract interactive shell.

    Renderers talk to this and never touch the transport directly.
    """

    @property
    @abstractmethod
    def state(self) -> PumpState:
        """Current pump state."""
        pass

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Send keystrokes to remote."""
        pass

    @abstractmethod
    def resize(self, cols: int, rows: int) -> None:
        """Notify remote of terminal resize."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop reading. Safe to call more than once."""
        pass
