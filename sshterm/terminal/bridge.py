"""
Bridge between a ShellPump and a Qt terminal renderer.
"""

from __future__ import annotations
import logging
from typing import Optional

from PyQt6.QtCore import QObject, pyqtSignal, pyqtSlot

from ..errors import SessionIOError
from ..session.base import (
    SessionEvent, DataReceived, EndOfStream, StreamError, ShellHandle,
)
from .banner import format_banner

logger = logging.getLogger(__name__)


class ShellBridge(QObject):
    """
    Pump sink that re-emits events as Qt signals.

    The pump calls the bridge on its read thread; Qt queues the signals
    to receivers living on the GUI thread, so slots never run on the
    read thread.

    Usage:
        bridge = ShellBridge()
        bridge.data_received.connect(terminal.write)
        bridge.banner.connect(terminal.write)
        pump = manager.open_shell(session_id, bridge)
        bridge.attach(pump)
    """

    # Pump -> renderer
    data_received = pyqtSignal(bytes)
    stream_closed = pyqtSignal()
    stream_error = pyqtSignal(str)
    banner = pyqtSignal(bytes)          # inline status line for the terminal

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._shell: Optional[ShellHandle] = None

    def attach(self, shell: ShellHandle) -> None:
        """Route input and resize slots to shell."""
        self._shell = shell

    def detach(self) -> None:
        self._shell = None

    def __call__(self, event: SessionEvent) -> None:
        if isinstance(event, DataReceived):
            self.data_received.emit(event.data)
            return

        if isinstance(event, EndOfStream):
            self.stream_closed.emit()
        elif isinstance(event, StreamError):
            self.stream_error.emit(event.message)
        else:
            return

        banner = format_banner(event)
        if banner:
            self.banner.emit(banner)

    @pyqtSlot(bytes)
    def send_input(self, data: bytes) -> None:
        """Renderer keystrokes -> remote."""
        if self._shell is None:
            return
        try:
            self._shell.write(data)
        except SessionIOError as e:
            logger.debug(f"Input dropped: {e}")

    @pyqtSlot(int, int)
    def send_resize(self, cols: int, rows: int) -> None:
        """Renderer resize -> remote pty."""
        if self._shell is not None:
            self._shell.resize(cols, rows)
