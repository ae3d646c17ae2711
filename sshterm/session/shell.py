"""
Shell I/O pump - interactive shell channel with a dedicated read thread.
"""

from __future__ import annotations
import logging
import queue
import socket
import threading
from typing import Optional, TYPE_CHECKING

import paramiko

from ..errors import ChannelError, SessionIOError
from .base import (
    ShellHandle, PumpState, SessionEvent, EventSink,
    DataReceived, EndOfStream, StreamError, StateChanged,
)

if TYPE_CHECKING:
    from .ssh import Session

logger = logging.getLogger(__name__)


class ShellPump(ShellHandle):
    """
    Pumps a remote shell's output to a sink.

    States: IDLE -> READING -> CLOSED. The read thread owns the channel
    and is the only thing that closes it; stop() just asks it to.

    The sink is called on the read thread. Renderers that need their own
    thread should pass an EventQueue or a ShellBridge.
    """

    READ_BUFFER_SIZE = 4096
    POLL_INTERVAL = 0.1

    def __init__(
        self,
        session: Session,
        sink: EventSink,
        cols: Optional[int] = None,
        rows: Optional[int] = None,
        buffer_size: int = READ_BUFFER_SIZE,
    ):
        self.session = session
        self._sink = sink
        self._cols = cols or session.profile.term_cols
        self._rows = rows or session.profile.term_rows
        self.buffer_size = buffer_size

        self._state = PumpState.IDLE
        self._state_lock = threading.Lock()
        self._finished = False

        self._channel: Optional[paramiko.Channel] = None
        self._read_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def state(self) -> PumpState:
        """Current pump state (thread-safe)."""
        with self._state_lock:
            return self._state

    @property
    def size(self) -> tuple[int, int]:
        return self._cols, self._rows

    def _emit(self, event: SessionEvent) -> None:
        """Hand an event to the sink, never letting it kill the loop."""
        try:
            self._sink(event)
        except Exception as e:
            logger.exception(f"Event sink error: {e}")

    def _set_state(self, new_state: PumpState, message: str = "") -> bool:
        """Update state and emit event. False if already in new_state."""
        with self._state_lock:
            old_state = self._state
            if old_state == new_state:
                return False
            self._state = new_state
        logger.info(f"Shell state: {old_state.name} -> {new_state.name} {message}")
        self._emit(StateChanged(old_state, new_state, message))
        return True

    def _finish(self, event: Optional[SessionEvent], message: str = "") -> None:
        """Move to CLOSED and deliver the terminating event, once."""
        with self._state_lock:
            if self._finished:
                return
            self._finished = True
        self._set_state(PumpState.CLOSED, message)
        if event is not None:
            self._emit(event)

    def start(self) -> ShellPump:
        """
        Open the shell channel and start reading.

        Returns self, which is the handle for write/resize/stop.

        Raises:
            ChannelError: the channel could not be opened; the session
                itself is left alone
        """
        if self.state is not PumpState.IDLE:
            raise ChannelError("Shell pump already started")

        profile = self.session.profile
        channel = None
        try:
            channel = self.session.transport.open_session()
            channel.get_pty(term=profile.term_type, width=self._cols, height=self._rows)
            channel.invoke_shell()
            channel.settimeout(self.POLL_INTERVAL)
        except (paramiko.SSHException, EOFError, OSError) as e:
            if channel is not None:
                try:
                    channel.close()
                except Exception as close_error:
                    logger.debug(f"Channel close error: {close_error}")
            self._finish(None, "open failed")
            raise ChannelError(f"Cannot open shell: {e}", host=profile.address) from e

        self._channel = channel
        self._set_state(PumpState.READING)

        self._read_thread = threading.Thread(
            target=self._read_loop,
            name=f"sshterm-shell-{self.session.id[:8]}",
            daemon=True,
        )
        self._read_thread.start()
        return self

    def _read_loop(self) -> None:
        """Read from channel until stopped, EOF or error."""
        try:
            while not self._stop_event.is_set():
                try:
                    data = self._channel.recv(self.buffer_size)
                except socket.timeout:
                    continue
                except Exception as e:
                    if self._stop_event.is_set():
                        break
                    logger.warning(f"Shell read error: {e}")
                    self._finish(StreamError(f"Error reading from shell: {e}"), "read error")
                    return

                if self._stop_event.is_set():
                    break

                if not data:
                    logger.info("Channel closed by remote")
                    self._finish(EndOfStream(), "remote closed")
                    return

                self._emit(DataReceived(data))

            self._finish(None, "stopped")
        finally:
            self._close_channel()

    def _close_channel(self) -> None:
        if self._channel:
            try:
                self._channel.close()
            except Exception as e:
                logger.debug(f"Channel close error: {e}")

    def write(self, data: bytes) -> None:
        """
        Send data to remote.

        Raises:
            SessionIOError: not reading, or the send failed. A failed send
                closes this pump only.
        """
        if self.state is not PumpState.READING or self._channel is None:
            raise SessionIOError("Shell is not open")
        try:
            self._channel.sendall(data)
        except Exception as e:
            logger.error(f"Write error: {e}")
            self._stop_event.set()
            self._finish(StreamError(f"Error sending data: {e}"), "write error")
            raise SessionIOError(f"Error sending data: {e}") from e

    def resize(self, cols: int, rows: int) -> None:
        """Notify remote of terminal resize."""
        self._cols = cols
        self._rows = rows
        if self.state is not PumpState.READING or self._channel is None:
            logger.debug(f"Ignoring resize to {cols}x{rows} while {self.state.name}")
            return
        try:
            self._channel.resize_pty(width=cols, height=rows)
        except Exception as e:
            logger.error(f"Resize error: {e}")

    def stop(self) -> None:
        """Ask the read loop to exit. Second and later calls do nothing."""
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        logger.debug(f"Stop requested for shell on session {self.session.id}")
        if self._read_thread is None:
            self._finish(None, "stopped before start")

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the read thread. True if it has exited."""
        if self._read_thread is None:
            return True
        self._read_thread.join(timeout)
        return not self._read_thread.is_alive()


class EventQueue:
    """
    Sink that queues events for a consumer on another thread.

    Usage:
        events = EventQueue()
        pump = manager.open_shell(session_id, events)
        ...
        for event in events.drain():   # e.g. from a UI timer
            render(event)
    """

    def __init__(self, maxsize: int = 0):
        self._queue: queue.Queue[SessionEvent] = queue.Queue(maxsize)

    def __call__(self, event: SessionEvent) -> None:
        self._queue.put(event)

    def get(self, timeout: Optional[float] = None) -> Optional[SessionEvent]:
        """Next event, or None if none arrived within timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[SessionEvent]:
        """Everything queued right now, without blocking."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def __len__(self) -> int:
        return self._queue.qsize()
