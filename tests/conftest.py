"""Shared fixtures for sshterm tests."""

import socket
import time
from unittest.mock import MagicMock

import paramiko
import pytest

from sshterm.connection.profile import HostProfile
from sshterm.session.ssh import _apply_global_transport_settings

_RealTransport = paramiko.Transport
_RealChannel = paramiko.Channel


@pytest.fixture(scope="session", autouse=True)
def _configure_transport_once():
    # Tests patch paramiko.Transport; configure the real class before any do
    _apply_global_transport_settings()


def make_transport(active=True):
    """Create a mock paramiko.Transport that looks negotiated and authenticated."""
    t = MagicMock(spec=_RealTransport)
    t.is_active.return_value = active
    t.is_authenticated.return_value = True
    t.remote_cipher = "aes128-ctr"
    t.remote_mac = "hmac-sha2-256"
    t.open_channel.return_value = MagicMock(spec=_RealChannel)
    t.open_session.return_value = MagicMock(spec=_RealChannel)
    return t


class FakeChannel:
    """
    Shell channel double. recv() hands out the queued items in order:
    bytes are returned, exceptions raised. Once the queue is empty it
    behaves like an idle shell and times out. delay slows each recv()
    down so other threads get a look in while data is still arriving.
    """

    def __init__(self, chunks=(), delay=0.0):
        self._chunks = list(chunks)
        self.delay = delay
        self.sent = []
        self.recv_calls = 0
        self.closed = False
        self.pty = None
        self.resized = None
        self.timeout = None

    def get_pty(self, term, width, height):
        self.pty = (term, width, height)

    def invoke_shell(self):
        pass

    def settimeout(self, timeout):
        self.timeout = timeout

    def recv(self, nbytes):
        self.recv_calls += 1
        if not self._chunks:
            time.sleep(0.01)
            raise socket.timeout()
        if self.delay:
            time.sleep(self.delay)
        item = self._chunks.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def sendall(self, data):
        self.sent.append(data)

    def resize_pty(self, width, height):
        self.resized = (width, height)

    def close(self):
        self.closed = True


@pytest.fixture
def transport_factory():
    return make_transport


@pytest.fixture
def fake_channel():
    return FakeChannel


@pytest.fixture
def profile():
    return HostProfile(
        hostname="web01.example.com",
        username="ops",
        password="secret",
        name="web01",
    )
