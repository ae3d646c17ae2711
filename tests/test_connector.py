"""Tests for sshterm.session.ssh - Connector and Session."""

import socket
import threading
from unittest.mock import MagicMock, patch, call

import paramiko
import pytest

from sshterm.config import AppSettings
from sshterm.connection.profile import HostProfile
from sshterm.errors import AuthError, NetworkError, HostKeyError, ProfileError, JumpChainError
from sshterm.session.registry import SessionRegistry
from sshterm.session.ssh import Connector, Session

from conftest import make_transport


def _connector(registry=None, **kwargs):
    if registry is None:
        registry = SessionRegistry()
    return Connector(
        registry,
        AppSettings(),
        host_keys=kwargs.pop("host_keys", MagicMock()),
        authenticator=kwargs.pop("authenticator", MagicMock()),
    )


def _port_is_closed(port):
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        return s.connect_ex(("127.0.0.1", port)) != 0
    finally:
        s.close()


def _jump_profile():
    return HostProfile(
        hostname="db.internal",
        username="dba",
        password="db-pw",
        jump_host=HostProfile(hostname="bastion.example.com", username="ops", use_agent=True),
    )


# ---------------------------------------------------------------------------
# Direct connections
# ---------------------------------------------------------------------------


class TestDirectConnect:
    @patch("sshterm.session.ssh.paramiko.Transport")
    @patch("sshterm.session.ssh.socket.create_connection")
    def test_connect_registers_session(self, mock_connect, mock_transport_cls, profile):
        t = make_transport()
        mock_transport_cls.return_value = t
        registry = SessionRegistry()
        connector = _connector(registry)

        session = connector.connect_blocking(profile)

        mock_connect.assert_called_once_with(("web01.example.com", 22), timeout=30.0)
        t.start_client.assert_called_once()
        connector.host_keys.verify.assert_called_once_with(t, "web01.example.com", 22)
        connector.authenticator.authenticate.assert_called_once()
        t.set_keepalive.assert_called_once_with(30)
        assert registry.get(session.id) is session
        assert session.is_connected

    @patch("sshterm.session.ssh.paramiko.Transport")
    @patch("sshterm.session.ssh.socket.create_connection")
    def test_connect_future(self, mock_connect, mock_transport_cls, profile):
        mock_transport_cls.return_value = make_transport()
        registry = SessionRegistry()
        connector = _connector(registry)
        done = threading.Event()

        future = connector.connect(profile, callback=lambda f: done.set())
        session = future.result(timeout=5)

        assert session.id in registry
        assert done.wait(5)
        connector.shutdown()

    @patch("sshterm.session.ssh.paramiko.Transport")
    @patch("sshterm.session.ssh.socket.create_connection")
    def test_unique_ids(self, mock_connect, mock_transport_cls, profile):
        mock_transport_cls.side_effect = lambda sock: make_transport()
        connector = _connector()
        a = connector.connect_blocking(profile)
        b = connector.connect_blocking(profile)
        assert a.id != b.id

    @patch("sshterm.session.ssh.paramiko.Transport")
    @patch("sshterm.session.ssh.socket.create_connection")
    def test_profile_snapshot(self, mock_connect, mock_transport_cls, profile):
        mock_transport_cls.return_value = make_transport()
        session = _connector().connect_blocking(profile)
        profile.hostname = "elsewhere"
        assert session.profile.hostname == "web01.example.com"
        assert session.profile is not profile


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestConnectFailures:
    @patch("sshterm.session.ssh.socket.create_connection")
    def test_tcp_failure(self, mock_connect, profile):
        mock_connect.side_effect = OSError("Connection refused")
        registry = SessionRegistry()
        with pytest.raises(NetworkError, match="refused"):
            _connector(registry).connect_blocking(profile)
        assert len(registry) == 0

    @patch("sshterm.session.ssh.socket.create_connection")
    def test_failure_surfaces_through_future(self, mock_connect, profile):
        mock_connect.side_effect = OSError("No route to host")
        connector = _connector()
        with pytest.raises(NetworkError):
            connector.connect(profile).result(timeout=5)
        connector.shutdown()

    @patch("sshterm.session.ssh.paramiko.Transport")
    @patch("sshterm.session.ssh.socket.create_connection")
    def test_negotiation_failure_closes_transport(self, mock_connect, mock_transport_cls, profile):
        t = make_transport()
        t.start_client.side_effect = paramiko.SSHException("kex failed")
        mock_transport_cls.return_value = t
        with pytest.raises(NetworkError, match="kex failed"):
            _connector().connect_blocking(profile)
        t.close.assert_called_once()

    @patch("sshterm.session.ssh.paramiko.Transport")
    @patch("sshterm.session.ssh.socket.create_connection")
    def test_auth_failure_closes_transport(self, mock_connect, mock_transport_cls, profile):
        t = make_transport()
        mock_transport_cls.return_value = t
        auth = MagicMock()
        auth.authenticate.side_effect = AuthError("rejected")
        registry = SessionRegistry()

        with pytest.raises(AuthError):
            _connector(registry, authenticator=auth).connect_blocking(profile)

        t.close.assert_called_once()
        assert len(registry) == 0

    @patch("sshterm.session.ssh.paramiko.Transport")
    @patch("sshterm.session.ssh.socket.create_connection")
    def test_host_key_failure_skips_auth(self, mock_connect, mock_transport_cls, profile):
        t = make_transport()
        mock_transport_cls.return_value = t
        host_keys = MagicMock()
        host_keys.verify.side_effect = HostKeyError("Unknown key")
        auth = MagicMock()

        with pytest.raises(HostKeyError):
            _connector(host_keys=host_keys, authenticator=auth).connect_blocking(profile)

        auth.authenticate.assert_not_called()
        t.close.assert_called_once()

    @patch("sshterm.session.ssh.socket.create_connection")
    def test_invalid_profile_rejected_before_io(self, mock_connect):
        with pytest.raises(ProfileError):
            _connector().connect_blocking(HostProfile(hostname="h"))
        mock_connect.assert_not_called()

    @patch("sshterm.session.ssh.socket.create_connection")
    def test_invalid_jump_host_rejected_before_io(self, mock_connect):
        p = HostProfile(hostname="h", username="u", jump_host=HostProfile(hostname="j", port=0, username="u"))
        with pytest.raises(ProfileError):
            _connector().connect_blocking(p)
        mock_connect.assert_not_called()

    @patch("sshterm.session.ssh.socket.create_connection")
    def test_cycle_rejected_before_io(self, mock_connect):
        p = HostProfile(hostname="a", username="u")
        p.jump_host = HostProfile(hostname="b", username="u", jump_host=HostProfile(hostname="a", username="u"))
        with pytest.raises(JumpChainError):
            _connector().connect_blocking(p)
        mock_connect.assert_not_called()


# ---------------------------------------------------------------------------
# Jump hosts
# ---------------------------------------------------------------------------


class TestJumpHost:
    @patch("sshterm.session.ssh.paramiko.Transport")
    @patch("sshterm.session.ssh.socket.create_connection")
    def test_connects_through_local_forward(self, mock_connect, mock_transport_cls):
        jump_t, target_t = make_transport(), make_transport()
        mock_transport_cls.side_effect = [jump_t, target_t]
        registry = SessionRegistry()
        connector = _connector(registry)

        session = connector.connect_blocking(_jump_profile())

        assert session.tunnel is not None
        port = session.tunnel.local_port
        assert port > 0
        assert mock_connect.call_args_list == [
            call(("bastion.example.com", 22), timeout=30.0),
            call(("127.0.0.1", port), timeout=30.0),
        ]
        # Host keys are checked against the logical names, not 127.0.0.1
        assert connector.host_keys.verify.call_args_list == [
            call(jump_t, "bastion.example.com", 22),
            call(target_t, "db.internal", 22),
        ]
        authed = [c.args[1].hostname for c in connector.authenticator.authenticate.call_args_list]
        assert authed == ["bastion.example.com", "db.internal"]

        # Only the outer session is registered
        assert registry.all() == [session]
        assert session.jump.transport is jump_t
        assert session.tunnel.remote_host == "db.internal"

        session.close()

    @patch("sshterm.session.ssh.paramiko.Transport")
    @patch("sshterm.session.ssh.socket.create_connection")
    def test_close_releases_everything(self, mock_connect, mock_transport_cls):
        jump_t, target_t = make_transport(), make_transport()
        mock_transport_cls.side_effect = [jump_t, target_t]
        session = _connector().connect_blocking(_jump_profile())
        port = session.tunnel.local_port

        session.close()

        target_t.close.assert_called_once()
        jump_t.close.assert_called_once()
        assert not session.tunnel.active
        assert _port_is_closed(port)

    @patch("sshterm.session.ssh.paramiko.Transport")
    @patch("sshterm.session.ssh.socket.create_connection")
    def test_target_failure_tears_down_jump(self, mock_connect, mock_transport_cls):
        jump_t, target_t = make_transport(), make_transport()
        mock_transport_cls.side_effect = [jump_t, target_t]
        auth = MagicMock()

        def _authenticate(transport, profile):
            if profile.hostname == "db.internal":
                raise AuthError("rejected", host=profile.address)

        auth.authenticate.side_effect = _authenticate
        registry = SessionRegistry()

        with pytest.raises(AuthError):
            _connector(registry, authenticator=auth).connect_blocking(_jump_profile())

        tunnel_port = mock_connect.call_args_list[1].args[0][1]
        target_t.close.assert_called_once()
        jump_t.close.assert_called_once()
        assert _port_is_closed(tunnel_port)
        assert len(registry) == 0

    @patch("sshterm.session.ssh.paramiko.Transport")
    @patch("sshterm.session.ssh.socket.create_connection")
    def test_jump_failure_never_reaches_target(self, mock_connect, mock_transport_cls):
        mock_connect.side_effect = OSError("timed out")
        with pytest.raises(NetworkError, match="bastion.example.com"):
            _connector().connect_blocking(_jump_profile())
        assert mock_connect.call_count == 1
        mock_transport_cls.assert_not_called()


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TestSession:
    def test_close_order_and_idempotent(self, profile):
        order = []
        t = make_transport()
        t.close.side_effect = lambda: order.append("transport")
        tunnel = MagicMock()
        tunnel.stop.side_effect = lambda: order.append("tunnel")
        jump = MagicMock()
        jump.close.side_effect = lambda: order.append("jump")

        s = Session(t, profile, jump=jump, tunnel=tunnel)
        s.close()
        s.close()

        assert order == ["transport", "tunnel", "jump"]
        assert not s.is_open
        assert not s.is_connected

    def test_is_connected_follows_transport(self, profile):
        t = make_transport(active=False)
        assert not Session(t, profile).is_connected
