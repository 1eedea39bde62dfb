"""Tests for the pinned SSH session."""

import socket
from unittest.mock import MagicMock

import paramiko
import pytest

from neph.config import NephSettings
from neph.errors import ConnectionFailed, LogicError, OperationTimeout, SessionFailed
from neph.models import Credential, RemoteHost
from neph.remote.session import (
    SecureSession,
    SessionState,
    host_key_algorithms,
    keys_match,
)


@pytest.fixture
def credential(rsa_key):
    """Create a credential for the service user."""
    return Credential(identity="root", key=rsa_key, source="/root/.ssh/neph-rsa-private-key")


@pytest.fixture
def transport(rsa_key):
    """Create a transport that presents the pinned key and accepts auth."""
    transport = MagicMock()
    transport.get_remote_server_key.return_value = rsa_key
    transport.is_authenticated.return_value = True
    transport.is_active.return_value = True
    return transport


@pytest.fixture
def sock():
    """Create a fake socket."""
    return MagicMock()


def make_session(host, credential, sock, transport, **settings):
    return SecureSession(
        host,
        credential,
        NephSettings(**settings),
        socket_factory=MagicMock(return_value=sock),
        transport_factory=MagicMock(return_value=transport),
    )


class TestKeyHelpers:
    """Tests for key comparison helpers."""

    def test_keys_match(self, rsa_key, other_rsa_key):
        """Test that only the same key matches."""
        assert keys_match(rsa_key, paramiko.RSAKey(data=rsa_key.asbytes()))
        assert not keys_match(rsa_key, other_rsa_key)
        assert not keys_match(rsa_key, None)

    def test_rsa_algorithms(self, rsa_key):
        """Test that an RSA key allows the SHA-2 signature variants."""
        assert host_key_algorithms(rsa_key) == ["rsa-sha2-512", "rsa-sha2-256", "ssh-rsa"]


class TestConnect:
    """Tests for SecureSession.connect."""

    def test_connect(self, rsa_key, credential, sock, transport):
        """Test a successful connection."""
        host = RemoteHost("10.1.2.3", 2222, host_key=rsa_key)
        session = make_session(host, credential, sock, transport, connect_timeout=5)

        assert session.state == SessionState.KEYED
        assert session.connect() is session

        assert session.state == SessionState.CONNECTED
        assert session.is_connected()
        session._socket_factory.assert_called_once_with(("10.1.2.3", 2222), timeout=5)
        transport.start_client.assert_called_once_with(timeout=5)
        transport.auth_publickey.assert_called_once_with("root", rsa_key)
        assert transport.get_security_options().key_types == [
            "rsa-sha2-512", "rsa-sha2-256", "ssh-rsa",
        ]

    def test_unpinned_host(self, credential, sock, transport):
        """Test that connecting without a pinned key is refused."""
        session = make_session(RemoteHost("10.1.2.3"), credential, sock, transport)

        assert session.state == SessionState.UNKEYED
        with pytest.raises(LogicError):
            session.connect()
        session._socket_factory.assert_not_called()

    def test_host_key_mismatch(self, rsa_key, other_rsa_key, credential, sock, transport):
        """Test that a different host key aborts before authentication."""
        transport.get_remote_server_key.return_value = other_rsa_key
        session = make_session(RemoteHost("10.1.2.3", host_key=rsa_key), credential, sock, transport)

        with pytest.raises(ConnectionFailed, match="host key mismatch"):
            session.connect()

        transport.auth_publickey.assert_not_called()
        transport.close.assert_called_once()
        sock.close.assert_called_once()
        assert session.state == SessionState.KEYED

    def test_auth_rejected(self, rsa_key, credential, sock, transport):
        """Test that a rejected key is a connection failure."""
        transport.auth_publickey.side_effect = paramiko.AuthenticationException("denied")
        session = make_session(RemoteHost("10.1.2.3", host_key=rsa_key), credential, sock, transport)

        with pytest.raises(ConnectionFailed, match="authentication as root"):
            session.connect()
        transport.close.assert_called_once()

    def test_not_authenticated(self, rsa_key, credential, sock, transport):
        """Test that partial authentication is a connection failure."""
        transport.is_authenticated.return_value = False
        session = make_session(RemoteHost("10.1.2.3", host_key=rsa_key), credential, sock, transport)

        with pytest.raises(ConnectionFailed):
            session.connect()

    def test_handshake_error(self, rsa_key, credential, sock, transport):
        """Test that a failed handshake is a connection failure."""
        transport.start_client.side_effect = paramiko.SSHException("no matching host key type")
        session = make_session(RemoteHost("10.1.2.3", host_key=rsa_key), credential, sock, transport)

        with pytest.raises(ConnectionFailed, match="no matching host key type"):
            session.connect()

    def test_dial_refused(self, rsa_key, credential, sock, transport):
        """Test that a refused TCP connection is a connection failure."""
        session = make_session(RemoteHost("10.1.2.3", host_key=rsa_key), credential, sock, transport)
        session._socket_factory.side_effect = ConnectionRefusedError("refused")

        with pytest.raises(ConnectionFailed, match="failed to dial"):
            session.connect()

    def test_dial_timeout(self, rsa_key, credential, sock, transport):
        """Test that a dial timeout is an operation timeout."""
        session = make_session(RemoteHost("10.1.2.3", host_key=rsa_key), credential, sock, transport)
        session._socket_factory.side_effect = socket.timeout("timed out")

        with pytest.raises(OperationTimeout):
            session.connect()

    def test_connect_twice(self, rsa_key, credential, sock, transport):
        """Test that a connected session can't connect again."""
        session = make_session(RemoteHost("10.1.2.3", host_key=rsa_key), credential, sock, transport)
        session.connect()

        with pytest.raises(LogicError):
            session.connect()


class TestChannels:
    """Tests for opening channels and closing."""

    def test_open_channel(self, rsa_key, credential, sock, transport):
        """Test opening a channel on a connected session."""
        session = make_session(RemoteHost("10.1.2.3", host_key=rsa_key), credential, sock, transport)
        session.connect()

        assert session.open_channel() is transport.open_session.return_value

    def test_open_channel_before_connect(self, rsa_key, credential, sock, transport):
        """Test that a channel needs a connection."""
        session = make_session(RemoteHost("10.1.2.3", host_key=rsa_key), credential, sock, transport)

        with pytest.raises(SessionFailed):
            session.open_channel()

    def test_open_channel_refused(self, rsa_key, credential, sock, transport):
        """Test that a refused channel is a session failure."""
        transport.open_session.side_effect = paramiko.ChannelException(1, "prohibited")
        session = make_session(RemoteHost("10.1.2.3", host_key=rsa_key), credential, sock, transport)
        session.connect()

        with pytest.raises(SessionFailed):
            session.open_channel()

    def test_close_is_idempotent(self, rsa_key, credential, sock, transport):
        """Test that closing twice closes the transport once."""
        session = make_session(RemoteHost("10.1.2.3", host_key=rsa_key), credential, sock, transport)
        session.connect()

        session.close()
        session.close()

        transport.close.assert_called_once()
        assert session.state == SessionState.CLOSED
        assert not session.is_connected()
        with pytest.raises(SessionFailed):
            session.open_channel()

    def test_context_manager(self, rsa_key, credential, sock, transport):
        """Test that the context manager connects and always closes."""
        session = make_session(RemoteHost("10.1.2.3", host_key=rsa_key), credential, sock, transport)

        with pytest.raises(RuntimeError):
            with session as connected:
                assert connected.state == SessionState.CONNECTED
                raise RuntimeError("fail inside")

        assert session.state == SessionState.CLOSED
        transport.close.assert_called_once()
