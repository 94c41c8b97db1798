"""
Tests for the connect pipeline: family selection, validation, socket setup.
"""

import errno
import socket
import time

import pytest
from tcppeer.address import CandidatePair, Endpoint
from tcppeer.connection import (
    ConnectEngine, ConnectionConfig, ConnectPlan, raw_address_candidates,
    select_family, tune_socket,
)
from tcppeer.errors import (
    ConfigurationError, InterfaceError, PeerTimeoutError, ResolutionError, SocketError,
)
from tcppeer.states import PeerState


V4 = Endpoint.ipv4("192.0.2.1", 80)
V6 = Endpoint.ipv6("2001:db8::1", 80)


def no_socket(*args, **kwargs):
    raise AssertionError("socket() should not be called")


class TestSelectFamily:
    """Test choosing between IPv4 and IPv6 candidates."""

    @pytest.mark.parametrize("ipv4,ipv6,kwargs,expected", [
        (V4, V6, {}, V4),
        (V4, V6, {"ipv4_preferred": False}, V6),
        (V4, None, {"ipv4_preferred": False}, V4),
        (None, V6, {}, V6),
        (V4, V6, {"ipv4_enabled": False}, V6),
        (None, None, {}, None),
    ])
    def test_select(self, ipv4, ipv6, kwargs, expected):
        assert select_family(ipv4, ipv6, ConnectionConfig(**kwargs)) == expected


class TestRawAddress:
    """Test validating caller supplied addresses."""

    def test_ipv4_bytes(self):
        pair = raw_address_candidates(V4.to_bytes())
        assert pair == CandidatePair(ipv4=V4)

    def test_ipv6_bytes(self):
        pair = raw_address_candidates(bytearray(V6.to_bytes()))
        assert pair == CandidatePair(ipv6=V6)

    def test_endpoint(self):
        assert raw_address_candidates(V6) == CandidatePair(ipv6=V6)

    @pytest.mark.parametrize("data", [
        b"",
        b"\x02\x00\x00\x50",
        V4.to_bytes() + b"\x00",
        V6.to_bytes()[:16],
        bytes(16),
    ])
    def test_invalid(self, data):
        """Wrong sizes and unknown families are rejected."""
        with pytest.raises(ConfigurationError):
            raw_address_candidates(data)


class TestConnectionConfig:

    def test_defaults(self):
        config = ConnectionConfig()
        assert config.ipv4_enabled and config.ipv6_enabled
        assert config.ipv4_preferred
        assert config.timeout == 75.0
        assert not config.close_on_empty_write

    def test_invalid_buffer_size(self):
        with pytest.raises(ConfigurationError):
            ConnectionConfig(buffer_size=0).validate()


class TestPreconditions:
    """Test failures that happen before any socket exists."""

    def test_both_families_disabled(self, monkeypatch):
        engine = ConnectEngine(ConnectionConfig(ipv4_enabled=False, ipv6_enabled=False))
        monkeypatch.setattr(socket, "socket", no_socket)

        with pytest.raises(ConfigurationError):
            engine.connect_to_host(PeerState.CLOSED, "localhost", 80)

    def test_already_connected(self, monkeypatch):
        engine = ConnectEngine()
        monkeypatch.setattr(socket, "socket", no_socket)

        with pytest.raises(ConfigurationError):
            engine.connect_to_host(PeerState.CONNECTED, "localhost", 80)
        with pytest.raises(ConfigurationError):
            engine.connect_to_address(PeerState.CONNECTING, V4)

    @pytest.mark.parametrize("host,port", [("", 80), (None, 80), ("localhost", 70000)])
    def test_invalid_target(self, host, port):
        with pytest.raises(ConfigurationError):
            ConnectEngine().connect_to_host(PeerState.CLOSED, host, port)

    def test_disabled_family_address(self, monkeypatch):
        """A raw address of a disabled family is a configuration error."""
        monkeypatch.setattr(socket, "socket", no_socket)

        engine = ConnectEngine(ConnectionConfig(ipv4_enabled=False))
        with pytest.raises(ConfigurationError):
            engine.connect_to_address(PeerState.CLOSED, V4)

        engine = ConnectEngine(ConnectionConfig(ipv6_enabled=False))
        with pytest.raises(ConfigurationError):
            engine.connect_to_address(PeerState.CLOSED, V6.to_bytes())


class TestPlanning:
    """Test masking families and choosing the local address."""

    def test_restrict_target(self):
        engine = ConnectEngine(ConnectionConfig(ipv4_enabled=False))

        assert engine.restrict_target(CandidatePair(V4, V6)) == CandidatePair(ipv6=V6)
        with pytest.raises(ResolutionError) as exc_info:
            engine.restrict_target(CandidatePair(ipv4=V4))
        assert exc_info.value.code == socket.EAI_FAMILY

    def test_restrict_target_ipv6_disabled(self):
        engine = ConnectEngine(ConnectionConfig(ipv6_enabled=False))

        assert engine.restrict_target(CandidatePair(V4, V6)) == CandidatePair(ipv4=V4)
        with pytest.raises(ResolutionError):
            engine.restrict_target(CandidatePair(ipv6=V6))

    def test_plan_without_interface(self):
        plan = ConnectEngine().plan(CandidatePair(V4, V6))
        assert plan == ConnectPlan(V4)
        assert plan.family == socket.AF_INET

    def test_plan_follows_interface_family(self):
        """The remote family always matches the bound local address."""
        local6 = Endpoint.ipv6("::1", 0)
        plan = ConnectEngine().plan(CandidatePair(V4, V6), (None, local6))

        assert plan.remote == V6
        assert plan.local == local6

    def test_plan_interface_family_mismatch(self):
        local4 = Endpoint.ipv4("127.0.0.1", 0)
        with pytest.raises(InterfaceError):
            ConnectEngine().plan(CandidatePair(ipv6=V6), (local4, None))

    def test_resolve_interface(self):
        """Disabled families are dropped from interface addresses."""
        engine = ConnectEngine(ConnectionConfig(ipv6_enabled=False))

        assert engine.resolve_interface(None) is None
        assert engine.resolve_interface("localhost") == (Endpoint.ipv4("127.0.0.1", 0), None)

    def test_resolve_interface_only_disabled_family(self):
        engine = ConnectEngine(ConnectionConfig(ipv4_enabled=False))

        with pytest.raises(InterfaceError):
            engine.resolve_interface("127.0.0.1")


class TestTuneSocket:

    def test_nodelay(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            tune_socket(sock, 4096)
            assert sock.getsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY) != 0

    def test_nodelay_disabled(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            tune_socket(sock, 4096, nodelay=False)
            assert sock.getsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY) == 0


class TestConnect:
    """Test real connects on the loopback interface."""

    def test_connect_to_host(self, echo_server):
        host, port = echo_server
        created = []

        sock, plan = ConnectEngine().connect_to_host(
            PeerState.CLOSED, host, port, timeout=5, on_created=created.append
        )
        try:
            assert created == [sock]
            assert sock.getpeername() == (host, port)
            assert plan.remote == Endpoint.ipv4(host, port)
            assert plan.local is None
            assert not sock.getblocking()
        finally:
            sock.close()

    def test_connect_to_address_bytes(self, echo_server):
        host, port = echo_server

        sock, plan = ConnectEngine().connect_to_address(
            PeerState.CLOSED, Endpoint.ipv4(host, port).to_bytes(), timeout=5
        )
        with sock:
            assert sock.getpeername()[1] == port

    def test_connect_via_interface(self, echo_server, closed_port):
        """Binding to an interface with a fixed local port."""
        host, port = echo_server

        sock, plan = ConnectEngine().connect_to_host(
            PeerState.CLOSED, host, port, interface=f"127.0.0.1:{closed_port}", timeout=5
        )
        with sock:
            assert plan.local == Endpoint.ipv4("127.0.0.1", closed_port)
            assert sock.getsockname() == ("127.0.0.1", closed_port)

    def test_refused(self, closed_port):
        """A refused connect raises and closes the socket."""
        created = []

        with pytest.raises(SocketError) as exc_info:
            ConnectEngine().connect_to_host(
                PeerState.CLOSED, "127.0.0.1", closed_port, timeout=5, on_created=created.append
            )

        assert exc_info.value.errno == errno.ECONNREFUSED
        assert not isinstance(exc_info.value, PeerTimeoutError)
        assert len(created) == 1
        assert created[0].fileno() == -1

    def test_no_local_ports(self, monkeypatch, closed_port):
        """EAGAIN from connect() fails at once instead of waiting."""
        monkeypatch.setattr(socket.socket, "connect_ex", lambda self, address: errno.EAGAIN)
        created = []

        with pytest.raises(SocketError) as exc_info:
            ConnectEngine().connect_to_host(
                PeerState.CLOSED, "127.0.0.1", closed_port, timeout=2, on_created=created.append
            )

        assert exc_info.value.errno == errno.EAGAIN
        assert created[0].fileno() == -1

    def test_timeout(self):
        """Connecting to a blackholed address times out within the budget."""
        engine = ConnectEngine()
        start = time.monotonic()

        try:
            sock, _ = engine.connect_to_address(
                PeerState.CLOSED, Endpoint.ipv4("10.255.255.1", 81), timeout=1
            )
        except PeerTimeoutError as e:
            elapsed = time.monotonic() - start
            assert e.errno == errno.ETIMEDOUT
            assert isinstance(e, TimeoutError)
            assert 0.9 <= elapsed < 3.0
        except SocketError as e:
            if e.errno in (errno.ENETUNREACH, errno.EHOSTUNREACH, errno.ECONNREFUSED,
                           errno.EACCES, errno.EPERM):
                pytest.skip(f"No route to a blackholed address: {e}")
            raise
        else:
            sock.close()
            pytest.skip("Blackholed address unexpectedly accepted the connection")
