"""
Tests for interface description parsing and lookup.
"""

import socket
from collections import namedtuple

import psutil
import pytest
from tcppeer.address import Endpoint
from tcppeer.errors import InterfaceError
from tcppeer.interface import get_interface_addresses, parse_interface_description


snic = namedtuple("snic", ["family", "address", "netmask", "broadcast", "ptp"])

FAKE_INTERFACES = {
    "lo": [
        snic(socket.AF_INET, "127.0.0.1", "255.0.0.0", None, None),
        snic(socket.AF_INET6, "::1", "ffff:ffff:ffff:ffff:ffff:ffff:ffff:ffff", None, None),
    ],
    "eth0": [
        snic(psutil.AF_LINK, "00:11:22:33:44:55", None, None, None),
        snic(socket.AF_INET, "10.0.0.5", "255.255.255.0", "10.0.0.255", None),
        snic(socket.AF_INET, "10.0.0.6", "255.255.255.0", "10.0.0.255", None),
        snic(socket.AF_INET6, "fe80::1%eth0", "ffff:ffff:ffff:ffff::", None, None),
    ],
}


@pytest.fixture
def fake_interfaces(monkeypatch):
    monkeypatch.setattr(psutil, "net_if_addrs", lambda: FAKE_INTERFACES)
    monkeypatch.setattr(socket, "if_nametoindex", lambda name: 7)


class TestParseInterfaceDescription:
    """Test splitting descriptions into interface and port."""

    @pytest.mark.parametrize("description,port,expected", [
        ("en1", 0, ("en1", 0)),
        ("en1:8080", 0, ("en1", 8080)),
        ("en1:8080", 9000, ("en1", 9000)),
        (":8080", 0, (None, 8080)),
        ("", 0, (None, 0)),
        ("en1:abc", 0, ("en1", 0)),
        ("en1:70000", 0, ("en1", 0)),
        ("en1:0", 0, ("en1", 0)),
        ("en1:-5", 0, ("en1", 0)),
        ("en1: 42xyz", 0, ("en1", 42)),
        ("192.168.4.34:1234", 0, ("192.168.4.34", 1234)),
    ])
    def test_parse(self, description, port, expected):
        assert parse_interface_description(description, port) == expected


class TestGetInterfaceAddresses:
    """Test resolving descriptions to local addresses."""

    def test_wildcard(self):
        """No interface part gives the wildcard addresses."""
        addr4, addr6 = get_interface_addresses(":4000")

        assert addr4 == Endpoint.ipv4("0.0.0.0", 4000)
        assert addr6 == Endpoint.ipv6("::", 4000)

    def test_loopback(self):
        addr4, addr6 = get_interface_addresses("localhost", 5000)

        assert addr4 == Endpoint.ipv4("127.0.0.1", 5000)
        assert addr6 == Endpoint.ipv6("::1", 5000)

    def test_by_name(self, fake_interfaces):
        """Test the first address of each family on a named interface."""
        addr4, addr6 = get_interface_addresses("eth0:1234")

        assert addr4 == Endpoint.ipv4("10.0.0.5", 1234)
        assert addr6.host == "fe80::1"
        assert addr6.port == 1234
        assert addr6.scope_id == 7

    def test_by_ip(self, fake_interfaces):
        """Matching by IP yields only that family."""
        addr4, addr6 = get_interface_addresses("10.0.0.6")

        assert addr4 == Endpoint.ipv4("10.0.0.6", 0)
        assert addr6 is None

    def test_unknown(self, fake_interfaces):
        """Test that an unknown interface is rejected."""
        with pytest.raises(InterfaceError):
            get_interface_addresses("wlan9")

    def test_real_loopback_ip(self):
        """127.0.0.1 is assigned to a real interface on any host."""
        addr4, _ = get_interface_addresses("127.0.0.1")
        assert addr4 == Endpoint.ipv4("127.0.0.1", 0)
