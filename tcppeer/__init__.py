"""
tcppeer - Blocking TCP peers with deadline-bounded connect, read and write.

This package connects to a remote host (dual-stack resolution, optional
interface binding, non-blocking connect with a timeout) or wraps an accepted
connection, then performs exact-length reads, delimiter-terminated reads and
fully flushed writes through one fixed-size buffer, every wait bounded by a
single idle timeout.
"""

from .address import Endpoint, CandidatePair, lookup_host
from .address import host_from_address, port_from_address, family_from_address
from .address import get_host_port_family, is_ipv4_address, is_ipv6_address
from .buffer import IOBuffer, DelimiterScanner, CRLF, CR, LF, ZERO
from .connection import ConnectionConfig, ConnectEngine, DEFAULT_TIMEOUT
from .errors import (
    PeerError, ConfigurationError, ResolutionError, InterfaceError,
    SocketError, PeerTimeoutError, PeerClosedError, CapacityError,
)
from .interface import get_interface_addresses
from .socket import PeerSocket, create_connection
from .states import PeerState

__version__ = "1.0.0"

__all__ = [
    "Endpoint",
    "CandidatePair",
    "lookup_host",
    "host_from_address",
    "port_from_address",
    "family_from_address",
    "get_host_port_family",
    "is_ipv4_address",
    "is_ipv6_address",
    "IOBuffer",
    "DelimiterScanner",
    "CRLF",
    "CR",
    "LF",
    "ZERO",
    "ConnectionConfig",
    "ConnectEngine",
    "DEFAULT_TIMEOUT",
    "PeerError",
    "ConfigurationError",
    "ResolutionError",
    "InterfaceError",
    "SocketError",
    "PeerTimeoutError",
    "PeerClosedError",
    "CapacityError",
    "get_interface_addresses",
    "PeerSocket",
    "create_connection",
    "PeerState",
]
