"""
Endpoint Addresses - Resolution and inspection of IPv4/IPv6 transport addresses.

An Endpoint is one family-tagged transport address: an IPv4 address and port,
or an IPv6 address, port, flow label and scope id. It converts to and from:

- the tuple form Python's socket module takes and returns
  (host, port) or (host, port, flowinfo, scope_id)
- the raw `struct sockaddr_in` / `struct sockaddr_in6` byte layout of the
  platform, so address lists from service discovery can be passed straight in

Raw layouts (Linux; BSD-derived systems replace the 16-bit family with an
8-bit length followed by an 8-bit family):

    sockaddr_in   | family:2 | port:2 (network order) | addr:4 | zero:8 |          = 16 bytes
    sockaddr_in6  | family:2 | port:2 | flowinfo:4 | addr:16 | scope_id:4 (host order) | = 28 bytes

Addresses are classified by their family tag only, never by value.
"""

import dataclasses
import logging
import socket
import struct
import sys
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

from .errors import ResolutionError


logger = logging.getLogger(__name__)


# Host names answered without a system lookup
LOOPBACK_NAMES = ("localhost", "loopback")

# sizeof(struct sockaddr), the minimum for any family-tagged address
SOCKADDR_SIZE = 16
SOCKADDR_IN_SIZE = 16
SOCKADDR_IN6_SIZE = 28

_BSD_LAYOUT = sys.platform.startswith(("darwin", "freebsd", "openbsd", "netbsd", "dragonfly"))


def _pack_family(family: int, length: int) -> bytes:
    if _BSD_LAYOUT:
        return struct.pack("BB", length, family)
    return struct.pack("=H", family)


def _unpack_family(data: bytes) -> int:
    if _BSD_LAYOUT:
        return data[1]
    return struct.unpack_from("=H", data)[0]


@dataclass(frozen=True)
class Endpoint:
    """A single IPv4 or IPv6 transport address."""
    family: int
    host: str
    port: int
    flowinfo: int = 0
    scope_id: int = 0

    def __post_init__(self):
        if self.family not in (socket.AF_INET, socket.AF_INET6):
            raise ValueError(f"Unsupported address family: {self.family}")
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"Port out of range: {self.port}")

    @classmethod
    def ipv4(cls, host: str, port: int) -> "Endpoint":
        return cls(socket.AF_INET, host, port)

    @classmethod
    def ipv6(cls, host: str, port: int, flowinfo: int = 0, scope_id: int = 0) -> "Endpoint":
        return cls(socket.AF_INET6, host, port, flowinfo, scope_id)

    @property
    def is_ipv4(self) -> bool:
        return self.family == socket.AF_INET

    @property
    def is_ipv6(self) -> bool:
        return self.family == socket.AF_INET6

    def with_port(self, port: int) -> "Endpoint":
        """Copy of this address with the port replaced."""
        return dataclasses.replace(self, port=port)

    def to_sockaddr(self) -> tuple:
        """Address tuple for socket.connect()/bind()."""
        if self.is_ipv4:
            return (self.host, self.port)
        return (self.host, self.port, self.flowinfo, self.scope_id)

    @classmethod
    def from_sockaddr(cls, family: int, sockaddr: tuple) -> "Endpoint":
        """Build from the tuple form returned by getaddrinfo/getpeername."""
        host = sockaddr[0]
        if family == socket.AF_INET6:
            # Some platforms append "%scope" to link-local hosts
            host = host.split("%", 1)[0]
            flowinfo = sockaddr[2] if len(sockaddr) > 2 else 0
            scope_id = sockaddr[3] if len(sockaddr) > 3 else 0
            return cls(family, host, sockaddr[1], flowinfo, scope_id)
        return cls(family, host, sockaddr[1])

    def to_bytes(self) -> bytes:
        """Raw platform sockaddr bytes."""
        if self.is_ipv4:
            return (
                _pack_family(self.family, SOCKADDR_IN_SIZE) +
                struct.pack("!H4s8x", self.port, socket.inet_pton(socket.AF_INET, self.host))
            )
        return (
            _pack_family(self.family, SOCKADDR_IN6_SIZE) +
            struct.pack("!HI16s", self.port, self.flowinfo,
                        socket.inet_pton(socket.AF_INET6, self.host)) +
            struct.pack("=I", self.scope_id)
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "Endpoint":
        """
        Parse raw platform sockaddr bytes.

        Raises:
            ValueError: If the data is too short or not IPv4/IPv6
        """
        data = bytes(data)
        if len(data) < SOCKADDR_SIZE:
            raise ValueError(f"Address too short: {len(data)} bytes")

        family = _unpack_family(data)
        if family == socket.AF_INET:
            port, packed = struct.unpack_from("!H4s", data, 2)
            return cls(family, socket.inet_ntop(socket.AF_INET, packed), port)

        if family == socket.AF_INET6:
            if len(data) < SOCKADDR_IN6_SIZE:
                raise ValueError(f"IPv6 address too short: {len(data)} bytes")
            port, flowinfo, packed = struct.unpack_from("!HI16s", data, 2)
            (scope_id,) = struct.unpack_from("=I", data, 24)
            return cls(family, socket.inet_ntop(socket.AF_INET6, packed), port, flowinfo, scope_id)

        raise ValueError(f"Unsupported address family: {family}")

    def __bytes__(self) -> bytes:
        return self.to_bytes()

    def __str__(self) -> str:
        if self.is_ipv6:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


Address = Union[Endpoint, bytes, bytearray, memoryview]


@dataclass(frozen=True)
class CandidatePair:
    """
    At most one IPv4 and one IPv6 address for the same target.

    Resolution never produces a pair with both members absent.
    """
    ipv4: Optional[Endpoint] = None
    ipv6: Optional[Endpoint] = None

    @classmethod
    def from_addresses(cls, addresses: Iterable[Endpoint]) -> "CandidatePair":
        """Keep the first address of each family, in order."""
        ipv4 = ipv6 = None
        for address in addresses:
            if ipv4 is None and address.is_ipv4:
                ipv4 = address
            elif ipv6 is None and address.is_ipv6:
                ipv6 = address
        return cls(ipv4, ipv6)

    @property
    def empty(self) -> bool:
        return self.ipv4 is None and self.ipv6 is None


def loopback_addresses(port: int) -> Tuple[Endpoint, Endpoint]:
    """127.0.0.1 and ::1 on `port`."""
    return Endpoint.ipv4("127.0.0.1", port), Endpoint.ipv6("::1", port)


def any_addresses(port: int) -> Tuple[Endpoint, Endpoint]:
    """The IPv4 and IPv6 wildcard addresses on `port`."""
    return Endpoint.ipv4("0.0.0.0", port), Endpoint.ipv6("::", port)


def lookup_host(host: str, port: int) -> List[Endpoint]:
    """
    Resolve a host name into stream-capable IPv4/IPv6 addresses.

    "localhost" and "loopback" are answered directly with both loopback
    addresses, independent of the system resolver.

    Args:
        host: Host name or literal IP
        port: Port number to attach to every result

    Returns:
        Addresses in the order the resolver returned them

    Raises:
        ResolutionError: If the lookup fails or yields no IPv4/IPv6 address
    """
    if host in LOOPBACK_NAMES:
        return list(loopback_addresses(port))

    try:
        infos = socket.getaddrinfo(host, str(port), socket.AF_UNSPEC,
                                   socket.SOCK_STREAM, socket.IPPROTO_TCP)
    except socket.gaierror as e:
        raise ResolutionError(e.errno, e.strerror, host) from e
    except UnicodeError as e:
        raise ResolutionError(socket.EAI_NONAME, f"Invalid host name: {e}", host) from e

    addresses = [
        Endpoint.from_sockaddr(family, sockaddr)
        for family, _, _, _, sockaddr in infos
        if family in (socket.AF_INET, socket.AF_INET6)
    ]

    if not addresses:
        raise ResolutionError(socket.EAI_FAIL, "Non-recoverable failure in name resolution", host)

    logger.debug(f"Resolved {host}:{port} -> {', '.join(str(a) for a in addresses)}")
    return addresses


def resolve_candidates(host: str, port: int) -> CandidatePair:
    """Resolve and keep the first IPv4 and first IPv6 result."""
    return CandidatePair.from_addresses(lookup_host(host, port))


def _coerce(address: Optional[Address]) -> Optional[Endpoint]:
    if address is None or isinstance(address, Endpoint):
        return address
    try:
        return Endpoint.from_bytes(address)
    except (ValueError, OSError):
        return None


def _family_tag(address: Optional[Address]) -> Optional[int]:
    if address is None:
        return None
    if isinstance(address, Endpoint):
        return address.family
    data = bytes(address)
    if len(data) < SOCKADDR_SIZE:
        return None
    return _unpack_family(data)


def is_ipv4_address(address: Optional[Address]) -> bool:
    """True if the address carries the IPv4 family tag."""
    return _family_tag(address) == socket.AF_INET


def is_ipv6_address(address: Optional[Address]) -> bool:
    """True if the address carries the IPv6 family tag."""
    return _family_tag(address) == socket.AF_INET6


def get_host_port_family(address: Optional[Address]) -> Optional[Tuple[Optional[str], int, int]]:
    """
    Extract (host, port, family) from an address.

    Returns:
        None if the address is missing or shorter than a sockaddr. For a
        family other than IPv4/IPv6 the host is None and the port 0.
    """
    family = _family_tag(address)
    if family is None:
        return None
    endpoint = _coerce(address)
    if endpoint is None:
        return (None, 0, family)
    return (endpoint.host, endpoint.port, family)


def host_from_address(address: Optional[Address]) -> Optional[str]:
    result = get_host_port_family(address)
    return result[0] if result else None


def port_from_address(address: Optional[Address]) -> int:
    result = get_host_port_family(address)
    return result[1] if result else 0


def family_from_address(address: Optional[Address]) -> Optional[int]:
    return _family_tag(address)
