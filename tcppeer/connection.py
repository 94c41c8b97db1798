"""
Connect Engine - Turning a target into a connected stream socket.

Connecting is a strictly sequential pipeline with exactly one attempt:

1. Preconditions: not already connected, at least one family enabled
2. Interface resolution: optional local address to bind to
3. Target resolution: host name lookup, or validation of a raw address
4. Family selection: one IPv4 or IPv6 candidate, consistent with the
   local address
5. Socket creation
6. Option tuning: no SIGPIPE (fatal), TCP_NODELAY and SO_RCVBUF (best-effort)
7. Local bind, with SO_REUSEADDR when a fixed local port is requested
8. Non-blocking connect, then a bounded readiness wait and an SO_ERROR check

The socket is closed on every failure path after step 5. There is no
fallback to the other family and no retry: a caller that wants to race both
families issues two connects.

Non-blocking connect, following Stevens (Unix Network Programming, 16.3):

    connect() -> 0            connected immediately
              -> EINPROGRESS  wait until readable or writable, then read
                              SO_ERROR: 0 means connected, anything else is
                              the reason the connect failed
              -> other        failed immediately
"""

import errno
import logging
import socket
import sys
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .address import Address, CandidatePair, Endpoint, SOCKADDR_IN6_SIZE, SOCKADDR_IN_SIZE
from .address import SOCKADDR_SIZE, family_from_address, resolve_candidates
from .buffer import DEFAULT_BUFFER_SIZE
from .errors import ConfigurationError, InterfaceError, PeerTimeoutError, ResolutionError, SocketError
from .interface import get_interface_addresses
from .readiness import wait_ready
from .states import PeerState


# Set up logging
logger = logging.getLogger(__name__)


# Connect/idle timeout used when none is given, in seconds
DEFAULT_TIMEOUT = 75.0

# connect_ex() results meaning "still connecting". On Linux EAGAIN means
# no local ports are left, which is a failure.
_IN_PROGRESS = {errno.EINPROGRESS, errno.EINTR}
if sys.platform == "win32":
    _IN_PROGRESS.add(errno.WSAEWOULDBLOCK)


@dataclass
class ConnectionConfig:
    """Configuration options for a PeerSocket."""

    # Address families eligible for connecting
    ipv4_enabled: bool = True
    ipv6_enabled: bool = True

    # When both families resolve, use IPv4
    ipv4_preferred: bool = True

    # Timeout budget in seconds for connect and for every readiness wait.
    # 0 blocks indefinitely, negative never waits.
    timeout: float = DEFAULT_TIMEOUT

    # Size of the fixed I/O buffer (and the requested SO_RCVBUF)
    buffer_size: int = DEFAULT_BUFFER_SIZE

    # Disable Nagle's algorithm
    nodelay: bool = True

    # Tear the connection down when write() is given empty data
    close_on_empty_write: bool = False

    def validate(self):
        """Raise ConfigurationError if the options can never work."""
        if self.buffer_size <= 0:
            raise ConfigurationError(f"Buffer size must be positive, got {self.buffer_size}")


@dataclass
class ConnectPlan:
    """The addresses chosen for one connect attempt."""
    remote: Endpoint
    local: Optional[Endpoint] = None

    @property
    def family(self) -> int:
        return self.remote.family


def select_family(ipv4: Optional[Endpoint], ipv6: Optional[Endpoint],
                  config: ConnectionConfig) -> Optional[Endpoint]:
    """
    Pick one address of a pair.

    IPv4 wins if it is enabled and either preferred and present, or the only
    one present. Otherwise IPv6.
    """
    use_ipv4 = config.ipv4_enabled and (
        (config.ipv4_preferred and ipv4 is not None) or ipv6 is None
    )
    return ipv4 if use_ipv4 else ipv6


def raw_address_candidates(address: Address) -> CandidatePair:
    """
    Validate a caller supplied remote address.

    Byte strings must carry the IPv4 or IPv6 family tag and be exactly the
    size of the matching sockaddr structure.

    Raises:
        ConfigurationError: If the address is not a valid IPv4/IPv6 address
    """
    if isinstance(address, Endpoint):
        endpoint = address
    else:
        data = bytes(address)
        family = family_from_address(data) if len(data) >= SOCKADDR_SIZE else None
        expected = {socket.AF_INET: SOCKADDR_IN_SIZE, socket.AF_INET6: SOCKADDR_IN6_SIZE}.get(family)
        if expected is None or len(data) != expected:
            raise ConfigurationError("A valid IPv4 or IPv6 address was not given")
        try:
            endpoint = Endpoint.from_bytes(data)
        except (ValueError, OSError) as e:
            raise ConfigurationError(f"A valid IPv4 or IPv6 address was not given: {e}") from e

    if endpoint.is_ipv4:
        return CandidatePair(ipv4=endpoint)
    return CandidatePair(ipv6=endpoint)


def tune_socket(sock: socket.socket, buffer_size: int, nodelay: bool = True):
    """
    Apply the socket options every peer uses.

    Raises:
        SocketError: If the socket cannot be kept from raising SIGPIPE
    """
    # Instead of receiving a SIGPIPE signal, have send() return an error.
    # Where SO_NOSIGPIPE does not exist, send() passes MSG_NOSIGNAL instead.
    if hasattr(socket, "SO_NOSIGPIPE"):
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_NOSIGPIPE, 1)
        except OSError as e:
            raise SocketError.from_os_error(e, "setsockopt(SO_NOSIGPIPE) failed") from e

    # Small writes (interactive protocols) should not wait for more data
    if nodelay:
        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError as e:
            logger.debug(f"Failed to set TCP_NODELAY: {e}")

    # Some systems have small hard limits on the receive buffer
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, buffer_size)
    except OSError as e:
        logger.debug(f"Failed to set SO_RCVBUF to {buffer_size}: {e}")


def connect_with_deadline(sock: socket.socket, address: Endpoint, timeout: float):
    """
    Connect a socket, waiting at most `timeout` for completion.

    Leaves the socket in non-blocking mode. Does not close it on failure.

    Raises:
        PeerTimeoutError: If the connect did not complete in time
        SocketError: If the connect failed
    """
    sock.setblocking(False)

    result = sock.connect_ex(address.to_sockaddr())

    if result == 0:
        logger.debug("Connection completed immediately, skip waiting")
        return

    if result not in _IN_PROGRESS:
        raise SocketError.from_errno(result, f"connect() to {address} failed")

    if not wait_ready(sock.fileno(), readable=True, writable=True, timeout=timeout):
        logger.warning(f"Connect to {address} timed out")
        raise PeerTimeoutError(f"Socket connect to {address} timed out")

    pending = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
    if pending == errno.ETIMEDOUT:
        logger.warning(f"Connect to {address} timed out in the kernel")
        raise PeerTimeoutError(f"Socket connect to {address} timed out")
    if pending:
        logger.warning(f"Connect to {address} failed: {errno.errorcode.get(pending, pending)}")
        raise SocketError.from_errno(pending, f"connect() to {address} failed")

    logger.debug("Socket is connected successfully")


class ConnectEngine:
    """
    Runs the connect pipeline for one PeerSocket.

    Usage:
        engine = ConnectEngine(config)
        sock, plan = engine.connect_to_host(state, "example.com", 80)
    """

    def __init__(self, config: Optional[ConnectionConfig] = None):
        self.config = config or ConnectionConfig()

    # ========== Pipeline Steps ==========

    def check_preconditions(self, state: PeerState):
        """Step 1: fail before any syscall if the attempt can never start."""
        if not state.can_connect():
            raise ConfigurationError(
                "Attempting to connect while connected. Disconnect first."
            )
        if not self.config.ipv4_enabled and not self.config.ipv6_enabled:
            raise ConfigurationError(
                "Both IPv4 and IPv6 have been disabled. Must enable at least one protocol first."
            )

    def resolve_interface(self, interface: Optional[str]) -> Optional[Tuple[Optional[Endpoint], Optional[Endpoint]]]:
        """
        Step 2: local addresses for `interface`, restricted to enabled families.

        Returns:
            None when no interface was requested
        """
        if interface is None:
            return None

        addr4, addr6 = get_interface_addresses(interface)

        if not self.config.ipv4_enabled and addr6 is None:
            raise InterfaceError("IPv4 has been disabled and specified interface doesn't support IPv6.")
        if not self.config.ipv6_enabled and addr4 is None:
            raise InterfaceError("IPv6 has been disabled and specified interface doesn't support IPv4.")

        return (
            addr4 if self.config.ipv4_enabled else None,
            addr6 if self.config.ipv6_enabled else None,
        )

    def restrict_target(self, target: CandidatePair) -> CandidatePair:
        """Step 3 (tail): drop disabled families from a resolved pair."""
        if not self.config.ipv4_enabled and target.ipv6 is None:
            raise ResolutionError(socket.EAI_FAMILY,
                                  "IPv4 has been disabled and DNS lookup found no IPv6 address.")
        if not self.config.ipv6_enabled and target.ipv4 is None:
            raise ResolutionError(socket.EAI_FAMILY,
                                  "IPv6 has been disabled and DNS lookup found no IPv4 address.")

        return CandidatePair(
            target.ipv4 if self.config.ipv4_enabled else None,
            target.ipv6 if self.config.ipv6_enabled else None,
        )

    def plan(self, target: CandidatePair,
             local: Optional[Tuple[Optional[Endpoint], Optional[Endpoint]]] = None) -> ConnectPlan:
        """
        Step 4: choose the remote address and the matching local address.

        With an interface, only families the interface has are eligible, so
        the bound address always matches the remote family.
        """
        ipv4, ipv6 = target.ipv4, target.ipv6
        if local is not None:
            local4, local6 = local
            ipv4 = ipv4 if local4 is not None else None
            ipv6 = ipv6 if local6 is not None else None
            if ipv4 is None and ipv6 is None:
                raise InterfaceError("Specified interface has no address in the target's address families.")

        remote = select_family(ipv4, ipv6, self.config)
        if remote is None:
            raise ResolutionError(socket.EAI_FAMILY, "No address of an enabled family to connect to.")

        bind_to = None
        if local is not None:
            bind_to = local[0] if remote.is_ipv4 else local[1]

        return ConnectPlan(remote, bind_to)

    def open(self, plan: ConnectPlan, timeout: float,
             on_created: Optional[Callable[[socket.socket], None]] = None) -> socket.socket:
        """
        Steps 5-8: create, tune, bind and connect a socket for `plan`.

        Args:
            plan: Addresses to use
            timeout: Connect timeout budget
            on_created: Called with the new socket before it connects, so the
                owner can close it from another thread to cancel

        Raises:
            SocketError: If any step fails (the socket is closed)
        """
        family_name = "IPv4" if plan.remote.is_ipv4 else "IPv6"
        try:
            sock = socket.socket(plan.family, socket.SOCK_STREAM)
        except OSError as e:
            raise SocketError.from_os_error(e, "Error in socket() function") from e
        logger.debug(f"Create socket with {family_name} address family")

        try:
            if on_created is not None:
                on_created(sock)

            tune_socket(sock, self.config.buffer_size, self.config.nodelay)

            if plan.local is not None:
                self._bind(sock, plan.local)

            connect_with_deadline(sock, plan.remote, timeout)
        except BaseException:
            sock.close()
            raise

        return sock

    def _bind(self, sock: socket.socket, local: Endpoint):
        if local.port > 0:
            # Allow rebinding a fixed port that is still in TIME_WAIT
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            except OSError as e:
                logger.debug(f"Failed to set SO_REUSEADDR: {e}")

        try:
            sock.bind(local.to_sockaddr())
        except OSError as e:
            raise SocketError.from_os_error(e, f"Error in bind() function for {local}") from e

        logger.debug(f"Bound to specified interface {local}")

    # ========== Entry Points ==========

    def connect_to_host(self, state: PeerState, host: str, port: int,
                        interface: Optional[str] = None, timeout: Optional[float] = None,
                        on_created: Optional[Callable[[socket.socket], None]] = None
                        ) -> Tuple[socket.socket, ConnectPlan]:
        """
        Resolve `host` and connect to it.

        Returns:
            (connected socket, addresses used)
        """
        if not host:
            raise ConfigurationError(
                "Invalid host parameter (None or \"\"). Should be a domain name or IP address string."
            )
        if not 0 <= port <= 0xFFFF:
            raise ConfigurationError(f"Port out of range: {port}")

        self.check_preconditions(state)
        local = self.resolve_interface(interface)
        target = self.restrict_target(resolve_candidates(host, port))
        plan = self.plan(target, local)

        timeout = self.config.timeout if timeout is None else timeout
        logger.debug(f"Connect to {host}:{port} via {plan.remote}, with timeout {timeout}")
        return self.open(plan, timeout, on_created), plan

    def connect_to_address(self, state: PeerState, address: Address,
                           interface: Optional[str] = None, timeout: Optional[float] = None,
                           on_created: Optional[Callable[[socket.socket], None]] = None
                           ) -> Tuple[socket.socket, ConnectPlan]:
        """
        Connect to a raw IPv4/IPv6 address without any name lookup.

        Returns:
            (connected socket, addresses used)
        """
        self.check_preconditions(state)
        local = self.resolve_interface(interface)

        target = raw_address_candidates(address)
        if not self.config.ipv4_enabled and target.ipv4 is not None:
            raise ConfigurationError("IPv4 has been disabled and an IPv4 address was passed.")
        if not self.config.ipv6_enabled and target.ipv6 is not None:
            raise ConfigurationError("IPv6 has been disabled and an IPv6 address was passed.")

        plan = self.plan(target, local)

        timeout = self.config.timeout if timeout is None else timeout
        logger.debug(f"Connect to {plan.remote}, with timeout {timeout}")
        return self.open(plan, timeout, on_created), plan
