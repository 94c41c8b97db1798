"""
Peer Socket - The connected endpoint and its blocking-with-deadline API.

PeerSocket is the handle applications use. It owns:
- the socket descriptor (created by connect, or adopted from an accept)
- one fixed-size, page-aligned I/O buffer, reused by every call
- the timeout budget applied to connect and to every readiness wait

    # Client
    peer = PeerSocket()
    peer.connect_to_host("example.com", 7, timeout=5)
    peer.write(b"ping\\r\\n")
    line = peer.read_to_data(CRLF)
    peer.disconnect()

    # Server side, after accept()
    conn, _ = listener.accept()
    peer = PeerSocket.from_socket(conn)
    header = peer.read_to_length(4)

Every failed connect and every failed read or write leaves the handle
closed. A closed handle refuses I/O with EBADF without touching the old
descriptor.

A handle must not be used from several threads at once. The one
cross-thread operation is disconnect(), which shuts the descriptor down so
a blocked call fails promptly.
"""

import logging
import socket
import threading
from typing import Callable, Optional, Tuple, TypeVar

from .address import Address, Endpoint, host_from_address, is_ipv4_address
from .address import is_ipv6_address, port_from_address
from .buffer import IOBuffer
from .connection import ConnectEngine, ConnectionConfig, ConnectPlan, tune_socket
from .errors import ConfigurationError, SocketError, not_connected_error
from .states import PeerState, PeerStateMachine
from .transfer import Bytes, read_to_data, read_to_length, write_all


logger = logging.getLogger(__name__)

T = TypeVar("T")


class PeerSocket:
    """
    A TCP peer with deadline-bounded connect, read and write.

    The timeout budget (seconds) means:
        > 0   wait at most that long for each readiness wait
        == 0  wait indefinitely
        < 0   never wait; fail unless the socket is ready right now
    """

    def __init__(self, config: Optional[ConnectionConfig] = None):
        """
        Create an unconnected peer.

        Args:
            config: Connection options (families, timeout, buffer size)
        """
        self.config = config or ConnectionConfig()
        self.config.validate()

        self._sock: Optional[socket.socket] = None
        self._buffer = IOBuffer(self.config.buffer_size)
        self._timeout = self.config.timeout

        self._state_machine = PeerStateMachine()
        self._engine = ConnectEngine(self.config)

        # Addresses chosen by the last successful connect
        self._plan: Optional[ConnectPlan] = None

        # Guards the descriptor against a disconnect() from another thread
        self._lock = threading.Lock()

    @classmethod
    def from_socket(cls, sock: socket.socket, config: Optional[ConnectionConfig] = None,
                    timeout: Optional[float] = None) -> "PeerSocket":
        """
        Wrap an already connected socket (typically from accept()).

        The peer takes ownership: disconnecting it closes `sock`.

        Raises:
            SocketError: If the socket cannot be configured (it is closed)
        """
        try:
            peer = cls(config)
            if timeout is not None:
                peer._timeout = timeout

            tune_socket(sock, peer.config.buffer_size, peer.config.nodelay)
            sock.setblocking(False)
        except BaseException:
            sock.close()
            raise

        with peer._lock:
            peer._sock = sock
            peer._state_machine.transition("adopt")
        return peer

    @classmethod
    def from_fileno(cls, fd: int, timeout: Optional[float] = None,
                    config: Optional[ConnectionConfig] = None) -> "PeerSocket":
        """Wrap an already connected socket descriptor. The peer takes ownership of `fd`."""
        try:
            sock = socket.socket(fileno=fd)
        except OSError as e:
            raise SocketError.from_os_error(e, f"descriptor {fd} is not a socket") from e
        return cls.from_socket(sock, config, timeout)

    # ========== Connecting ==========

    def connect_to_host(self, host: str, port: int, interface: Optional[str] = None,
                        timeout: Optional[float] = None):
        """
        Resolve `host` and connect to one of its addresses.

        Args:
            host: Host name or IP ("localhost"/"loopback" skip the resolver)
            port: Remote port
            interface: Optional local interface name or IP, optionally ":port"
            timeout: New timeout budget for this handle (default: keep current)

        Raises:
            ConfigurationError, ResolutionError, InterfaceError, SocketError,
            PeerTimeoutError
        """
        timeout = self._timeout if timeout is None else timeout
        self._connect(lambda: self._engine.connect_to_host(
            self.state, host, port, interface, timeout, on_created=self._attach
        ), timeout)

    def connect_to_address(self, address: Address, interface: Optional[str] = None,
                           timeout: Optional[float] = None):
        """
        Connect to a raw address (an Endpoint or sockaddr bytes).

        Raises:
            As for connect_to_host(), except ResolutionError
        """
        timeout = self._timeout if timeout is None else timeout
        self._connect(lambda: self._engine.connect_to_address(
            self.state, address, interface, timeout, on_created=self._attach
        ), timeout)

    def _connect(self, attempt: Callable[[], Tuple[socket.socket, ConnectPlan]], timeout: float):
        try:
            sock, plan = attempt()
        except BaseException:
            # Failures before a socket exists leave the handle as it was
            if self.state == PeerState.CONNECTING:
                self._teardown("fail")
            raise

        with self._lock:
            if self._sock is not sock:
                # disconnect() raced with the connect
                sock.close()
                raise not_connected_error()
            self._state_machine.transition("established")
            self._plan = plan
            self._timeout = timeout

        logger.info(f"Connection established: {plan.remote}")

    def _attach(self, sock: socket.socket):
        with self._lock:
            self._sock = sock
            self._state_machine.transition("connect")

    def disconnect(self):
        """
        Shut down and close the connection. Safe to call at any time, from
        any thread, any number of times.
        """
        self._teardown("close")

    close = disconnect

    def _teardown(self, event: str):
        with self._lock:
            sock, self._sock = self._sock, None
            self._plan = None
            self._state_machine.transition(event)

        if sock is None:
            return

        try:
            # Wakes any thread blocked waiting on this descriptor
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Never connected, or the peer already reset it
            pass
        sock.close()
        logger.info(f"Connection closed ({event})")

    # ========== Transfer ==========

    def _require_socket(self) -> socket.socket:
        sock = self._sock
        if sock is None or not self.state.can_transfer():
            raise not_connected_error()
        return sock

    def _transfer(self, operation: Callable[..., T], *args) -> T:
        sock = self._require_socket()
        try:
            return operation(sock, self._buffer, *args, self._timeout)
        except BaseException:
            # No partially usable connection survives a failed transfer
            self._teardown("fail")
            raise

    def write(self, data: Bytes) -> int:
        """
        Send all of `data`.

        Empty data raises ConfigurationError; the connection stays open unless
        config.close_on_empty_write is set.

        Returns:
            Number of bytes sent
        """
        if not data and not self.config.close_on_empty_write:
            raise ConfigurationError("Socket write data length must be bigger than zero")
        return self._transfer(write_all, data)

    def read_to_length(self, length: int) -> bytes:
        """Receive exactly `length` bytes (at most the buffer size)."""
        return self._transfer(read_to_length, length)

    def read_to_data(self, separator: Bytes) -> bytes:
        """Receive up to and including `separator` (see CRLF, LF, ... in tcppeer.buffer)."""
        return self._transfer(read_to_data, separator)

    # ========== Settings ==========

    @property
    def timeout(self) -> float:
        """Timeout budget in seconds for every subsequent readiness wait."""
        return self._timeout

    @timeout.setter
    def timeout(self, seconds: float):
        self._timeout = seconds

    @property
    def segment_size(self) -> int:
        """Maximum segment size (TCP_MAXSEG) in bytes."""
        sock = self._require_socket()
        try:
            return sock.getsockopt(socket.IPPROTO_TCP, socket.TCP_MAXSEG)
        except OSError as e:
            raise SocketError.from_os_error(e, "getsockopt(TCP_MAXSEG) failed") from e

    @segment_size.setter
    def segment_size(self, size: int):
        sock = self._require_socket()
        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_MAXSEG, size)
        except OSError as e:
            raise SocketError.from_os_error(e, "setsockopt(TCP_MAXSEG) failed") from e

    @property
    def buffer(self) -> memoryview:
        """The internal page-aligned I/O buffer, for callers staging their own data."""
        return self._buffer.view

    @property
    def buffer_size(self) -> int:
        return self._buffer.capacity

    # ========== Diagnostics ==========

    @property
    def state(self) -> PeerState:
        return self._state_machine.state

    @property
    def is_connected(self) -> bool:
        """True if the descriptor is open and has a peer."""
        sock = self._sock
        if sock is None:
            return False
        try:
            sock.getpeername()
        except OSError:
            return False
        return True

    def _query_address(self, remote: bool) -> Optional[Endpoint]:
        sock = self._sock
        if sock is None:
            return None
        try:
            sockaddr = sock.getpeername() if remote else sock.getsockname()
            return Endpoint.from_sockaddr(sock.family, sockaddr)
        except (OSError, ValueError, TypeError, IndexError):
            # Not connected, or not an IP socket
            return None

    @property
    def connected_address(self) -> Optional[Endpoint]:
        return self._query_address(remote=True)

    @property
    def local_address(self) -> Optional[Endpoint]:
        return self._query_address(remote=False)

    @property
    def connected_host(self) -> Optional[str]:
        return host_from_address(self.connected_address)

    @property
    def connected_port(self) -> int:
        return port_from_address(self.connected_address)

    @property
    def local_host(self) -> Optional[str]:
        return host_from_address(self.local_address)

    @property
    def local_port(self) -> int:
        return port_from_address(self.local_address)

    @property
    def is_ipv4(self) -> bool:
        return is_ipv4_address(self.local_address)

    @property
    def is_ipv6(self) -> bool:
        return is_ipv6_address(self.local_address)

    @property
    def target_address(self) -> Optional[Endpoint]:
        """Remote address chosen by the last successful connect."""
        return self._plan.remote if self._plan else None

    @property
    def interface_address(self) -> Optional[Endpoint]:
        """Local address bound by the last successful connect, if any."""
        return self._plan.local if self._plan else None

    def fileno(self) -> int:
        sock = self._sock
        return sock.fileno() if sock is not None else -1

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.disconnect()

    def __repr__(self):
        local = self.local_address
        remote = self.connected_address
        return (
            f"PeerSocket({local or 'unbound'} -> {remote or 'none'}, "
            f"{self.state.name}, timeout={self._timeout})"
        )


def create_connection(address: Tuple[str, int], timeout: Optional[float] = None,
                      interface: Optional[str] = None,
                      config: Optional[ConnectionConfig] = None) -> PeerSocket:
    """
    Connect to (host, port) and return the peer.

    This is a convenience function similar to socket.create_connection().
    """
    host, port = address
    peer = PeerSocket(config)
    peer.connect_to_host(host, port, interface=interface, timeout=timeout)
    return peer
