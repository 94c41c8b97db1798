"""
Deadline I/O - Buffered reads and writes bounded by the timeout budget.

Three operations, all built on the same loop:

    wait for readiness (bounded by timeout) -> transfer -> account -> repeat

The timeout applies to each readiness wait, not to the call as a whole. A
long transfer that keeps making progress never times out; one that stalls
for longer than the budget does.

A transfer returning zero bytes means the peer has closed its side. These
functions only raise; tearing the connection down on failure is the
caller's job (PeerSocket does it for every error).
"""

import logging
import socket
from typing import Union

from .buffer import DelimiterScanner, IOBuffer
from .errors import CapacityError, ConfigurationError, PeerClosedError, PeerTimeoutError, SocketError
from .readiness import wait_readable, wait_writable


logger = logging.getLogger(__name__)


# Suppress SIGPIPE per call where SO_NOSIGPIPE is unavailable
SEND_FLAGS = getattr(socket, "MSG_NOSIGNAL", 0)

Bytes = Union[bytes, bytearray, memoryview]


def _byte_view(data: Bytes, what: str) -> memoryview:
    """Flat byte view of `data`. None reads as empty."""
    if data is None:
        return memoryview(b"")
    try:
        return memoryview(data).cast("B")
    except TypeError as e:
        raise ConfigurationError(f"{what} must be bytes-like, got {type(data).__name__}") from e


def write_all(sock: socket.socket, buffer: IOBuffer, data: Bytes, timeout: float) -> int:
    """
    Send all of `data`, in chunks no larger than the I/O buffer.

    Returns:
        Number of bytes sent (always len(data))

    Raises:
        ConfigurationError: If data is empty or not bytes-like
        PeerTimeoutError: If the socket stayed unwritable for the whole budget
        PeerClosedError: If send() reported zero bytes
        SocketError: If send() failed
    """
    view = _byte_view(data, "Socket write data")
    total = len(view)
    if total == 0:
        raise ConfigurationError("Socket write data length must be bigger than zero")

    fd = sock.fileno()
    index = 0

    while index < total:
        if not wait_writable(fd, timeout):
            raise PeerTimeoutError("Socket write timed out")

        to_write = min(total - index, buffer.capacity)
        try:
            wrote = sock.send(view[index:index + to_write], SEND_FLAGS)
        except (BlockingIOError, InterruptedError):
            # Readiness was spurious; wait again
            continue
        except OSError as e:
            raise SocketError.from_os_error(e, "send() failed") from e

        if wrote == 0:
            # Socket has been closed or shut down for send
            raise PeerClosedError()

        index += wrote

    logger.debug(f"Wrote {index} bytes")
    return index


def _recv_into(sock: socket.socket, window: memoryview) -> int:
    """recv() into `window`. Returns -1 for a spurious wakeup."""
    try:
        received = sock.recv_into(window, len(window))
    except (BlockingIOError, InterruptedError):
        return -1
    except OSError as e:
        raise SocketError.from_os_error(e, "recv() failed") from e

    if received == 0:
        # Socket has been closed or shut down for send on the other side
        raise PeerClosedError()
    return received


def read_to_length(sock: socket.socket, buffer: IOBuffer, length: int, timeout: float) -> bytes:
    """
    Receive exactly `length` bytes.

    Never returns partial data: running out of time or the peer closing
    first are both errors.

    Raises:
        ConfigurationError: If length is not a positive int
        CapacityError: If length exceeds the buffer capacity
        PeerTimeoutError, PeerClosedError, SocketError: As for write_all()
    """
    if not isinstance(length, int) or isinstance(length, bool):
        raise ConfigurationError(f"Socket read length must be an int, got {type(length).__name__}")
    if length <= 0:
        raise ConfigurationError("Socket read length must be bigger than zero")
    if length > buffer.capacity:
        raise CapacityError(f"Read length {length} exceeds buffer capacity {buffer.capacity}")

    fd = sock.fileno()
    has_read = 0

    while has_read < length:
        if not wait_readable(fd, timeout):
            raise PeerTimeoutError("Socket read timed out")

        to_read = min(length - has_read, buffer.capacity - has_read)
        received = _recv_into(sock, buffer.window(has_read, to_read))
        if received > 0:
            has_read += received

    logger.debug(f"Read {has_read} bytes")
    return buffer.copy(has_read)


def read_to_data(sock: socket.socket, buffer: IOBuffer, separator: Bytes, timeout: float) -> bytes:
    """
    Receive up to and including `separator`.

    Reads one byte per recv() so nothing after the separator is taken off
    the stream. Matching restarts from zero on any mismatching byte (see
    DelimiterScanner).

    Returns:
        Everything received, ending with the separator

    Raises:
        ConfigurationError: If separator is empty or not bytes-like
        CapacityError: If the buffer fills before the separator is seen
        PeerTimeoutError, PeerClosedError, SocketError: As for write_all()
    """
    separator = _byte_view(separator, "Socket separator").tobytes()
    if not separator:
        raise ConfigurationError("Socket passed None or zero-length data as a separator")

    scanner = DelimiterScanner(separator)
    fd = sock.fileno()
    has_read = 0

    while not scanner.found:
        if has_read >= buffer.capacity:
            raise CapacityError("The separator could not be found in socket stream")

        if not wait_readable(fd, timeout):
            raise PeerTimeoutError("Socket read timed out")

        received = _recv_into(sock, buffer.window(has_read, 1))
        if received > 0:
            scanner.feed(buffer.byte_at(has_read))
            has_read += received

    logger.debug(f"Read {has_read} bytes up to separator")
    return buffer.copy(has_read)
