"""
Peer Buffer - The fixed-capacity I/O buffer and delimiter scanning.

Every PeerSocket owns exactly one IOBuffer for its whole life. Reads land in
it, and writes are chunked to its capacity. It never grows: an operation that
needs more room than the buffer has fails with CapacityError instead.

Sizing:
- A multiple of the TCP segment size avoids partially filled packets.
  1500 bytes (Ethernet MTU) - 40 bytes (IP + TCP headers) - 12 bytes (TCP
  timestamp option) = 1448 bytes per segment.
- Page-aligned memory lets the kernel skip a copy. An anonymous mmap is
  always page-aligned, so that is what backs the buffer.

    [  bytes received this call  |            free space            ]
    0                         offset                            capacity
"""

import mmap
from typing import Optional

from .errors import CapacityError


# Payload bytes per segment on Ethernet with the timestamp option
SEGMENT_SIZE = 1448

PAGE_SIZE = mmap.PAGESIZE

# A multiple of both the segment size and the page size
DEFAULT_BUFFER_SIZE = PAGE_SIZE * SEGMENT_SIZE // 4


# Standard delimiters for read_to_data
CRLF = b"\x0D\x0A"
CR = b"\x0D"
LF = b"\x0A"
ZERO = b"\x00"


class IOBuffer:
    """
    Fixed-capacity, page-aligned byte buffer.

    Callers never index the backing store directly: window() and byte_at()
    check every offset against the capacity and raise CapacityError instead
    of reading or writing out of bounds.
    """

    def __init__(self, capacity: Optional[int] = None):
        """
        Allocate the buffer.

        Args:
            capacity: Size in bytes (defaults to DEFAULT_BUFFER_SIZE)
        """
        if capacity is None:
            capacity = DEFAULT_BUFFER_SIZE
        if capacity <= 0:
            raise ValueError(f"Buffer capacity must be positive, got {capacity}")

        self.capacity = capacity
        self._storage = mmap.mmap(-1, capacity)
        self._view = memoryview(self._storage)

    @property
    def view(self) -> memoryview:
        """The whole buffer as a writable memoryview."""
        return self._view

    def window(self, offset: int, length: int) -> memoryview:
        """
        Get a writable slice [offset, offset + length).

        Raises:
            CapacityError: If the slice does not fit inside the buffer
        """
        if offset < 0 or length < 0 or offset + length > self.capacity:
            raise CapacityError(
                f"Window [{offset}, {offset + length}) exceeds buffer capacity {self.capacity}"
            )
        return self.view[offset:offset + length]

    def byte_at(self, offset: int) -> int:
        """Return the byte stored at offset."""
        if offset < 0 or offset >= self.capacity:
            raise CapacityError(f"Offset {offset} outside buffer capacity {self.capacity}")
        return self.view[offset]

    def copy(self, length: int) -> bytes:
        """Copy out the first `length` bytes."""
        return bytes(self.window(0, length))

    def __len__(self) -> int:
        return self.capacity


class DelimiterScanner:
    """
    Byte-at-a-time separator matcher.

    Keeps a cursor into the separator. A matching byte advances it; any other
    byte resets it to zero without re-testing that byte against the first
    separator byte, so a separator with a repeated prefix can be missed:

        scanner = DelimiterScanner(b"AAB")
        [scanner.feed(b) for b in b"AAAB"]   # never reports found

    Separators without a repeated prefix (CRLF, LF, ZERO, ...) are always found.
    """

    def __init__(self, separator: bytes):
        if not separator:
            raise ValueError("Separator must not be empty")
        self.separator = bytes(separator)
        self.cursor = 0

    @property
    def found(self) -> bool:
        return self.cursor >= len(self.separator)

    def feed(self, byte: int) -> bool:
        """
        Inspect one received byte.

        Returns:
            True once the whole separator has been seen
        """
        if byte == self.separator[self.cursor]:
            self.cursor += 1
        else:
            self.cursor = 0
        return self.found
