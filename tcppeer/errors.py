"""
Peer Errors - The failure taxonomy for connect and transfer operations.

Every operation on a PeerSocket either returns its result or raises one of
these exceptions. They are grouped by what went wrong, not by which call
raised them:

- ConfigurationError: the caller asked for something that can never work
  (both families disabled, empty host, zero-length read, ...)
- ResolutionError: the name lookup failed or returned nothing usable
- InterfaceError: the requested local interface does not exist
- SocketError: any other syscall failure, with its errno
- PeerTimeoutError: a readiness wait ran out of time (errno ETIMEDOUT)
- PeerClosedError: the remote end shut down in an orderly way
- CapacityError: the fixed I/O buffer filled up

SocketError and its subclasses are OSErrors, so code that already catches
OSError around socket calls keeps working.
"""

import errno
import os
from typing import Optional


class PeerError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(PeerError, ValueError):
    """The request is invalid regardless of network conditions."""


class ResolutionError(PeerError):
    """
    Host name lookup failed.

    Carries the resolver status (an EAI_* code) and its message, the same
    values socket.gaierror reports.
    """

    def __init__(self, code: int, message: str, host: Optional[str] = None):
        self.code = code
        self.message = message
        self.host = host
        detail = f"{message} (host={host!r})" if host is not None else message
        super().__init__(f"[EAI {code}] {detail}")


class InterfaceError(PeerError):
    """No local interface matches the description (or none of its families is enabled)."""


class CapacityError(PeerError):
    """The fixed-size I/O buffer cannot hold what the operation needs."""


class SocketError(PeerError, OSError):
    """A socket syscall failed. errno and strerror are those of the failure."""

    @classmethod
    def from_errno(cls, code: int, reason: Optional[str] = None) -> "SocketError":
        """Build an error for `code`, optionally noting which call failed."""
        message = os.strerror(code)
        if reason:
            message = f"{message} ({reason})"
        return cls(code, message)

    @classmethod
    def from_os_error(cls, exc: OSError, reason: Optional[str] = None) -> "SocketError":
        """Wrap an OSError raised by the socket module, keeping its errno."""
        code = exc.errno if exc.errno is not None else errno.EIO
        return cls.from_errno(code, reason)


class PeerTimeoutError(SocketError, TimeoutError):
    """A readiness wait expired before the descriptor became ready."""

    def __init__(self, reason: str = "Operation timed out"):
        super().__init__(errno.ETIMEDOUT, f"{os.strerror(errno.ETIMEDOUT)} ({reason})")


class PeerClosedError(PeerError, ConnectionError):
    """A transfer returned zero bytes: the peer has closed its side."""

    def __init__(self, message: str = "Peer has closed the socket"):
        super().__init__(message)


def not_connected_error() -> SocketError:
    """Error for any I/O attempted on a handle that is not connected."""
    return SocketError.from_errno(errno.EBADF, "socket is not connected")
