"""
Readiness Polling - The single blocking primitive used by the package.

Connect, read and write all block in exactly one place: a bounded wait for
one descriptor to become readable and/or writable. The wait is bounded by the
handle's timeout budget, which uses these conventions:

    timeout  > 0   wait at most `timeout` seconds
    timeout == 0   wait indefinitely
    timeout  < 0   do not wait at all (poll once and report)

poll() is used where the platform has it, since select() cannot watch
descriptors numbered above FD_SETSIZE. Both are retried by Python on EINTR
with the remaining time recomputed (PEP 475).
"""

import errno
import math
import select
from typing import Optional

from .errors import SocketError


_HAVE_POLL = hasattr(select, "poll")


def poll_timeout(timeout: float) -> Optional[float]:
    """
    Convert a timeout budget into a select()-style timeout.

    Returns:
        None to block indefinitely, otherwise seconds to wait (0.0 = no wait)
    """
    if timeout == 0:
        return None
    if timeout < 0:
        return 0.0
    return float(timeout)


def wait_ready(fd: int, readable: bool = False, writable: bool = False,
               timeout: float = 0) -> bool:
    """
    Wait until `fd` is ready for the requested directions.

    Error and hang-up conditions count as ready: the transfer that follows
    will observe them.

    Args:
        fd: Descriptor to watch
        readable: Wait for read readiness
        writable: Wait for write readiness
        timeout: Timeout budget (see module docstring)

    Returns:
        True if ready, False if the wait expired

    Raises:
        SocketError: If the wait itself failed (e.g. a closed descriptor)
    """
    if not (readable or writable):
        raise ValueError("wait_ready needs readable and/or writable")

    wait = poll_timeout(timeout)

    if _HAVE_POLL:
        return _poll(fd, readable, writable, wait)
    return _select(fd, readable, writable, wait)


def _poll(fd: int, readable: bool, writable: bool, wait: Optional[float]) -> bool:
    events = 0
    if readable:
        events |= select.POLLIN | select.POLLPRI
    if writable:
        events |= select.POLLOUT

    poller = select.poll()
    try:
        poller.register(fd, events)
        # poll() takes milliseconds; round up so short budgets still wait
        ready = poller.poll(None if wait is None else math.ceil(wait * 1000))
    except OSError as e:
        raise SocketError.from_os_error(e, "poll() failed") from e
    except ValueError as e:
        # Negative descriptor
        raise SocketError.from_errno(errno.EBADF, f"poll() failed: {e}") from e

    for _, revents in ready:
        if revents & select.POLLNVAL:
            raise SocketError.from_errno(errno.EBADF, "poll() on invalid descriptor")
    return bool(ready)


def _select(fd: int, readable: bool, writable: bool, wait: Optional[float]) -> bool:
    rlist = [fd] if readable else []
    wlist = [fd] if writable else []
    try:
        r, w, x = select.select(rlist, wlist, [fd], wait)
    except OSError as e:
        raise SocketError.from_os_error(e, "select() failed") from e
    except ValueError as e:
        raise SocketError.from_errno(errno.EBADF, f"select() failed: {e}") from e
    return bool(r or w or x)


def wait_readable(fd: int, timeout: float) -> bool:
    """Wait for `fd` to have data (or EOF) to read."""
    return wait_ready(fd, readable=True, timeout=timeout)


def wait_writable(fd: int, timeout: float) -> bool:
    """Wait for `fd` to accept more outgoing data."""
    return wait_ready(fd, writable=True, timeout=timeout)
