"""
Local Interfaces - Map an interface description to bindable local addresses.

An interface description names where outgoing connections should originate:

    "en1", "eth0", "lo0"          interface name
    "192.168.4.34"                literal IP assigned to a local interface
    "localhost" / "loopback"      the loopback addresses
    "" / ":8080"                  the wildcard addresses
    any of the above + ":<port>"  also fix the local port

The description is split on its first colon, so IPv6 literals cannot be
given here; name the interface instead.

Interfaces are enumerated with psutil.net_if_addrs(), the portable front end
to getifaddrs().
"""

import logging
import re
import socket
from typing import Optional, Tuple

import psutil

from .address import LOOPBACK_NAMES, Endpoint, any_addresses, loopback_addresses
from .errors import InterfaceError


logger = logging.getLogger(__name__)


# strtol()-style leading integer
_PORT_PATTERN = re.compile(r"\s*([+-]?\d+)")


def parse_interface_description(description: str, port: int = 0) -> Tuple[Optional[str], int]:
    """
    Split a description into its interface part and local port.

    The description is split on the first colon. A port after the colon is
    only used when `port` is 0, and only if it lies in 1..65535; anything
    else is ignored.

    Returns:
        (interface or None, port)
    """
    interface, colon, port_text = description.partition(":")

    if colon and port == 0:
        match = _PORT_PATTERN.match(port_text)
        if match:
            parsed = int(match.group(1))
            if 0 < parsed <= 0xFFFF:
                port = parsed

    return (interface or None), port


def _scope_id(name: str, address: str) -> int:
    if "%" not in address:
        return 0
    try:
        return socket.if_nametoindex(name)
    except OSError:
        return 0


def get_interface_addresses(description: str,
                            port: int = 0) -> Tuple[Optional[Endpoint], Optional[Endpoint]]:
    """
    Find the local IPv4 and IPv6 addresses for an interface description.

    For an interface name or IP, the first IPv4 and first IPv6 address whose
    interface name or textual IP equals the description are used, with the
    requested port burned in.

    Args:
        description: Interface description (see module docstring)
        port: Local port; 0 lets a port in the description apply

    Returns:
        (ipv4, ipv6), either of which may be None but not both

    Raises:
        InterfaceError: If nothing matches the description
    """
    interface, port = parse_interface_description(description, port)

    if interface is None:
        return any_addresses(port)

    if interface in LOOPBACK_NAMES:
        return loopback_addresses(port)

    addr4: Optional[Endpoint] = None
    addr6: Optional[Endpoint] = None

    for name, snics in psutil.net_if_addrs().items():
        for snic in snics:
            if addr4 is None and snic.family == socket.AF_INET:
                if name == interface or snic.address == interface:
                    addr4 = Endpoint.ipv4(snic.address, port)
            elif addr6 is None and snic.family == socket.AF_INET6:
                ip = snic.address.split("%", 1)[0]
                if name == interface or ip == interface:
                    addr6 = Endpoint.ipv6(ip, port, scope_id=_scope_id(name, snic.address))

    if addr4 is None and addr6 is None:
        raise InterfaceError(
            f"Unknown interface {interface!r}. Specify a valid interface by name "
            f"(e.g. \"en1\") or IP address."
        )

    logger.debug(f"Interface {description!r} -> ipv4={addr4}, ipv6={addr6}")
    return addr4, addr6
