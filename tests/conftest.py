"""
Shared fixtures: in-process TCP servers and connected socket pairs.
"""

import socket
import socketserver
import threading

import pytest


def ipv6_available() -> bool:
    """Check if ::1 can be bound on this host."""
    if not socket.has_ipv6:
        return False
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_STREAM) as sock:
            sock.bind(("::1", 0))
    except OSError:
        return False
    return True


class EchoHandler(socketserver.BaseRequestHandler):
    """Echo every byte back until the client closes."""

    def handle(self):
        while True:
            data = self.request.recv(65536)
            if not data:
                break
            self.request.sendall(data)


class SilentHandler(socketserver.BaseRequestHandler):
    """Accept and never send; return once the client goes away."""

    def handle(self):
        while self.request.recv(65536):
            pass


class _Server(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True
    block_on_close = False


class _Server6(_Server):
    address_family = socket.AF_INET6


def _start(handler, host="127.0.0.1", family=socket.AF_INET):
    server_class = _Server6 if family == socket.AF_INET6 else _Server
    server = server_class((host, 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server


@pytest.fixture
def tcp_server():
    """
    Factory for servers: tcp_server(handler, host, family) -> (host, port).

    All started servers are shut down after the test.
    """
    servers = []

    def start(handler=EchoHandler, host="127.0.0.1", family=socket.AF_INET):
        server = _start(handler, host, family)
        servers.append(server)
        return server.server_address[0], server.server_address[1]

    yield start

    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def echo_server(tcp_server):
    """(host, port) of an IPv4 echo server on 127.0.0.1."""
    return tcp_server(EchoHandler)


@pytest.fixture
def echo_server6(tcp_server):
    """(host, port) of an IPv6 echo server on ::1."""
    if not ipv6_available():
        pytest.skip("IPv6 loopback not available")
    return tcp_server(EchoHandler, "::1", socket.AF_INET6)


@pytest.fixture
def silent_server(tcp_server):
    """(host, port) of a server that never sends anything."""
    return tcp_server(SilentHandler)


@pytest.fixture
def tcp_pair():
    """A connected (client, server) pair of TCP sockets on 127.0.0.1."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)

    client = socket.create_connection(listener.getsockname(), timeout=5)
    server, _ = listener.accept()
    listener.close()
    client.settimeout(None)
    server.settimeout(5)

    yield client, server

    client.close()
    server.close()


@pytest.fixture
def closed_port():
    """A 127.0.0.1 port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
