#!/usr/bin/env python3
"""
Line Echo Server Example

Accepts connections with a plain listening socket and hands each one to a
PeerSocket, which then:
- Reads CRLF-terminated lines
- Echoes every line back
- Closes when the client disconnects or stays idle past the timeout

Run this server, then connect with the echo client.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import logging
import socket
import threading

from tcppeer import CRLF, PeerClosedError, PeerError, PeerSocket

logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def echo_server(host: str = "127.0.0.1", port: int = 8080, idle_timeout: float = 60.0):
    """
    Run a line echo server.

    Each accepted connection is served on its own thread.
    """
    print(f"Starting echo server on {host}:{port}")

    # Backlog of 5 pending connections
    listener = socket.create_server((host, port), backlog=5)
    print("Listening for connections...")

    try:
        while True:
            conn, client_addr = listener.accept()
            print(f"Accepted connection from {client_addr[0]}:{client_addr[1]}")

            peer = PeerSocket.from_socket(conn, timeout=idle_timeout)
            threading.Thread(target=handle_client, args=(peer,), daemon=True).start()

    except KeyboardInterrupt:
        print("\nShutting down server...")
    finally:
        listener.close()
        print("Server closed")


def handle_client(peer: PeerSocket):
    """Echo lines until the client goes away."""
    with peer:
        try:
            while True:
                line = peer.read_to_data(CRLF)
                print(f"Received {len(line)} bytes: {line[:50]!r}")
                peer.write(line)

        except PeerClosedError:
            print("Client disconnected")
        except PeerError as e:
            print(f"Error handling client: {e}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Line Echo Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8080, help="Port to listen on")
    parser.add_argument("--timeout", type=float, default=60.0, help="Idle timeout per client")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args()

    if not args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    echo_server(args.host, args.port, args.timeout)
